"""HTTP route definitions for the read-only query API."""

import logging
import re
from datetime import datetime, timedelta
from functools import lru_cache
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..storage.readings import ReadingStore, StoreConnectionError, StoreError
from ..utils.config import Config
from .schemas import DatedReadingOut, ReadingOut


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Largest value SQLite accepts as an INTEGER bind parameter
MAX_ROW_LIMIT = 2 ** 63 - 1


@lru_cache()
def get_store() -> ReadingStore:
    """Read-only store on the configured database file."""
    return ReadingStore(Config().database_path, read_only=True)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _store_failure(e: StoreError, what: str) -> JSONResponse:
    if isinstance(e, StoreConnectionError):
        logger.error(f"Database connection failed: {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Could not connect to the database.")
    logger.error(f"Query for {what} failed: {e}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Could not retrieve {what}.")


@router.get(
    "/latest",
    response_model=ReadingOut,
    summary="Most recent reading.",
)
def latest(store: ReadingStore = Depends(get_store)) -> Union[ReadingOut, JSONResponse]:
    try:
        row = store.query_latest()
    except StoreError as e:
        return _store_failure(e, "latest sensor data")

    if row is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": "No sensor data found."})
    return ReadingOut.from_stored(row)


@router.get(
    "/history",
    response_model=List[DatedReadingOut],
    summary="All readings, newest first unless order=asc.",
)
def history(limit: Optional[str] = None,
            order: str = "desc",
            store: ReadingStore = Depends(get_store)) -> Union[List[DatedReadingOut], JSONResponse]:
    order = order.lower()
    if order not in ("asc", "desc"):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid 'order' parameter. Use 'asc' or 'desc'.")

    row_limit = None
    if limit is not None:
        try:
            row_limit = int(limit)
        except ValueError:
            row_limit = -1
        if row_limit < 0 or row_limit > MAX_ROW_LIMIT:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid 'limit' parameter. Use a non-negative integer.")

    try:
        rows = store.query_all(limit=row_limit, order=order)
    except StoreError as e:
        return _store_failure(e, "sensor history")

    return [DatedReadingOut.from_stored(row) for row in rows]


@router.get(
    "/daily_history/{date_str}",
    response_model=List[DatedReadingOut],
    summary="Readings of one calendar day, oldest first.",
)
def daily_history(date_str: str,
                  store: ReadingStore = Depends(get_store)) -> Union[List[DatedReadingOut], JSONResponse]:
    try:
        if not DATE_PATTERN.match(date_str):
            raise ValueError(date_str)
        day = datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid date format. Please use YYYY-MM-DD.")

    try:
        end = day + timedelta(days=1)
    except OverflowError:
        # 9999-12-31 has no following midnight
        end = datetime.max

    try:
        rows = store.query_range(day, end, order="asc")
    except StoreError as e:
        return _store_failure(e, "daily sensor data")

    if not rows:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"message": f"No sensor data found for {date_str}."}
        )
    return [DatedReadingOut.from_stored(row) for row in rows]
