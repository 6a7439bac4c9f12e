"""FastAPI application factory for the query API."""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from .routes import router


async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors with the dashboard's JSON error bodies."""
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        message = "Endpoint not found."
    elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        message = "Method not allowed."
    else:
        message = str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Sensor Collector API",
        description="Read-only access to the stored temperature and humidity readings.",
        version=__version__,
        redirect_slashes=False,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.include_router(router)

    @app.middleware("http")
    async def strip_trailing_slash(request: Request, call_next):
        # /api/latest/ is served as /api/latest, no redirect
        path = request.scope["path"]
        if path != "/" and path.endswith("/"):
            request.scope["path"] = path.rstrip("/") or "/"
        return await call_next(request)

    return app
