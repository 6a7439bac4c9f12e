"""Response models for the query API."""

from pydantic import BaseModel

from ..storage.readings import StoredReading


class ReadingOut(BaseModel):
    """A reading as shown on the dashboard: time to the minute, formatted values."""
    time: str
    temp: str
    humid: str

    @classmethod
    def from_stored(cls, row: StoredReading) -> 'ReadingOut':
        return cls(**format_reading(row))


class DatedReadingOut(ReadingOut):
    date: str

    @classmethod
    def from_stored(cls, row: StoredReading) -> 'DatedReadingOut':
        return cls(**format_reading(row, include_date=True))


def format_reading(row: StoredReading, include_date: bool = False) -> dict:
    """
    Render a stored reading for API output.

    temp keeps two decimals, humid is an integer string and time is
    truncated to minutes.
    """
    formatted = {
        'time': row.timestamp.strftime('%H:%M'),
        'temp': f"{row.temperature:.2f}",
        'humid': str(int(row.humidity)),
    }
    if include_date:
        formatted['date'] = row.timestamp.strftime('%Y-%m-%d')
    return formatted
