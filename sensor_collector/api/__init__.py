"""Read-only HTTP API over the reading store."""

from .app import create_app
from .routes import get_store

__all__ = ['create_app', 'get_store']
