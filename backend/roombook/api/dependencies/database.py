# backend/roombook/api/dependencies/database.py
"""
Database session dependencies.

Routes and service factories depend on ``get_db`` from here so tests can
override a single callable.
"""

from typing import Generator

from sqlalchemy.orm import Session

from ...database import get_db as original_get_db


def get_db() -> Generator[Session, None, None]:
    """Database session for one request."""
    yield from original_get_db()
