"""Database package for the Case Chat backend."""

from .base import (
    Base,
    close_all,
    get_db,
    get_db_session,
    get_engine,
    get_session_maker,
    init_database,
)

__all__ = [
    "Base",
    "close_all",
    "get_db",
    "get_db_session",
    "get_engine",
    "get_session_maker",
    "init_database",
]
