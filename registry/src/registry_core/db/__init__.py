"""Database engine, models and migration runner."""

from .base import Base
from .session import Database, resolve_database_url

__all__ = ["Base", "Database", "resolve_database_url"]
