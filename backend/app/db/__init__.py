"""Database package"""

from app.db.session import AsyncSessionLocal, engine, get_db, get_session_factory
from app.models.base import Base, utcnow

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db", "get_session_factory", "utcnow"]
