"""Database layer: SQLAlchemy models and session."""

from server.db.models import Base, User, Session, Deck, Flashcard, StudyRecord
from server.db.session import get_db, init_db

__all__ = [
    "Base",
    "User",
    "Session",
    "Deck",
    "Flashcard",
    "StudyRecord",
    "get_db",
    "init_db",
]
