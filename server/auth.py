"""Auth dependency: extract session from cookie, resolve the owning user."""

from typing import Optional

from fastapi import Cookie, Depends, HTTPException
from sqlalchemy.orm import Session as DBSession

from server.db.models import User
from server.dependencies import get_db_session
from server.services import auth_service

SESSION_COOKIE = "decklearn_session"


def get_current_user_optional(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
    db: DBSession = Depends(get_db_session),
) -> Optional[User]:
    """Return current user or None if not authenticated."""
    if not session_token:
        return None
    return auth_service.get_user_by_session(db, session_token)


def get_current_user(
    user: Optional[User] = Depends(get_current_user_optional),
) -> User:
    """Require authenticated user. Raises 401 if not logged in."""
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user
