"""Authentication service: register, login, session lookup."""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session as DBSession

from server.db.models import Session, User

logger = logging.getLogger("decklearn.auth")

ph = PasswordHasher()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _normalize_email(email: str) -> str:
    return email.lower().strip()


def register_user(db: DBSession, email: str, password: str) -> User:
    """Create a new user. Raises ValueError if email exists."""
    email = _normalize_email(email)
    if db.scalars(select(User).where(User.email == email)).first():
        raise ValueError("Email already registered")
    user = User(email=email, password_hash=ph.hash(password))
    db.add(user)
    db.flush()
    logger.info("Registered user %s", user.id)
    return user


def authenticate(db: DBSession, email: str, password: str) -> Optional[User]:
    """Return the user if email and password match, else None."""
    user = db.scalars(select(User).where(User.email == _normalize_email(email))).first()
    if user is None:
        return None
    try:
        ph.verify(user.password_hash, password)
    except VerifyMismatchError:
        logger.info("Failed login for user %s", user.id)
        return None
    return user


def create_session(db: DBSession, user_id: str, ttl_hours: int = 24 * 7) -> str:
    """Create session, return raw token (to set in cookie)."""
    token = secrets.token_urlsafe(32)
    sess = Session(
        user_id=user_id,
        token_hash=hash_token(token),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=ttl_hours),
    )
    db.add(sess)
    db.flush()
    return token


def get_user_by_session(db: DBSession, token: str) -> Optional[User]:
    """Return user if valid session token, else None."""
    if not token:
        return None
    sess = db.scalars(select(Session).where(
        Session.token_hash == hash_token(token),
        Session.expires_at > datetime.now(timezone.utc),
    )).first()
    if not sess:
        return None
    return db.get(User, sess.user_id)


def logout_session(db: DBSession, token: str) -> bool:
    """Delete session by token. Returns True if found."""
    if not token:
        return False
    result = db.execute(delete(Session).where(Session.token_hash == hash_token(token)))
    return result.rowcount > 0
