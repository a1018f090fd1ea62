"""FastAPI application -- routes for the decklearn study engine."""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from fastapi import Cookie, Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from server.__version__ import __version__
from server.auth import SESSION_COOKIE, get_current_user
from server.config import Settings
from server.dependencies import get_db_session, get_settings
from server.schemas import (
    LoginRequest,
    RegisterRequest,
    ReviewRequest,
    ReviewResponse,
    StudySessionResponse,
    StudyStatsResponse,
    UserResponse,
)
from server.services import auth_service, study_service
from server.services.study_service import (
    ForbiddenError,
    IntegrityViolationError,
    NotFoundError,
    StaleRecordError,
    StudyUnavailableError,
)

logger = logging.getLogger("decklearn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan: create tables if missing."""
    from server.db.session import init_db
    init_db(get_settings())
    ts = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Startup: database ready", ts)
    yield
    ts_end = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Shutdown: complete", ts_end)


app = FastAPI(title="decklearn", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _commit(db: DBSession, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Commit failed: %s", action)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


# ---- Auth ----

SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def _set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=min(SESSION_MAX_AGE, settings.session_ttl_hours * 3600),
        httponly=True,
        secure=False,
        samesite="lax",
    )


@app.post("/auth/register", response_model=UserResponse)
def auth_register(
    body: RegisterRequest,
    response: Response,
    db: DBSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    try:
        user = auth_service.register_user(db, body.email, body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    token = auth_service.create_session(db, user.id, ttl_hours=settings.session_ttl_hours)
    _commit(db, "register")
    _set_session_cookie(response, token, settings)
    return {"id": user.id, "email": user.email}


@app.post("/auth/login", response_model=UserResponse)
def auth_login(
    body: LoginRequest,
    response: Response,
    db: DBSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    user = auth_service.authenticate(db, body.email, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token = auth_service.create_session(db, user.id, ttl_hours=settings.session_ttl_hours)
    _commit(db, "log in")
    _set_session_cookie(response, token, settings)
    return {"id": user.id, "email": user.email}


@app.post("/auth/logout")
def auth_logout(
    response: Response,
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
    db: DBSession = Depends(get_db_session),
):
    if session_token:
        auth_service.logout_session(db, session_token)
        _commit(db, "log out")
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@app.get("/auth/me", response_model=UserResponse)
def auth_me(user=Depends(get_current_user)):
    return {"id": user.id, "email": user.email}


# ---- Health (no dependencies, always fast) ----

@app.get("/health")
def health():
    """Minimal health check."""
    return {"ok": True}


# ---- Study ----

@app.get("/study/session/{deck_id}", response_model=StudySessionResponse)
def study_session(
    deck_id: str,
    response: Response,
    limit: Optional[int] = Query(None, ge=1),
    user=Depends(get_current_user),
    db: DBSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Start a study session and return the cards due now."""
    if limit is None:
        limit = settings.study_session_default_limit
    limit = min(limit, settings.study_session_max_limit)
    try:
        session = study_service.initialize_session(
            db, user.id, deck_id, limit,
            initial_difficulty=settings.initial_difficulty,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Deck not found")
    except ForbiddenError:
        raise HTTPException(status_code=403, detail="Access denied")
    except StudyUnavailableError:
        raise HTTPException(status_code=500, detail="Failed to initialize study session")
    _commit(db, "initialize study session")
    response.headers["Cache-Control"] = "no-store"
    return session.to_dict()


@app.post("/study/review", response_model=ReviewResponse)
def study_review(
    body: ReviewRequest,
    user=Depends(get_current_user),
    db: DBSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Submit a rating for a card and reschedule it (SM-2)."""
    try:
        result = study_service.process_review(
            db, user.id, body.study_record_id, body.flashcard_id, body.rating,
            optimistic=settings.optimistic_reviews,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Study record not found")
    except StaleRecordError:
        raise HTTPException(status_code=409, detail="Study record was modified; reload and retry")
    except IntegrityViolationError:
        raise HTTPException(status_code=500, detail="Failed to submit review")
    except StudyUnavailableError:
        raise HTTPException(status_code=500, detail="Failed to submit review")
    _commit(db, "submit review")
    return result.to_dict()


@app.get("/study/stats/{deck_id}", response_model=StudyStatsResponse)
def study_stats(
    deck_id: str,
    user=Depends(get_current_user),
    db: DBSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
):
    """Deck statistics: due counts, average ease, retention and streak."""
    try:
        stats = study_service.get_deck_statistics(
            db, user.id, deck_id,
            streak_max_days=settings.streak_max_days,
            workers=settings.stats_workers,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Deck not found")
    except ForbiddenError:
        raise HTTPException(status_code=403, detail="Access denied")
    except StudyUnavailableError:
        raise HTTPException(status_code=500, detail="Failed to fetch study statistics")
    return stats.to_dict()
