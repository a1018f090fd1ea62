"""
Study engine services: due-card selection, study sessions, review
processing and deck statistics.

All functions take an open SQLAlchemy session and leave committing to the
caller. Nothing here retries: persistence failures surface as
StudyUnavailableError so callers can tell them apart from NotFound and
Forbidden outcomes.
"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import case, event, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from server.db.models import Deck, Flashcard, StudyRecord
from study.analytics import (
    STREAK_MAX_DAYS,
    as_utc,
    average_difficulty,
    compute_streak,
    day_window,
    retention_rate,
)
from study.models import DeckStats, DueCard, ReviewResult, StudySession
from study.scheduler import MIN_EASE, sm2_schedule
from study.states import Rating, StudyState

logger = logging.getLogger("decklearn.study")

DEFAULT_INITIAL_DIFFICULTY = 5.0
DEFAULT_STATS_WORKERS = 4

# Set on a session once it has written in its current transaction.
_PENDING_WRITES = "decklearn.study.pending_writes"


class NotFoundError(LookupError):
    """Deck or study record does not exist (or is not visible to the user)."""


class ForbiddenError(PermissionError):
    """Deck exists but belongs to another user."""


class IntegrityViolationError(Exception):
    """Review referenced a flashcard that does not match the study record."""


class StaleRecordError(Exception):
    """Study record changed between read and conditional update."""


class StudyUnavailableError(Exception):
    """Persistence layer failed; not a caller error."""


@contextmanager
def _persistence(action: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception("%s", action)
        raise StudyUnavailableError(action) from e


def _utc_now(now: Optional[datetime] = None) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


@event.listens_for(DBSession, "after_flush")
def _track_flush(session, flush_context):
    session.info[_PENDING_WRITES] = True


@event.listens_for(DBSession, "do_orm_execute")
def _track_dml(orm_execute_state):
    if orm_execute_state.is_insert or orm_execute_state.is_update or orm_execute_state.is_delete:
        orm_execute_state.session.info[_PENDING_WRITES] = True


@event.listens_for(DBSession, "after_transaction_end")
def _clear_pending_writes(session, transaction):
    if transaction.parent is None:
        session.info.pop(_PENDING_WRITES, None)


def _has_uncommitted_writes(db: DBSession) -> bool:
    return bool(db.new or db.dirty or db.deleted or db.info.get(_PENDING_WRITES))


# ---- Ownership ----

def validate_deck_ownership(db: DBSession, user_id: str, deck_id: str) -> Deck:
    """
    Return the deck if it belongs to user_id.

    Raises:
        NotFoundError if the deck does not exist.
        ForbiddenError if another user owns it.
    """
    with _persistence("Failed to verify deck ownership"):
        deck = db.get(Deck, deck_id)
    if deck is None:
        raise NotFoundError("Deck not found")
    if deck.user_id != user_id:
        raise ForbiddenError("Access denied")
    return deck


# ---- Due cards ----

def initialize_study_records(
    db: DBSession,
    user_id: str,
    flashcard_ids: List[str],
    now: Optional[datetime] = None,
    initial_difficulty: float = DEFAULT_INITIAL_DIFFICULTY,
) -> int:
    """
    Create 'new' study records for flashcards the user has not seen yet.

    Safe to call concurrently for the same user and flashcards: the
    (user_id, flashcard_id) unique constraint rejects duplicates, and a
    rejected row counts as already initialized once the record is confirmed
    to exist. Any other constraint failure (a deleted flashcard, say) raises
    StudyUnavailableError. Returns the number of records this call created.

    Raises:
        ValueError if initial_difficulty is below the SM-2 ease floor.
    """
    if initial_difficulty < MIN_EASE:
        raise ValueError(f"initial_difficulty must be at least {MIN_EASE}")
    if not flashcard_ids:
        return 0
    now = _utc_now(now)
    rows = [
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "flashcard_id": flashcard_id,
            "state": StudyState.NEW.value,
            "due_date": now,
            "difficulty": initial_difficulty,
            "stability": None,
            "repetitions": 0,
            "lapses": 0,
            "created_at": now,
            "updated_at": now,
        }
        for flashcard_id in flashcard_ids
    ]

    with _persistence("Failed to initialize study records"):
        try:
            with db.begin_nested():
                db.execute(insert(StudyRecord), rows)
            return len(rows)
        except IntegrityError:
            logger.info(
                "Batch init raced for user %s (%d cards); retrying row by row",
                user_id, len(rows),
            )

        created = 0
        for row in rows:
            try:
                with db.begin_nested():
                    db.execute(insert(StudyRecord), [row])
                created += 1
            except IntegrityError:
                # Only a duplicate from a racing request counts as initialized.
                if not _record_exists(db, user_id, row["flashcard_id"]):
                    raise
        return created


def _record_exists(db: DBSession, user_id: str, flashcard_id: str) -> bool:
    return db.scalar(
        select(StudyRecord.id).where(
            StudyRecord.user_id == user_id,
            StudyRecord.flashcard_id == flashcard_id,
        )
    ) is not None


def _collect_due_cards(
    db: DBSession,
    user_id: str,
    deck_id: str,
    limit: int,
    now: datetime,
    initial_difficulty: float,
) -> List[DueCard]:
    with _persistence("Failed to fetch due cards"):
        flashcard_ids = list(db.scalars(
            select(Flashcard.id).where(Flashcard.deck_id == deck_id)
        ))
        if not flashcard_ids:
            return []

        existing = set(db.scalars(
            select(StudyRecord.flashcard_id).where(
                StudyRecord.user_id == user_id,
                StudyRecord.flashcard_id.in_(flashcard_ids),
            )
        ))
        missing = [fid for fid in flashcard_ids if fid not in existing]
        if missing:
            created = initialize_study_records(
                db, user_id, missing, now=now, initial_difficulty=initial_difficulty,
            )
            logger.debug("Initialized %d study records for user %s", created, user_id)

        stmt = (
            select(StudyRecord.id, StudyRecord.flashcard_id, StudyRecord.state, Flashcard.front, Flashcard.back)
            .join(Flashcard, StudyRecord.flashcard_id == Flashcard.id)
            .where(
                StudyRecord.user_id == user_id,
                Flashcard.deck_id == deck_id,
                StudyRecord.due_date <= now,
            )
            .order_by(
                case((StudyRecord.state == StudyState.NEW.value, 0), else_=1),
                StudyRecord.due_date.asc(),
                StudyRecord.id,
            )
            .limit(limit)
        )
        rows = db.execute(stmt).all()

    return [
        DueCard(
            flashcard_id=row.flashcard_id,
            front=row.front,
            back=row.back,
            study_record_id=row.id,
            state=StudyState(row.state or StudyState.NEW.value),
        )
        for row in rows
    ]


def get_due_cards(
    db: DBSession,
    user_id: str,
    deck_id: str,
    limit: int,
    now: Optional[datetime] = None,
    initial_difficulty: float = DEFAULT_INITIAL_DIFFICULTY,
) -> List[DueCard]:
    """
    Cards due for review in a deck, new cards first, then oldest due first.

    Flashcards without a study record get one on the way (state new,
    due immediately). Never returns a card whose due date is in the future.
    """
    validate_deck_ownership(db, user_id, deck_id)
    return _collect_due_cards(db, user_id, deck_id, limit, _utc_now(now), initial_difficulty)


# ---- Sessions ----

def initialize_session(
    db: DBSession,
    user_id: str,
    deck_id: str,
    limit: int,
    now: Optional[datetime] = None,
    initial_difficulty: float = DEFAULT_INITIAL_DIFFICULTY,
) -> StudySession:
    """Start a study session: ownership check, then up to `limit` due cards."""
    now = _utc_now(now)
    deck = validate_deck_ownership(db, user_id, deck_id)
    cards = _collect_due_cards(db, user_id, deck_id, limit, now, initial_difficulty)
    session = StudySession(
        session_id=str(uuid.uuid4()),
        deck_id=deck.id,
        deck_name=deck.name,
        cards_due=cards,
        session_started_at=now,
    )
    logger.info(
        "Study session %s started: user=%s deck=%s due=%d",
        session.session_id, user_id, deck_id, session.total_due,
    )
    return session


# ---- Reviews ----

def process_review(
    db: DBSession,
    user_id: str,
    study_record_id: str,
    flashcard_id: str,
    rating: Union[Rating, str],
    now: Optional[datetime] = None,
    optimistic: bool = False,
) -> ReviewResult:
    """
    Apply one review to a study record and persist the new schedule.

    Resubmitting the same review reschedules again; there is no
    deduplication. Without `optimistic`, concurrent reviews of one record
    are last-write-wins. With it, the update only applies if the record's
    last_review_date is unchanged since it was read.

    Raises:
        ValueError for an unknown rating.
        NotFoundError if the record is missing, owned by someone else, or
            deleted before the update lands.
        IntegrityViolationError if flashcard_id does not match the record.
        StaleRecordError if an optimistic update lost a race.
    """
    rating = Rating(rating)
    now = _utc_now(now)

    with _persistence("Failed to update study record"):
        record = db.scalars(
            select(StudyRecord).where(
                StudyRecord.id == study_record_id,
                StudyRecord.user_id == user_id,
            )
        ).first()
        if record is None:
            raise NotFoundError("Study record not found")

        if record.flashcard_id != flashcard_id:
            logger.warning(
                "Flashcard mismatch on review: record=%s expected=%s got=%s user=%s",
                study_record_id, record.flashcard_id, flashcard_id, user_id,
            )
            raise IntegrityViolationError("Flashcard ID does not match study record")

        schedule = sm2_schedule(
            rating,
            difficulty=record.difficulty,
            stability=record.stability,
            repetitions=record.repetitions,
            state=record.state,
            now=now,
        )
        lapses = record.lapses or 0
        if rating == Rating.AGAIN:
            lapses += 1

        stmt = update(StudyRecord).where(StudyRecord.id == record.id)
        if optimistic:
            if record.last_review_date is None:
                stmt = stmt.where(StudyRecord.last_review_date.is_(None))
            else:
                stmt = stmt.where(StudyRecord.last_review_date == record.last_review_date)
        result = db.execute(
            stmt.values(
                difficulty=schedule.ease_factor,
                stability=float(schedule.interval_days),
                repetitions=schedule.repetitions,
                state=schedule.state.value,
                due_date=schedule.next_review_date,
                last_review_date=now,
                lapses=lapses,
                updated_at=now,
            ).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if not optimistic:
                raise NotFoundError("Study record not found")
            logger.warning("Stale review rejected: record=%s user=%s", study_record_id, user_id)
            raise StaleRecordError("Study record was modified by another review")
        db.expire(record)

    logger.info(
        "Review %s: record=%s state=%s interval=%dd",
        rating.value, study_record_id, schedule.state.value, schedule.interval_days,
    )
    return ReviewResult(
        study_record_id=study_record_id,
        next_review_date=schedule.next_review_date,
        stability=float(schedule.interval_days),
        difficulty=schedule.ease_factor,
        state=schedule.state,
    )


# ---- Statistics ----

def _deck_record_filter(user_id: str, deck_id: str):
    deck_cards = select(Flashcard.id).where(Flashcard.deck_id == deck_id)
    return (StudyRecord.user_id == user_id) & StudyRecord.flashcard_id.in_(deck_cards)


def _fan_out(
    db: DBSession,
    queries: Dict[str, Callable[[DBSession], Any]],
    workers: int,
) -> Dict[str, Any]:
    """
    Run independent read-only queries, each on its own session, in parallel.

    Fresh sessions cannot see the caller's uncommitted writes, so a session
    that has written in its current transaction runs the queries itself.
    """
    engine = db.get_bind()
    in_memory = engine.url.get_backend_name() == "sqlite" and engine.url.database in (None, "", ":memory:")
    if workers <= 1 or in_memory or _has_uncommitted_writes(db):
        return {name: query(db) for name, query in queries.items()}

    def run(query):
        with DBSession(bind=engine) as session:
            return query(session)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {name: pool.submit(run, query) for name, query in queries.items()}
        return {name: future.result() for name, future in futures.items()}


def get_deck_statistics(
    db: DBSession,
    user_id: str,
    deck_id: str,
    now: Optional[datetime] = None,
    streak_max_days: int = STREAK_MAX_DAYS,
    workers: int = DEFAULT_STATS_WORKERS,
) -> DeckStats:
    """
    Aggregate study metrics for one deck.

    Sub-queries run concurrently and are not snapshotted together, so the
    numbers are read-time consistent only. When the caller has uncommitted
    writes they run serially on its session instead, so the figures include
    them. The streak spans all of the user's decks.
    """
    now = _utc_now(now)
    validate_deck_ownership(db, user_id, deck_id)

    with _persistence("Failed to fetch flashcards for stats"):
        total_cards = db.scalar(
            select(func.count(Flashcard.id)).where(Flashcard.deck_id == deck_id)
        ) or 0
    if total_cards == 0:
        return DeckStats(deck_id=deck_id)

    today = now.date()
    today_start, today_end = day_window(today)
    tomorrow_start, tomorrow_end = day_window(today + timedelta(days=1))
    streak_start, _ = day_window(today - timedelta(days=max(streak_max_days, 1) - 1))

    def studied_today(s: DBSession) -> int:
        return s.scalar(select(func.count(StudyRecord.id)).where(
            _deck_record_filter(user_id, deck_id),
            StudyRecord.last_review_date >= today_start,
            StudyRecord.last_review_date < today_end,
        )) or 0

    def due_today(s: DBSession) -> int:
        return s.scalar(select(func.count(StudyRecord.id)).where(
            _deck_record_filter(user_id, deck_id),
            StudyRecord.due_date <= now,
        )) or 0

    def due_tomorrow(s: DBSession) -> int:
        return s.scalar(select(func.count(StudyRecord.id)).where(
            _deck_record_filter(user_id, deck_id),
            StudyRecord.due_date >= tomorrow_start,
            StudyRecord.due_date < tomorrow_end,
        )) or 0

    def difficulties(s: DBSession) -> List[float]:
        return list(s.scalars(select(StudyRecord.difficulty).where(
            _deck_record_filter(user_id, deck_id),
            StudyRecord.difficulty.is_not(None),
        )))

    def reviewed_lapses(s: DBSession) -> List[int]:
        return list(s.scalars(select(StudyRecord.lapses).where(
            _deck_record_filter(user_id, deck_id),
            StudyRecord.last_review_date.is_not(None),
        )))

    def review_dates(s: DBSession) -> List[datetime]:
        return list(s.scalars(select(StudyRecord.last_review_date).where(
            StudyRecord.user_id == user_id,
            StudyRecord.last_review_date >= streak_start,
            StudyRecord.last_review_date < today_end,
        )))

    with _persistence("Failed to compute deck statistics"):
        results = _fan_out(db, {
            "studied_today": studied_today,
            "due_today": due_today,
            "due_tomorrow": due_tomorrow,
            "difficulties": difficulties,
            "lapses": reviewed_lapses,
            "review_dates": review_dates,
        }, workers)

    review_days = {as_utc(d).date() for d in results["review_dates"]}
    return DeckStats(
        deck_id=deck_id,
        total_cards=total_cards,
        cards_studied_today=results["studied_today"],
        cards_due_today=results["due_today"],
        cards_due_tomorrow=results["due_tomorrow"],
        average_difficulty=average_difficulty(results["difficulties"]),
        retention_rate=retention_rate(results["lapses"]),
        streak_days=compute_streak(review_days, today, max_days=streak_max_days),
    )
