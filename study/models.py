"""Data models for the study engine: schedules, due cards, sessions, stats."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from study.states import StudyState


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Schedule:
    """
    Result of one SM-2 update.

    interval_days is what gets persisted as the record's stability;
    repetitions is stored separately so the two never share a column.
    """
    ease_factor: float
    interval_days: int
    repetitions: int
    next_review_date: datetime
    state: StudyState

    def to_dict(self) -> Dict:
        return {
            'ease_factor': self.ease_factor,
            'interval_days': self.interval_days,
            'repetitions': self.repetitions,
            'next_review_date': _iso(self.next_review_date),
            'state': self.state.value,
        }


@dataclass
class DueCard:
    """A card eligible for review, with its flashcard content."""
    flashcard_id: str
    front: str
    back: str
    study_record_id: str
    state: StudyState = StudyState.NEW

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['state'] = self.state.value
        return d


@dataclass
class StudySession:
    session_id: str
    deck_id: str
    deck_name: str
    cards_due: List[DueCard] = field(default_factory=list)
    session_started_at: Optional[datetime] = None

    @property
    def total_due(self) -> int:
        return len(self.cards_due)

    def to_dict(self) -> Dict:
        return {
            'session_id': self.session_id,
            'deck_id': self.deck_id,
            'deck_name': self.deck_name,
            'cards_due': [c.to_dict() for c in self.cards_due],
            'total_due': self.total_due,
            'session_started_at': _iso(self.session_started_at),
        }


@dataclass
class ReviewResult:
    study_record_id: str
    next_review_date: datetime
    stability: float
    difficulty: float
    state: StudyState

    def to_dict(self) -> Dict:
        return {
            'study_record_id': self.study_record_id,
            'next_review_date': _iso(self.next_review_date),
            'stability': self.stability,
            'difficulty': self.difficulty,
            'state': self.state.value,
        }


@dataclass
class DeckStats:
    """Advisory, read-only statistics for one deck."""
    deck_id: str
    total_cards: int = 0
    cards_studied_today: int = 0
    cards_due_today: int = 0
    cards_due_tomorrow: int = 0
    average_difficulty: float = 0.0
    retention_rate: float = 0.0
    streak_days: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)
