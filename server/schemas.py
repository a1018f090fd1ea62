"""Pydantic request/response schemas for the decklearn API."""

from typing import List, Literal
from pydantic import BaseModel, Field


# ---- Auth ----

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserResponse(BaseModel):
    id: str
    email: str


# ---- Study session ----

StudyStateValue = Literal["new", "learning", "review", "relearning"]


class StudyCard(BaseModel):
    flashcard_id: str
    front: str
    back: str
    study_record_id: str
    state: StudyStateValue


class StudySessionResponse(BaseModel):
    session_id: str
    deck_id: str
    deck_name: str
    cards_due: List[StudyCard]
    total_due: int
    session_started_at: str


# ---- Review ----

class ReviewRequest(BaseModel):
    study_record_id: str = Field(..., min_length=1, max_length=36)
    flashcard_id: str = Field(..., min_length=1, max_length=36)
    rating: Literal["again", "good", "easy"]


class ReviewResponse(BaseModel):
    study_record_id: str
    next_review_date: str
    stability: float
    difficulty: float
    state: StudyStateValue


# ---- Stats ----

class StudyStatsResponse(BaseModel):
    deck_id: str
    total_cards: int
    cards_studied_today: int
    cards_due_today: int
    cards_due_tomorrow: int
    average_difficulty: float
    retention_rate: float
    streak_days: int

