"""Rating and learning-state enumerations for the study engine."""

from enum import Enum


class Rating(str, Enum):
    """Coarse recall rating submitted by the learner."""
    AGAIN = "again"
    GOOD = "good"
    EASY = "easy"


class StudyState(str, Enum):
    """Position of a study record in the learning-state machine."""
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"
