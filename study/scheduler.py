"""SM-2 spaced repetition scheduler."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from study.models import Schedule
from study.states import Rating, StudyState

DEFAULT_EASE = 2.5
MIN_EASE = 1.3
SECOND_INTERVAL_DAYS = 6

_QUALITY = {
    Rating.AGAIN: 0,
    Rating.GOOD: 3,
    Rating.EASY: 5,
}


def quality_for_rating(rating: Union[Rating, str]) -> int:
    """
    Map a learner rating to an SM-2 quality score (0-5).

        again -> 0  (blackout)
        good  -> 3  (recalled with hesitation)
        easy  -> 5  (perfect recall)

    Raises ValueError for anything else.
    """
    return _QUALITY[Rating(rating)]


def sm2_schedule(
    rating: Union[Rating, str],
    difficulty: Optional[float],
    stability: Optional[float],
    repetitions: Optional[int],
    state: Union[StudyState, str, None],
    now: Optional[datetime] = None,
) -> Schedule:
    """
    SM-2 spaced repetition scheduling.

    Args:
        rating:      Learner rating (again/good/easy)
        difficulty:  Current ease factor, or None for a fresh record
        stability:   Previous interval in days, or None before the first review
        repetitions: Consecutive successful reviews so far
        state:       Current learning state
        now:         Reference instant (defaults to current UTC time)

    Returns:
        Schedule with the new ease, interval, repetitions, due date and state.
    """
    quality = quality_for_rating(rating)
    if now is None:
        now = datetime.now(timezone.utc)
    prior_state = StudyState(state) if state else StudyState.NEW

    ease = difficulty if difficulty else DEFAULT_EASE
    reps = repetitions or 0

    # EF' = EF + (0.1 - (5-q) * (0.08 + (5-q) * 0.02))
    ease = ease + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02))
    ease = max(MIN_EASE, ease)

    if quality < 3:
        reps = 0
        interval = 1
        if prior_state == StudyState.NEW:
            new_state = StudyState.LEARNING
        else:
            new_state = StudyState.RELEARNING
    else:
        reps += 1
        if reps == 1:
            interval = 1
            new_state = StudyState.LEARNING
        elif reps == 2:
            interval = SECOND_INTERVAL_DAYS
            new_state = StudyState.LEARNING
        else:
            previous_interval = stability or SECOND_INTERVAL_DAYS
            interval = round(previous_interval * ease)
            new_state = StudyState.REVIEW

    return Schedule(
        ease_factor=ease,
        interval_days=interval,
        repetitions=reps,
        next_review_date=now + timedelta(days=interval),
        state=new_state,
    )
