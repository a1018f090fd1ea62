"""Tests for study/scheduler.py -- SM-2 spaced repetition."""

import itertools
import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from study.scheduler import MIN_EASE, quality_for_rating, sm2_schedule
from study.states import Rating, StudyState

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _review(schedule, rating):
    """Feed a previous schedule back in, the way the review processor does."""
    return sm2_schedule(
        rating,
        difficulty=schedule.ease_factor,
        stability=schedule.interval_days,
        repetitions=schedule.repetitions,
        state=schedule.state,
        now=NOW,
    )


def test_quality_mapping():
    assert quality_for_rating(Rating.AGAIN) == 0
    assert quality_for_rating("good") == 3
    assert quality_for_rating("easy") == 5


def test_quality_rejects_unknown_rating():
    with pytest.raises(ValueError):
        quality_for_rating("hard")


def test_again_from_new_goes_to_learning():
    result = sm2_schedule("again", difficulty=5.0, stability=None, repetitions=0, state="new", now=NOW)
    assert result.state == StudyState.LEARNING
    assert result.interval_days == 1
    assert result.repetitions == 0
    assert result.next_review_date == NOW + timedelta(days=1)


def test_again_from_review_goes_to_relearning():
    result = sm2_schedule("again", difficulty=2.5, stability=15, repetitions=4, state="review", now=NOW)
    assert result.state == StudyState.RELEARNING
    assert result.interval_days == 1
    assert result.repetitions == 0


def test_again_with_low_ease_clamps_to_floor():
    """difficulty 2.0 - 0.8 would be 1.2; the floor keeps it at 1.3."""
    result = sm2_schedule("again", difficulty=2.0, stability=6, repetitions=2, state="review", now=NOW)
    assert result.ease_factor == pytest.approx(1.3)
    assert result.interval_days == 1
    assert result.state == StudyState.RELEARNING


def test_good_lowers_ease_easy_raises_it():
    good = sm2_schedule("good", difficulty=2.5, stability=None, repetitions=0, state="new", now=NOW)
    easy = sm2_schedule("easy", difficulty=2.5, stability=None, repetitions=0, state="new", now=NOW)
    assert good.ease_factor == pytest.approx(2.36)
    assert easy.ease_factor == pytest.approx(2.6)


def test_missing_difficulty_uses_default_ease():
    result = sm2_schedule("easy", difficulty=None, stability=None, repetitions=None, state=None, now=NOW)
    assert result.ease_factor == pytest.approx(2.6)
    assert result.repetitions == 1
    assert result.state == StudyState.LEARNING


def test_interval_progression_1_6_then_ease():
    first = sm2_schedule("easy", difficulty=2.5, stability=None, repetitions=0, state="new", now=NOW)
    second = _review(first, "easy")
    third = _review(second, "easy")
    assert [first.interval_days, second.interval_days] == [1, 6]
    assert third.interval_days == round(6 * third.ease_factor)
    assert third.state == StudyState.REVIEW


def test_three_goods_on_new_record():
    """Fresh record (ease 5.0) reviewed good three times reaches review state."""
    first = sm2_schedule("good", difficulty=5.0, stability=None, repetitions=0, state="new", now=NOW)
    second = _review(first, "good")
    third = _review(second, "good")

    assert (first.state, second.state) == (StudyState.LEARNING, StudyState.LEARNING)
    assert third.repetitions == 3
    assert third.state == StudyState.REVIEW
    assert third.ease_factor == pytest.approx(4.58)
    assert third.interval_days == round(6 * third.ease_factor) == 27


def test_fourth_review_grows_from_previous_interval():
    result = sm2_schedule("good", difficulty=2.5, stability=15, repetitions=3, state="review", now=NOW)
    assert result.interval_days == round(15 * 2.36)
    assert result.repetitions == 4


def test_missing_stability_defaults_previous_interval_to_six():
    result = sm2_schedule("good", difficulty=2.5, stability=None, repetitions=2, state="learning", now=NOW)
    assert result.interval_days == round(6 * 2.36)


def test_ease_never_below_floor_for_any_sequence():
    for seq in itertools.product(list(Rating), repeat=4):
        schedule = sm2_schedule(seq[0], difficulty=1.3, stability=None, repetitions=0, state="new", now=NOW)
        assert schedule.ease_factor >= MIN_EASE
        for rating in seq[1:]:
            schedule = _review(schedule, rating)
            assert schedule.ease_factor >= MIN_EASE


def test_again_never_lands_in_new_or_review():
    for state in StudyState:
        result = sm2_schedule("again", difficulty=2.5, stability=10, repetitions=3, state=state, now=NOW)
        assert result.state not in (StudyState.NEW, StudyState.REVIEW)


def test_due_date_is_future():
    result = sm2_schedule("good", difficulty=2.5, stability=None, repetitions=0, state="new")
    assert result.next_review_date > datetime.now(timezone.utc)
