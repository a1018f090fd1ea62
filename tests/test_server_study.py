"""Tests for study-related API endpoints."""

import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient
from sqlalchemy import select

from server.app import app
from server.config import Settings
from server.db.models import Deck, Flashcard, StudyRecord, User
from server.db.session import get_session_factory, init_db, reset_engine
from server.dependencies import get_settings


# ============================================================================
# Helpers
# ============================================================================

def _make_settings(tmp_dir: Path, **overrides) -> Settings:
    settings = Settings(database_url=f"sqlite:///{tmp_dir / 'test.db'}", **overrides)
    reset_engine()
    init_db(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    return settings


def _register(email: str) -> TestClient:
    client = TestClient(app)
    r = client.post("/auth/register", json={"email": email, "password": "password123"})
    assert r.status_code == 200
    return client


def _seed_deck(settings: Settings, email: str, name: str = "Verbs", cards: int = 3) -> str:
    db = get_session_factory(settings)()
    try:
        user = db.scalars(select(User).where(User.email == email)).one()
        deck = Deck(user_id=user.id, name=name)
        db.add(deck)
        db.flush()
        for i in range(cards):
            db.add(Flashcard(deck_id=deck.id, front=f"Q{i}", back=f"A{i}"))
        db.commit()
        return deck.id
    finally:
        db.close()


# ============================================================================
# Tests: /study/session/{deck_id}
# ============================================================================

def test_session_requires_auth():
    with tempfile.TemporaryDirectory() as tmp:
        _make_settings(Path(tmp))
        try:
            client = TestClient(app)
            resp = client.get("/study/session/some-deck")
            assert resp.status_code == 401
        finally:
            app.dependency_overrides.clear()


def test_session_returns_due_cards():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=3)

            resp = client.get(f"/study/session/{deck_id}", params={"limit": 2})
            assert resp.status_code == 200
            assert resp.headers["cache-control"] == "no-store"
            body = resp.json()
            assert body["deck_id"] == deck_id
            assert body["deck_name"] == "Verbs"
            assert body["total_due"] == 2
            assert {c["state"] for c in body["cards_due"]} == {"new"}
            assert body["session_started_at"]

            # Records exist for every card, not only the ones returned
            db = get_session_factory(settings)()
            try:
                assert len(db.scalars(select(StudyRecord)).all()) == 3
            finally:
                db.close()
        finally:
            app.dependency_overrides.clear()


def test_session_unknown_deck():
    with tempfile.TemporaryDirectory() as tmp:
        _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            resp = client.get("/study/session/does-not-exist")
            assert resp.status_code == 404
        finally:
            app.dependency_overrides.clear()


def test_session_other_users_deck():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            _register("owner@example.com")
            intruder = _register("intruder@example.com")
            deck_id = _seed_deck(settings, "owner@example.com")
            resp = intruder.get(f"/study/session/{deck_id}")
            assert resp.status_code == 403
        finally:
            app.dependency_overrides.clear()


def test_session_limit_out_of_range():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com")
            assert client.get(f"/study/session/{deck_id}", params={"limit": 0}).status_code == 422
            assert client.get(f"/study/session/{deck_id}", params={"limit": -3}).status_code == 422
        finally:
            app.dependency_overrides.clear()


def test_session_limit_clamped_to_configured_max():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp), study_session_max_limit=2)
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=3)
            resp = client.get(f"/study/session/{deck_id}", params={"limit": 10})
            assert resp.status_code == 200
            assert resp.json()["total_due"] == 2
        finally:
            app.dependency_overrides.clear()


def test_session_limit_above_fifty_when_max_raised():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp), study_session_max_limit=60)
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=55)
            resp = client.get(f"/study/session/{deck_id}", params={"limit": 55})
            assert resp.status_code == 200
            assert resp.json()["total_due"] == 55
        finally:
            app.dependency_overrides.clear()


def test_session_default_limit_from_settings():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp), study_session_default_limit=1)
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=3)
            resp = client.get(f"/study/session/{deck_id}")
            assert resp.json()["total_due"] == 1
        finally:
            app.dependency_overrides.clear()


# ============================================================================
# Tests: /study/review
# ============================================================================

def test_review_updates_schedule():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=1)
            card = client.get(f"/study/session/{deck_id}").json()["cards_due"][0]

            resp = client.post("/study/review", json={
                "study_record_id": card["study_record_id"],
                "flashcard_id": card["flashcard_id"],
                "rating": "again",
            })
            assert resp.status_code == 200
            body = resp.json()
            assert body["study_record_id"] == card["study_record_id"]
            assert body["state"] == "learning"
            assert body["stability"] == 1.0
            assert abs(body["difficulty"] - 4.2) < 1e-9
            assert body["next_review_date"]

            # Reviewed card is no longer due
            again = client.get(f"/study/session/{deck_id}").json()
            assert again["total_due"] == 0
        finally:
            app.dependency_overrides.clear()


def test_review_invalid_rating():
    with tempfile.TemporaryDirectory() as tmp:
        _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            resp = client.post("/study/review", json={
                "study_record_id": "r1", "flashcard_id": "f1", "rating": "hard",
            })
            assert resp.status_code == 422
        finally:
            app.dependency_overrides.clear()


def test_review_unknown_record():
    with tempfile.TemporaryDirectory() as tmp:
        _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            resp = client.post("/study/review", json={
                "study_record_id": "r1", "flashcard_id": "f1", "rating": "good",
            })
            assert resp.status_code == 404
        finally:
            app.dependency_overrides.clear()


def test_review_flashcard_mismatch_is_server_error():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=2)
            cards = client.get(f"/study/session/{deck_id}").json()["cards_due"]
            resp = client.post("/study/review", json={
                "study_record_id": cards[0]["study_record_id"],
                "flashcard_id": cards[1]["flashcard_id"],
                "rating": "good",
            })
            assert resp.status_code == 500
        finally:
            app.dependency_overrides.clear()


def test_review_other_users_record():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            owner = _register("owner@example.com")
            intruder = _register("intruder@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=1)
            card = owner.get(f"/study/session/{deck_id}").json()["cards_due"][0]
            resp = intruder.post("/study/review", json={
                "study_record_id": card["study_record_id"],
                "flashcard_id": card["flashcard_id"],
                "rating": "easy",
            })
            assert resp.status_code == 404
        finally:
            app.dependency_overrides.clear()


# ============================================================================
# Tests: /study/stats/{deck_id}
# ============================================================================

def test_stats_empty_deck():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=0)
            resp = client.get(f"/study/stats/{deck_id}")
            assert resp.status_code == 200
            body = resp.json()
            assert body["total_cards"] == 0
            assert body["streak_days"] == 0
            assert body["average_difficulty"] == 0
        finally:
            app.dependency_overrides.clear()


def test_stats_after_reviews():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            client = _register("owner@example.com")
            deck_id = _seed_deck(settings, "owner@example.com", cards=2)
            cards = client.get(f"/study/session/{deck_id}").json()["cards_due"]
            for card, rating in zip(cards, ["good", "again"]):
                r = client.post("/study/review", json={
                    "study_record_id": card["study_record_id"],
                    "flashcard_id": card["flashcard_id"],
                    "rating": rating,
                })
                assert r.status_code == 200

            body = client.get(f"/study/stats/{deck_id}").json()
            assert body["total_cards"] == 2
            assert body["cards_studied_today"] == 2
            assert body["cards_due_today"] == 0
            assert body["retention_rate"] == 0.5
            assert body["streak_days"] == 1
        finally:
            app.dependency_overrides.clear()


def test_stats_other_users_deck():
    with tempfile.TemporaryDirectory() as tmp:
        settings = _make_settings(Path(tmp))
        try:
            _register("owner@example.com")
            intruder = _register("intruder@example.com")
            deck_id = _seed_deck(settings, "owner@example.com")
            assert intruder.get(f"/study/stats/{deck_id}").status_code == 403
            assert intruder.get("/study/stats/missing").status_code == 404
        finally:
            app.dependency_overrides.clear()
