from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from skillswap.api.deps import get_escrow_engine
from skillswap.core.database import get_db
from skillswap.main import app


@pytest.fixture
def client(session_factory, escrow):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_escrow_engine] = lambda: escrow
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def booking_payload(teacher, learner, skill):
    scheduled_at = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=3)
    return {
        "teacher_id": str(teacher.user_id),
        "learner_id": str(learner.user_id),
        "skill_id": str(skill.skill_id),
        "title": "Intro to Python",
        "scheduled_at": scheduled_at.isoformat(),
        "duration": 60,
    }


def _balance(client, user_id):
    response = client.get("/api/v1/credits/balance", params={"user_id": str(user_id)})
    assert response.status_code == 200
    return response.json()["balance"]


def test_healthcheck(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_booking_escrows_credits(client, booking_payload, learner, video):
    response = client.post("/api/v1/sessions", json=booking_payload)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["credit_cost"] == 10
    assert body["video_link"] == video.provisioned[0]
    assert _balance(client, learner.user_id) == 90


def test_booking_without_enough_credits(client, booking_payload, make_user):
    poor = make_user("poor", credits=5)

    response = client.post("/api/v1/sessions", json={**booking_payload, "learner_id": str(poor.user_id)})

    assert response.status_code == 402
    assert "Required: 10" in response.json()["detail"]
    assert _balance(client, poor.user_id) == 5


def test_booking_with_unknown_teacher(client, booking_payload):
    response = client.post("/api/v1/sessions", json={**booking_payload, "teacher_id": str(uuid4())})

    assert response.status_code == 404


def test_booking_payload_validation(client, booking_payload):
    response = client.post("/api/v1/sessions", json={**booking_payload, "duration": 0})

    assert response.status_code == 422


def test_lifecycle_permissions_and_cancellation(client, booking_payload, teacher, learner):
    session_id = client.post("/api/v1/sessions", json=booking_payload).json()["session_id"]

    forbidden = client.post(f"/api/v1/sessions/{session_id}/confirm", json={"actor_id": str(learner.user_id)})
    assert forbidden.status_code == 403

    confirmed = client.post(f"/api/v1/sessions/{session_id}/confirm", json={"actor_id": str(teacher.user_id)})
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"

    too_early = client.post(f"/api/v1/sessions/{session_id}/start", json={"actor_id": str(teacher.user_id)})
    assert too_early.status_code == 409

    cancelled = client.post(
        f"/api/v1/sessions/{session_id}/cancel",
        json={"actor_id": str(learner.user_id), "reason": "Conflict at work"},
    )
    assert cancelled.status_code == 200
    receipt = cancelled.json()
    assert receipt["refunded_credits"] == 10
    assert receipt["session"]["status"] == "CANCELLED"
    assert _balance(client, learner.user_id) == 100

    again = client.post(f"/api/v1/sessions/{session_id}/cancel", json={"actor_id": str(learner.user_id)})
    assert again.status_code == 409


def test_session_details_and_listing(client, booking_payload, teacher, learner, make_user):
    session_id = client.post("/api/v1/sessions", json=booking_payload).json()["session_id"]

    details = client.get(f"/api/v1/sessions/{session_id}", params={"actor_id": str(teacher.user_id)})
    assert details.status_code == 200
    assert details.json()["can_join"] is False
    assert details.json()["join_url"] is None

    outsider = make_user("outsider")
    hidden = client.get(f"/api/v1/sessions/{session_id}", params={"actor_id": str(outsider.user_id)})
    assert hidden.status_code == 403

    listing = client.get("/api/v1/sessions", params={"user_id": str(learner.user_id), "status": "PENDING"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["session_id"] == session_id

    bad_role = client.get("/api/v1/sessions", params={"user_id": str(learner.user_id), "role": "admin"})
    assert bad_role.status_code == 422

    analytics = client.get("/api/v1/sessions/analytics", params={"user_id": str(teacher.user_id)})
    assert analytics.json()["teaching"]["stats"] == {"pending": 1}


def test_transactions_and_statistics(client, booking_payload, learner):
    client.post("/api/v1/sessions", json=booking_payload)

    page = client.get("/api/v1/credits/transactions", params={"user_id": str(learner.user_id), "limit": 1})
    assert page.status_code == 200
    body = page.json()
    assert body["total"] == 2
    assert body["total_pages"] == 2
    assert body["items"][0]["transaction_type"] == "SPENT"

    spent_only = client.get(
        "/api/v1/credits/transactions",
        params={"user_id": str(learner.user_id), "transaction_type": "SPENT"},
    )
    assert spent_only.json()["total"] == 1

    stats = client.get("/api/v1/credits/statistics", params={"user_id": str(learner.user_id)}).json()
    assert stats["total_bonus"] == 100
    assert stats["total_spent"] == 10
    assert stats["current_balance"] == stats["net_total"] == 90


def test_unknown_user_balance(client):
    response = client.get("/api/v1/credits/balance", params={"user_id": str(uuid4())})

    assert response.status_code == 404


def test_bonus_award(client, make_user):
    user = make_user("referrer")

    created = client.post(
        "/api/v1/credits/bonus",
        json={"user_id": str(user.user_id), "amount": 25, "description": "Referral bonus"},
    )
    assert created.status_code == 201
    assert created.json()["transaction_type"] == "BONUS"
    assert _balance(client, user.user_id) == 25

    rejected = client.post(
        "/api/v1/credits/bonus",
        json={"user_id": str(user.user_id), "amount": 0, "description": "Nothing"},
    )
    assert rejected.status_code == 422


def test_activity_restarts_expiration_clock(client, learner):
    before = client.get("/api/v1/credits/expiration", params={"user_id": str(learner.user_id)})
    assert before.status_code == 200
    assert before.json()["has_credits"] is True
    assert before.json()["credit_balance"] == 100

    after = client.post("/api/v1/credits/activity", params={"user_id": str(learner.user_id)})
    assert after.status_code == 200
    assert after.json()["days_until_expiration"] >= 364
    assert after.json()["is_expiring_soon"] is False


def _parse_utc(value):
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    assert parsed.utcoffset() == timedelta(0)
    return parsed


def test_timestamps_are_returned_as_utc(client, booking_payload, learner):
    body = client.post("/api/v1/sessions", json=booking_payload).json()

    assert _parse_utc(body["scheduled_at"]) == datetime.fromisoformat(booking_payload["scheduled_at"])
    assert _parse_utc(body["ends_at"]) - _parse_utc(body["scheduled_at"]) == timedelta(minutes=60)
    _parse_utc(body["created_at"])

    page = client.get("/api/v1/credits/transactions", params={"user_id": str(learner.user_id)}).json()
    assert all(_parse_utc(item["created_at"]) for item in page["items"])

    info = client.get("/api/v1/credits/expiration", params={"user_id": str(learner.user_id)}).json()
    _parse_utc(info["expiration_date"])
