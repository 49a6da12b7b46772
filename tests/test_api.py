from decimal import Decimal

import httpx
import jwt
import pytest

from app.core.config import settings
from app.main import create_app


def _token(user_id: int, roles: list[str]) -> dict[str, str]:
    token = jwt.encode(
        {
            "sub": str(user_id),
            "email": f"user{user_id}@example.com",
            "display_name": f"User {user_id}",
            "roles": roles,
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


ADMIN = _token(99, ["administrator"])
STUDENT = _token(2, ["student"])
TRIAL_STUDENT = _token(1, ["student"])

BOOKING = {"student_id": 2, "teacher_id": 10, "date": "2026-03-03", "time": "10:00:00"}


@pytest.fixture
async def client(core, people):
    app = create_app(core)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def test_health_and_missing_token(client) -> None:
    assert (await client.get("/health")).json() == {"status": "ok"}

    response = await client.get("/api/v1/credits/2/balance")
    assert response.status_code == 401


async def test_admin_top_up_then_book_and_cancel(client, clock) -> None:
    response = await client.post(
        "/api/v1/admin/credits/2/adjust",
        json={"direction": "add", "amount": "5", "reason": "Monthly package"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert Decimal(response.json()["balance"]) == Decimal("5")

    response = await client.post("/api/v1/classes", json=BOOKING, headers=STUDENT)
    assert response.status_code == 201
    booked = response.json()
    assert booked["status"] == "scheduled"
    assert booked["display_status"] == "upcoming"

    balance = (await client.get("/api/v1/credits/2/balance", headers=STUDENT)).json()
    assert Decimal(balance["balance"]) == Decimal("4")
    assert balance["low_balance"] is False

    response = await client.post(
        f"/api/v1/classes/{booked['id']}/cancel", json={"reason": "Travelling"}, headers=STUDENT
    )
    assert response.status_code == 200
    body = response.json()
    assert body["session"]["status"] == "cancelled"
    assert body["decision"]["refund_due"] is True
    assert Decimal(body["refunded"]) == Decimal("1")

    response = await client.post(f"/api/v1/classes/{booked['id']}/cancel", json={}, headers=STUDENT)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "InvalidStateTransitionError"

    history = (await client.get("/api/v1/credits/2/history", headers=STUDENT)).json()
    assert [row["type"] for row in history] == ["refund", "deduct", "add"]


async def test_booking_without_credits_is_payment_required(client) -> None:
    response = await client.post("/api/v1/classes", json=BOOKING, headers=STUDENT)

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["code"] == "InsufficientCreditsError"
    assert detail["details"] == {"required": "1.0", "available": "0.0"}


async def test_students_cannot_read_or_adjust_other_accounts(client) -> None:
    assert (await client.get("/api/v1/credits/1/balance", headers=STUDENT)).status_code == 403
    response = await client.post(
        "/api/v1/admin/credits/2/adjust",
        json={"direction": "add", "amount": "5", "reason": "Free credits"},
        headers=STUDENT,
    )
    assert response.status_code == 403


async def test_manual_conversion_and_trial_sweep(client) -> None:
    response = await client.post("/api/v1/admin/conversion/1", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["is_trial"] is False

    response = await client.post("/api/v1/admin/conversion/1", headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "AlreadyConvertedError"

    status = (await client.get("/api/v1/conversion/1/status", headers=TRIAL_STUDENT)).json()
    assert status["should_redirect"] is True

    response = await client.post("/api/v1/admin/conversion/process-trials", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["converted"] == 0

    response = await client.post("/api/v1/admin/classes/update-statuses", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["scanned"] == 0


async def test_settings_round_trip(client) -> None:
    response = await client.put("/api/v1/admin/settings/join_window_minutes", json={"value": 20}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["value"] == 20

    listed = (await client.get("/api/v1/admin/settings", headers=ADMIN)).json()
    assert {item["key"]: item["value"] for item in listed}["join_window_minutes"] == 20

    response = await client.put("/api/v1/admin/settings/join_window_minutes", json={"value": -5}, headers=ADMIN)
    assert response.status_code == 400


async def test_join_outside_window_is_forbidden(client, core, fund) -> None:
    await fund(2, "2")
    booked = (await client.post("/api/v1/classes", json=BOOKING, headers=STUDENT)).json()

    response = await client.post(f"/api/v1/classes/{booked['id']}/join", headers=STUDENT)

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "JoinWindowClosedError"


class CountingRedis:
    """In-memory stand-in for the few Redis calls the rate limiters make."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        return True

    async def aclose(self) -> None:
        return None


async def test_conversion_limit_counts_only_admin_requests(client, core, monkeypatch) -> None:
    redis = CountingRedis()
    monkeypatch.setattr(core, "redis", redis)
    monkeypatch.setattr(core.settings, "conversion_rate_limit_per_hour", 2)

    for _ in range(3):
        response = await client.post("/api/v1/admin/conversion/1", headers=STUDENT)
        assert response.status_code == 403
    assert [key for key in redis.counts if key.startswith("rl:conversion:")] == []

    assert (await client.post("/api/v1/admin/conversion/1", headers=ADMIN)).status_code == 200
    assert (await client.post("/api/v1/admin/conversion/1", headers=ADMIN)).status_code == 409

    response = await client.post("/api/v1/admin/conversion/1", headers=ADMIN)
    assert response.status_code == 429
    assert response.headers["retry-after"] == "3600"
    assert [key for key in redis.counts if key.startswith("rl:conversion:")] == [
        f"rl:conversion:99:{int(core.clock().timestamp() // 3600)}"
    ]
