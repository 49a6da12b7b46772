from datetime import datetime, timedelta, timezone

from app.services.cancellation_policy import decide

START = datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc)


def test_cancel_well_ahead_is_free() -> None:
    decision = decide(START, START - timedelta(hours=13))
    assert decision.penalized is False
    assert decision.refund_due is True
    assert round(decision.hours_until_start) == 13


def test_cancel_exactly_at_threshold_is_penalized() -> None:
    decision = decide(START, START - timedelta(hours=12))
    assert decision.penalized is True
    assert decision.refund_due is False


def test_cancel_one_second_outside_threshold_is_free() -> None:
    assert decide(START, START - timedelta(hours=12, seconds=1)).refund_due is True


def test_penalty_window_is_configurable() -> None:
    now = START - timedelta(hours=20)
    assert decide(START, now).penalized is False
    assert decide(START, now, penalty_hours=24).penalized is True
    assert "teacher" in decide(START, now, penalty_hours=24).message
