"""
Races between two requests, replayed with two sessions.

SQLite admits a single writer, so each race is interleaved by hand: the
losing side has already read its state when the winning side commits, and
only then issues its guarded write.
"""

from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import InsufficientCreditsError, InvalidStateTransitionError
from app.models import ClassSession, CreditTransaction


async def _count(db, model, *criteria) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*criteria))).scalar_one()


async def test_only_one_deduct_wins_the_last_half_credit(core, db, people, fund) -> None:
    await fund(2, "0.5")

    async with core.session_factory() as first, core.session_factory() as second:
        assert await core.ledger.get_balance(first, 2) == Decimal("0.5")
        assert await core.ledger.get_balance(second, 2) == Decimal("0.5")

        await core.ledger.deduct(second, user_id=2, amount=Decimal("0.5"), reason="Class", performed_by="system")
        await second.commit()

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await core.ledger.deduct(first, user_id=2, amount=Decimal("0.5"), reason="Class", performed_by="system")
        await first.rollback()

    assert exc_info.value.details == {"required": "0.5", "available": "0.0"}
    assert await core.ledger.get_balance(db, 2) == Decimal("0.0")
    assert await _count(db, CreditTransaction, CreditTransaction.user_id == 2, CreditTransaction.type == "deduct") == 1
    assert await core.ledger.verify_consistency(db, 2) is True


async def test_concurrent_cancels_refund_once(core, db, people, fund, monkeypatch) -> None:
    await fund(2, "5")
    row = await core.sessions.book(
        db, student_id=2, teacher_id=10, class_date=date(2026, 3, 3), class_time=time(10, 0), actor=people["student"]
    )
    session_id = row.id
    original = core.sessions.apply_transition
    raced = False

    async def transition_after_rival_commits(session_db, session_id, **kwargs):
        nonlocal raced
        if not raced:
            raced = True
            async with core.session_factory() as rival:
                await core.sessions.cancel(rival, session_id, actor=people["admin"], reason="Teacher ill")
        return await original(session_db, session_id, **kwargs)

    monkeypatch.setattr(core.sessions, "apply_transition", transition_after_rival_commits)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await core.sessions.cancel(db, session_id, actor=people["student"], reason="Travelling")

    assert exc_info.value.details["current_status"] == "cancelled"
    cancelled = await core.sessions.get_session(db, session_id)
    assert (cancelled.status, cancelled.cancellation_reason, cancelled.refund_issued) == (
        "cancelled",
        "Teacher ill",
        True,
    )
    refunds = await _count(
        db, CreditTransaction, CreditTransaction.class_session_id == session_id, CreditTransaction.type == "refund"
    )
    assert refunds == 1
    assert await core.ledger.get_balance(db, 2) == Decimal("5.0")


async def test_stale_transition_matches_no_rows(core, db, people, fund) -> None:
    await fund(2, "5")
    row = await core.sessions.book(
        db, student_id=2, teacher_id=10, class_date=date(2026, 3, 3), class_time=time(10, 0), actor=people["student"]
    )

    async with core.session_factory() as first, core.session_factory() as second:
        assert (await core.sessions.get_session(first, row.id)).status == "scheduled"
        await core.sessions.cancel(second, row.id, actor=people["student"])

        assert await core.sessions.apply_transition(first, row.id, expected="scheduled", target="no_show") is False
        await first.rollback()

        with pytest.raises(InvalidStateTransitionError):
            await core.sessions.cancel(first, row.id, actor=people["student"])

    assert (await core.sessions.get_session(db, row.id)).status == "cancelled"


async def test_overlapping_trial_sweeps_convert_each_student_once(core, db, people, make_user, monkeypatch) -> None:
    await make_user(3, trial=True)
    db.add_all(
        [
            ClassSession(student_id=student_id, teacher_id=10, class_date=date(2026, 3, 1), class_time=time(9, 0),
                         is_trial=True, status="completed")
            for student_id in (1, 3)
        ]
    )
    await db.commit()

    original = core.trial_conversion._convert
    overlapping: list = []

    async def convert_after_overlapping_sweep(session_db, user_id, **kwargs):
        if not overlapping:
            overlapping.append(None)
            overlapping[0] = await core.trial_conversion.process_completed_trial_lessons()
        return await original(session_db, user_id, **kwargs)

    monkeypatch.setattr(core.trial_conversion, "_convert", convert_after_overlapping_sweep)

    outer = await core.trial_conversion.process_completed_trial_lessons()
    inner = overlapping[0]

    assert (outer.candidates, inner.candidates) == (2, 2)
    assert inner.converted + outer.converted == 2
    assert (outer.converted, outer.failed, inner.failed) == (0, 0, 0)
    for student_id in (1, 3):
        assert (await core.trial_conversion.check_status(db, student_id))["is_trial"] is False
