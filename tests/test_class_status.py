from datetime import date, time, timedelta
from decimal import Decimal


async def _book(core, db, actor, class_time=time(10, 0), **kwargs):
    return await core.sessions.book(
        db,
        student_id=actor.id,
        teacher_id=10,
        class_date=date(2026, 3, 3),
        class_time=class_time,
        actor=actor,
        **kwargs,
    )


async def _enable_attendance_tracking(core, db) -> None:
    await core.platform_settings.update_setting(db, key="attendance_tracking_enabled", value=True, updated_by=99)
    await db.commit()


async def test_trial_class_completes_and_converts_student_without_join(core, db, people, fund, clock) -> None:
    await fund(1, "1")
    row = await _book(core, db, people["trial_student"], is_trial=True, price=Decimal("1"))
    assert await core.ledger.get_balance(db, 1) == Decimal("0.0")

    clock.set(core.sessions.starts_at(row) + timedelta(minutes=61))
    result = await core.status_updater.update_class_statuses()

    assert (result.in_progress, result.completed, result.trial_conversions, result.failed) == (1, 1, 1, 0)
    assert (await core.sessions.get_session(db, row.id)).status == "completed"
    status = await core.trial_conversion.check_status(db, 1)
    assert status["is_trial"] is False
    assert status["trial_completed"] is True
    assert status["converted_at"] is not None
    assert status["should_redirect"] is True

    again = await core.status_updater.update_class_statuses()
    assert again.to_payload() == {
        "scanned": 0,
        "in_progress": 0,
        "completed": 0,
        "no_show": 0,
        "trial_conversions": 0,
        "failed": 0,
    }


async def test_class_starts_on_time_when_attendance_is_not_tracked(core, db, people, fund, clock) -> None:
    await fund(2, "5")
    row = await _book(core, db, people["student"])
    starts_at = core.sessions.starts_at(row)

    clock.set(starts_at - timedelta(minutes=1))
    early = await core.status_updater.update_class_statuses()
    assert (early.scanned, early.in_progress) == (1, 0)

    clock.set(starts_at)
    result = await core.status_updater.update_class_statuses()
    assert (result.in_progress, result.completed, result.no_show) == (1, 0, 0)
    assert (await core.sessions.get_session(db, row.id)).status == "in_progress"


async def test_unattended_class_becomes_no_show_without_refund(core, db, people, fund, clock) -> None:
    await fund(2, "5")
    row = await _book(core, db, people["student"])
    await _enable_attendance_tracking(core, db)
    starts_at = core.sessions.starts_at(row)

    clock.set(starts_at + timedelta(minutes=10))
    early = await core.status_updater.update_class_statuses()
    assert (early.scanned, early.in_progress, early.no_show) == (1, 0, 0)

    clock.set(starts_at + timedelta(minutes=30))
    result = await core.status_updater.update_class_statuses()
    assert result.no_show == 1

    repeat = await core.status_updater.update_class_statuses()
    assert repeat.no_show == 0

    assert (await core.sessions.get_session(db, row.id)).status == "no_show"
    assert await core.ledger.get_balance(db, 2) == Decimal("4.0")


async def test_tracked_class_starts_once_a_participant_joins(core, db, people, fund, clock) -> None:
    await fund(2, "5")
    row = await _book(core, db, people["student"], duration_minutes=45)
    await _enable_attendance_tracking(core, db)
    starts_at = core.sessions.starts_at(row)

    clock.set(starts_at)
    await core.sessions.record_join(db, row.id, actor=people["teacher"])
    first = await core.status_updater.update_class_statuses()
    assert (first.in_progress, first.completed) == (1, 0)

    second = await core.status_updater.update_class_statuses()
    assert (second.in_progress, second.completed) == (0, 0)

    clock.set(starts_at + timedelta(minutes=45))
    third = await core.status_updater.update_class_statuses()
    assert third.completed == 1
    assert third.trial_conversions == 0
    assert (await core.sessions.get_session(db, row.id)).status == "completed"


async def test_sweep_continues_past_a_failing_row(core, db, people, fund, clock, monkeypatch) -> None:
    await fund(2, "5")
    broken = await _book(core, db, people["student"])
    healthy = await _book(core, db, people["student"], class_time=time(12, 0))
    original = core.sessions.apply_transition

    async def failing_transition(session_db, session_id, **kwargs):
        if session_id == broken.id:
            raise RuntimeError("database went away")
        return await original(session_db, session_id, **kwargs)

    monkeypatch.setattr(core.sessions, "apply_transition", failing_transition)

    clock.set(core.sessions.ends_at(healthy))
    result = await core.status_updater.update_class_statuses()

    assert (result.scanned, result.failed) == (2, 1)
    assert (result.in_progress, result.completed) == (1, 1)
    assert (await core.sessions.get_session(db, broken.id)).status == "scheduled"
    assert (await core.sessions.get_session(db, healthy.id)).status == "completed"
