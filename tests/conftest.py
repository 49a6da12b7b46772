from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.config import Settings
from app.core.context import CoreContext, build_core_context
from app.db.base import Base
from app.db.session import build_engine
from app.models import StudentProfile, User

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'classes.db'}",
        class_timezone="UTC",
    )


@pytest.fixture
async def core(test_settings: Settings, clock: FixedClock) -> CoreContext:
    engine = build_engine(test_settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    context = build_core_context(test_settings, engine=engine, clock=clock, connect_redis=False)
    yield context
    await context.aclose()


@pytest.fixture
async def db(core: CoreContext):
    async with core.session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make(user_id: int, *, roles: list[str] | None = None, trial: bool | None = None) -> User:
        user = User(
            id=user_id,
            email=f"user{user_id}@example.com",
            display_name=f"User {user_id}",
            roles=roles or ["student"],
        )
        db.add(user)
        if trial is not None:
            db.add(StudentProfile(id=user_id, is_trial=trial, trial_completed=not trial))
        await db.commit()
        # Detached so a service rollback cannot expire the actor under the test.
        db.expunge(user)
        return user

    return _make


@pytest.fixture
def fund(core: CoreContext, db):
    async def _fund(user_id: int, amount: str) -> None:
        await core.ledger.add(
            db,
            user_id=user_id,
            amount=Decimal(amount),
            reason="Test top-up",
            performed_by="system",
        )
        await db.commit()

    return _fund


@pytest.fixture
async def people(make_user):
    """Student 1 (trial), student 2 (regular), teacher 10 and admin 99."""
    return {
        "trial_student": await make_user(1, trial=True),
        "student": await make_user(2, trial=False),
        "teacher": await make_user(10, roles=["teacher"]),
        "admin": await make_user(99, roles=["administrator"]),
    }
