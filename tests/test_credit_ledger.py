from decimal import Decimal

import pytest

from app.core.errors import InsufficientCreditsError, NotFoundError, ValidationError
from app.services.credit_ledger import HistoryFilters


async def test_add_and_deduct_keep_balance_equal_to_log(core, db, people) -> None:
    await core.ledger.add(db, user_id=2, amount=Decimal("5"), reason="Package purchase", performed_by="99")
    await core.ledger.deduct(db, user_id=2, amount=Decimal("1.5"), reason="Class", performed_by="system")
    await core.ledger.refund(db, user_id=2, amount=Decimal("0.5"), reason="Refund", performed_by="system")
    await db.commit()

    assert await core.ledger.get_balance(db, 2) == Decimal("4.0")
    history = await core.ledger.get_history(db, 2)
    assert sum(tx.amount for tx in history) == Decimal("4.0")
    assert await core.ledger.verify_consistency(db, 2) is True


async def test_deduct_beyond_balance_is_rejected_without_mutation(core, db, people, fund) -> None:
    await fund(2, "1")

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await core.ledger.deduct(db, user_id=2, amount=Decimal("1.5"), reason="Class", performed_by="system")
    await db.rollback()

    assert exc_info.value.details == {"required": "1.5", "available": "1.0"}
    assert await core.ledger.get_balance(db, 2) == Decimal("1.0")
    assert len(await core.ledger.get_history(db, 2)) == 1


async def test_deduct_without_balance_row_is_rejected(core, db, people) -> None:
    with pytest.raises(InsufficientCreditsError):
        await core.ledger.deduct(db, user_id=2, amount=Decimal("0.5"), reason="Class", performed_by="system")
    assert await core.ledger.get_balance(db, 2) == Decimal("0.0")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("0.2")])
async def test_add_rejects_non_positive_or_off_grid_amounts(core, db, people, amount) -> None:
    with pytest.raises(ValidationError):
        await core.ledger.add(db, user_id=2, amount=amount, reason="Top-up", performed_by="99")


async def test_add_requires_reason_and_respects_cap(core, db, people) -> None:
    with pytest.raises(ValidationError):
        await core.ledger.add(db, user_id=2, amount=Decimal("1"), reason="  ", performed_by="99")
    with pytest.raises(ValidationError):
        await core.ledger.add(db, user_id=2, amount=Decimal("100.5"), reason="Too much", performed_by="99")

    tx = await core.ledger.add(db, user_id=2, amount=Decimal("100"), reason="Max top-up", performed_by="99")
    assert tx.balance_after == Decimal("100.0")


async def test_add_for_unknown_user_is_not_found(core, db, people) -> None:
    with pytest.raises(NotFoundError):
        await core.ledger.add(db, user_id=404, amount=Decimal("1"), reason="Top-up", performed_by="99")


async def test_history_filters(core, db, people, clock) -> None:
    await core.ledger.add(db, user_id=2, amount=Decimal("3"), reason="Top-up", performed_by="99")
    clock.advance(days=1)
    await core.ledger.deduct(db, user_id=2, amount=Decimal("1"), reason="Class", performed_by="system")
    clock.advance(days=1)
    await core.ledger.deduct(db, user_id=2, amount=Decimal("0.5"), reason="Trial", performed_by="system")
    await db.commit()

    newest_first = await core.ledger.get_history(db, 2)
    assert [tx.type for tx in newest_first] == ["deduct", "deduct", "add"]
    assert [tx.balance_after for tx in newest_first] == [Decimal("1.5"), Decimal("2.0"), Decimal("3.0")]

    deducts = await core.ledger.get_history(db, 2, HistoryFilters(type="deduct"))
    assert len(deducts) == 2

    limited = await core.ledger.get_history(db, 2, HistoryFilters(limit=1))
    assert [tx.amount for tx in limited] == [Decimal("-0.5")]

    with pytest.raises(ValidationError):
        await core.ledger.get_history(db, 2, HistoryFilters(type="bonus"))


async def test_history_without_limit_returns_the_whole_log(core, db, people, clock) -> None:
    for _ in range(60):
        await core.ledger.add(db, user_id=2, amount=Decimal("1"), reason="Lesson pack", performed_by="99")
        clock.advance(minutes=1)
    await core.ledger.deduct(db, user_id=2, amount=Decimal("0.5"), reason="Trial", performed_by="system")
    await db.commit()

    history = await core.ledger.get_history(db, 2)
    assert len(history) == 61
    assert sum(tx.amount for tx in history) == await core.ledger.get_balance(db, 2) == Decimal("59.5")

    page = await core.ledger.get_history(db, 2, HistoryFilters(limit=50, offset=50))
    assert len(page) == 11
    assert page[-1].balance_after == Decimal("1.0")


async def test_amounts_beyond_integer_columns_are_rejected(core, db, people, fund) -> None:
    await fund(2, "1")

    with pytest.raises(ValidationError):
        await core.ledger.deduct(db, user_id=2, amount=Decimal("1e30"), reason="Class", performed_by="system")
    with pytest.raises(ValidationError):
        await core.ledger.refund(db, user_id=2, amount="1e30", reason="Refund", performed_by="system")

    assert await core.ledger.get_balance(db, 2) == Decimal("1.0")
    assert await core.ledger.verify_consistency(db, 2) is True
