from datetime import datetime, time, timedelta

import pytest
from conftest import make_tx
from pydantic import ValidationError

from sms_ledger.models import CategoryId, Direction, Transaction
from sms_ledger.storage.base import StorageError
from sms_ledger.storage.repository import TransactionRepository
from sms_ledger.storage.sql import TRANSACTIONS, SqlStorage

pytestmark = pytest.mark.anyio

OCCURRED = datetime(2024, 3, 1, 10, 30)


def _full_transaction() -> Transaction:
    return Transaction(
        amount=1500.0,
        direction=Direction.EXPENSE,
        occurred_at=OCCURRED,
        time_of_day=time(10, 30),
        category_id=CategoryId.SHOPPING,
        subcategory="Online Shopping",
        merchant_name="Amazon",
        description="Online Shopping",
        bank_name="ICICI",
        account_fragment="XX1234",
        source_text="Rs.1500 debited from A/c XX1234 for Amazon purchase",
        confidence=0.85,
        anomaly_tags=["late_night", "new_merchant"],
        model_insight="Large online purchase",
        counterparty="Amazon Seller Services",
        available_balance=45000.0,
        payment_method="UPI",
        location="Bengaluru",
        reference_number="REF123",
    )


def test_transaction_invariants() -> None:
    with pytest.raises(ValidationError):
        Transaction(amount=0, direction=Direction.EXPENSE, occurred_at=OCCURRED)

    tx = Transaction(
        amount=10.0,
        direction=Direction.EXPENSE,
        occurred_at=OCCURRED,
        category_id=None,
        account_fragment="123456789012",
    )
    assert tx.category_id == CategoryId.OTHER
    assert tx.account_fragment == "XX9012"


def test_record_round_trip_without_storage() -> None:
    tx = _full_transaction()
    assert Transaction.from_record(tx.to_record()).model_dump() == tx.model_dump()


async def test_repository_round_trip(repository: TransactionRepository) -> None:
    inserted = await repository.insert(_full_transaction())
    loaded = await repository.get(inserted.id)

    assert inserted.id is not None
    assert loaded is not None
    assert loaded.model_dump() == inserted.model_dump()


async def test_get_missing(repository: TransactionRepository) -> None:
    assert await repository.get(404) is None


async def test_fetch_range_and_order(repository: TransactionRepository) -> None:
    for day in (1, 5, 10):
        await repository.insert(make_tx(100.0 * day, occurred_at=datetime(2024, 3, day, 9, 0)))

    newest = await repository.fetch()
    assert [tx.amount for tx in newest] == [1000.0, 500.0, 100.0]

    oldest = await repository.fetch(newest_first=False, limit=2)
    assert [tx.amount for tx in oldest] == [100.0, 500.0]

    ranged = await repository.fetch(start=datetime(2024, 3, 2), end=datetime(2024, 3, 9))
    assert [tx.amount for tx in ranged] == [500.0]


async def test_find_duplicates(repository: TransactionRepository) -> None:
    stored = await repository.insert(make_tx(250.0, occurred_at=OCCURRED, bank_name="HDFC", account_fragment="XX1111"))

    same = make_tx(250.0, occurred_at=OCCURRED + timedelta(minutes=1), bank_name="HDFC", account_fragment="XX1111")
    assert [tx.id for tx in await repository.find_duplicates(same)] == [stored.id]

    other_account = same.model_copy(update={"account_fragment": "XX2222"})
    assert await repository.find_duplicates(other_account) == []

    later = same.model_copy(update={"occurred_at": OCCURRED + timedelta(minutes=5)})
    assert await repository.find_duplicates(later) == []

    other_bank = same.model_copy(update={"bank_name": "SBI"})
    assert await repository.find_duplicates(other_bank) == []


async def test_find_duplicates_without_account_uses_description(repository: TransactionRepository) -> None:
    await repository.insert(make_tx(99.0, occurred_at=OCCURRED, description="Cab Ride"))

    assert await repository.find_duplicates(make_tx(99.0, occurred_at=OCCURRED, description="Cab Ride"))
    assert await repository.find_duplicates(make_tx(99.0, occurred_at=OCCURRED, description="Payment")) == []


async def test_update_and_pending(repository: TransactionRepository) -> None:
    stored = await repository.insert(make_tx(50.0, source_text="Rs 50 debited"))
    await repository.insert(make_tx(60.0))

    pending = await repository.pending_enrichment()
    assert [tx.id for tx in pending] == [stored.id]

    updated = await repository.update(
        stored.id,
        {"confidence": 0.9, "model_insight": "ok", "anomaly_tags": ["late_night"], "category_id": CategoryId.TRANSPORT},
    )
    assert updated == 1

    reloaded = await repository.get(stored.id)
    assert reloaded.anomaly_tags == ["late_night"]
    assert reloaded.category_id == CategoryId.TRANSPORT
    assert reloaded.updated_at >= stored.updated_at
    assert await repository.pending_enrichment() == []


async def test_clear(repository: TransactionRepository) -> None:
    await repository.insert(make_tx(10.0))
    await repository.insert(make_tx(20.0))

    assert await repository.clear() == 2
    assert await repository.fetch() == []


async def test_storage_errors(storage: SqlStorage) -> None:
    with pytest.raises(StorageError):
        await storage.query("missing_table")

    with pytest.raises(StorageError):
        await storage.query(TRANSACTIONS, "no_such_column = :value", {"value": 1})

    with pytest.raises(StorageError):
        await storage.insert(TRANSACTIONS, {"amount": 1.0})


def test_storage_requires_a_target() -> None:
    with pytest.raises(ValueError):
        SqlStorage()
