from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest

from sms_ledger.core.settings import AppConfig
from sms_ledger.models import CategoryId, Direction, Transaction
from sms_ledger.storage.repository import TransactionRepository
from sms_ledger.storage.sql import SqlStorage

ICICI_MESSAGE = (
    "ICICI Bank: Rs.1500 debited from A/c XX1234 for Amazon purchase. Available balance: Rs.45000."
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        data_dir=str(tmp_path),
        database_url="sqlite://",
        openai_api_key=None,
        openai_model="test-model",
        openai_base_url="http://localhost",
        llm_enabled=False,
        llm_timeout=1.0,
        llm_batch_timeout=1.0,
        primary_weight=0.7,
        secondary_weight=0.3,
        ingest_concurrency=1,
        event_queue_size=10,
    )


@pytest.fixture
def storage() -> Generator[SqlStorage, None, None]:
    sql = SqlStorage(database_url="sqlite://")
    sql.init_schema()
    yield sql
    sql.engine.dispose()


@pytest.fixture
def repository(storage: SqlStorage) -> TransactionRepository:
    return TransactionRepository(storage)


def make_tx(
    amount: float,
    occurred_at: datetime | None = None,
    direction: Direction = Direction.EXPENSE,
    category_id: CategoryId = CategoryId.FOOD,
    merchant: str | None = None,
    tx_id: int | None = None,
    **extra,
) -> Transaction:
    return Transaction(
        id=tx_id,
        amount=amount,
        direction=direction,
        occurred_at=occurred_at or datetime(2024, 3, 1, 12, 0),
        category_id=category_id,
        merchant_name=merchant,
        **extra,
    )
