from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_tx

from sms_ledger.models import CategoryId, Direction, ExternalAnalysis
from sms_ledger.services.enrichment import EnrichmentService
from sms_ledger.storage.repository import TransactionRepository

pytestmark = pytest.mark.anyio


@pytest.fixture
def external() -> MagicMock:
    mock = MagicMock()
    mock.analyze_message = AsyncMock(return_value=ExternalAnalysis(
        confidence_score=0.9,
        insights="Regular grocery run",
        anomaly_flags=["new_merchant"],
        transaction_method="UPI",
        available_balance=12000.0,
    ))
    return mock


async def test_reanalyze_backlog(repository: TransactionRepository, external: MagicMock) -> None:
    pending = await repository.insert(make_tx(300.0, source_text="Rs 300 paid to BigBasket", anomaly_tags=["late_night"]))
    await repository.insert(make_tx(400.0, source_text="Rs 400 paid", confidence=0.8, model_insight="done"))
    await repository.insert(make_tx(500.0))

    report = await EnrichmentService(repository, external=external).reanalyze_backlog()

    assert report.as_dict() == {"examined": 1, "updated": 1, "failed": 0}
    external.analyze_message.assert_awaited_once_with("Rs 300 paid to BigBasket")

    updated = await repository.get(pending.id)
    assert updated.confidence == 0.9
    assert updated.model_insight == "Regular grocery run"
    assert updated.anomaly_tags == ["late_night", "new_merchant"]
    assert updated.payment_method == "UPI"
    assert updated.available_balance == 12000.0
    assert updated.category_id == CategoryId.FOOD
    assert await repository.pending_enrichment() == []


async def test_reanalyze_counts_failures(repository: TransactionRepository, external: MagicMock) -> None:
    await repository.insert(make_tx(300.0, source_text="Rs 300 debited"))
    external.analyze_message.return_value = None

    report = await EnrichmentService(repository, external=external).reanalyze_backlog()

    assert report.examined == 1
    assert report.failed == 1
    assert report.updated == 0


async def test_reanalyze_without_external_model(repository: TransactionRepository) -> None:
    await repository.insert(make_tx(300.0, source_text="Rs 300 debited"))

    report = await EnrichmentService(repository).reanalyze_backlog()

    assert report.examined == 0


async def test_reclassify_fixes_direction_and_category(repository: TransactionRepository) -> None:
    wrong_direction = await repository.insert(make_tx(
        500.0,
        direction=Direction.INCOME,
        category_id=CategoryId.SHOPPING,
        source_text="Rs 500 debited from your account for Amazon order",
    ))
    uncategorized = await repository.insert(make_tx(
        250.0,
        category_id=CategoryId.OTHER,
        source_text="Rs 250 paid to Swiggy on 01-03-24",
    ))
    unchanged = await repository.insert(make_tx(
        120.0,
        category_id=CategoryId.TRANSPORT,
        source_text="Rs 120 paid to Uber on 01-03-24",
    ))

    report = await EnrichmentService(repository).reclassify_existing()

    assert report.examined == 3
    assert report.updated == 2

    fixed = await repository.get(wrong_direction.id)
    assert fixed.direction == Direction.EXPENSE
    assert fixed.category_id == CategoryId.SHOPPING

    categorized = await repository.get(uncategorized.id)
    assert categorized.category_id == CategoryId.FOOD
    assert categorized.merchant_name == "Swiggy"

    untouched = await repository.get(unchanged.id)
    assert untouched.updated_at == unchanged.updated_at
