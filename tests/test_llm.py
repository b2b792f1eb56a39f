import asyncio
import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from sms_ledger.classifiers.llm import (
    MAX_BATCH_TRANSACTIONS,
    ExternalAnalysisAdapter,
    _extract_json,
    build_insights_prompt,
)
from sms_ledger.models import CategoryId, ClassificationMethod, Direction, Transaction

pytestmark = pytest.mark.anyio

SMS = "HDFC Bank: Rs 450 debited from A/c XX9876 at Swiggy on 01-03-24"


def _completion(content: str | None) -> MagicMock:
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content=content))]
    return completion


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def adapter(mock_client: MagicMock) -> ExternalAnalysisAdapter:
    return ExternalAnalysisAdapter(model="test-model", client=mock_client, timeout=1.0, batch_timeout=1.0)


async def test_analyze_full_response(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    payload = {
        "transaction_type": "debit",
        "amount": 450.0,
        "bank_name": "HDFC Bank",
        "category": "Food & Dining",
        "subcategory": "Food Delivery",
        "merchant_name": "Swiggy",
        "description": "Food order",
        "confidence_score": 0.93,
        "anomaly_flags": ["late_night"],
        "insights": "Regular food delivery",
    }
    mock_client.chat.completions.create.return_value = _completion(json.dumps(payload))

    result = await adapter.analyze(SMS)

    assert result is not None
    assert result.method == ClassificationMethod.EXTERNAL
    assert result.category_id == CategoryId.FOOD
    assert result.direction == Direction.EXPENSE
    assert result.merchant == "Swiggy"
    assert result.confidence == pytest.approx(0.93)
    assert result.details is not None
    assert result.details.anomaly_flags == ["late_night"]

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 500
    assert kwargs["response_format"] == {"type": "json_object"}
    assert SMS in kwargs["messages"][1]["content"]


async def test_fenced_json_is_accepted(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    content = '```json\n{"amount": 1200, "transaction_type": "credit", "category": "Income"}\n```'
    mock_client.chat.completions.create.return_value = _completion(content)

    result = await adapter.analyze(SMS)

    assert result is not None
    assert result.category_id == CategoryId.INCOME
    assert result.direction == Direction.INCOME


async def test_missing_fields_take_defaults(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = _completion('{"amount": 250, "category": null}')

    analysis = await adapter.analyze_message(SMS)

    assert analysis is not None
    assert analysis.category == "Others"
    assert analysis.confidence_score == 0.8
    assert analysis.anomaly_flags == []
    assert analysis.transaction_type == "debit"

    result = await adapter.analyze(SMS)
    assert result is not None
    assert result.category_id == CategoryId.OTHER


async def test_zero_amount_is_no_opinion(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = _completion('{"category": "Shopping"}')
    assert await adapter.analyze(SMS) is None


async def test_malformed_json_returns_none(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = _completion("I think this is food")
    assert await adapter.analyze_message(SMS) is None

    mock_client.chat.completions.create.return_value = _completion("[1, 2, 3]")
    assert await adapter.analyze_message(SMS) is None

    mock_client.chat.completions.create.return_value = _completion(None)
    assert await adapter.analyze_message(SMS) is None


async def test_timeout_returns_none(mock_client: MagicMock) -> None:
    async def slow(**kwargs):
        await asyncio.sleep(5)

    mock_client.chat.completions.create.side_effect = slow
    adapter = ExternalAnalysisAdapter(client=mock_client, timeout=0.01)

    assert await adapter.analyze(SMS) is None


async def test_api_error_returns_none(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    request = httpx.Request("POST", "http://localhost/v1/chat/completions")
    mock_client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

    assert await adapter.analyze(SMS) is None
    assert await adapter.test_connection() is False


async def test_connection_ok(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = _completion('{"status": "ok"}')
    assert await adapter.test_connection() is True


async def test_analyze_batch(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = _completion(
        '{"financial_health_score": null, "recommendations": [{"title": "Cook at home"}], "trends": null}'
    )
    transactions = [
        Transaction(id=1, amount=200.0, direction=Direction.EXPENSE, occurred_at=datetime(2024, 3, 1, 12, 0)),
    ]

    summary = await adapter.analyze_batch(transactions)

    assert summary is not None
    assert summary.financial_health_score == 0.7
    assert summary.recommendations == [{"title": "Cook at home"}]
    assert summary.trends == {}
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 1000


async def test_analyze_batch_empty(adapter: ExternalAnalysisAdapter, mock_client: MagicMock) -> None:
    assert await adapter.analyze_batch([]) is None
    mock_client.chat.completions.create.assert_not_called()


def test_insights_prompt_is_capped() -> None:
    transactions = [
        Transaction(id=i, amount=10.0 + i, direction=Direction.EXPENSE, occurred_at=datetime(2024, 3, 1, 12, 0))
        for i in range(1, 61)
    ]
    prompt = build_insights_prompt(transactions)
    assert prompt.count('"id": ') == MAX_BATCH_TRANSACTIONS


def test_extract_json() -> None:
    assert _extract_json('{"a": 1}') == '{"a": 1}'
    assert _extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert _extract_json('```\n{"a": 1}\n```') == '{"a": 1}'
