from dataclasses import replace
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from sms_ledger.classifiers.ensemble import EnsembleClassifier
from sms_ledger.classifiers.llm import ExternalAnalysisAdapter
from sms_ledger.classifiers.patterns import PatternClassifier
from sms_ledger.core.settings import AppConfig
from sms_ledger.domain.parsing import parse_message
from sms_ledger.manager import ClassificationService
from sms_ledger.models import CategoryId, ClassificationMethod, ClassificationResult, Direction

pytestmark = pytest.mark.anyio

MESSAGE = parse_message(
    "Rs 300 paid to Swiggy on 01-03-24",
    sender="VM-HDFCBK",
    received_at=datetime(2024, 3, 1, 13, 0),
)


def _result(category: CategoryId, method: ClassificationMethod) -> ClassificationResult:
    return ClassificationResult(
        category_id=category,
        direction=Direction.EXPENSE,
        confidence=0.9,
        method=method,
    )


@pytest.fixture
def external() -> MagicMock:
    mock = MagicMock(spec=ExternalAnalysisAdapter)
    mock.analyze = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def ensemble() -> MagicMock:
    mock = MagicMock(spec=EnsembleClassifier)
    mock.classify_message.return_value = None
    return mock


async def test_external_tier_wins(external: MagicMock, ensemble: MagicMock) -> None:
    external.analyze.return_value = _result(CategoryId.SHOPPING, ClassificationMethod.EXTERNAL)
    service = ClassificationService(external=external, ensemble=ensemble)

    result = await service.classify(MESSAGE)

    assert result.method == ClassificationMethod.EXTERNAL
    assert result.category_id == CategoryId.SHOPPING
    ensemble.classify_message.assert_not_called()


async def test_ensemble_used_when_external_declines(external: MagicMock, ensemble: MagicMock) -> None:
    ensemble.classify_message.return_value = _result(CategoryId.TRANSPORT, ClassificationMethod.ENSEMBLE)
    service = ClassificationService(external=external, ensemble=ensemble)

    result = await service.classify(MESSAGE)

    assert result.method == ClassificationMethod.ENSEMBLE
    external.analyze.assert_awaited_once_with(MESSAGE.raw_text)


async def test_external_failure_falls_through(external: MagicMock, ensemble: MagicMock) -> None:
    external.analyze.side_effect = RuntimeError("network down")
    ensemble.classify_message.return_value = _result(CategoryId.TRANSPORT, ClassificationMethod.ENSEMBLE)
    service = ClassificationService(external=external, ensemble=ensemble)

    result = await service.classify(MESSAGE)

    assert result.method == ClassificationMethod.ENSEMBLE


async def test_pattern_tier_always_answers(external: MagicMock, ensemble: MagicMock) -> None:
    ensemble.classify_message.side_effect = RuntimeError("model corrupt")
    service = ClassificationService(external=external, ensemble=ensemble)

    result = await service.classify(MESSAGE)

    assert result.method == ClassificationMethod.PATTERN
    assert result.category_id == CategoryId.FOOD
    assert result.merchant == "Swiggy"


async def test_without_external_tier() -> None:
    service = ClassificationService()

    result = await service.classify(MESSAGE)

    assert service.external is None
    assert isinstance(service.pattern, PatternClassifier)
    assert result.category_id == CategoryId.FOOD


def test_from_config_without_key(config: AppConfig) -> None:
    service = ClassificationService.from_config(config)

    assert service.external is None
    assert len(service.ensemble.scorers) == 2
    assert service.ensemble.loaded_scorers == []


def test_from_config_with_key(config: AppConfig) -> None:
    service = ClassificationService.from_config(replace(config, openai_api_key="sk-test", llm_enabled=True))

    assert isinstance(service.external, ExternalAnalysisAdapter)
    assert service.external.model == "test-model"


def test_learn_and_clear(config: AppConfig) -> None:
    service = ClassificationService.from_config(config)

    service.learn(MESSAGE, CategoryId.FOOD)
    service.learn(parse_message("Rs 120 paid to Uber on 02-03-24"), CategoryId.TRANSPORT)
    assert len(service.ensemble.loaded_scorers) == 2

    service.clear_models()
    assert service.ensemble.loaded_scorers == []
