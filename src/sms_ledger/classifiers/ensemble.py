from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel, Field

from sms_ledger.classifiers.features import FeatureContext, build_feature_vector
from sms_ledger.classifiers.patterns import PatternClassifier, determine_direction
from sms_ledger.logger import get_logger
from sms_ledger.models import (
    CategoryId,
    ClassificationMethod,
    ClassificationResult,
    Direction,
    ParsedMessage,
)

from .base import Classifier

logger = get_logger(__name__)

PRIMARY_SCORER = "primary-text-model"
SECONDARY_SCORER = "secondary-structured-model"
DEFAULT_WEIGHTS = {PRIMARY_SCORER: 0.7, SECONDARY_SCORER: 0.3}
UNKNOWN_SCORER_WEIGHT = 0.5


class ScorerOutput(BaseModel):
    """Probability distribution over the category set from one scorer."""
    probabilities: dict[CategoryId, float]
    confidence: float = Field(ge=0.0, le=1.0)


class Scorer(ABC):
    name: str = "scorer"

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        pass

    @abstractmethod
    def score(self, text: str, features: list[float]) -> ScorerOutput | None:
        pass

    @abstractmethod
    def learn(self, text: str, features: list[float], category_id: CategoryId) -> None:
        pass

    def clear(self) -> None:
        pass


def combine(outputs: Sequence[tuple[str, ScorerOutput]], weights: dict[str, float]) -> tuple[CategoryId, float] | None:
    """Weighted average of scorer distributions; returns the arg-max category."""
    if not outputs:
        return None

    total_weight = 0.0
    combined = {category: 0.0 for category in CategoryId}
    for name, output in outputs:
        weight = weights.get(name, UNKNOWN_SCORER_WEIGHT)
        total_weight += weight
        for category, probability in output.probabilities.items():
            combined[category] += probability * weight

    if total_weight <= 0:
        return None

    # Ties go to the lowest category id
    best = max(CategoryId, key=lambda category: (combined[category], -int(category)))
    return best, combined[best] / total_weight


class EnsembleClassifier(Classifier):
    name = "ensemble"

    def __init__(self, scorers: Sequence[Scorer] | None = None, weights: dict[str, float] | None = None):
        self.scorers: list[Scorer] = list(scorers or [])
        self.weights = dict(DEFAULT_WEIGHTS if weights is None else weights)

    @property
    def loaded_scorers(self) -> list[Scorer]:
        return [scorer for scorer in self.scorers if scorer.is_loaded]

    def score(self, text: str, context: FeatureContext | None = None) -> ClassificationResult | None:
        scorers = self.loaded_scorers
        if not scorers:
            return None

        features = build_feature_vector(text, context)
        outputs: list[tuple[str, ScorerOutput]] = []
        for scorer in scorers:
            try:
                output = scorer.score(text, features)
            except Exception as e:
                logger.warning(f"Scorer {scorer.name} failed: {e}")
                continue
            if output is not None:
                outputs.append((scorer.name, output))

        combined = combine(outputs, self.weights)
        if combined is None:
            return None

        category, confidence = combined
        direction = Direction.INCOME if category == CategoryId.INCOME else determine_direction(text)
        hint = context.merchant_hint if context else None
        logger.debug(
            "Ensemble (%s) chose %s with %.2f",
            ", ".join(name for name, _ in outputs),
            category.name,
            confidence,
        )
        return ClassificationResult(
            category_id=category,
            direction=direction,
            confidence=min(1.0, max(0.0, confidence)),
            method=ClassificationMethod.ENSEMBLE,
            merchant=PatternClassifier.extract_merchant(text, hint),
            description=PatternClassifier.describe(text, direction),
        )

    def classify_message(self, message: ParsedMessage) -> ClassificationResult | None:
        context = FeatureContext(occurred_at=message.received_at, merchant_hint=message.merchant_hint)
        return self.score(message.raw_text, context)

    def learn(self, message: ParsedMessage, category_id: CategoryId) -> None:
        context = FeatureContext(occurred_at=message.received_at, merchant_hint=message.merchant_hint)
        features = build_feature_vector(message.raw_text, context)
        for scorer in self.scorers:
            scorer.learn(message.raw_text, features, category_id)

    def clear(self) -> None:
        for scorer in self.scorers:
            scorer.clear()
