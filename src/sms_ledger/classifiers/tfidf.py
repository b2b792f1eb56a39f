import os
import pickle
from abc import abstractmethod
from typing import Any

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import SGDClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from sms_ledger.classifiers.ensemble import PRIMARY_SCORER, SECONDARY_SCORER, Scorer, ScorerOutput
from sms_ledger.logger import get_logger
from sms_ledger.models import CategoryId

logger = get_logger(__name__)


class _SgdScorer(Scorer):
    """SGD log-loss model persisted as its training examples.

    The model is refit from the examples on load and after every ``learn``;
    it only counts as loaded once two distinct labels have been seen.
    """

    def __init__(self, data_path: str, threshold: float = 0.3):
        self.data_path = data_path
        self.threshold = threshold
        self.pipeline = self._build_pipeline()
        self.examples: list[Any] = []
        self.labels: list[int] = []
        self.is_fitted = False
        self.load()

    @abstractmethod
    def _build_pipeline(self) -> Pipeline:
        pass

    @abstractmethod
    def _example(self, text: str, features: list[float]) -> Any:
        pass

    @property
    def is_loaded(self) -> bool:
        return self.is_fitted

    def load(self) -> None:
        if os.path.exists(self.data_path):
            try:
                with open(self.data_path, "rb") as f:
                    data = pickle.load(f)
                    self.examples = data.get("examples", [])
                    self.labels = data.get("labels", [])
                    self._fit()
            except (pickle.UnpicklingError, EOFError):
                logger.warning(f"Discarding unreadable model data at {self.data_path}")
                self.examples = []
                self.labels = []
                self.is_fitted = False

    def save(self) -> None:
        with open(self.data_path, "wb") as f:
            pickle.dump({
                "examples": self.examples,
                "labels": self.labels
            }, f)

    def _fit(self) -> None:
        if len(set(self.labels)) < 2:
            self.is_fitted = False
            return
        self.pipeline.fit(self.examples, self.labels)
        self.is_fitted = True

    def score(self, text: str, features: list[float]) -> ScorerOutput | None:
        if not self.is_fitted:
            return None

        probs = self.pipeline.predict_proba([self._example(text, features)])[0]
        probabilities = {CategoryId(int(label)): float(prob) for label, prob in zip(self.pipeline.classes_, probs)}
        confidence = max(probabilities.values())
        if confidence < self.threshold:
            return None
        return ScorerOutput(probabilities=probabilities, confidence=confidence)

    def learn(self, text: str, features: list[float], category_id: CategoryId) -> None:
        self.examples.append(self._example(text, features))
        self.labels.append(int(category_id))

        # Refit per example
        self._fit()
        self.save()

    def clear(self) -> None:
        self.examples = []
        self.labels = []
        self.is_fitted = False
        self.pipeline = self._build_pipeline()
        self.save()


class TfidfScorer(_SgdScorer):
    name = PRIMARY_SCORER

    def _build_pipeline(self) -> Pipeline:
        return Pipeline([
            ('tfidf', TfidfVectorizer(analyzer='char_wb', ngram_range=(3, 5), min_df=1)),
            ('clf', SGDClassifier(loss='log_loss', random_state=42))
        ])

    def _example(self, text: str, features: list[float]) -> str:
        return text


class StructuredScorer(_SgdScorer):
    name = SECONDARY_SCORER

    def _build_pipeline(self) -> Pipeline:
        return Pipeline([
            ('scale', StandardScaler()),
            ('clf', SGDClassifier(loss='log_loss', random_state=42))
        ])

    def _example(self, text: str, features: list[float]) -> list[float]:
        return list(features)
