from abc import ABC, abstractmethod

from sms_ledger.models import CategoryId, ClassificationResult, ParsedMessage


class Classifier(ABC):
    name: str = "classifier"

    @abstractmethod
    def classify_message(self, message: ParsedMessage) -> ClassificationResult | None:
        """Attempt to classify a parsed message; None lets the next tier run."""
        pass

    @abstractmethod
    def learn(self, message: ParsedMessage, category_id: CategoryId) -> None:
        """Learn from a confirmed message-category pair."""
        pass
