import os

from sms_ledger.classifiers.base import Classifier
from sms_ledger.classifiers.ensemble import EnsembleClassifier
from sms_ledger.classifiers.llm import ExternalAnalysisAdapter
from sms_ledger.classifiers.patterns import PatternClassifier
from sms_ledger.classifiers.tfidf import StructuredScorer, TfidfScorer
from sms_ledger.core.settings import AppConfig
from sms_ledger.logger import get_logger
from sms_ledger.models import CategoryId, ClassificationResult, ParsedMessage

logger = get_logger(__name__)


class ClassificationService:
    """Runs the classification tiers, most authoritative first.

    external model -> ensemble -> pattern heuristics. The pattern tier always
    answers, so ``classify`` always returns a result.
    """

    def __init__(
        self,
        external: ExternalAnalysisAdapter | None = None,
        ensemble: EnsembleClassifier | None = None,
        pattern: PatternClassifier | None = None,
    ):
        self.external = external
        self.ensemble = ensemble or EnsembleClassifier()
        self.pattern = pattern or PatternClassifier()
        self.local_tiers: list[Classifier] = [self.ensemble, self.pattern]

    @classmethod
    def from_config(cls, config: AppConfig) -> "ClassificationService":
        ensemble = EnsembleClassifier(
            scorers=[
                TfidfScorer(data_path=os.path.join(config.data_dir, "primary_text_model.pkl")),
                StructuredScorer(data_path=os.path.join(config.data_dir, "secondary_structured_model.pkl")),
            ],
            weights={
                TfidfScorer.name: config.primary_weight,
                StructuredScorer.name: config.secondary_weight,
            },
        )

        external = None
        if config.llm_configured:
            external = ExternalAnalysisAdapter(
                api_key=config.openai_api_key,
                model=config.openai_model,
                base_url=config.openai_base_url,
                timeout=config.llm_timeout,
                batch_timeout=config.llm_batch_timeout,
            )
            logger.info(f"External analysis enabled: model={config.openai_model}, base_url={config.openai_base_url}")
        elif config.llm_enabled:
            logger.warning("OPENAI_API_KEY not found. External analysis disabled.")
        else:
            logger.info("External analysis disabled by LLM_ENABLED.")

        return cls(external=external, ensemble=ensemble)

    async def classify(self, message: ParsedMessage) -> ClassificationResult:
        preview = message.raw_text[:50]

        if self.external is not None:
            logger.debug(f"Trying ExternalAnalysisAdapter for: '{preview}...'")
            try:
                result = await self.external.analyze(message.raw_text)
            except Exception as e:
                logger.error(f"ExternalAnalysisAdapter failed: {e}")
                result = None
            if result:
                logger.debug(
                    f"ExternalAnalysisAdapter returned: '{result.category_id.name}' "
                    f"(confidence: {result.confidence:.2f})"
                )
                return result
            logger.debug("ExternalAnalysisAdapter returned: None")

        for classifier in self.local_tiers:
            classifier_name = classifier.__class__.__name__
            logger.debug(f"Trying {classifier_name} for: '{preview}...'")
            try:
                result = classifier.classify_message(message)
            except Exception as e:
                logger.error(f"{classifier_name} failed: {e}")
                result = None

            if result:
                logger.debug(
                    f"{classifier_name} returned: '{result.category_id.name}' "
                    f"(confidence: {result.confidence:.2f})"
                )
                return result
            else:
                logger.debug(f"{classifier_name} returned: None")

        # Only reached if the pattern tier is removed from local_tiers
        return PatternClassifier().classify_message(message)

    def learn(self, message: ParsedMessage, category_id: CategoryId) -> None:
        """
        Teach all trainable tiers.
        """
        self.ensemble.learn(message, category_id)

    def clear_models(self) -> None:
        """
        Clear all local training data.
        """
        self.ensemble.clear()
        logger.info("All models cleared.")
