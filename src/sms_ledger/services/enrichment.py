from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from sms_ledger.classifiers.llm import ExternalAnalysisAdapter
from sms_ledger.classifiers.patterns import PatternClassifier, determine_direction
from sms_ledger.domain.normalizer import normalize_message
from sms_ledger.domain.parsing import extract_merchant_hint
from sms_ledger.domain.timefmt import format_duration
from sms_ledger.logger import get_logger
from sms_ledger.models import CategoryId, ClassificationMethod, Transaction
from sms_ledger.storage.repository import TransactionRepository

from .locks import KeyedLock

logger = get_logger(__name__)


@dataclass
class EnrichmentReport:
    examined: int = 0
    updated: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class EnrichmentService:
    """Passes that revisit stored transactions one at a time."""

    def __init__(
        self,
        repository: TransactionRepository,
        external: ExternalAnalysisAdapter | None = None,
        pattern: PatternClassifier | None = None,
    ):
        self.repository = repository
        self.external = external
        self.pattern = pattern or PatternClassifier()
        self._locks = KeyedLock()

    async def reanalyze_backlog(self, limit: int | None = None) -> EnrichmentReport:
        """Run the external model over transactions it has not analysed yet."""
        report = EnrichmentReport()
        if self.external is None:
            logger.info("[ENRICH] External model not configured, skipping re-analysis")
            return report

        started = datetime.now()
        backlog = await self.repository.pending_enrichment(limit=limit)
        logger.info(f"[ENRICH] Re-analysing {len(backlog)} transactions")

        for tx in backlog:
            report.examined += 1
            async with self._locks.hold(tx.id):
                analysis = await self.external.analyze_message(tx.source_text or "")
                if analysis is None:
                    report.failed += 1
                    continue

                tags = list(dict.fromkeys(tx.anomaly_tags + list(analysis.anomaly_flags)))
                patch: dict[str, Any] = {
                    "confidence": min(1.0, max(0.0, analysis.confidence_score)),
                    "anomaly_tags": tags,
                    "model_insight": analysis.insights or analysis.description,
                    "counterparty": analysis.recipient_or_sender or tx.counterparty,
                    "subcategory": analysis.subcategory or tx.subcategory,
                    "payment_method": analysis.transaction_method or tx.payment_method,
                    "location": analysis.location or tx.location,
                    "reference_number": analysis.reference_number or tx.reference_number,
                }
                if tx.available_balance is None and analysis.available_balance is not None:
                    patch["available_balance"] = analysis.available_balance
                report.updated += await self.repository.update(tx.id, patch)

        logger.info(
            f"[ENRICH] Re-analysis done in {format_duration((datetime.now() - started).total_seconds())}: "
            f"{report.updated} updated, {report.failed} failed"
        )
        return report

    def _reclassify_patch(self, tx: Transaction) -> dict[str, Any]:
        text = tx.source_text or ""
        direction = determine_direction(text)
        patch: dict[str, Any] = {}
        if direction != tx.direction:
            logger.info(f"[ENRICH] Re-classifying transaction {tx.id}: {tx.direction.value} -> {direction.value}")
            patch["direction"] = direction

        # Only rows that never found a category are re-categorised
        if tx.category_id == CategoryId.OTHER:
            result = self.pattern.classify(
                normalize_message(text),
                tx.amount,
                direction,
                merchant_hint=extract_merchant_hint(text),
                hour=tx.occurred_at.hour,
            )
            if result.method != ClassificationMethod.FALLBACK and result.category_id != tx.category_id:
                patch["category_id"] = result.category_id
                patch["description"] = result.description
                if result.merchant and not tx.merchant_name:
                    patch["merchant_name"] = result.merchant
        return patch

    async def reclassify_existing(self) -> EnrichmentReport:
        """Reapply direction scoring and pattern categories to stored source text."""
        report = EnrichmentReport()
        for tx in await self.repository.with_source_text():
            report.examined += 1
            async with self._locks.hold(tx.id):
                patch = self._reclassify_patch(tx)
                if patch:
                    report.updated += await self.repository.update(tx.id, patch)

        logger.info(f"[ENRICH] Re-classification complete. {report.updated} transactions updated.")
        return report
