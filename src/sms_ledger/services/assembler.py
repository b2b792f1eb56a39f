import asyncio
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from sms_ledger.analytics.engine import AnalyticsEngine
from sms_ledger.domain.parsing import bank_from_sender, is_financial_message, parse_message
from sms_ledger.domain.timefmt import combine_occurred_at, format_duration
from sms_ledger.logger import get_logger
from sms_ledger.manager import ClassificationService
from sms_ledger.models import ClassificationResult, IncomingMessage, ParsedMessage, Transaction
from sms_ledger.storage.repository import TransactionRepository

from .locks import KeyedLock

logger = get_logger(__name__)


class AssemblyStatus(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass
class AssemblyOutcome:
    status: AssemblyStatus
    transaction: Transaction | None = None


@dataclass
class AssemblyStats:
    processed: int = 0
    created: int = 0
    duplicates: int = 0
    ignored: int = 0
    rejected: int = 0
    by_method: Counter = field(default_factory=Counter)

    def record(self, outcome: AssemblyOutcome, method: str | None = None) -> None:
        self.processed += 1
        if outcome.status == AssemblyStatus.CREATED:
            self.created += 1
        elif outcome.status == AssemblyStatus.DUPLICATE:
            self.duplicates += 1
        elif outcome.status == AssemblyStatus.IGNORED:
            self.ignored += 1
        else:
            self.rejected += 1
        if method:
            self.by_method[method] += 1

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "created": self.created,
            "duplicates": self.duplicates,
            "ignored": self.ignored,
            "rejected": self.rejected,
            "by_method": dict(self.by_method),
        }


def build_transaction(parsed: ParsedMessage, result: ClassificationResult) -> Transaction | None:
    """Merge regex-parsed fields with the winning classification; None without a positive amount."""
    details = result.details
    amount = parsed.amount
    if not amount and details is not None and details.amount > 0:
        amount = details.amount
    if not amount or amount <= 0:
        return None

    occurred_at = parsed.received_at
    bank_name = parsed.bank_name
    account_fragment = parsed.account_fragment
    available_balance = parsed.available_balance
    extra = {}
    if details is not None:
        occurred_at = combine_occurred_at(parsed.received_at, details.date, details.time)
        if details.bank_name:
            bank_name = bank_from_sender(details.bank_name) or details.bank_name
        account_fragment = account_fragment or details.account_number
        if available_balance is None:
            available_balance = details.available_balance
        extra = {
            "counterparty": details.recipient_or_sender,
            "payment_method": details.transaction_method,
            "location": details.location,
            "reference_number": details.reference_number,
            "anomaly_tags": list(details.anomaly_flags),
            "model_insight": details.insights or details.description,
        }

    return Transaction(
        amount=amount,
        direction=result.direction,
        occurred_at=occurred_at,
        time_of_day=occurred_at.time(),
        category_id=result.category_id,
        subcategory=result.subcategory,
        merchant_name=result.merchant or parsed.merchant_hint,
        description=result.description,
        bank_name=bank_name,
        account_fragment=account_fragment,
        source_text=parsed.raw_text,
        confidence=result.confidence,
        available_balance=available_balance,
        **extra,
    )


class RecordAssembler:
    def __init__(
        self,
        classifier: ClassificationService,
        repository: TransactionRepository,
        analytics: AnalyticsEngine | None = None,
    ):
        self.classifier = classifier
        self.repository = repository
        self.analytics = analytics
        self.stats = AssemblyStats()
        self._locks = KeyedLock()

    async def ingest(self, raw_message: str, sender: str = "", timestamp: datetime | None = None) -> AssemblyOutcome:
        outcome, method = await self._ingest(raw_message, sender, timestamp)
        self.stats.record(outcome, method)
        return outcome

    async def assemble(self, raw_message: str, sender: str = "", timestamp: datetime | None = None) -> Transaction | None:
        """Stored transaction, or None when the message was ignored, rejected or a duplicate."""
        outcome = await self.ingest(raw_message, sender, timestamp)
        return outcome.transaction if outcome.status == AssemblyStatus.CREATED else None

    async def _ingest(
        self, raw_message: str, sender: str, timestamp: datetime | None
    ) -> tuple[AssemblyOutcome, str | None]:
        if not raw_message or not is_financial_message(raw_message):
            logger.debug("[INGEST] Not a financial message, ignoring")
            return AssemblyOutcome(AssemblyStatus.IGNORED), None

        parsed = parse_message(raw_message, sender=sender, received_at=timestamp)
        result = await self.classifier.classify(parsed)
        method = result.method.value

        candidate = build_transaction(parsed, result)
        if candidate is None:
            logger.info(f"[INGEST] No amount found in message from '{sender or 'unknown'}', rejecting")
            return AssemblyOutcome(AssemblyStatus.REJECTED), method

        # Coarser than the duplicate window so neighbouring minutes share a lock
        async with self._locks.hold((candidate.amount, candidate.bank_name)):
            if await self.repository.find_duplicates(candidate):
                logger.info(
                    f"[INGEST] Duplicate of stored transaction: {candidate.amount:.2f} "
                    f"via {candidate.bank_name or 'unknown bank'} at {candidate.occurred_at:%Y-%m-%d %H:%M}"
                )
                return AssemblyOutcome(AssemblyStatus.DUPLICATE), method
            stored = await self.repository.insert(candidate)

        logger.info(
            f"[INGEST] Stored transaction {stored.id}: {stored.direction.value} {stored.amount:.2f} "
            f"category={stored.category_id.name} method={method} confidence={stored.confidence:.2f}"
        )
        if self.analytics is not None:
            try:
                self.analytics.add_transaction(stored)
            except Exception as e:
                logger.error(f"[ANALYTICS] Live check failed for transaction {stored.id}: {e}")
        return AssemblyOutcome(AssemblyStatus.CREATED, stored), method

    async def assemble_batch(self, messages: Sequence[IncomingMessage], concurrency: int = 1) -> AssemblyStats:
        batch = AssemblyStats()
        started = datetime.now()

        async def run(item: IncomingMessage) -> None:
            outcome, method = await self._ingest(item.message, item.sender, item.timestamp)
            batch.record(outcome, method)
            self.stats.record(outcome, method)

        if concurrency <= 1:
            for item in messages:
                await run(item)
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(item: IncomingMessage) -> None:
                async with semaphore:
                    await run(item)

            await asyncio.gather(*(bounded(item) for item in messages))

        elapsed = (datetime.now() - started).total_seconds()
        logger.info(
            f"[INGEST] Batch of {batch.processed} in {format_duration(elapsed)}: "
            f"created={batch.created} duplicates={batch.duplicates} "
            f"ignored={batch.ignored} rejected={batch.rejected}"
        )
        return batch
