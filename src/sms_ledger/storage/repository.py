from datetime import datetime, timedelta
from typing import Any

from sms_ledger.domain.timefmt import as_local_naive
from sms_ledger.logger import get_logger
from sms_ledger.models import Transaction

from .base import Storage
from .sql import TRANSACTIONS

logger = get_logger(__name__)

DUPLICATE_WINDOW = timedelta(minutes=2)


class TransactionRepository:
    """Maps transaction values to flat storage records."""

    def __init__(self, storage: Storage, table: str = TRANSACTIONS):
        self.storage = storage
        self.table = table

    async def insert(self, transaction: Transaction) -> Transaction:
        transaction_id = await self.storage.insert(self.table, transaction.to_record())
        return transaction.model_copy(update={"id": transaction_id})

    async def get(self, transaction_id: int) -> Transaction | None:
        rows = await self.storage.query(self.table, "id = :id", {"id": transaction_id}, limit=1)
        return Transaction.from_record(rows[0]) if rows else None

    async def fetch(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Transaction]:
        clauses = []
        args: dict[str, Any] = {}
        if start is not None:
            clauses.append("occurred_at >= :start")
            args["start"] = as_local_naive(start).isoformat()
        if end is not None:
            clauses.append("occurred_at <= :end")
            args["end"] = as_local_naive(end).isoformat()

        rows = await self.storage.query(
            self.table,
            " AND ".join(clauses) or None,
            args or None,
            order_by="occurred_at DESC" if newest_first else "occurred_at ASC",
            limit=limit,
        )
        return [Transaction.from_record(row) for row in rows]

    async def find_duplicates(self, candidate: Transaction, window: timedelta = DUPLICATE_WINDOW) -> list[Transaction]:
        """Stored rows that describe the same real-world transaction as ``candidate``.

        Same amount and bank, occurred within ``window``; then the same account
        fragment when the candidate has one, otherwise the same description.
        """
        clauses = ["amount = :amount", "occurred_at >= :start", "occurred_at <= :end"]
        args: dict[str, Any] = {
            "amount": candidate.amount,
            "start": (candidate.occurred_at - window).isoformat(),
            "end": (candidate.occurred_at + window).isoformat(),
        }
        if candidate.bank_name is None:
            clauses.append("bank_name IS NULL")
        else:
            clauses.append("bank_name = :bank")
            args["bank"] = candidate.bank_name

        rows = await self.storage.query(self.table, " AND ".join(clauses), args)
        matches = []
        for row in rows:
            existing = Transaction.from_record(row)
            if candidate.account_fragment:
                if existing.account_fragment == candidate.account_fragment:
                    matches.append(existing)
            elif existing.description == candidate.description:
                matches.append(existing)
        return matches

    async def update(self, transaction_id: int, patch: dict[str, Any]) -> int:
        values = dict(patch)
        if "anomaly_tags" in values and isinstance(values["anomaly_tags"], list):
            values["anomaly_tags"] = ",".join(values["anomaly_tags"])
        if "category_id" in values and values["category_id"] is not None:
            values["category_id"] = int(values["category_id"])
        if "direction" in values and hasattr(values["direction"], "value"):
            values["direction"] = values["direction"].value
        values["updated_at"] = datetime.now().isoformat()
        return await self.storage.update(self.table, values, "id = :id", {"id": transaction_id})

    async def pending_enrichment(self, limit: int | None = None) -> list[Transaction]:
        """Rows the external model has not analysed yet."""
        rows = await self.storage.query(
            self.table,
            "(confidence IS NULL OR model_insight IS NULL) AND source_text IS NOT NULL",
            order_by="occurred_at DESC",
            limit=limit,
        )
        return [Transaction.from_record(row) for row in rows]

    async def with_source_text(self) -> list[Transaction]:
        rows = await self.storage.query(self.table, "source_text IS NOT NULL", order_by="id ASC")
        return [Transaction.from_record(row) for row in rows]

    async def clear(self) -> int:
        count = await self.storage.delete(self.table)
        logger.info(f"Cleared {count} transactions")
        return count
