from typing import Any

from pydantic import BaseModel, Field

from sms_ledger.models import CategoryId, IncomingMessage, Transaction


class IngestRequest(IncomingMessage):
    pass


class IngestResponse(BaseModel):
    status: str
    transaction: Transaction | None = None


class BatchIngestRequest(BaseModel):
    messages: list[IncomingMessage]
    concurrency: int | None = Field(default=None, ge=1)


class CategoryUpdate(BaseModel):
    category_id: CategoryId


class TransactionList(BaseModel):
    transactions: list[Transaction]
    count: int


class CategoryResponse(BaseModel):
    id: int
    name: str
    budget: float | None = None


class PassResponse(BaseModel):
    examined: int
    updated: int
    failed: int = 0


class ClearResponse(BaseModel):
    deleted: int


class StatsResponse(BaseModel):
    processed: int
    created: int
    duplicates: int
    ignored: int
    rejected: int
    by_method: dict[str, Any] = Field(default_factory=dict)
