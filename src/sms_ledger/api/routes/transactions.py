import asyncio
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from sms_ledger.analytics.engine import AnalyticsEngine
from sms_ledger.api.dependencies import get_analytics, get_enrichment, get_repository, get_service
from sms_ledger.api.schemas import CategoryUpdate, ClearResponse, PassResponse, TransactionList
from sms_ledger.domain.parsing import parse_message
from sms_ledger.logger import get_logger
from sms_ledger.manager import ClassificationService
from sms_ledger.models import CategoryId, Direction, Transaction
from sms_ledger.services.enrichment import EnrichmentService
from sms_ledger.storage.base import StorageError
from sms_ledger.storage.repository import TransactionRepository

logger = get_logger(__name__)

router = APIRouter()


@router.get("/transactions", response_model=TransactionList)
async def list_transactions(
    repository: Annotated[TransactionRepository, Depends(get_repository)],
    start: datetime | None = None,
    end: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> TransactionList:
    try:
        transactions = await repository.fetch(start=start, end=end, limit=limit)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return TransactionList(transactions=transactions, count=len(transactions))


@router.delete("/transactions", response_model=ClearResponse)
async def clear_transactions(
    repository: Annotated[TransactionRepository, Depends(get_repository)],
    analytics: Annotated[AnalyticsEngine, Depends(get_analytics)],
) -> ClearResponse:
    try:
        deleted = await repository.clear()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    analytics.reset()
    return ClearResponse(deleted=deleted)


@router.post("/transactions/reanalyze", response_model=PassResponse)
async def reanalyze_transactions(
    enrichment: Annotated[EnrichmentService, Depends(get_enrichment)],
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> PassResponse:
    try:
        report = await enrichment.reanalyze_backlog(limit=limit)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return PassResponse(**report.as_dict())


@router.post("/transactions/reclassify", response_model=PassResponse)
async def reclassify_transactions(
    enrichment: Annotated[EnrichmentService, Depends(get_enrichment)],
) -> PassResponse:
    try:
        report = await enrichment.reclassify_existing()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return PassResponse(**report.as_dict())


@router.put("/transactions/{transaction_id}/category", response_model=Transaction)
async def correct_category(
    transaction_id: int,
    req: CategoryUpdate,
    repository: Annotated[TransactionRepository, Depends(get_repository)],
    service: Annotated[ClassificationService, Depends(get_service)],
) -> Transaction:
    """Store a confirmed category and teach the local models from it."""
    try:
        tx = await repository.get(transaction_id)
        if tx is None:
            raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")

        patch: dict = {"category_id": req.category_id, "confidence": 1.0}
        if req.category_id == CategoryId.INCOME:
            patch["direction"] = Direction.INCOME
        await repository.update(transaction_id, patch)
        updated = await repository.get(transaction_id)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    if tx.source_text:
        message = parse_message(tx.source_text, received_at=tx.occurred_at)
        await asyncio.to_thread(service.learn, message, req.category_id)
        logger.info(f"[LEARN] Transaction {transaction_id} -> {req.category_id.name}")
    else:
        logger.info(f"[LEARN] Transaction {transaction_id} has no source text, category stored only")
    return updated
