from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request

from sms_ledger.api.dependencies import get_assembler
from sms_ledger.api.schemas import BatchIngestRequest, IngestRequest, IngestResponse, StatsResponse
from sms_ledger.logger import get_logger
from sms_ledger.services.assembler import RecordAssembler
from sms_ledger.storage.base import StorageError

logger = get_logger(__name__)

router = APIRouter()


@router.post("/ingest", response_model=IngestResponse)
async def ingest_message(
    req: IngestRequest,
    assembler: Annotated[RecordAssembler, Depends(get_assembler)],
) -> IngestResponse:
    try:
        outcome = await assembler.ingest(req.message, sender=req.sender, timestamp=req.timestamp)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return IngestResponse(status=outcome.status.value, transaction=outcome.transaction)


@router.post("/ingest/batch", response_model=StatsResponse)
async def ingest_batch(
    req: BatchIngestRequest,
    request: Request,
    assembler: Annotated[RecordAssembler, Depends(get_assembler)],
) -> StatsResponse:
    config = getattr(request.app.state, "config", None)
    concurrency = req.concurrency or (config.ingest_concurrency if config else 1)
    logger.info(f"[INGEST] Batch of {len(req.messages)} messages (concurrency={concurrency})")
    try:
        stats = await assembler.assemble_batch(req.messages, concurrency=concurrency)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return StatsResponse(**stats.as_dict())


@router.get("/ingest/stats", response_model=StatsResponse)
async def ingest_stats(
    assembler: Annotated[RecordAssembler, Depends(get_assembler)],
) -> StatsResponse:
    return StatsResponse(**assembler.stats.as_dict())
