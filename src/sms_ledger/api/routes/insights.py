import asyncio
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from sms_ledger.analytics.engine import AnalyticsEngine
from sms_ledger.analytics.events import EventChannel
from sms_ledger.analytics.models import InsightsSummary, MonthlyPrediction, SpendingInsights
from sms_ledger.api.dependencies import get_analytics, get_events
from sms_ledger.core import settings
from sms_ledger.storage.base import StorageError

router = APIRouter()

KEEPALIVE_SECONDS = 15.0


@router.get("/insights", response_model=SpendingInsights)
async def get_insights(
    analytics: Annotated[AnalyticsEngine, Depends(get_analytics)],
    start: datetime | None = None,
    end: datetime | None = None,
) -> SpendingInsights:
    try:
        return await analytics.generate_insights(start=start, end=end)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/insights/prediction", response_model=MonthlyPrediction)
async def get_prediction(
    analytics: Annotated[AnalyticsEngine, Depends(get_analytics)],
    start: datetime | None = None,
    end: datetime | None = None,
) -> MonthlyPrediction:
    try:
        return await analytics.predict_next_month(start=start, end=end)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/insights/llm", response_model=InsightsSummary | None)
async def get_llm_insights(
    analytics: Annotated[AnalyticsEngine, Depends(get_analytics)],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> InsightsSummary | None:
    try:
        return await analytics.generate_llm_insights(limit=limit)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/events")
async def stream_events(
    events: Annotated[EventChannel, Depends(get_events)],
) -> StreamingResponse:
    subscription = events.subscribe()

    async def generate() -> Any:
        try:
            while True:
                try:
                    update = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if update is None:
                    break
                yield f"event: {update.kind.value}\ndata: {update.model_dump_json()}\n\n"
        finally:
            subscription.close()

    return StreamingResponse(generate(), media_type="text/event-stream", headers=settings.SSE_HEADERS)
