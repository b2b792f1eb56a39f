from fastapi import HTTPException, Request

from sms_ledger.analytics.engine import AnalyticsEngine
from sms_ledger.analytics.events import EventChannel
from sms_ledger.manager import ClassificationService
from sms_ledger.services.assembler import RecordAssembler
from sms_ledger.services.enrichment import EnrichmentService
from sms_ledger.storage.repository import TransactionRepository


def _require(request: Request, name: str, detail: str = "Service not initialized"):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=500, detail=detail)
    return value


def get_service(request: Request) -> ClassificationService:
    return _require(request, "service")


def get_assembler(request: Request) -> RecordAssembler:
    return _require(request, "assembler")


def get_repository(request: Request) -> TransactionRepository:
    return _require(request, "repository")


def get_analytics(request: Request) -> AnalyticsEngine:
    return _require(request, "analytics")


def get_events(request: Request) -> EventChannel:
    return _require(request, "events")


def get_enrichment(request: Request) -> EnrichmentService:
    return _require(request, "enrichment")
