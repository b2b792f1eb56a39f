from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sms_ledger.analytics.engine import AnalyticsEngine
from sms_ledger.analytics.events import EventChannel
from sms_ledger.api.routes import categories, ingest, insights, transactions
from sms_ledger.core import settings
from sms_ledger.core.settings import AppConfig
from sms_ledger.logger import get_logger, setup_logging
from sms_ledger.manager import ClassificationService
from sms_ledger.services.assembler import RecordAssembler
from sms_ledger.services.enrichment import EnrichmentService
from sms_ledger.storage.repository import TransactionRepository
from sms_ledger.storage.sql import SqlStorage

logger = get_logger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()
        app_config = config or settings.load_config()

        storage = SqlStorage(database_url=app_config.database_url)
        storage.init_schema()
        repository = TransactionRepository(storage)

        service = ClassificationService.from_config(app_config)
        events = EventChannel(default_maxsize=app_config.event_queue_size)
        analytics = AnalyticsEngine(repository, events=events, external=service.external)
        await analytics.warm_up()

        app.state.config = app_config
        app.state.storage = storage
        app.state.repository = repository
        app.state.service = service
        app.state.events = events
        app.state.analytics = analytics
        app.state.assembler = RecordAssembler(service, repository, analytics=analytics)
        app.state.enrichment = EnrichmentService(repository, external=service.external, pattern=service.pattern)

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await events.drain()
        events.close()
        await storage.close()

    app = FastAPI(title="SMS Ledger", lifespan=lifespan)

    app.include_router(ingest.router)
    app.include_router(transactions.router)
    app.include_router(insights.router)
    app.include_router(categories.router)

    return app
