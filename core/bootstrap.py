"""
learnflow - Application Bootstrap

Composition root of both services. Every collaborator (database, event
store, projections, command handler, relay, lms client, recommendation
engine) is constructed once here and handed to the API factory; nothing is
registered in process-wide mutable state.

Usage:
    services = build_lms_services(get_config())
    app = create_lms_app(services)

    # Or as a context manager outside a web server
    async with reco_services(get_config()) as services:
        await services.recommendation_engine.recommend("user-1")
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from config import Config, ServiceName, get_config
from core.resilience import RetryConfig
from core.errors import ConcurrencyError
from db.command_handlers import CourseCommandHandler
from db.database import DatabaseClient
from db.event_store import EventStore, SnapshotStore
from db.ingestion import LessonCompletedIngestor
from db.models import LMS_TABLES, RECO_TABLES
from db.projections import CourseProjection, LearnerHistoryProjection, ProjectionManager
from db.read_models import CourseQueries, LearnerHistoryQueries
from domain.recommendation import RecommendationEngine
from integrations.event_relay import RecoEventRelay
from integrations.lms_client import LmsClient


logger = logging.getLogger(__name__)


def _retry_config(config: Config) -> RetryConfig:
    return RetryConfig(
        max_attempts=config.event_store.max_command_retries,
        base_delay=config.event_store.retry_base_delay,
        retryable_exceptions={ConcurrencyError},
    )


def _database(config: Config, service: ServiceName) -> DatabaseClient:
    return DatabaseClient(
        database_url=config.database.url_for(service),
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
        echo=config.database.echo,
    )


@dataclass
class LmsServices:
    """Everything the lms API needs."""
    config: Config
    db: DatabaseClient
    command_handler: CourseCommandHandler
    queries: CourseQueries
    relay: RecoEventRelay

    async def startup(self, create_tables: bool = False) -> None:
        await self.db.initialize()
        if create_tables:
            await self.db.create_tables(LMS_TABLES)
        logger.info("lms services started")

    async def shutdown(self) -> None:
        await self.relay.close()
        await self.db.close()
        logger.info("lms services stopped")


@dataclass
class RecoServices:
    """Everything the reco API needs."""
    config: Config
    db: DatabaseClient
    ingestor: LessonCompletedIngestor
    history: LearnerHistoryQueries
    lms_client: LmsClient
    recommendation_engine: RecommendationEngine

    async def startup(self, create_tables: bool = False) -> None:
        await self.db.initialize()
        if create_tables:
            await self.db.create_tables(RECO_TABLES)
        logger.info("reco services started")

    async def shutdown(self) -> None:
        await self.lms_client.close()
        await self.db.close()
        logger.info("reco services stopped")


def build_lms_services(
    config: Optional[Config] = None,
    db: Optional[DatabaseClient] = None,
    relay_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LmsServices:
    """
    Wire the lms service.

    Args:
        config: Configuration; the process configuration when omitted
        db: Database to use instead of the configured lms database
        relay_transport: httpx transport for the relay (tests route it in-process)
    """
    config = config or get_config()
    db = db or _database(config, ServiceName.LMS)

    relay = RecoEventRelay(
        config.services.reco_service_url,
        timeout=config.services.relay_timeout,
        enabled=config.services.relay_enabled,
        transport=relay_transport,
    )
    command_handler = CourseCommandHandler(
        db=db,
        event_store=EventStore(snapshot_threshold=config.event_store.snapshot_threshold),
        projections=ProjectionManager([CourseProjection()]),
        snapshot_store=SnapshotStore(),
        retry_config=_retry_config(config),
        listeners=[relay],
    )

    return LmsServices(
        config=config,
        db=db,
        command_handler=command_handler,
        queries=CourseQueries(),
        relay=relay,
    )


def build_reco_services(
    config: Optional[Config] = None,
    db: Optional[DatabaseClient] = None,
    lms_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RecoServices:
    """
    Wire the reco service.

    Args:
        config: Configuration; the process configuration when omitted
        db: Database to use instead of the configured reco database
        lms_transport: httpx transport for the lms client
    """
    config = config or get_config()
    db = db or _database(config, ServiceName.RECO)

    history = LearnerHistoryQueries()
    lms_client = LmsClient(
        config.services.lms_service_url,
        timeout=config.services.lms_client_timeout,
        transport=lms_transport,
    )
    ingestor = LessonCompletedIngestor(
        db=db,
        event_store=EventStore(snapshot_threshold=config.event_store.snapshot_threshold),
        projections=ProjectionManager([LearnerHistoryProjection()]),
        retry_config=_retry_config(config),
    )

    return RecoServices(
        config=config,
        db=db,
        ingestor=ingestor,
        history=history,
        lms_client=lms_client,
        recommendation_engine=RecommendationEngine(
            db, history, lms_client, config.recommendation
        ),
    )


@asynccontextmanager
async def lms_services(config: Optional[Config] = None) -> AsyncIterator[LmsServices]:
    services = build_lms_services(config)
    await services.startup()
    try:
        yield services
    finally:
        await services.shutdown()


@asynccontextmanager
async def reco_services(config: Optional[Config] = None) -> AsyncIterator[RecoServices]:
    services = build_reco_services(config)
    await services.startup()
    try:
        yield services
    finally:
        await services.shutdown()
