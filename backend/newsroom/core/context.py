"""
Service wiring.

A `ServiceContext` is built once at process start (in the FastAPI lifespan)
and handed to routers through `request.app.state`; nothing here is a
module-level singleton.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from fastapi import Request

from newsroom.services.audit import AuditSink
from newsroom.services.editor import EditorOrchestrator
from newsroom.services.generation_client import GenerationClientFactory
from newsroom.services.kpi import KpiService
from newsroom.services.reporter import ReporterOrchestrator
from newsroom.services.scheduler import JobScheduler
from newsroom.services.social_feed import SocialFeedFetcher
from newsroom.storage import EntityRepository, KeyValueStore, create_store

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: object
    store: KeyValueStore
    repository: EntityRepository
    kpi: KpiService
    clients: GenerationClientFactory
    feed: SocialFeedFetcher
    reporters: ReporterOrchestrator
    editor: EditorOrchestrator
    jobs: JobScheduler

    async def close(self) -> None:
        await self.clients.close()
        self.store.close()


def build_context(
    settings,
    store: Optional[KeyValueStore] = None,
    feed: Optional[SocialFeedFetcher] = None,
) -> ServiceContext:
    """Construct every service from settings; `store` and `feed` may be injected."""
    store = store or create_store(settings)
    repository = EntityRepository(store)
    kpi = KpiService(repository)
    clients = GenerationClientFactory(
        settings, repository, audit=AuditSink(settings.API_RESPONSES_DIR), kpi=kpi
    )
    feed = feed or SocialFeedFetcher(
        settings.FEED_API_BASE, settings.FEED_URI, timeout=settings.FEED_TIMEOUT_SECONDS
    )
    reporters = ReporterOrchestrator(repository, clients, feed)
    editor = EditorOrchestrator(repository, clients)
    jobs = JobScheduler(
        repository,
        reporters,
        editor,
        stale_after_minutes=settings.JOB_STALE_AFTER_MINUTES,
    )
    logger.info("Service context initialized")
    return ServiceContext(
        settings=settings,
        store=store,
        repository=repository,
        kpi=kpi,
        clients=clients,
        feed=feed,
        reporters=reporters,
        editor=editor,
        jobs=jobs,
    )


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context
