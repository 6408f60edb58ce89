"""
Time-gated, per-tenant job execution.

Every (tenant, job) pair has one status record: running, last_run and
last_success. The gate checks the running flag first, then the period since
the last success, and only then marks the job started. The status record is
the only place the last generation time is kept.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from newsroom.core.logging_config import (
    job_name_var,
    log_job_event,
    new_correlation_id,
    tenant_id_var,
)
from newsroom.schemas.entities import (
    DEFAULT_ARTICLE_PERIOD_MINUTES,
    DEFAULT_EDITION_PERIOD_MINUTES,
    DEFAULT_EVENT_PERIOD_MINUTES,
    JobStatus,
)
from newsroom.services.editor import EditorOrchestrator
from newsroom.services.reporter import ReporterOrchestrator
from newsroom.storage.repository import (
    JOB_ARTICLES,
    JOB_EDITION,
    JOB_EVENTS,
    EntityRepository,
    now_ms,
)

logger = logging.getLogger(__name__)

JOB_ARTICLES_FROM_EVENTS = "articles_from_events"
JOB_DAILY = "daily"
JOB_NAMES = (JOB_ARTICLES, JOB_EVENTS, JOB_ARTICLES_FROM_EVENTS, JOB_EDITION, JOB_DAILY)

DAILY_PERIOD_MINUTES = 1440
MS_PER_MINUTE = 60 * 1000

STATUS_SUCCESS = "success"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class JobOutcome:
    status: str
    reason: Optional[str] = None
    produced: int = 0

    def to_dict(self) -> Dict:
        return {"status": self.status, "reason": self.reason, "produced": self.produced}


class JobScheduler:
    """
    Runs one named job for one tenant behind the time gate.

    An asyncio.Lock makes check-and-mark atomic between overlapping triggers
    in this process; a running flag older than `stale_after_minutes` is
    treated as left over from a crashed run and does not block.
    """

    def __init__(
        self,
        repository: EntityRepository,
        reporters: ReporterOrchestrator,
        editor: EditorOrchestrator,
        stale_after_minutes: int = 120,
        clock: Callable[[], int] = now_ms,
    ):
        self.repository = repository
        self.reporters = reporters
        self.editor = editor
        self.stale_after_minutes = stale_after_minutes
        self.clock = clock
        self._lock = asyncio.Lock()
        self._runners: Dict[str, Callable[[str], Awaitable[int]]] = {
            JOB_ARTICLES: self._run_articles,
            JOB_EVENTS: self._run_events,
            JOB_ARTICLES_FROM_EVENTS: self._run_articles_from_events,
            JOB_EDITION: self._run_edition,
            JOB_DAILY: self._run_daily,
        }

    def period_minutes(self, tenant_id: str, job_name: str) -> int:
        if job_name == JOB_DAILY:
            return DAILY_PERIOD_MINUTES

        source = self.repository.get_editor(tenant_id) or self.repository.get_user_ai_config(
            tenant_id
        )
        if job_name in (JOB_ARTICLES, JOB_ARTICLES_FROM_EVENTS):
            return source.article_generation_period_minutes if source else DEFAULT_ARTICLE_PERIOD_MINUTES
        if job_name == JOB_EVENTS:
            return source.event_generation_period_minutes if source else DEFAULT_EVENT_PERIOD_MINUTES
        return source.edition_generation_period_minutes if source else DEFAULT_EDITION_PERIOD_MINUTES

    def _is_stale(self, status: JobStatus, now: int) -> bool:
        if status.last_run is None:
            return True
        return now - status.last_run >= self.stale_after_minutes * MS_PER_MINUTE

    def _check_gate(
        self, tenant_id: str, job_name: str, now: int, force: bool
    ) -> Optional[str]:
        """Return the skip reason, or None when the job may start."""
        status = self.repository.get_job_status(tenant_id, job_name)

        if status.running:
            if not self._is_stale(status, now):
                return "Job already running"
            logger.warning(
                f"Ignoring stale running flag for {job_name} (tenant {tenant_id}, "
                f"last run {status.last_run})"
            )

        if force or status.last_success is None:
            return None

        period = self.period_minutes(tenant_id, job_name)
        elapsed_minutes = (now - status.last_success) / MS_PER_MINUTE
        if elapsed_minutes < period:
            remaining = math.ceil(period - elapsed_minutes)
            return f"Time constraint: {remaining} minutes remaining"
        return None

    async def run_job(self, tenant_id: str, job_name: str, force: bool = False) -> JobOutcome:
        """
        Run one job for one tenant. `force` bypasses the time gate but never
        the running flag. Errors are returned as a failed outcome; cancellation
        clears the running flag and propagates.
        """
        if job_name not in self._runners:
            raise ValueError(f"Unknown job {job_name}; expected one of {', '.join(JOB_NAMES)}")

        tenant_token = tenant_id_var.set(tenant_id)
        job_token = job_name_var.set(job_name)
        try:
            now = self.clock()
            async with self._lock:
                skip_reason = self._check_gate(tenant_id, job_name, now, force)
                if skip_reason is None:
                    self.repository.mark_job_started(tenant_id, job_name, now)

            if skip_reason is not None:
                log_job_event(
                    "job.skipped",
                    f"Skipping {job_name} for tenant {tenant_id}: {skip_reason}",
                    tenant_id=tenant_id,
                    job_name=job_name,
                    reason=skip_reason,
                )
                return JobOutcome(status=STATUS_SKIPPED, reason=skip_reason)

            log_job_event(
                "job.started", f"Starting {job_name} for tenant {tenant_id}",
                tenant_id=tenant_id, job_name=job_name,
            )

            try:
                produced = await self._runners[job_name](tenant_id)
            except Exception as e:
                self.repository.mark_job_failed(tenant_id, job_name)
                log_job_event(
                    "job.failed",
                    f"{job_name} failed for tenant {tenant_id}: {str(e)}",
                    level=logging.ERROR,
                    tenant_id=tenant_id,
                    job_name=job_name,
                    error=str(e),
                )
                return JobOutcome(status=STATUS_FAILED, reason=str(e))
            except BaseException:
                # Cancellation and interpreter exit still release the job
                self.repository.mark_job_failed(tenant_id, job_name)
                log_job_event(
                    "job.interrupted",
                    f"{job_name} interrupted for tenant {tenant_id}",
                    level=logging.WARNING,
                    tenant_id=tenant_id,
                    job_name=job_name,
                )
                raise

            self.repository.mark_job_succeeded(tenant_id, job_name, now)
            log_job_event(
                "job.succeeded",
                f"{job_name} produced {produced} items for tenant {tenant_id}",
                tenant_id=tenant_id,
                job_name=job_name,
                produced=produced,
            )
            return JobOutcome(status=STATUS_SUCCESS, produced=produced)
        finally:
            job_name_var.reset(job_token)
            tenant_id_var.reset(tenant_token)

    async def run_for_all_tenants(self, job_name: str) -> Dict[str, JobOutcome]:
        """Run a job for every user in turn; one tenant never aborts the batch."""
        new_correlation_id()
        users = self.repository.get_all_users()
        logger.info(f"Running {job_name} for {len(users)} tenants")

        results: Dict[str, JobOutcome] = {}
        for user in users:
            try:
                results[user.id] = await self.run_job(user.id, job_name)
            except Exception as e:
                logger.error(f"Failed to process tenant {user.id} for {job_name}: {str(e)}")
                results[user.id] = JobOutcome(status=STATUS_FAILED, reason=str(e))

        succeeded = sum(1 for r in results.values() if r.status == STATUS_SUCCESS)
        logger.info(f"{job_name} finished: {succeeded}/{len(users)} tenants succeeded")
        return results

    async def _run_articles(self, tenant_id: str) -> int:
        results = await self.reporters.generate_all_reporter_articles(tenant_id)
        return sum(len(items) for items in results.values())

    async def _run_events(self, tenant_id: str) -> int:
        results = await self.reporters.generate_all_reporter_events(tenant_id)
        return sum(len(items) for items in results.values())

    async def _run_articles_from_events(self, tenant_id: str) -> int:
        results = await self.reporters.generate_all_reporter_articles_from_events(tenant_id)
        return sum(len(items) for items in results.values())

    async def _run_edition(self, tenant_id: str) -> int:
        edition = await self.editor.generate_hourly_edition(tenant_id)
        return len(edition.stories)

    async def _run_daily(self, tenant_id: str) -> int:
        daily = await self.editor.generate_daily_edition(tenant_id)
        return len(daily.topics)


class PeriodicRunner:
    """Fires every job for all tenants on a fixed interval; the gate decides what runs."""

    def __init__(self, jobs: JobScheduler, tick_minutes: int):
        self.jobs = jobs
        self.tick_minutes = tick_minutes
        self.scheduler = AsyncIOScheduler()

    async def tick(self):
        for job_name in JOB_NAMES:
            try:
                await self.jobs.run_for_all_tenants(job_name)
            except Exception as e:
                logger.error(f"Error in scheduled {job_name} run: {str(e)}")

    def start(self):
        """Start the scheduler."""
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=self.tick_minutes),
            id="newsroom_tick",
            name="Run gated newsroom jobs",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(f"Scheduler started with interval: {self.tick_minutes} minutes")

    def shutdown(self):
        """Shutdown the scheduler."""
        self.scheduler.shutdown()
        logger.info("Scheduler shutdown")
