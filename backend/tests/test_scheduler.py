"""Tests for the time-gated job scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import article_payload, make_completion
from newsroom.schemas.entities import Editor, Reporter, UserAIConfig, UserCreate
from newsroom.services.scheduler import (
    JOB_DAILY,
    JOB_NAMES,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    JobOutcome,
    PeriodicRunner,
)

NOW = 1_800_000_000_000
MINUTE_MS = 60 * 1000


@pytest.fixture
def jobs(context):
    context.jobs.clock = lambda: NOW
    return context.jobs


@pytest.fixture
def hourly_editor(repository, tenant_id) -> Editor:
    editor = Editor(bio="b", prompt="p", article_generation_period_minutes=60)
    repository.save_editor(tenant_id, editor)
    return editor


@pytest.mark.unit
class TestPeriod:
    def test_defaults_without_configuration(self, jobs, tenant_id):
        assert jobs.period_minutes(tenant_id, "articles") == 60
        assert jobs.period_minutes(tenant_id, "events") == 30
        assert jobs.period_minutes(tenant_id, "edition") == 1440

    def test_editor_takes_precedence(self, jobs, repository, tenant_id):
        repository.save_user_ai_config(
            tenant_id, UserAIConfig(openai_api_key="sk-tenant", event_generation_period_minutes=15)
        )
        repository.save_editor(
            tenant_id, Editor(bio="b", prompt="p", event_generation_period_minutes=45)
        )

        assert jobs.period_minutes(tenant_id, "events") == 45

    def test_ai_config_without_editor(self, jobs, repository, tenant_id):
        repository.save_user_ai_config(
            tenant_id, UserAIConfig(openai_api_key="sk-tenant", article_generation_period_minutes=20)
        )

        assert jobs.period_minutes(tenant_id, "articles") == 20
        assert jobs.period_minutes(tenant_id, "articles_from_events") == 20

    def test_daily_is_fixed(self, jobs, hourly_editor, tenant_id):
        assert jobs.period_minutes(tenant_id, JOB_DAILY) == 1440


@pytest.mark.unit
class TestTimeGate:
    @pytest.mark.asyncio
    async def test_skips_within_period(self, jobs, repository, tenant_id, hourly_editor):
        repository.mark_job_succeeded(tenant_id, "articles", NOW - 30 * MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "articles")

        assert outcome.status == STATUS_SKIPPED
        assert outcome.reason == "Time constraint: 30 minutes remaining"
        assert repository.get_job_status(tenant_id, "articles").last_success == NOW - 30 * MINUTE_MS

    @pytest.mark.asyncio
    async def test_runs_after_period(
        self, jobs, repository, mock_create, tenant_id, hourly_editor, test_reporter
    ):
        repository.mark_job_succeeded(tenant_id, "articles", NOW - 61 * MINUTE_MS)
        mock_create.return_value = make_completion(article_payload())

        outcome = await jobs.run_job(tenant_id, "articles")

        assert outcome.status == STATUS_SUCCESS
        assert outcome.produced == 1
        status = repository.get_job_status(tenant_id, "articles")
        assert status.last_success == NOW
        assert status.running is False

    @pytest.mark.asyncio
    async def test_runs_without_previous_success(self, jobs, repository, tenant_id):
        outcome = await jobs.run_job(tenant_id, "events")

        assert outcome.status == STATUS_SUCCESS
        assert outcome.produced == 0
        assert repository.get_job_status(tenant_id, "events").last_run == NOW

    @pytest.mark.asyncio
    async def test_force_bypasses_period(self, jobs, repository, tenant_id, hourly_editor):
        repository.mark_job_succeeded(tenant_id, "articles", NOW - MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "articles", force=True)

        assert outcome.status == STATUS_SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_job(self, jobs, tenant_id):
        with pytest.raises(ValueError):
            await jobs.run_job(tenant_id, "weather")


@pytest.mark.unit
class TestRunningFlag:
    @pytest.mark.asyncio
    async def test_running_job_is_skipped(self, jobs, repository, tenant_id):
        repository.mark_job_started(tenant_id, "events", NOW - 5 * MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "events")

        assert outcome.status == STATUS_SKIPPED
        assert outcome.reason == "Job already running"

    @pytest.mark.asyncio
    async def test_force_does_not_bypass_running_flag(self, jobs, repository, tenant_id):
        repository.mark_job_started(tenant_id, "events", NOW - 5 * MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "events", force=True)

        assert outcome.status == STATUS_SKIPPED

    @pytest.mark.asyncio
    async def test_stale_running_flag_is_ignored(self, jobs, repository, tenant_id):
        repository.mark_job_started(tenant_id, "events", NOW - 121 * MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "events")

        assert outcome.status == STATUS_SUCCESS
        assert repository.get_job_status(tenant_id, "events").running is False

    @pytest.mark.asyncio
    async def test_failure_clears_flag_and_keeps_last_success(
        self, jobs, repository, tenant_id, test_editor
    ):
        repository.mark_job_succeeded(tenant_id, "edition", NOW - 2000 * MINUTE_MS)

        outcome = await jobs.run_job(tenant_id, "edition")

        assert outcome.status == STATUS_FAILED
        assert "No articles" in outcome.reason
        status = repository.get_job_status(tenant_id, "edition")
        assert status.running is False
        assert status.last_run == NOW
        assert status.last_success == NOW - 2000 * MINUTE_MS

    @pytest.mark.asyncio
    async def test_cancelled_job_clears_flag(self, jobs, repository, tenant_id):
        jobs._runners["events"] = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await jobs.run_job(tenant_id, "events")

        status = repository.get_job_status(tenant_id, "events")
        assert status.running is False
        assert status.last_success is None

        jobs._runners["events"] = AsyncMock(return_value=2)
        outcome = await jobs.run_job(tenant_id, "events")

        assert outcome.status == STATUS_SUCCESS
        assert outcome.produced == 2


@pytest.mark.unit
class TestAllTenants:
    @pytest.mark.asyncio
    async def test_tenants_run_independently(self, jobs, repository, mock_create, tenant_id):
        other = repository.create_user(UserCreate(email="second@example.com", password_hash="h"))
        repository.save_reporter(other.id, Reporter(id="r2", beats=["arts"], prompt="p"))
        repository.mark_job_succeeded(tenant_id, "articles", NOW - MINUTE_MS)
        mock_create.return_value = make_completion(article_payload())

        results = await jobs.run_for_all_tenants("articles")

        assert results[tenant_id].status == STATUS_SKIPPED
        assert results[other.id].status == STATUS_SUCCESS
        assert results[other.id].produced == 1
        assert repository.get_all_articles(tenant_id) == []

    @pytest.mark.asyncio
    async def test_failed_tenant_does_not_stop_the_batch(self, jobs, repository, tenant_id):
        other = repository.create_user(UserCreate(email="second@example.com", password_hash="h"))

        results = await jobs.run_for_all_tenants("edition")

        assert set(results) == {tenant_id, other.id}
        assert all(r.status == STATUS_FAILED for r in results.values())


@pytest.mark.unit
class TestPeriodicRunner:
    @pytest.mark.asyncio
    async def test_tick_runs_every_job(self, jobs):
        calls = []

        async def fake_run(job_name):
            calls.append(job_name)
            if job_name == "events":
                raise RuntimeError("store down")
            return {}

        jobs.run_for_all_tenants = fake_run
        runner = PeriodicRunner(jobs, tick_minutes=5)

        await runner.tick()

        assert calls == list(JOB_NAMES)

    @pytest.mark.asyncio
    async def test_start_registers_interval_job(self, jobs):
        runner = PeriodicRunner(jobs, tick_minutes=5)
        runner.start()
        try:
            job = runner.scheduler.get_job("newsroom_tick")
            assert job is not None
            assert job.max_instances == 1
        finally:
            runner.shutdown()


@pytest.mark.unit
def test_outcome_to_dict():
    assert JobOutcome(status=STATUS_SKIPPED, reason="Job already running").to_dict() == {
        "status": "skipped",
        "reason": "Job already running",
        "produced": 0,
    }
