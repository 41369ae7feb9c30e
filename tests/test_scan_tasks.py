"""Tests for the Celery scan tasks (async bodies run against the test database)."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.batch_job import BatchJob, JobStatus
from app.models.tenant import Tenant
from app.repositories.jobs import JobRepository
from app.services.errors import ValidationError
from app.tasks import scan_tasks

CHAT_BODY = {
    "choices": [{"message": {"content": "Acme is a good fit, see https://acme.com"}}],
    "usage": {"prompt_tokens": 5, "completion_tokens": 9},
}


@pytest.fixture
def worker_db(session_factory):
    """Point the tasks' per-run engine at the test database."""
    with patch(
        "app.tasks.scan_tasks._make_session_factory",
        return_value=(session_factory, AsyncMock()),
    ):
        yield


@pytest.fixture
def provider_stub():
    with patch(
        "app.collectors.llm_base.BaseLlmCollector._post_chat",
        new=AsyncMock(return_value=CHAT_BODY),
    ) as post:
        yield post


def _close_and_return(value):
    """Stand-in for ``_run_async`` that discards the coroutine."""

    def _run(coro):
        coro.close()
        if isinstance(value, Exception):
            raise value
        return value

    return _run


async def test_find_active_tenants(db: AsyncSession, worker_db, tenant):
    db.add(Tenant(name="Dormant", is_active=False))
    await db.commit()

    tenant_ids = await scan_tasks._find_active_tenants()
    assert tenant_ids == [str(tenant.id)]


def test_dispatch_enqueues_one_task_per_tenant():
    with (
        patch("app.tasks.scan_tasks._run_async", side_effect=_close_and_return(["t1", "t2"])),
        patch.object(scan_tasks.run_tenant_scan_task, "delay") as delay,
    ):
        result = scan_tasks.dispatch_daily_scans_task()

    assert result == {"dispatched": 2, "tenant_ids": ["t1", "t2"]}
    assert [c.args for c in delay.call_args_list] == [("t1",), ("t2",)]


def test_dispatch_without_tenants():
    with (
        patch("app.tasks.scan_tasks._run_async", side_effect=_close_and_return([])),
        patch.object(scan_tasks.run_tenant_scan_task, "delay") as delay,
    ):
        result = scan_tasks.dispatch_daily_scans_task()

    assert result == {"dispatched": 0}
    delay.assert_not_called()


async def test_tenant_scan_runs_batch(worker_db, provider_stub, tenant, prompts, providers):
    result = await scan_tasks._run_tenant_scan_async(str(tenant.id), True)

    assert result["accepted"] is True
    assert result["status"] == JobStatus.COMPLETED.value
    assert result["total_runs"] == 6
    assert result["successful_runs"] == 6
    assert provider_stub.await_count == 6


async def test_tenant_scan_declined_twice(worker_db, provider_stub, tenant, prompts, providers):
    await scan_tasks._run_tenant_scan_async(str(tenant.id), True)
    result = await scan_tasks._run_tenant_scan_async(str(tenant.id), True)

    assert result["accepted"] is False
    assert result["reason"] == "already run today"
    assert "status" not in result


def test_tenant_scan_task_reports_validation_error():
    with patch(
        "app.tasks.scan_tasks._run_async",
        side_effect=_close_and_return(ValidationError("Tenant t1 not found")),
    ):
        result = scan_tasks.run_tenant_scan_task("t1")

    assert result == {"tenant_id": "t1", "accepted": False, "reason": "Tenant t1 not found"}


async def test_reconcile_resumes_stuck_job(db, worker_db, provider_stub, tenant, prompts, providers):
    stale = datetime.now(timezone.utc) - timedelta(minutes=30)
    job = BatchJob(
        tenant_id=tenant.id,
        status=JobStatus.IN_PROGRESS.value,
        started_at=stale,
        last_heartbeat=stale,
        job_metadata={},
    )
    db.add(job)
    await db.commit()

    results = await scan_tasks._reconcile_async()

    assert len(results) == 1
    assert results[0]["job_id"] == str(job.id)
    assert results[0]["resumed"] is True
    assert results[0]["status"] == JobStatus.COMPLETED.value
    assert results[0]["successful_runs"] == 6

    stored = await JobRepository().get(db, job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.job_metadata["resume_count"] == 1


async def test_reconcile_nothing_stuck(worker_db, tenant):
    assert await scan_tasks._reconcile_async() == []


async def test_health_report_payload(worker_db):
    report = await scan_tasks._health_async()
    assert report["overall"]["status"] == "healthy"
    assert report["stuckJobs"]["count"] == 0


async def test_reencrypt_keys_task_rewrites_tenant_keys(worker_db, tenant):
    from cryptography.fernet import Fernet

    from app.core.config import settings

    old_key = settings.fernet_key
    settings.fernet_key = Fernet.generate_key().decode()
    settings.fernet_previous_keys = old_key
    try:
        assert await scan_tasks._reencrypt_keys_async() == 3
    finally:
        settings.fernet_key, settings.fernet_previous_keys = old_key, ""


def test_reencrypt_task_returns_count():
    with patch("app.tasks.scan_tasks._run_async", side_effect=_close_and_return(2)):
        assert scan_tasks.reencrypt_provider_keys_task() == {"rewritten": 2}
