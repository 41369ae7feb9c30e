"""Tests for the health monitor: stuck jobs and citation quality."""

from datetime import datetime, timedelta, timezone

import pytest

from app.analysis.gazetteer import gazetteer_for_tenant
from app.analysis.pipeline import analyze_response
from app.models.batch_job import BatchJob, JobStatus
from app.repositories.jobs import JobRepository
from app.repositories.runs import RUN_ERROR, RUN_SUCCESS, RunRepository, RunWrite
from app.services.health_monitor import (
    CitationHealth,
    HealthMonitor,
    OverallStatus,
    classify_citation_health,
    overall_status,
)

WITH_URL = "Acme leads the pack, see https://acme.com/compare"
WITHOUT_URL = "Acme leads the pack."


async def _seed_runs(db, tenant, prompt, provider, texts, *, status=RUN_SUCCESS, run_at=None):
    """One finished job per text, each holding a single run."""
    repo = RunRepository()
    gaz = gazetteer_for_tenant(tenant)
    run_at = run_at or datetime.now(timezone.utc)
    for text in texts:
        job = await JobRepository().create(db, tenant.id, None)
        job.status = JobStatus.COMPLETED.value
        await repo.upsert(
            db,
            RunWrite(
                batch_job_id=job.id,
                tenant_id=tenant.id,
                prompt_id=prompt.id,
                provider_id=provider.id,
                status=status,
                run_at=run_at,
                analyzed=analyze_response(text, gaz) if status == RUN_SUCCESS else None,
            ),
        )
    await db.commit()


class TestClassification:
    @pytest.mark.parametrize(
        "rate, sample, expected",
        [
            (0.0, 0, CitationHealth.NO_DATA),
            (1.0, 0, CitationHealth.NO_DATA),
            (0.5, 10, CitationHealth.HEALTHY),
            (0.9, 25, CitationHealth.HEALTHY),
            (0.8, 5, CitationHealth.DEGRADED),
            (0.3, 10, CitationHealth.DEGRADED),
            (0.49, 100, CitationHealth.DEGRADED),
            (0.29, 100, CitationHealth.NEEDS_ATTENTION),
            (0.2, 3, CitationHealth.NEEDS_ATTENTION),
        ],
    )
    def test_classify(self, rate, sample, expected):
        assert classify_citation_health(rate, sample) == expected

    def test_overall(self):
        assert overall_status(0, CitationHealth.HEALTHY) == OverallStatus.HEALTHY
        assert overall_status(0, CitationHealth.NO_DATA) == OverallStatus.HEALTHY
        assert overall_status(1, CitationHealth.HEALTHY) == OverallStatus.DEGRADED
        assert overall_status(0, CitationHealth.DEGRADED) == OverallStatus.DEGRADED
        assert overall_status(0, CitationHealth.NEEDS_ATTENTION) == OverallStatus.UNHEALTHY
        assert overall_status(3, CitationHealth.NEEDS_ATTENTION) == OverallStatus.UNHEALTHY


class TestStuckJobs:
    async def test_stale_heartbeat_reported(self, db, session_factory, tenant):
        now = datetime.now(timezone.utc)
        stale = BatchJob(
            tenant_id=tenant.id,
            status=JobStatus.IN_PROGRESS.value,
            started_at=now - timedelta(minutes=20),
            last_heartbeat=now - timedelta(minutes=10),
            job_metadata={},
        )
        fresh = BatchJob(
            tenant_id=tenant.id,
            status=JobStatus.IN_PROGRESS.value,
            started_at=now - timedelta(minutes=20),
            last_heartbeat=now - timedelta(minutes=1),
            job_metadata={},
        )
        old_but_done = BatchJob(
            tenant_id=tenant.id,
            status=JobStatus.COMPLETED.value,
            last_heartbeat=now - timedelta(hours=5),
            job_metadata={},
        )
        db.add_all([stale, fresh, old_but_done])
        await db.commit()

        details = await HealthMonitor(session_factory).find_stuck_jobs(now)
        assert [d.job_id for d in details] == [str(stale.id)]
        assert 595 <= details[0].elapsed_seconds <= 605
        assert details[0].tenant_id == str(tenant.id)

    async def test_stuck_job_degrades_overall(self, db, session_factory, tenant):
        now = datetime.now(timezone.utc)
        db.add(
            BatchJob(
                tenant_id=tenant.id,
                status=JobStatus.IN_PROGRESS.value,
                started_at=now - timedelta(minutes=30),
                job_metadata={},
            )
        )
        await db.commit()

        report = await HealthMonitor(session_factory).check(now)
        assert report.stuck_jobs.count == 1
        assert report.citations.health == CitationHealth.NO_DATA.value
        assert report.overall.status == OverallStatus.DEGRADED.value


class TestCitationHealth:
    async def test_no_runs(self, session_factory):
        report = await HealthMonitor(session_factory).check()
        assert report.citations.sample_size == 0
        assert report.citations.health == "NO_DATA"
        assert report.citations.alert is None
        assert report.overall.status == "healthy"

    async def test_healthy(self, db, session_factory, tenant, prompts, providers):
        await _seed_runs(db, tenant, prompts[0], providers["openai"], [WITH_URL] * 6 + [WITHOUT_URL] * 4)
        report = await HealthMonitor(session_factory).check()
        assert report.citations.sample_size == 10
        assert report.citations.quality_rate == pytest.approx(0.6)
        assert report.citations.health == "HEALTHY"
        assert report.overall.status == "healthy"

    async def test_degraded(self, db, session_factory, tenant, prompts, providers):
        await _seed_runs(db, tenant, prompts[0], providers["openai"], [WITH_URL] * 4 + [WITHOUT_URL] * 6)
        report = await HealthMonitor(session_factory).check()
        assert report.citations.health == "DEGRADED"
        assert report.citations.alert is not None
        assert report.overall.status == "degraded"

    async def test_needs_attention(self, db, session_factory, tenant, prompts, providers):
        await _seed_runs(db, tenant, prompts[0], providers["openai"], [WITH_URL] * 2 + [WITHOUT_URL] * 8)
        report = await HealthMonitor(session_factory).check()
        assert report.citations.health == "NEEDS_ATTENTION"
        assert report.overall.status == "unhealthy"

    async def test_error_runs_and_old_runs_ignored(self, db, session_factory, tenant, prompts, providers):
        await _seed_runs(db, tenant, prompts[0], providers["openai"], [WITH_URL] * 3)
        await _seed_runs(db, tenant, prompts[0], providers["openai"], ["x"] * 5, status=RUN_ERROR)
        await _seed_runs(
            db,
            tenant,
            prompts[0],
            providers["openai"],
            [WITHOUT_URL] * 5,
            run_at=datetime.now(timezone.utc) - timedelta(days=3),
        )
        report = await HealthMonitor(session_factory).check()
        assert report.citations.sample_size == 3
        assert report.citations.quality_rate == pytest.approx(1.0)
        # Under the minimum sample a perfect rate is still only DEGRADED
        assert report.citations.health == "DEGRADED"

    async def test_serialized_with_camel_case_keys(self, session_factory):
        report = await HealthMonitor(session_factory).check()
        payload = report.model_dump(mode="json", by_alias=True)
        assert set(payload) == {"timestamp", "stuckJobs", "citations", "overall"}
        assert "qualityRate" in payload["citations"]
        assert "jobIds" in payload["stuckJobs"]
