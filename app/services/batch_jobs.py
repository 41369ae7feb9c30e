"""Batch job controller: the lifecycle of one tenant's daily scan.

    queued -> in_progress -> completed | failed

``stuck`` is derived, never stored: an in_progress job whose heartbeat is
older than the staleness threshold. Every transition is a compare-and-set on
(status, version), so of two workers racing for the same job exactly one
wins; the loser gets ConcurrencyConflict.

Resume re-enters the same job id and replays only pairs that have neither
succeeded nor failed permanently, which gives at-least-once execution and
at-most-once success per (prompt, provider) pair.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.analysis.gazetteer import gazetteer_for_tenant
from app.collectors.registry import is_supported
from app.collectors.retry import RetryPolicy
from app.core.config import settings
from app.core.metrics import SCAN_JOBS
from app.core.sentry import scan_scope
from app.models.batch_job import ACTIVE_STATUSES, BatchJob, JobStatus
from app.models.prompt import Prompt
from app.models.provider import Provider
from app.models.tenant import Tenant
from app.repositories.jobs import JobRepository, as_utc
from app.repositories.runs import RUN_SUCCESS, RunRepository
from app.schemas.artifacts import JobProgress
from app.services.credentials import resolve_api_key
from app.services.errors import ConcurrencyConflict, InvalidState, NotFound
from app.services.fanout import BatchContext, ExecutionFanOut, UnitOutcome, UnitStatus, WorkUnit
from app.services.tier_policy import policy_for, provider_allowed

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    job_id: uuid.UUID
    status: str
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    persistence_failures: list[str] = field(default_factory=list)
    cancelled: bool = False
    interrupted: bool = False


def derived_status(job: BatchJob, now: datetime, stale_after: timedelta) -> str:
    """Stored status, or ``stuck`` for an in_progress job with a stale heartbeat."""
    if job.status != JobStatus.IN_PROGRESS.value:
        return job.status
    last_sign_of_life = as_utc(job.last_heartbeat) or as_utc(job.started_at)
    if last_sign_of_life is None or now - last_sign_of_life > stale_after:
        return JobStatus.STUCK.value
    return job.status


# ---------------------------------------------------------------------------
# Work-set
# ---------------------------------------------------------------------------


async def usable_providers(db: AsyncSession, tenant: Tenant) -> list[Provider]:
    """Enabled providers the tenant's tier allows and that have credentials."""
    result = await db.execute(
        select(Provider).where(Provider.is_enabled == True).order_by(Provider.id)  # noqa: E712
    )
    usable: list[Provider] = []
    for provider in result.scalars().all():
        if not is_supported(provider.name):
            logger.warning("Provider %s has no client, skipping", provider.name)
            continue
        if not provider_allowed(tenant.plan, provider.name, provider.allowed_tiers):
            continue
        if not resolve_api_key(tenant, provider.name):
            logger.info("Tenant %s has no credentials for %s", tenant.id, provider.name)
            continue
        usable.append(provider)
    return usable


async def build_work_set(db: AsyncSession, tenant: Tenant) -> list[WorkUnit]:
    """Active prompts (up to the tier's daily quota) x usable providers."""
    quota = policy_for(tenant.plan).prompts_per_day
    prompts = (
        await db.execute(
            select(Prompt)
            .where(Prompt.tenant_id == tenant.id, Prompt.is_active == True)  # noqa: E712
            .order_by(Prompt.id)
            .limit(quota)
        )
    ).scalars().all()
    providers = await usable_providers(db, tenant)
    return [
        WorkUnit(
            prompt_id=prompt.id,
            prompt_text=prompt.text,
            provider_id=provider.id,
            provider_name=provider.name,
            model=provider.model,
        )
        for prompt in prompts
        for provider in providers
    ]


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class _Progress:
    """In-memory view of ``batch_jobs.metadata`` for a running job."""

    def __init__(self, meta: dict, total: int, already_done: set[tuple[int, int]]):
        current = JobProgress.model_validate(meta or {})
        self.pairs: set[tuple[int, int]] = {tuple(p) for p in current.progress} | already_done
        self.total = total
        self.succeeded = current.succeeded
        self.failed = current.failed
        self.persistence_failures = list(current.persistence_failures)
        self.resume_count = current.resume_count
        self._counted: set[tuple[int, int]] = set()

    def record(self, outcome: UnitOutcome) -> None:
        """Count *outcome* once, even if its heartbeat is retried."""
        if outcome.unit.pair in self._counted:
            return
        self._counted.add(outcome.unit.pair)
        self.pairs.add(outcome.unit.pair)
        if outcome.status == UnitStatus.SUCCESS:
            self.succeeded += 1
        else:
            self.failed += 1
        if outcome.status == UnitStatus.PERSISTENCE_FAILED:
            self.persistence_failures.append(f"{outcome.unit.prompt_id}/{outcome.unit.provider_name}: {outcome.error}")

    def to_metadata(self) -> dict:
        return JobProgress(
            progress=sorted(self.pairs),
            total=self.total,
            succeeded=self.succeeded,
            failed=self.failed,
            persistence_failures=self.persistence_failures[-50:],
            resume_count=self.resume_count,
        ).model_dump(mode="json")


class BatchJobController:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        fanout: ExecutionFanOut | None = None,
        stale_after: timedelta | None = None,
        jobs: JobRepository | None = None,
        runs: RunRepository | None = None,
    ):
        self.session_factory = session_factory
        self.jobs = jobs or JobRepository()
        self.runs = runs or RunRepository()
        self.stale_after = stale_after or timedelta(minutes=settings.scan_stale_after_minutes)
        self.fanout = fanout or ExecutionFanOut(
            session_factory,
            concurrency=settings.scan_concurrency,
            retry_policy=RetryPolicy(
                max_attempts=settings.provider_max_attempts,
                base_delay=settings.provider_retry_base_delay,
            ),
            timeout=settings.provider_timeout_seconds,
            max_citations=settings.max_citations,
            runs=self.runs,
        )

    # --- lifecycle -----------------------------------------------------------

    async def start(self, job_id: uuid.UUID) -> BatchSummary:
        """Move a queued job to in_progress and run its work-set."""
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            job = await self.jobs.get(db, job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            if job.status == JobStatus.IN_PROGRESS.value:
                raise ConcurrencyConflict(f"Job {job_id} was started by another worker")
            if job.status != JobStatus.QUEUED.value:
                raise InvalidState(f"Job {job_id} is {job.status}, expected queued")
            won = await self.jobs.transition_if(
                db,
                job_id,
                JobStatus.QUEUED.value,
                expected_version=job.version,
                status=JobStatus.IN_PROGRESS.value,
                started_at=now,
                last_heartbeat=now,
            )
            if not won:
                raise ConcurrencyConflict(f"Job {job_id} was started by another worker")
            await db.commit()

        logger.info("Job %s: started", job_id, extra={"job_id": job_id})
        return await self._execute(job_id)

    async def resume(self, job_id: uuid.UUID) -> BatchSummary:
        """Continue a queued, failed or stuck job under the same id."""
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            job = await self.jobs.get(db, job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            if job.status == JobStatus.COMPLETED.value:
                raise InvalidState(f"Job {job_id} is already completed")
            if (
                job.status == JobStatus.IN_PROGRESS.value
                and derived_status(job, now, self.stale_after) != JobStatus.STUCK.value
            ):
                raise ConcurrencyConflict(f"Job {job_id} is still running")
            if job.status == JobStatus.QUEUED.value:
                won = None
            else:
                meta = dict(job.job_metadata or {})
                meta["resume_count"] = int(meta.get("resume_count", 0)) + 1
                # The version check makes this lose if anything touched the job since the read
                won = await self.jobs.transition_if(
                    db,
                    job_id,
                    job.status,
                    expected_version=job.version,
                    status=JobStatus.IN_PROGRESS.value,
                    started_at=job.started_at or now,
                    last_heartbeat=now,
                    completed_at=None,
                    job_metadata=meta,
                )
                await db.commit()

        if won is None:
            return await self.start(job_id)
        if not won:
            raise ConcurrencyConflict(f"Job {job_id} was resumed by another worker")

        logger.info("Job %s: resumed (attempt %d)", job_id, meta["resume_count"], extra={"job_id": job_id})
        return await self._execute(job_id)

    async def heartbeat(self, job_id: uuid.UUID, progress: _Progress) -> bool:
        """Record progress after a unit. False once the job is no longer in_progress."""
        async with self.session_factory() as db:
            alive = await self.jobs.record_heartbeat(db, job_id, datetime.now(timezone.utc), progress.to_metadata())
            await db.commit()
        return alive

    async def complete(self, job_id: uuid.UUID, total: int) -> BatchSummary:
        """Settle the final status from the job's stored runs."""
        async with self.session_factory() as db:
            counts = await self.runs.count_by_status(db, job_id)
            successes = counts.get(RUN_SUCCESS, 0)
            if total == 0 or successes > 0:
                status = JobStatus.COMPLETED.value
            else:
                status = JobStatus.FAILED.value

            job = await self.jobs.get(db, job_id)
            meta = dict(job.job_metadata or {}) if job else {}
            meta["total"] = total
            meta["succeeded"] = successes
            won = await self.jobs.transition_if(
                db,
                job_id,
                JobStatus.IN_PROGRESS.value,
                status=status,
                completed_at=datetime.now(timezone.utc),
                job_metadata=meta,
            )
            await db.commit()
            if not won:
                # Cancelled or settled elsewhere; report what is stored
                job = await self.jobs.get(db, job_id)
                status = job.status if job else JobStatus.FAILED.value

        SCAN_JOBS.labels(status=status).inc()
        logger.info(
            "Job %s: %s (%d/%d successful)",
            job_id,
            status,
            successes,
            total,
            extra={"job_id": job_id},
        )
        return BatchSummary(
            job_id=job_id,
            status=status,
            total_runs=total,
            successful_runs=successes,
            failed_runs=sum(counts.values()) - successes,
        )

    async def cancel(self, job_id: uuid.UUID, reason: str = "cancelled") -> str:
        """Mark a queued or in_progress job failed; returns the status it had.

        A running batch notices at its next heartbeat or cancellation check and
        stops taking new units. Runs already written are kept.
        """
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            job = await self.jobs.get(db, job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found")
            if job.status not in ACTIVE_STATUSES:
                raise InvalidState(f"Job {job_id} is {job.status}, only queued or in_progress jobs can be cancelled")
            previous = job.status
            meta = dict(job.job_metadata or {})
            meta["cancel_reason"] = reason
            meta["cancelled_at"] = now.isoformat()
            won = await self.jobs.transition_if(
                db,
                job_id,
                previous,
                expected_version=job.version,
                status=JobStatus.FAILED.value,
                completed_at=now,
                job_metadata=meta,
            )
            await db.commit()

        if not won:
            raise ConcurrencyConflict(f"Job {job_id} changed while being cancelled")
        SCAN_JOBS.labels(status="cancelled").inc()
        logger.warning("Job %s: cancelled from %s (%s)", job_id, previous, reason, extra={"job_id": job_id})
        return previous

    # --- internals -----------------------------------------------------------

    async def _execute(self, job_id: uuid.UUID) -> BatchSummary:
        async with self.session_factory() as db:
            job = await self.jobs.get(db, job_id)
            tenant = await db.get(Tenant, job.tenant_id)
            work_set = await build_work_set(db, tenant)
            finished = await self.runs.finished_pairs(db, job_id)

        remaining = [unit for unit in work_set if unit.pair not in finished]
        progress = _Progress(job.job_metadata, len(work_set), finished & {u.pair for u in work_set})
        if finished:
            logger.info(
                "Job %s: %d of %d pair(s) already done, replaying %d",
                job_id,
                len(work_set) - len(remaining),
                len(work_set),
                len(remaining),
            )
        await self.heartbeat(job_id, progress)

        async def on_unit_done(outcome: UnitOutcome) -> bool:
            progress.record(outcome)
            return await self.heartbeat(job_id, progress)

        async def still_running() -> bool:
            async with self.session_factory() as db:
                current = await self.jobs.get(db, job_id)
                return current is not None and current.status == JobStatus.IN_PROGRESS.value

        ctx = BatchContext(
            job_id=job_id,
            tenant_id=tenant.id,
            gazetteer=gazetteer_for_tenant(tenant),
            key_lookup=lambda provider: resolve_api_key(tenant, provider),
            on_unit_done=on_unit_done,
            still_running=still_running,
        )
        with scan_scope(job_id, tenant.id):
            result = await self.fanout.run_batch(ctx, remaining)

        if result.interrupted:
            # Not settled here; resume picks it up once the heartbeat is stale
            logger.error(
                "Job %s: job state unreachable, leaving it in_progress (%d/%d unit(s) done)",
                job_id,
                len(result.outcomes),
                len(remaining),
                extra={"job_id": job_id},
            )
            return BatchSummary(
                job_id=job_id,
                status=JobStatus.IN_PROGRESS.value,
                total_runs=len(work_set),
                successful_runs=result.succeeded,
                failed_runs=result.failed,
                persistence_failures=[f"{o.unit.prompt_id}/{o.unit.provider_name}" for o in result.persistence_failures],
                interrupted=True,
            )

        summary = await self.complete(job_id, len(work_set))
        summary.cancelled = result.cancelled
        summary.persistence_failures = [f"{o.unit.prompt_id}/{o.unit.provider_name}" for o in result.persistence_failures]
        return summary

    async def get_job(self, job_id: uuid.UUID) -> BatchJob:
        async with self.session_factory() as db:
            job = await self.jobs.get(db, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job
