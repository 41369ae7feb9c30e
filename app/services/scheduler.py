"""Scan trigger: decides whether a tenant's daily job may start.

One logical scan per tenant per calendar day. The day is the tenant's local
date (default America/New_York) and the idempotency key is
``"{tenant_id}-{YYYY-MM-DD}"``. Scheduled triggers only run inside the daily
window (03:00-06:00 local by default); ``test`` skips the window check but
never the key, and ``replace`` releases a finished job's key so a new job
can take it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.batch_job import ACTIVE_STATUSES, JobStatus
from app.models.tenant import Tenant
from app.repositories.jobs import JobRepository
from app.services.batch_jobs import BatchJobController, BatchSummary, usable_providers
from app.services.errors import ConcurrencyConflict, InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)

REASON_ALREADY_RUN = "already run today"
REASON_IN_PROGRESS = "job already in progress"
REASON_PREVIOUS_FAILED = "previous run failed; resume or replace it"
REASON_OUTSIDE_WINDOW = "outside execution window"


@dataclass
class TriggerResult:
    job_id: uuid.UUID | None
    accepted: bool
    reason: str | None = None
    summary: BatchSummary | None = None


def idempotency_key(tenant_id: uuid.UUID | str, local_date: date) -> str:
    return f"{tenant_id}-{local_date.isoformat()}"


def tenant_zone(tenant: Tenant) -> ZoneInfo:
    name = tenant.timezone or settings.scan_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Tenant %s has unknown timezone %r, using %s", tenant.id, name, settings.scan_timezone)
        return ZoneInfo(settings.scan_timezone)


def in_execution_window(local_now: datetime, start_hour: int, end_hour: int) -> bool:
    """True for local times in [start_hour:00, end_hour:00)."""
    return start_hour <= local_now.hour < end_hour


def _parse_uuid(value: uuid.UUID | str, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid {what}: {value!r}") from e


class Scheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        controller: BatchJobController | None = None,
        jobs: JobRepository | None = None,
    ):
        self.session_factory = session_factory
        self.jobs = jobs or JobRepository()
        self.controller = controller or BatchJobController(session_factory, jobs=self.jobs)

    async def trigger(
        self,
        tenant_id: uuid.UUID | str,
        *,
        test: bool = False,
        replace: bool = False,
        resume_job_id: uuid.UUID | str | None = None,
        now: datetime | None = None,
    ) -> TriggerResult:
        """Start (or resume) the tenant's scan for today.

        Raises:
            ValidationError: unknown/inactive tenant or no usable provider. No job is created.
        """
        tenant_uuid = _parse_uuid(tenant_id, "tenant id")
        now = now or datetime.now(timezone.utc)

        async with self.session_factory() as db:
            tenant = await db.get(Tenant, tenant_uuid)
            if tenant is None:
                raise ValidationError(f"Tenant {tenant_id} not found")
            if not tenant.is_active:
                raise ValidationError(f"Tenant {tenant_id} is inactive")

            if resume_job_id is not None:
                job_uuid = _parse_uuid(resume_job_id, "job id")
                job = await self.jobs.get(db, job_uuid)
                if job is None or job.tenant_id != tenant.id:
                    return TriggerResult(job_id=job_uuid, accepted=False, reason=f"job {job_uuid} not found")
            else:
                job_uuid = None

            if not await usable_providers(db, tenant):
                raise ValidationError("No enabled providers with credentials")

            local_now = now.astimezone(tenant_zone(tenant))

        if job_uuid is not None:
            return await self._resume(job_uuid)

        if not test and not in_execution_window(
            local_now, settings.scan_window_start_hour, settings.scan_window_end_hour
        ):
            logger.info("Tenant %s: trigger at %s local is outside the window", tenant.id, local_now.strftime("%H:%M"))
            return TriggerResult(job_id=None, accepted=False, reason=REASON_OUTSIDE_WINDOW)

        key = idempotency_key(tenant.id, local_now.date())
        try:
            job_id = await self._claim_key(tenant.id, key, replace=replace)
        except _Rejected as rejected:
            return TriggerResult(job_id=rejected.job_id, accepted=False, reason=rejected.reason)
        except ConcurrencyConflict as e:
            return TriggerResult(job_id=None, accepted=False, reason=e.message)

        logger.info("Tenant %s: job %s created for %s", tenant.id, job_id, key, extra={"job_id": job_id})
        try:
            summary = await self.controller.start(job_id)
        except ConcurrencyConflict as e:
            return TriggerResult(job_id=job_id, accepted=False, reason=e.message)
        return TriggerResult(job_id=job_id, accepted=True, summary=summary)

    async def _claim_key(self, tenant_id: uuid.UUID, key: str, *, replace: bool) -> uuid.UUID:
        """Create the day's queued job, releasing a finished holder of the key when replacing."""
        async with self.session_factory() as db:
            existing = await self.jobs.get_by_key(db, key)
            if existing is not None:
                if existing.status in ACTIVE_STATUSES:
                    raise _Rejected(existing.id, REASON_IN_PROGRESS)
                if not replace:
                    reason = REASON_ALREADY_RUN if existing.status == JobStatus.COMPLETED.value else REASON_PREVIOUS_FAILED
                    raise _Rejected(existing.id, reason)
                released = await self.jobs.transition_if(
                    db,
                    existing.id,
                    existing.status,
                    expected_version=existing.version,
                    idempotency_key=None,
                )
                if not released:
                    raise ConcurrencyConflict(f"Job {existing.id} changed while being replaced")
                logger.info("Released key %s from job %s", key, existing.id)

            job = await self.jobs.create(db, tenant_id, key)
            await db.commit()
            return job.id

    async def _resume(self, job_id: uuid.UUID) -> TriggerResult:
        try:
            summary = await self.controller.resume(job_id)
        except (NotFound, InvalidState, ConcurrencyConflict) as e:
            return TriggerResult(job_id=job_id, accepted=False, reason=e.message)
        return TriggerResult(job_id=job_id, accepted=True, summary=summary)


class _Rejected(Exception):
    def __init__(self, job_id: uuid.UUID, reason: str):
        super().__init__(reason)
        self.job_id = job_id
        self.reason = reason
