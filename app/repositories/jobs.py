"""Batch job repository.

Every status change goes through ``transition_if``: an
``UPDATE ... WHERE status = :expected [AND version = :version]`` that bumps
``version``. The caller learns from the affected row count whether it won.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.batch_job import BatchJob, JobStatus
from app.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class JobRepository:
    async def get(self, db: AsyncSession, job_id: uuid.UUID) -> BatchJob | None:
        result = await db.execute(select(BatchJob).where(BatchJob.id == job_id).execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_by_key(self, db: AsyncSession, idempotency_key: str) -> BatchJob | None:
        result = await db.execute(
            select(BatchJob).where(BatchJob.idempotency_key == idempotency_key).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, tenant_id: uuid.UUID, idempotency_key: str | None) -> BatchJob:
        """Insert a queued job. A concurrent insert of the same key raises ConcurrencyConflict."""
        job = BatchJob(
            tenant_id=tenant_id,
            status=JobStatus.QUEUED.value,
            idempotency_key=idempotency_key,
            version=0,
            job_metadata={},
        )
        db.add(job)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise ConcurrencyConflict(f"Another job already holds key {idempotency_key}") from e
        return job

    async def transition_if(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        expected_status: str,
        *,
        expected_version: int | None = None,
        **values,
    ) -> bool:
        """Apply *values* only if the row still has *expected_status* (and *expected_version*)."""
        assignments = {BatchJob.version: BatchJob.version + 1}
        assignments.update({getattr(BatchJob, name): value for name, value in values.items()})
        stmt = (
            update(BatchJob)
            .where(BatchJob.id == job_id, BatchJob.status == expected_status)
            .values(assignments)
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            stmt = stmt.where(BatchJob.version == expected_version)
        result = await db.execute(stmt)
        won = result.rowcount == 1
        if not won:
            logger.info(
                "Job %s: transition from %s lost (version=%s)",
                job_id,
                expected_status,
                expected_version,
            )
        return won

    async def record_heartbeat(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        at: datetime,
        job_metadata: dict,
    ) -> bool:
        """Refresh heartbeat/progress of an in-progress job. False if the job left in_progress."""
        job = await self.get(db, job_id)
        if job is None or job.status != JobStatus.IN_PROGRESS.value:
            return False
        previous = as_utc(job.last_heartbeat)
        # Heartbeats never move backwards
        beat = max(at, previous) if previous else at
        result = await db.execute(
            update(BatchJob)
            .where(BatchJob.id == job_id, BatchJob.status == JobStatus.IN_PROGRESS.value)
            .values({BatchJob.last_heartbeat: beat, BatchJob.job_metadata: job_metadata})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_stuck(self, db: AsyncSession, cutoff: datetime) -> list[BatchJob]:
        """In-progress jobs whose last heartbeat (or start) is older than *cutoff*."""
        result = await db.execute(
            select(BatchJob)
            .where(
                BatchJob.status == JobStatus.IN_PROGRESS.value,
                ((BatchJob.last_heartbeat.is_not(None)) & (BatchJob.last_heartbeat < cutoff))
                | ((BatchJob.last_heartbeat.is_(None)) & (BatchJob.started_at < cutoff)),
            )
            .order_by(BatchJob.last_heartbeat)
        )
        return list(result.scalars().all())
