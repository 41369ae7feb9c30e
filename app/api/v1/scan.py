"""Scan API: trigger, job status and cancellation, health, manual score correction."""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.rate_limit import TRIGGER_RATE_LIMIT, limiter
from app.db.postgres import get_db, get_session_factory
from app.repositories.jobs import JobRepository, as_utc
from app.repositories.runs import RUN_SUCCESS, RunRepository
from app.schemas.health import HealthReport
from app.schemas.scan import (
    CancelJobRequest,
    CancelJobResponse,
    JobStatusResponse,
    ScoreCorrectionRequest,
    ScoreCorrectionResponse,
    TriggerData,
    TriggerRequest,
    TriggerResponse,
)
from app.services.batch_jobs import BatchJobController, derived_status
from app.services.corrections import CorrectedInputs, correct_score
from app.services.errors import ConcurrencyConflict, InvalidState, NotFound, ValidationError
from app.services.health_monitor import HealthMonitor
from app.services.scheduler import Scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])


@router.post("/trigger", response_model=TriggerResponse)
@limiter.limit(TRIGGER_RATE_LIMIT)
async def trigger_scan(
    request: Request,
    body: TriggerRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Start today's scan for a tenant, or resume a job.

    Runs the batch inline and answers with its run counts. A declined trigger
    (already run today, outside the window, lost race) is ``success: false``
    with the reason; it is not an HTTP error.
    """
    if body.action == "resume" and not body.resume_job_id:
        raise BadRequestError("resumeJobId is required when action is 'resume'")

    try:
        result = await Scheduler(session_factory).trigger(
            body.org_id,
            test=body.test,
            replace=body.replace,
            resume_job_id=body.resume_job_id,
        )
    except ValidationError as e:
        raise BadRequestError(e.message) from e

    summary = result.summary
    data = TriggerData(
        job_id=str(result.job_id) if result.job_id else None,
        accepted=result.accepted,
        reason=result.reason,
        successful_runs=summary.successful_runs if summary else 0,
        total_runs=summary.total_runs if summary else 0,
    )
    return TriggerResponse(success=result.accepted, data=data, error=None if result.accepted else result.reason)


@router.get("/health", response_model=HealthReport)
async def scan_health(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Stuck jobs and citation quality over the recent window."""
    return await HealthMonitor(session_factory).check()


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    job = await JobRepository().get(db, job_id)
    if job is None:
        raise NotFoundError("Job not found")

    counts = await RunRepository().count_by_status(db, job_id)
    succeeded = counts.get(RUN_SUCCESS, 0)
    now = datetime.now(timezone.utc)
    return JobStatusResponse(
        job_id=str(job.id),
        tenant_id=str(job.tenant_id),
        status=derived_status(job, now, timedelta(minutes=settings.scan_stale_after_minutes)),
        stored_status=job.status,
        idempotency_key=job.idempotency_key,
        started_at=as_utc(job.started_at),
        last_heartbeat=as_utc(job.last_heartbeat),
        completed_at=as_utc(job.completed_at),
        total=int((job.job_metadata or {}).get("total", 0)),
        succeeded=succeeded,
        failed=sum(counts.values()) - succeeded,
    )


@router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(
    job_id: uuid.UUID,
    body: CancelJobRequest | None = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Mark a queued or running job failed. A running batch stops at its next unit boundary."""
    reason = body.reason if body else "cancelled"
    try:
        previous = await BatchJobController(session_factory).cancel(job_id, reason=reason)
    except NotFound as e:
        raise NotFoundError(e.message) from e
    except (InvalidState, ConcurrencyConflict) as e:
        raise ConflictError(e.message) from e

    return CancelJobResponse(job_id=str(job_id), status="failed", previous_status=previous)


@router.post("/runs/{run_id}/correction", response_model=ScoreCorrectionResponse)
async def correct_run_score(
    run_id: int,
    body: ScoreCorrectionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Recompute a run's score from corrected inputs and record the audit row."""
    try:
        result = await correct_score(
            db,
            run_id,
            CorrectedInputs(
                org_brand_present=body.org_brand_present,
                org_brand_prominence=body.org_brand_prominence,
                competitor_count=body.competitor_count,
            ),
            reason=body.reason,
            corrected_by=body.corrected_by,
        )
    except NotFound as e:
        raise NotFoundError(e.message) from e
    except ValidationError as e:
        raise BadRequestError(e.message) from e

    return ScoreCorrectionResponse(
        run_id=result.run_id,
        previous_score=result.previous_score,
        new_score=result.new_score,
        divergence=result.divergence,
    )
