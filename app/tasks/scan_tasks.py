"""Celery tasks for the daily visibility scan.

  dispatch_daily_scans    - beat: enqueue one run_tenant_scan per active tenant
  run_tenant_scan         - trigger today's scan for one tenant
  reconcile_stuck_jobs    - beat: resume jobs whose heartbeat went stale
  scan_health_check       - beat: log the health report
  reencrypt_provider_keys - manual: move stored tenant keys onto a new FERNET_KEY
"""

import asyncio
import logging
from uuid import UUID

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time to avoid conflicts with
    the module-level SQLAlchemy engine (which may be bound to a
    different loop created by uvicorn).
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_session_factory():
    """Create a fresh async engine + session factory for the worker's event loop.

    Pool sized for the fan-out: one session per in-flight unit write plus
    the controller's heartbeat session.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from app.core.config import settings

    engine = create_async_engine(
        settings.postgres_url,
        echo=False,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), engine


# ---------------------------------------------------------------------------
#  Dispatcher
# ---------------------------------------------------------------------------


async def _find_active_tenants() -> list[str]:
    from sqlalchemy import select

    from app.models.tenant import Tenant

    session_factory, engine = _make_session_factory()
    try:
        async with session_factory() as db:
            result = await db.execute(
                select(Tenant.id).where(Tenant.is_active == True).order_by(Tenant.id)  # noqa: E712
            )
            return [str(row[0]) for row in result.all()]
    finally:
        await engine.dispose()


@celery_app.task(name="dispatch_daily_scans")
def dispatch_daily_scans_task():
    """Beat dispatcher: fire a scan task for every active tenant."""
    tenant_ids = _run_async(_find_active_tenants())
    if not tenant_ids:
        return {"dispatched": 0}

    for tid in tenant_ids:
        run_tenant_scan_task.delay(tid)
    logger.info("Dispatched daily scan for %d tenant(s)", len(tenant_ids))

    return {"dispatched": len(tenant_ids), "tenant_ids": tenant_ids}


# ---------------------------------------------------------------------------
#  Per-tenant scan
# ---------------------------------------------------------------------------


async def _run_tenant_scan_async(tenant_id: str, test: bool) -> dict:
    from app.services.scheduler import Scheduler

    session_factory, engine = _make_session_factory()
    try:
        result = await Scheduler(session_factory).trigger(tenant_id, test=test)
    finally:
        await engine.dispose()

    out = {
        "tenant_id": tenant_id,
        "job_id": str(result.job_id) if result.job_id else None,
        "accepted": result.accepted,
        "reason": result.reason,
    }
    if result.summary is not None:
        out["status"] = result.summary.status
        out["total_runs"] = result.summary.total_runs
        out["successful_runs"] = result.summary.successful_runs
    return out


@celery_app.task(name="run_tenant_scan")
def run_tenant_scan_task(tenant_id: str, test: bool = False):
    """Trigger today's scan for one tenant.

    Not retried by Celery: a crashed scan is picked up by reconcile_stuck_jobs
    and resumed under the same job id.
    """
    from app.services.errors import ValidationError

    logger.info("Scan task for tenant %s", tenant_id, extra={"tenant_id": tenant_id})
    try:
        result = _run_async(_run_tenant_scan_async(tenant_id, test))
    except ValidationError as e:
        logger.warning("Tenant %s not scanned: %s", tenant_id, e.message, extra={"tenant_id": tenant_id})
        return {"tenant_id": tenant_id, "accepted": False, "reason": e.message}
    if result["accepted"]:
        logger.info("Tenant %s: %s", tenant_id, result, extra={"tenant_id": tenant_id})
    else:
        logger.debug("Tenant %s: trigger declined (%s)", tenant_id, result["reason"])
    return result


# ---------------------------------------------------------------------------
#  Reconciler
# ---------------------------------------------------------------------------


async def _reconcile_async() -> list[dict]:
    from app.services.batch_jobs import BatchJobController
    from app.services.errors import ConcurrencyConflict, InvalidState, NotFound
    from app.services.health_monitor import HealthMonitor

    session_factory, engine = _make_session_factory()
    results: list[dict] = []
    try:
        stuck = await HealthMonitor(session_factory).find_stuck_jobs()
        controller = BatchJobController(session_factory)
        for detail in stuck:
            logger.warning(
                "Job %s stuck for %ds, resuming",
                detail.job_id,
                detail.elapsed_seconds,
                extra={"job_id": detail.job_id, "tenant_id": detail.tenant_id},
            )
            try:
                summary = await controller.resume(UUID(detail.job_id))
            except (NotFound, InvalidState, ConcurrencyConflict) as e:
                # Another worker resumed it first, or it finished meanwhile
                results.append({"job_id": detail.job_id, "resumed": False, "reason": e.message})
                continue
            results.append(
                {
                    "job_id": detail.job_id,
                    "resumed": True,
                    "status": summary.status,
                    "successful_runs": summary.successful_runs,
                    "total_runs": summary.total_runs,
                }
            )
    finally:
        await engine.dispose()
    return results


@celery_app.task(name="reconcile_stuck_jobs")
def reconcile_stuck_jobs_task():
    """Beat: resume every job the health monitor reports as stuck."""
    results = _run_async(_reconcile_async())
    if results:
        logger.info("Reconciled %d stuck job(s)", len(results))
    return {"stuck": len(results), "jobs": results}


# ---------------------------------------------------------------------------
#  Health
# ---------------------------------------------------------------------------


async def _health_async() -> dict:
    from app.services.health_monitor import HealthMonitor

    session_factory, engine = _make_session_factory()
    try:
        report = await HealthMonitor(session_factory).check()
    finally:
        await engine.dispose()
    return report.model_dump(mode="json", by_alias=True)


@celery_app.task(name="scan_health_check")
def scan_health_check_task():
    """Beat: evaluate scan health; problems are logged by the monitor."""
    report = _run_async(_health_async())
    logger.info("Scan health: %s", report["overall"]["status"])
    return report


# ---------------------------------------------------------------------------
#  Key rotation
# ---------------------------------------------------------------------------


async def _reencrypt_keys_async() -> int:
    from app.services.credentials import reencrypt_tenant_keys

    session_factory, engine = _make_session_factory()
    try:
        async with session_factory() as db:
            rewritten = await reencrypt_tenant_keys(db)
            await db.commit()
    finally:
        await engine.dispose()
    return rewritten


@celery_app.task(name="reencrypt_provider_keys")
def reencrypt_provider_keys_task():
    """Run once after rotating FERNET_KEY (the old key moved to FERNET_PREVIOUS_KEYS)."""
    rewritten = _run_async(_reencrypt_keys_async())
    return {"rewritten": rewritten}
