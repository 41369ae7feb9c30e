"""Read-only health check over jobs and recent runs.

Reports stuck jobs (in_progress with a stale heartbeat) and how often recent
successful runs produced citations at all (extraction rate) and http(s)
citations specifically (quality rate).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.repositories.jobs import JobRepository, as_utc
from app.repositories.runs import RunRepository
from app.schemas.health import CitationsSection, HealthReport, OverallSection, StuckJobDetail, StuckJobsSection

logger = logging.getLogger(__name__)

HEALTHY_QUALITY_RATE = 0.5
DEGRADED_QUALITY_RATE = 0.3


class CitationHealth(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    NO_DATA = "NO_DATA"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


def classify_citation_health(quality_rate: float, sample_size: int, min_sample: int = 10) -> CitationHealth:
    if sample_size == 0:
        return CitationHealth.NO_DATA
    if quality_rate >= HEALTHY_QUALITY_RATE and sample_size >= min_sample:
        return CitationHealth.HEALTHY
    if quality_rate >= DEGRADED_QUALITY_RATE:
        return CitationHealth.DEGRADED
    return CitationHealth.NEEDS_ATTENTION


def _alert_for(health: CitationHealth, quality_rate: float, sample_size: int) -> str | None:
    if health == CitationHealth.NEEDS_ATTENTION:
        return f"Only {quality_rate:.0%} of {sample_size} recent runs produced a URL citation"
    if health == CitationHealth.DEGRADED:
        return f"URL citation rate {quality_rate:.0%} over {sample_size} recent runs"
    return None


def overall_status(stuck_count: int, health: CitationHealth) -> OverallStatus:
    if health == CitationHealth.NEEDS_ATTENTION:
        return OverallStatus.UNHEALTHY
    if stuck_count > 0 or health == CitationHealth.DEGRADED:
        return OverallStatus.DEGRADED
    return OverallStatus.HEALTHY


class HealthMonitor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        stale_after: timedelta | None = None,
        window: timedelta | None = None,
        min_sample: int | None = None,
    ):
        self.session_factory = session_factory
        self.stale_after = stale_after or timedelta(minutes=settings.scan_stale_after_minutes)
        self.window = window or timedelta(hours=settings.health_window_hours)
        self.min_sample = settings.health_min_sample if min_sample is None else min_sample
        self.jobs = JobRepository()
        self.runs = RunRepository()

    async def find_stuck_jobs(self, now: datetime | None = None) -> list[StuckJobDetail]:
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as db:
            jobs = await self.jobs.find_stuck(db, now - self.stale_after)

        details = []
        for job in jobs:
            last = as_utc(job.last_heartbeat) or as_utc(job.started_at)
            details.append(
                StuckJobDetail(
                    job_id=str(job.id),
                    tenant_id=str(job.tenant_id),
                    last_heartbeat=last,
                    elapsed_seconds=int((now - last).total_seconds()) if last else 0,
                )
            )
        return details

    async def check(self, now: datetime | None = None) -> HealthReport:
        now = now or datetime.now(timezone.utc)
        stuck = await self.find_stuck_jobs(now)

        async with self.session_factory() as db:
            stats = await self.runs.citation_stats(db, now - self.window)

        extraction_rate = stats.with_citation / stats.total if stats.total else 0.0
        quality_rate = stats.with_url_citation / stats.total if stats.total else 0.0
        health = classify_citation_health(quality_rate, stats.total, self.min_sample)
        status = overall_status(len(stuck), health)

        if stuck:
            logger.warning("Health: %d stuck job(s): %s", len(stuck), ", ".join(d.job_id for d in stuck))
        if health in (CitationHealth.DEGRADED, CitationHealth.NEEDS_ATTENTION):
            logger.warning("Health: citation quality %s (%.2f over %d runs)", health.value, quality_rate, stats.total)

        return HealthReport(
            timestamp=now,
            stuck_jobs=StuckJobsSection(
                count=len(stuck),
                job_ids=[d.job_id for d in stuck],
                details=stuck,
            ),
            citations=CitationsSection(
                extraction_rate=round(extraction_rate, 4),
                quality_rate=round(quality_rate, 4),
                sample_size=stats.total,
                health=health.value,
                alert=_alert_for(health, quality_rate, stats.total),
            ),
            overall=OverallSection(status=status.value),
        )
