"""Prompt run repository: idempotent run/result writes and usage counters.

``upsert`` is keyed by (batch_job_id, prompt_id, provider_id). A second write
for the same key replaces the run and its result; usage counters are only
ever incremented. The caller owns the transaction and commits once, so the
run, its result and the usage increment land together.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import and_, case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.analysis.types import AnalyzedResponse
from app.db.upsert import insert_for
from app.models.prompt_run import PromptRun
from app.models.usage_counter import UsageCounter
from app.models.visibility_result import VisibilityResult
from app.schemas.artifacts import validate_citations, validate_mentions

logger = logging.getLogger(__name__)

RUN_SUCCESS = "success"
RUN_ERROR = "error"


@dataclass
class RunWrite:
    """Everything persisted for one prompt x provider unit."""

    batch_job_id: uuid.UUID
    tenant_id: uuid.UUID
    prompt_id: int
    provider_id: int
    status: str
    run_at: datetime
    model: str | None = None
    token_in: int = 0
    token_out: int = 0
    error_message: str | None = None
    error_retryable: bool | None = None
    analyzed: AnalyzedResponse | None = None


@dataclass
class CitationStats:
    total: int = 0
    with_citation: int = 0
    with_url_citation: int = 0


class RunRepository:
    async def upsert(self, db: AsyncSession, run: RunWrite) -> int:
        """Write (or replace) a run, its visibility result and usage. Returns the run id."""
        run_table = PromptRun.__table__
        values = {
            "batch_job_id": run.batch_job_id,
            "tenant_id": run.tenant_id,
            "prompt_id": run.prompt_id,
            "provider_id": run.provider_id,
            "status": run.status,
            "error_message": (run.error_message or "")[:1000] or None,
            "error_retryable": run.error_retryable,
            "model": run.model,
            "token_in": run.token_in,
            "token_out": run.token_out,
            "run_at": run.run_at,
        }
        stmt = insert_for(db, run_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[run_table.c.batch_job_id, run_table.c.prompt_id, run_table.c.provider_id],
            set_={
                "status": stmt.excluded.status,
                "error_message": stmt.excluded.error_message,
                "error_retryable": stmt.excluded.error_retryable,
                "model": stmt.excluded.model,
                "token_in": stmt.excluded.token_in,
                "token_out": stmt.excluded.token_out,
                "run_at": stmt.excluded.run_at,
            },
        ).returning(run_table.c.id)
        run_id = (await db.execute(stmt)).scalar_one()

        if run.analyzed is not None:
            await self._upsert_result(db, run_id, run.analyzed)
        else:
            await db.execute(delete(VisibilityResult).where(VisibilityResult.prompt_run_id == run_id))

        await self.increment_usage(
            db,
            run.tenant_id,
            run.run_at.date(),
            runs=1,
            successful=1 if run.status == RUN_SUCCESS else 0,
            token_in=run.token_in,
            token_out=run.token_out,
        )
        return run_id

    async def _upsert_result(self, db: AsyncSession, run_id: int, analyzed: AnalyzedResponse) -> None:
        extraction, score = analyzed.extraction, analyzed.score
        result_table = VisibilityResult.__table__
        values = {
            "prompt_run_id": run_id,
            "score": score.score,
            "org_brand_present": score.org_brand_present,
            "org_brand_prominence": score.org_brand_prominence,
            "competitors_count": score.competitor_count,
            "brands_json": validate_mentions([m.to_dict() for m in extraction.org_mentions]),
            "competitors_json": validate_mentions([m.to_dict() for m in extraction.competitor_mentions]),
            "citations_json": validate_citations([c.to_dict() for c in extraction.citations]),
            "citations_count": len(extraction.citations),
            "url_citations_count": extraction.url_citation_count,
        }
        stmt = insert_for(db, result_table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[result_table.c.prompt_run_id],
            set_={k: getattr(stmt.excluded, k) for k in values if k != "prompt_run_id"},
        )
        await db.execute(stmt)

    async def increment_usage(
        self,
        db: AsyncSession,
        tenant_id: uuid.UUID,
        usage_date: date,
        *,
        runs: int = 0,
        successful: int = 0,
        token_in: int = 0,
        token_out: int = 0,
    ) -> None:
        table = UsageCounter.__table__
        stmt = insert_for(db, table).values(
            tenant_id=tenant_id,
            usage_date=usage_date,
            runs_executed=runs,
            successful_runs=successful,
            token_in=token_in,
            token_out=token_out,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.tenant_id, table.c.usage_date],
            set_={
                "runs_executed": table.c.runs_executed + stmt.excluded.runs_executed,
                "successful_runs": table.c.successful_runs + stmt.excluded.successful_runs,
                "token_in": table.c.token_in + stmt.excluded.token_in,
                "token_out": table.c.token_out + stmt.excluded.token_out,
            },
        )
        await db.execute(stmt)

    async def finished_pairs(self, db: AsyncSession, batch_job_id: uuid.UUID) -> set[tuple[int, int]]:
        """Pairs a resume must not replay: successes and permanent (non-retryable) failures."""
        result = await db.execute(
            select(PromptRun.prompt_id, PromptRun.provider_id).where(
                PromptRun.batch_job_id == batch_job_id,
                or_(
                    PromptRun.status == RUN_SUCCESS,
                    and_(PromptRun.status == RUN_ERROR, PromptRun.error_retryable.is_(False)),
                ),
            )
        )
        return {(row.prompt_id, row.provider_id) for row in result}

    async def count_by_status(self, db: AsyncSession, batch_job_id: uuid.UUID) -> dict[str, int]:
        result = await db.execute(
            select(PromptRun.status, func.count())
            .where(PromptRun.batch_job_id == batch_job_id)
            .group_by(PromptRun.status)
        )
        return {status: count for status, count in result.all()}

    async def citation_stats(self, db: AsyncSession, since: datetime, sample_limit: int = 1000) -> CitationStats:
        """Citation counts over the most recent successful runs since *since*."""
        recent = (
            select(VisibilityResult.citations_count, VisibilityResult.url_citations_count)
            .join(PromptRun, PromptRun.id == VisibilityResult.prompt_run_id)
            .where(PromptRun.status == RUN_SUCCESS, PromptRun.run_at >= since)
            .order_by(PromptRun.run_at.desc())
            .limit(sample_limit)
            .subquery()
        )
        row = (
            await db.execute(
                select(
                    func.count(),
                    func.coalesce(func.sum(case((recent.c.citations_count > 0, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((recent.c.url_citations_count > 0, 1), else_=0)), 0),
                ).select_from(recent)
            )
        ).one()
        return CitationStats(total=int(row[0]), with_citation=int(row[1]), with_url_citation=int(row[2]))
