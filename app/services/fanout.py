"""Execution fan-out: run prompt x provider units on a bounded worker pool.

Each unit is: provider call (with retry) -> extraction -> scoring ->
idempotent run upsert -> heartbeat. A failing unit is recorded and the
batch moves on; one provider's failure never aborts its siblings.

Cancellation is checked between units only. When the job leaves
``in_progress`` (e.g. an operator cancels it) workers stop taking new
units and in-flight calls are allowed to finish. Heartbeats and cancellation
checks get one retry on a database error; if the retry fails too the batch
stops as ``interrupted`` and the job stays in_progress until it goes stale.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.analysis.gazetteer import Gazetteer
from app.analysis.pipeline import analyze_response
from app.collectors.errors import AuthError
from app.collectors.llm_base import PROVIDER_RPM, RpmLimiter
from app.collectors.retry import ProviderOutcome, RetryPolicy, execute
from app.core.metrics import SCAN_UNITS
from app.repositories.runs import RUN_ERROR, RUN_SUCCESS, RunRepository, RunWrite
from app.services.errors import PersistenceError

logger = logging.getLogger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10

Executor = Callable[..., Awaitable[ProviderOutcome]]


class UnitStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"  # provider failure, recorded as an error run
    PERSISTENCE_FAILED = "persistence_failed"  # nothing could be written


@dataclass(frozen=True)
class WorkUnit:
    prompt_id: int
    prompt_text: str
    provider_id: int
    provider_name: str
    model: str | None = None

    @property
    def pair(self) -> tuple[int, int]:
        return (self.prompt_id, self.provider_id)


@dataclass
class UnitOutcome:
    unit: WorkUnit
    status: UnitStatus
    score: float | None = None
    error: str | None = None
    error_kind: str | None = None


@dataclass
class FanOutResult:
    outcomes: list[UnitOutcome] = field(default_factory=list)
    cancelled: bool = False
    interrupted: bool = False  # job state could not be read or written; left for the reconciler

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == UnitStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def persistence_failures(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.status == UnitStatus.PERSISTENCE_FAILED]


@dataclass
class BatchContext:
    """What every unit of one batch shares."""

    job_id: uuid.UUID
    tenant_id: uuid.UUID
    gazetteer: Gazetteer
    key_lookup: Callable[[str], str]  # provider name -> API key, resolved per call
    on_unit_done: Callable[[UnitOutcome], Awaitable[bool]]  # heartbeat; False = job no longer running
    still_running: Callable[[], Awaitable[bool]]


class ExecutionFanOut:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        concurrency: int = 6,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
        max_citations: int = 20,
        rpm_limits: dict[str, int] | None = None,
        executor: Executor = execute,
        runs: RunRepository | None = None,
    ):
        self.session_factory = session_factory
        self.concurrency = max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, concurrency))
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.max_citations = max_citations
        self.rpm_limits = PROVIDER_RPM if rpm_limits is None else rpm_limits
        self.executor = executor
        self.runs = runs or RunRepository()
        # Serializes writes of one batch (run upserts + heartbeats)
        self._db_lock = asyncio.Lock()

    async def run_batch(self, ctx: BatchContext, units: list[WorkUnit]) -> FanOutResult:
        """Process *units*; returns outcomes ordered by (prompt_id, provider_id)."""
        result = FanOutResult()
        if not units:
            return result

        queue: asyncio.Queue[WorkUnit] = asyncio.Queue()
        for unit in units:
            queue.put_nowait(unit)

        limiters = {name: RpmLimiter(rpm) for name, rpm in self.rpm_limits.items()}
        stop = asyncio.Event()
        workers = min(self.concurrency, len(units))

        logger.info(
            "Job %s: dispatching %d unit(s) on %d worker(s)",
            ctx.job_id,
            len(units),
            workers,
            extra={"job_id": ctx.job_id, "tenant_id": ctx.tenant_id},
        )

        async def worker() -> None:
            while not stop.is_set():
                try:
                    unit = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                running = await self._job_call(ctx, "cancellation check", ctx.still_running)
                if running is None:
                    result.interrupted = True
                    stop.set()
                    return
                if not running:
                    result.cancelled = True
                    stop.set()
                    return

                outcome = await self._run_unit(ctx, unit, limiters.get(unit.provider_name))
                result.outcomes.append(outcome)
                SCAN_UNITS.labels(status=outcome.status.value).inc()

                alive = await self._job_call(ctx, "heartbeat", lambda: ctx.on_unit_done(outcome))
                if alive is None:
                    result.interrupted = True
                    stop.set()
                elif not alive:
                    result.cancelled = True
                    stop.set()

        tasks = [asyncio.create_task(worker()) for _ in range(workers)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # A crashed worker must not leave its siblings running against the job
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if result.cancelled or result.interrupted:
            logger.warning(
                "Job %s: stopped dispatching (%s), %d unit(s) left undone",
                ctx.job_id,
                "cancelled" if result.cancelled else "job state unreachable",
                queue.qsize(),
            )
        result.outcomes.sort(key=lambda o: o.unit.pair)
        return result

    async def _job_call(self, ctx: BatchContext, what: str, call: Callable[[], Awaitable[bool]]) -> bool | None:
        """Run a job-state callback under the write lock, retried once.

        Returns None when both attempts hit a database error.
        """
        for attempt in (1, 2):
            try:
                async with self._db_lock:
                    return await call()
            except SQLAlchemyError as e:
                logger.warning(
                    "Job %s: %s failed (attempt %d/2): %s",
                    ctx.job_id,
                    what,
                    attempt,
                    e,
                    extra={"job_id": ctx.job_id},
                )
        return None

    async def _run_unit(self, ctx: BatchContext, unit: WorkUnit, limiter: RpmLimiter | None) -> UnitOutcome:
        try:
            outcome = await self._call_provider(ctx, unit, limiter)
            write, unit_outcome = self._build_write(ctx, unit, outcome)
        except Exception as e:
            # Extraction bugs or unexpected client errors stay inside this unit
            logger.exception("Job %s: unit %s/%s crashed", ctx.job_id, unit.prompt_id, unit.provider_name)
            write = self._error_write(ctx, unit, f"{type(e).__name__}: {e}", retryable=True)
            unit_outcome = UnitOutcome(unit=unit, status=UnitStatus.ERROR, error=str(e), error_kind="internal")

        try:
            await self._persist(write)
        except PersistenceError as e:
            return UnitOutcome(unit=unit, status=UnitStatus.PERSISTENCE_FAILED, error=e.message, error_kind="persistence")
        return unit_outcome

    async def _call_provider(self, ctx: BatchContext, unit: WorkUnit, limiter: RpmLimiter | None) -> ProviderOutcome:
        api_key = ctx.key_lookup(unit.provider_name)
        if not api_key:
            return ProviderOutcome(provider=unit.provider_name, error=AuthError(unit.provider_name, "No API key configured"))
        if limiter is not None:
            await limiter.acquire()
        return await self.executor(
            unit.provider_name,
            unit.prompt_text,
            api_key,
            model=unit.model,
            timeout=self.timeout,
            policy=self.retry_policy,
        )

    def _build_write(self, ctx: BatchContext, unit: WorkUnit, outcome: ProviderOutcome) -> tuple[RunWrite, UnitOutcome]:
        if not outcome.ok:
            err = outcome.error
            logger.warning(
                "Job %s: %s failed for prompt %d: %s",
                ctx.job_id,
                unit.provider_name,
                unit.prompt_id,
                err,
                extra={"job_id": ctx.job_id, "provider": unit.provider_name, "prompt_id": unit.prompt_id},
            )
            write = self._error_write(ctx, unit, str(err), retryable=err.retryable)
            return write, UnitOutcome(unit=unit, status=UnitStatus.ERROR, error=str(err), error_kind=err.kind)

        resp = outcome.response
        analyzed = analyze_response(resp.text, ctx.gazetteer, resp.cited_urls, max_citations=self.max_citations)
        write = RunWrite(
            batch_job_id=ctx.job_id,
            tenant_id=ctx.tenant_id,
            prompt_id=unit.prompt_id,
            provider_id=unit.provider_id,
            status=RUN_SUCCESS,
            run_at=datetime.now(timezone.utc),
            model=resp.model,
            token_in=resp.token_in,
            token_out=resp.token_out,
            analyzed=analyzed,
        )
        return write, UnitOutcome(unit=unit, status=UnitStatus.SUCCESS, score=analyzed.score.score)

    def _error_write(self, ctx: BatchContext, unit: WorkUnit, message: str, *, retryable: bool) -> RunWrite:
        return RunWrite(
            batch_job_id=ctx.job_id,
            tenant_id=ctx.tenant_id,
            prompt_id=unit.prompt_id,
            provider_id=unit.provider_id,
            status=RUN_ERROR,
            run_at=datetime.now(timezone.utc),
            model=unit.model,
            error_message=message,
            error_retryable=retryable,
        )

    async def _persist(self, write: RunWrite) -> None:
        """Upsert one run; the transaction is retried once before giving up."""
        last_error: SQLAlchemyError | None = None
        for attempt in (1, 2):
            try:
                async with self._db_lock:
                    async with self.session_factory() as db:
                        await self.runs.upsert(db, write)
                        await db.commit()
                return
            except SQLAlchemyError as e:
                last_error = e
                logger.warning(
                    "Run write failed (job=%s prompt=%d provider=%d, attempt %d/2): %s",
                    write.batch_job_id,
                    write.prompt_id,
                    write.provider_id,
                    attempt,
                    e,
                )
        raise PersistenceError(
            f"prompt {write.prompt_id} / provider {write.provider_id}: {type(last_error).__name__}"
        ) from last_error
