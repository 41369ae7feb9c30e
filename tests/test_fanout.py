"""Tests for the bounded fan-out over prompt x provider units."""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.analysis.gazetteer import build_gazetteer
from app.collectors.errors import AuthError, ProviderError
from app.models.batch_job import BatchJob, JobStatus
from app.models.prompt_run import PromptRun
from app.models.visibility_result import VisibilityResult
from app.repositories.runs import RUN_ERROR, RUN_SUCCESS, RunRepository
from app.services.fanout import BatchContext, ExecutionFanOut, UnitStatus, WorkUnit


async def _running_job(db, tenant) -> BatchJob:
    job = BatchJob(tenant_id=tenant.id, status=JobStatus.IN_PROGRESS.value, version=0, job_metadata={})
    db.add(job)
    await db.commit()
    return job


def _units(prompts, providers, names=("openai", "perplexity", "gemini")) -> list[WorkUnit]:
    return [
        WorkUnit(
            prompt_id=p.id,
            prompt_text=p.text,
            provider_id=providers[n].id,
            provider_name=n,
            model=providers[n].model,
        )
        for p in prompts
        for n in names
    ]


def _ctx(job, tenant, *, keys=None, on_unit_done=None, still_running=None) -> BatchContext:
    keys = {"openai": "k1", "perplexity": "k2", "gemini": "k3"} if keys is None else keys
    done: list = []

    async def _done(outcome):
        done.append(outcome)
        return True

    async def _running():
        return True

    ctx = BatchContext(
        job_id=job.id,
        tenant_id=tenant.id,
        gazetteer=build_gazetteer("Acme", competitors=["Globex"], include_common=False),
        key_lookup=lambda name: keys.get(name, ""),
        on_unit_done=on_unit_done or _done,
        still_running=still_running or _running,
    )
    ctx.done = done
    return ctx


class TestPartialFailure:
    async def test_one_provider_failing_does_not_abort_batch(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        executor = fake_executor({"perplexity": ProviderError("perplexity", "upstream 503", status_code=503)})
        fanout = ExecutionFanOut(session_factory, concurrency=3, rpm_limits={}, executor=executor)
        ctx = _ctx(job, tenant)

        result = await fanout.run_batch(ctx, _units(prompts, providers))

        assert result.succeeded == 4
        assert result.failed == 2
        assert not result.cancelled
        assert len(ctx.done) == 6

        runs = (await db.execute(select(PromptRun).order_by(PromptRun.id))).scalars().all()
        assert len(runs) == 6
        errors = [r for r in runs if r.status == RUN_ERROR]
        assert {r.provider_id for r in errors} == {providers["perplexity"].id}
        assert all(r.error_retryable is True for r in errors)
        assert "upstream 503" in errors[0].error_message

        results = (await db.execute(select(VisibilityResult))).scalars().all()
        assert len(results) == 4
        assert all(r.score == 7.5 for r in results)

    async def test_outcomes_sorted_by_pair(self, db, session_factory, tenant, prompts, providers, fake_executor):
        job = await _running_job(db, tenant)
        fanout = ExecutionFanOut(session_factory, concurrency=4, rpm_limits={}, executor=fake_executor())
        result = await fanout.run_batch(_ctx(job, tenant), _units(prompts, providers))
        pairs = [o.unit.pair for o in result.outcomes]
        assert pairs == sorted(pairs)

    async def test_missing_key_is_auth_error_without_call(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        executor = fake_executor()
        fanout = ExecutionFanOut(session_factory, rpm_limits={}, executor=executor)
        ctx = _ctx(job, tenant, keys={"openai": "k1"})

        result = await fanout.run_batch(ctx, _units(prompts[:1], providers, names=("openai", "gemini")))

        assert [c[0] for c in executor.calls] == ["openai"]
        gemini = next(o for o in result.outcomes if o.unit.provider_name == "gemini")
        assert gemini.status == UnitStatus.ERROR
        assert gemini.error_kind == "auth_error"

        run = (
            await db.execute(select(PromptRun).where(PromptRun.provider_id == providers["gemini"].id))
        ).scalar_one()
        assert run.error_retryable is False

    async def test_auth_failure_recorded_as_permanent(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        executor = fake_executor({"openai": AuthError("openai", "invalid key", status_code=401)})
        fanout = ExecutionFanOut(session_factory, rpm_limits={}, executor=executor)
        await fanout.run_batch(_ctx(job, tenant), _units(prompts[:1], providers, names=("openai",)))

        run = (await db.execute(select(PromptRun))).scalar_one()
        assert run.status == RUN_ERROR
        assert run.error_retryable is False

    async def test_unexpected_exception_stays_in_unit(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        executor = fake_executor({"gemini": RuntimeError("client bug")})
        fanout = ExecutionFanOut(session_factory, rpm_limits={}, executor=executor)

        result = await fanout.run_batch(_ctx(job, tenant), _units(prompts[:1], providers))

        assert result.succeeded == 2
        crashed = next(o for o in result.outcomes if o.unit.provider_name == "gemini")
        assert crashed.status == UnitStatus.ERROR
        assert crashed.error_kind == "internal"


class TestCancellation:
    async def test_stops_when_job_leaves_in_progress(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        checks = {"n": 0}

        async def still_running():
            checks["n"] += 1
            return checks["n"] <= 2

        executor = fake_executor()
        fanout = ExecutionFanOut(session_factory, concurrency=1, rpm_limits={}, executor=executor)
        result = await fanout.run_batch(_ctx(job, tenant, still_running=still_running), _units(prompts, providers))

        assert result.cancelled
        assert len(result.outcomes) == 2
        assert len(executor.calls) == 2

    async def test_heartbeat_refusal_stops_dispatch(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)

        async def refuse(outcome):
            return False

        fanout = ExecutionFanOut(session_factory, concurrency=1, rpm_limits={}, executor=fake_executor())
        result = await fanout.run_batch(_ctx(job, tenant, on_unit_done=refuse), _units(prompts, providers))

        assert result.cancelled
        assert len(result.outcomes) == 1


class TestJobStateFailure:
    async def test_cancellation_check_retried_once(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        checks = {"n": 0}

        async def still_running():
            checks["n"] += 1
            if checks["n"] == 2:
                raise OperationalError("SELECT batch_jobs", {}, Exception("connection reset"))
            return True

        executor = fake_executor()
        fanout = ExecutionFanOut(session_factory, concurrency=1, rpm_limits={}, executor=executor)
        result = await fanout.run_batch(_ctx(job, tenant, still_running=still_running), _units(prompts, providers))

        assert not result.interrupted
        assert result.succeeded == 6
        assert checks["n"] == 7

    async def test_repeated_heartbeat_failure_interrupts(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        beats = {"n": 0}

        async def failing_heartbeat(outcome):
            beats["n"] += 1
            raise OperationalError("UPDATE batch_jobs", {}, Exception("connection reset"))

        executor = fake_executor()
        fanout = ExecutionFanOut(session_factory, concurrency=1, rpm_limits={}, executor=executor)
        result = await fanout.run_batch(_ctx(job, tenant, on_unit_done=failing_heartbeat), _units(prompts, providers))

        assert result.interrupted
        assert not result.cancelled
        assert beats["n"] == 2
        assert len(executor.calls) == 1
        # The unit's run was written before the heartbeat failed
        assert len((await db.execute(select(PromptRun))).scalars().all()) == 1

    async def test_crashed_worker_cancels_siblings(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        base = fake_executor()
        interrupted_calls: list[str] = []
        checks = {"n": 0}

        async def slow_executor(provider, prompt_text, api_key, **kwargs):
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                interrupted_calls.append(provider)
                raise
            return await base(provider, prompt_text, api_key, **kwargs)

        async def still_running():
            checks["n"] += 1
            if checks["n"] == 2:
                raise RuntimeError("job lookup crashed")
            return True

        fanout = ExecutionFanOut(session_factory, concurrency=2, rpm_limits={}, executor=slow_executor)
        with pytest.raises(RuntimeError):
            await fanout.run_batch(_ctx(job, tenant, still_running=still_running), _units(prompts, providers))

        assert interrupted_calls == ["openai"]
        assert base.calls == []


class FlakyRuns(RunRepository):
    """Fails every write for one provider."""

    def __init__(self, failing_provider_id: int):
        self.failing_provider_id = failing_provider_id
        self.attempts = 0

    async def upsert(self, db, run):
        if run.provider_id == self.failing_provider_id:
            self.attempts += 1
            raise OperationalError("INSERT INTO prompt_runs", {}, Exception("disk I/O error"))
        return await super().upsert(db, run)


class TestPersistenceFailure:
    async def test_write_retried_once_then_reported(
        self, db, session_factory, tenant, prompts, providers, fake_executor
    ):
        job = await _running_job(db, tenant)
        runs = FlakyRuns(providers["gemini"].id)
        fanout = ExecutionFanOut(session_factory, rpm_limits={}, executor=fake_executor(), runs=runs)

        result = await fanout.run_batch(_ctx(job, tenant), _units(prompts[:1], providers))

        assert runs.attempts == 2
        assert [o.unit.provider_name for o in result.persistence_failures] == ["gemini"]
        assert result.succeeded == 2
        stored = (await db.execute(select(PromptRun))).scalars().all()
        assert {r.status for r in stored} == {RUN_SUCCESS}
        assert len(stored) == 2


class TestConcurrencyBounds:
    def test_clamped(self, session_factory):
        assert ExecutionFanOut(session_factory, concurrency=50).concurrency == 10
        assert ExecutionFanOut(session_factory, concurrency=0).concurrency == 1

    async def test_empty_work_set(self, db, session_factory, tenant, fake_executor):
        job = await _running_job(db, tenant)
        fanout = ExecutionFanOut(session_factory, executor=fake_executor())
        result = await fanout.run_batch(_ctx(job, tenant), [])
        assert result.outcomes == []
        assert not result.cancelled
