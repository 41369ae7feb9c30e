"""Tests for manual score correction."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.analysis.gazetteer import gazetteer_for_tenant
from app.analysis.pipeline import analyze_response
from app.models.score_correction import ScoreCorrection
from app.models.visibility_result import VisibilityResult
from app.repositories.jobs import JobRepository
from app.repositories.runs import RUN_SUCCESS, RunRepository, RunWrite
from app.services.corrections import CorrectedInputs, correct_score
from app.services.errors import NotFound, ValidationError


@pytest.fixture
async def scored_run(db, tenant, prompts, providers) -> int:
    """A stored run where the tenant is mentioned first with one competitor: 7.5 - 0.3 = 7.2."""
    job = await JobRepository().create(db, tenant.id, None)
    run_id = await RunRepository().upsert(
        db,
        RunWrite(
            batch_job_id=job.id,
            tenant_id=tenant.id,
            prompt_id=prompts[0].id,
            provider_id=providers["openai"].id,
            status=RUN_SUCCESS,
            run_at=datetime.now(timezone.utc),
            analyzed=analyze_response("Acme beats Globex on price.", gazetteer_for_tenant(tenant)),
        ),
    )
    await db.commit()
    return run_id


async def _result(db, run_id) -> VisibilityResult:
    return (
        await db.execute(
            select(VisibilityResult)
            .where(VisibilityResult.prompt_run_id == run_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


class TestCorrectScore:
    async def test_recomputes_and_audits(self, db, scored_run):
        assert (await _result(db, scored_run)).score == 7.2

        result = await correct_score(
            db,
            scored_run,
            CorrectedInputs(org_brand_present=True, org_brand_prominence=2, competitor_count=0),
            reason="Globex mention was a false positive",
            corrected_by="analyst@acme.com",
        )
        await db.commit()

        assert result.previous_score == 7.2
        assert result.new_score == 7.0
        assert not result.divergence

        stored = await _result(db, scored_run)
        assert stored.score == 7.0
        assert stored.org_brand_prominence == 2
        assert stored.competitors_count == 0

        audit = (await db.execute(select(ScoreCorrection))).scalar_one()
        assert audit.prompt_run_id == scored_run
        assert audit.previous_score == 7.2
        assert audit.new_score == 7.0
        assert audit.recomputed_score == 7.2
        assert audit.corrected_inputs == {
            "org_brand_present": True,
            "org_brand_prominence": 2,
            "competitor_count": 0,
        }
        assert audit.corrected_by == "analyst@acme.com"

    async def test_absent_brand_drops_prominence(self, db, scored_run):
        result = await correct_score(
            db,
            scored_run,
            CorrectedInputs(org_brand_present=False, org_brand_prominence=1, competitor_count=5),
            reason="Mention was of a different Acme",
            corrected_by="ops",
        )
        await db.commit()
        assert result.new_score == 2.0
        assert (await _result(db, scored_run)).org_brand_prominence is None

    async def test_divergent_stored_score_flagged(self, db, scored_run):
        stored = await _result(db, scored_run)
        stored.score = 9.9
        await db.commit()

        result = await correct_score(
            db,
            scored_run,
            CorrectedInputs(org_brand_present=True, org_brand_prominence=1, competitor_count=1),
            reason="Audit of a hand-edited score",
            corrected_by="ops",
        )
        await db.commit()

        assert result.divergence
        assert result.previous_score == 9.9
        assert result.new_score == 7.2
        audit = (await db.execute(select(ScoreCorrection))).scalar_one()
        assert audit.divergence
        assert audit.recomputed_score == 7.2

    async def test_missing_run(self, db):
        with pytest.raises(NotFound):
            await correct_score(
                db,
                12345,
                CorrectedInputs(org_brand_present=True, org_brand_prominence=1, competitor_count=0),
                reason="nothing here",
                corrected_by="ops",
            )

    @pytest.mark.parametrize(
        "inputs",
        [
            CorrectedInputs(org_brand_present=True, org_brand_prominence=1, competitor_count=-1),
            CorrectedInputs(org_brand_present=True, org_brand_prominence=0, competitor_count=0),
        ],
    )
    async def test_invalid_inputs(self, db, scored_run, inputs):
        with pytest.raises(ValidationError):
            await correct_score(db, scored_run, inputs, reason="bad input", corrected_by="ops")
