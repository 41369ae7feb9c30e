"""Manual score correction.

A stored score is never edited by hand: an operator supplies corrected
scoring inputs, the score is recomputed with ``compute_score`` and the change
is written to ``score_corrections``. If the stored score does not match a
recomputation from its own stored inputs, the divergence is logged and
flagged on the audit row instead of being silently absorbed.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.analysis.scoring import compute_score
from app.models.score_correction import ScoreCorrection
from app.models.visibility_result import VisibilityResult
from app.services.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrectedInputs:
    org_brand_present: bool
    org_brand_prominence: int | None
    competitor_count: int


@dataclass(frozen=True)
class CorrectionResult:
    run_id: int
    previous_score: float
    new_score: float
    divergence: bool


async def correct_score(
    db: AsyncSession,
    run_id: int,
    inputs: CorrectedInputs,
    *,
    reason: str,
    corrected_by: str,
) -> CorrectionResult:
    """Recompute and store the score of run *run_id* from *inputs*. Caller commits."""
    if inputs.competitor_count < 0:
        raise ValidationError("competitor_count must be >= 0")
    prominence = inputs.org_brand_prominence if inputs.org_brand_present else None
    if prominence is not None and prominence < 1:
        raise ValidationError("org_brand_prominence is a 1-based rank")

    result = (
        await db.execute(select(VisibilityResult).where(VisibilityResult.prompt_run_id == run_id))
    ).scalar_one_or_none()
    if result is None:
        raise NotFound(f"No visibility result for run {run_id}")

    previous = result.score
    recomputed = compute_score(result.org_brand_present, result.org_brand_prominence, result.competitors_count)
    divergence = recomputed != previous
    if divergence:
        logger.warning(
            "Run %d: stored score %.1f differs from recomputation %.1f of its stored inputs",
            run_id,
            previous,
            recomputed,
        )

    new_score = compute_score(inputs.org_brand_present, prominence, inputs.competitor_count)

    result.score = new_score
    result.org_brand_present = inputs.org_brand_present
    result.org_brand_prominence = prominence
    result.competitors_count = inputs.competitor_count
    db.add(
        ScoreCorrection(
            prompt_run_id=run_id,
            previous_score=previous,
            new_score=new_score,
            recomputed_score=recomputed,
            divergence=divergence,
            corrected_inputs={
                "org_brand_present": inputs.org_brand_present,
                "org_brand_prominence": prominence,
                "competitor_count": inputs.competitor_count,
            },
            reason=reason,
            corrected_by=corrected_by,
        )
    )
    await db.flush()

    logger.info("Run %d: score corrected %.1f -> %.1f by %s", run_id, previous, new_score, corrected_by)
    return CorrectionResult(run_id=run_id, previous_score=previous, new_score=new_score, divergence=divergence)
