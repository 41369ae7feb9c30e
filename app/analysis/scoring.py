"""Visibility score.

The only place a visibility score is computed. Every writer (batch runs,
manual corrections) goes through ``compute_score``.

  Org brand absent:   score = clamp(5.0 - 0.2 * competitors, 0, 2.0)
  Org brand present:  score = 6.0 + position_bonus - min(2.0, 0.3 * competitors),
                      floored at 3.0
      position_bonus: +1.5 first mention, +1.0 second, +0.5 third, else 0

Always clamped to [0, 10] and rounded to one decimal.
"""

from __future__ import annotations

import logging

from app.analysis.types import ExtractionResult, ScoreRecord

logger = logging.getLogger(__name__)

MIN_SCORE = 0.0
MAX_SCORE = 10.0

ABSENT_BASE = 5.0
ABSENT_CEILING = 2.0
ABSENT_PENALTY_PER_COMPETITOR = 0.2

PRESENT_BASE = 6.0
PRESENT_FLOOR = 3.0
PRESENT_PENALTY_PER_COMPETITOR = 0.3
PRESENT_PENALTY_CAP = 2.0

POSITION_BONUS: dict[int, float] = {1: 1.5, 2: 1.0, 3: 0.5}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def position_bonus(prominence: int | None) -> float:
    if prominence is None:
        return 0.0
    return POSITION_BONUS.get(prominence, 0.0)


def compute_score(org_brand_present: bool, prominence: int | None, competitor_count: int) -> float:
    """Visibility score from the three scoring inputs."""
    competitor_count = max(0, competitor_count)
    if not org_brand_present:
        raw = _clamp(ABSENT_BASE - ABSENT_PENALTY_PER_COMPETITOR * competitor_count, MIN_SCORE, ABSENT_CEILING)
    else:
        penalty = min(PRESENT_PENALTY_CAP, PRESENT_PENALTY_PER_COMPETITOR * competitor_count)
        raw = max(PRESENT_FLOOR, PRESENT_BASE + position_bonus(prominence) - penalty)
    return round(_clamp(raw, MIN_SCORE, MAX_SCORE), 1)


def score_extraction(extraction: ExtractionResult) -> ScoreRecord:
    """Score one extraction result."""
    present = any(m.mentions > 0 for m in extraction.org_mentions)
    prominence = extraction.org_brand_rank if present else None
    competitors = extraction.competitor_count
    score = compute_score(present, prominence, competitors)

    logger.debug(
        "Score: %.1f (present=%s, prominence=%s, competitors=%d)",
        score,
        present,
        prominence,
        competitors,
    )
    return ScoreRecord(
        score=score,
        org_brand_present=present,
        org_brand_prominence=prominence,
        competitor_count=competitors,
    )
