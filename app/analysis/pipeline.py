"""Analysis pipeline: provider text -> extraction -> score.

  1. Citation extractor (markdown, numbered, bare, native, references)
  2. Brand extractor (gazetteer matching, org vs competitor split)
  3. Scoring

Pure and deterministic: no I/O, no randomness, no clock.
"""

from __future__ import annotations

import logging

from app.analysis.brand_extractor import extract_brands
from app.analysis.citation_extractor import MAX_CITATIONS, extract_citations
from app.analysis.gazetteer import Gazetteer
from app.analysis.scoring import score_extraction
from app.analysis.types import AnalyzedResponse, ExtractionResult

logger = logging.getLogger(__name__)


def extract_artifacts(
    text: str,
    gazetteer: Gazetteer,
    native_urls: list[str] | None = None,
    *,
    max_citations: int = MAX_CITATIONS,
) -> ExtractionResult:
    """Run both extractors over *text*. Empty text yields an empty result."""
    if not text:
        return ExtractionResult(citations=extract_citations("", native_urls, limit=max_citations))

    citations = extract_citations(text, native_urls, limit=max_citations)
    org, competitors = extract_brands(text, gazetteer)
    return ExtractionResult(citations=citations, org_mentions=org, competitor_mentions=competitors)


def analyze_response(
    text: str,
    gazetteer: Gazetteer,
    native_urls: list[str] | None = None,
    *,
    max_citations: int = MAX_CITATIONS,
) -> AnalyzedResponse:
    """Extract artifacts from one provider response and score them."""
    extraction = extract_artifacts(text, gazetteer, native_urls, max_citations=max_citations)
    score = score_extraction(extraction)
    logger.debug(
        "Analyzed response: %d citation(s), %d org mention(s), %d competitor(s), score=%.1f",
        len(extraction.citations),
        len(extraction.org_mentions),
        len(extraction.competitor_mentions),
        score.score,
    )
    return AnalyzedResponse(extraction=extraction, score=score)
