"""Core types and DTOs for citation/brand extraction and scoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CitationType(str, Enum):
    URL = "url"
    REF = "ref"  # bare [n] marker with no URL attached


class CitationSource(str, Enum):
    """Where a citation was found. Value order matches extraction priority."""

    MARKDOWN = "markdown"  # [title](url)
    NUMBERED = "numbered"  # [n] url  /  n. url
    BARE = "bare"  # https://...
    NATIVE = "native"  # URL list returned by the provider API
    REFERENCE = "reference"  # [n] with nothing to resolve it to


CITATION_PRIORITY: dict[CitationSource, int] = {
    CitationSource.MARKDOWN: 1,
    CitationSource.NUMBERED: 2,
    CitationSource.BARE: 3,
    CitationSource.NATIVE: 4,
    CitationSource.REFERENCE: 5,
}


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Citation:
    type: CitationType
    value: str  # URL, or "[n]" for references
    source: CitationSource
    title: str | None = None
    domain: str = ""
    ref_number: int | None = None

    @property
    def priority(self) -> int:
        return CITATION_PRIORITY[self.source]

    @property
    def is_http(self) -> bool:
        return self.type == CitationType.URL and self.value.lower().startswith(("http://", "https://"))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "value": self.value,
            "source": self.source.value,
            "priority": self.priority,
            "title": self.title,
            "domain": self.domain,
            "ref_number": self.ref_number,
        }


@dataclass(frozen=True)
class BrandMention:
    """A gazetteer entry found in a response. Never built with zero mentions."""

    name: str
    normalized: str
    mentions: int
    first_pos_ratio: float  # first offset / text length, 0 = very start
    first_offset: int
    is_org_brand: bool = False
    context: str = ""  # text around the first mention
    sentiment: SentimentLabel = SentimentLabel.NEUTRAL

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "normalized": self.normalized,
            "mentions": self.mentions,
            "first_pos_ratio": self.first_pos_ratio,
            "context": self.context,
            "sentiment": self.sentiment.value,
        }


@dataclass
class ExtractionResult:
    """Citations plus org/competitor mentions for one response."""

    citations: list[Citation] = field(default_factory=list)
    org_mentions: list[BrandMention] = field(default_factory=list)
    competitor_mentions: list[BrandMention] = field(default_factory=list)

    def mentions_in_order(self) -> list[BrandMention]:
        """All mentions ordered by first appearance (ties broken by normalized name)."""
        return sorted(
            self.org_mentions + self.competitor_mentions,
            key=lambda m: (m.first_offset, m.normalized),
        )

    @property
    def org_brand_rank(self) -> int | None:
        """1-based rank of the earliest org-brand mention among all mentions."""
        for rank, mention in enumerate(self.mentions_in_order(), start=1):
            if mention.is_org_brand:
                return rank
        return None

    @property
    def competitor_count(self) -> int:
        return len(self.competitor_mentions)

    @property
    def url_citation_count(self) -> int:
        return sum(1 for c in self.citations if c.is_http)

    def to_dict(self) -> dict:
        return {
            "citations": [c.to_dict() for c in self.citations],
            "org_mentions": [m.to_dict() for m in self.org_mentions],
            "competitor_mentions": [m.to_dict() for m in self.competitor_mentions],
        }


@dataclass(frozen=True)
class ScoreRecord:
    score: float  # 0.0 - 10.0, one decimal
    org_brand_present: bool
    org_brand_prominence: int | None
    competitor_count: int

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "org_brand_present": self.org_brand_present,
            "org_brand_prominence": self.org_brand_prominence,
            "competitor_count": self.competitor_count,
        }


@dataclass
class AnalyzedResponse:
    """Extraction and score for one provider response."""

    extraction: ExtractionResult
    score: ScoreRecord
