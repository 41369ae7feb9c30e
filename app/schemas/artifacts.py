"""Typed shapes of the JSON columns on ``visibility_results`` and ``batch_jobs``.

Validated on the way into the database so the columns never hold free-form maps.
"""

from typing import Literal

from pydantic import BaseModel, Field, TypeAdapter


class MentionArtifact(BaseModel):
    name: str = Field(..., min_length=1)
    normalized: str = Field(..., min_length=1)
    mentions: int = Field(..., ge=1)
    first_pos_ratio: float = Field(..., ge=0.0, le=1.0)
    context: str = ""
    sentiment: Literal["positive", "neutral", "negative"] = "neutral"


class CitationArtifact(BaseModel):
    type: Literal["url", "ref"]
    value: str = Field(..., min_length=1)
    source: Literal["markdown", "numbered", "bare", "native", "reference"]
    priority: int = Field(..., ge=1, le=5)
    title: str | None = None
    domain: str = ""
    ref_number: int | None = None


class JobProgress(BaseModel):
    """``batch_jobs.metadata``."""

    progress: list[tuple[int, int]] = Field(default_factory=list)  # (prompt_id, provider_id) pairs done
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    persistence_failures: list[str] = Field(default_factory=list)
    resume_count: int = 0


mention_list = TypeAdapter(list[MentionArtifact])
citation_list = TypeAdapter(list[CitationArtifact])


def validate_mentions(items: list[dict]) -> list[dict]:
    return [m.model_dump() for m in mention_list.validate_python(items)]


def validate_citations(items: list[dict]) -> list[dict]:
    return [c.model_dump() for c in citation_list.validate_python(items)]
