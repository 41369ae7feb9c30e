from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType


class VisibilityResult(Base):
    """Extraction artifacts and score for a successful prompt run."""

    __tablename__ = "visibility_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prompt_run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompt_runs.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    score: Mapped[float] = mapped_column(Float, nullable=False)
    org_brand_present: Mapped[bool] = mapped_column(Boolean, default=False)
    org_brand_prominence: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-based rank or None
    competitors_count: Mapped[int] = mapped_column(Integer, default=0)

    brands_json: Mapped[list] = mapped_column(JSONType, default=list)  # org-brand mentions
    competitors_json: Mapped[list] = mapped_column(JSONType, default=list)  # competitor mentions
    citations_json: Mapped[list] = mapped_column(JSONType, default=list)
    citations_count: Mapped[int] = mapped_column(Integer, default=0)
    url_citations_count: Mapped[int] = mapped_column(Integer, default=0)  # http(s) citations only

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    prompt_run: Mapped["PromptRun"] = relationship("PromptRun", back_populates="result")  # noqa: F821
