from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType


class ScoreCorrection(Base):
    """Audit row written whenever a stored score is recomputed from corrected inputs."""

    __tablename__ = "score_corrections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prompt_run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompt_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    previous_score: Mapped[float] = mapped_column(Float, nullable=False)
    new_score: Mapped[float] = mapped_column(Float, nullable=False)
    # Score recomputed from the stored (uncorrected) inputs; differs from previous_score on divergence
    recomputed_score: Mapped[float] = mapped_column(Float, nullable=False)
    divergence: Mapped[bool] = mapped_column(Boolean, default=False)
    corrected_inputs: Mapped[dict] = mapped_column(JSONType, default=dict)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    corrected_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
