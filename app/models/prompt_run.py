import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class PromptRun(Base):
    """One attempt of one prompt against one provider inside a batch job."""

    __tablename__ = "prompt_runs"
    __table_args__ = (UniqueConstraint("batch_job_id", "prompt_id", "provider_id", name="uq_prompt_run_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("batch_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    prompt_id: Mapped[int] = mapped_column(Integer, ForeignKey("prompts.id"), nullable=False)
    provider_id: Mapped[int] = mapped_column(Integer, ForeignKey("providers.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(10), nullable=False)  # success | error
    error_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    error_retryable: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    model: Mapped[str | None] = mapped_column(String(80), nullable=True)
    token_in: Mapped[int] = mapped_column(Integer, default=0)
    token_out: Mapped[int] = mapped_column(Integer, default=0)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    result: Mapped["VisibilityResult | None"] = relationship(  # noqa: F821
        "VisibilityResult", back_populates="prompt_run", uselist=False, cascade="all, delete-orphan"
    )
