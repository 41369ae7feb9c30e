import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType


class JobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    # Derived from heartbeat staleness, never stored
    STUCK = "stuck"


ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.IN_PROGRESS.value)


class BatchJob(Base):
    """One tenant's scan for one calendar day.

    ``idempotency_key`` is ``"{tenant_id}-{YYYY-MM-DD}"`` and unique; a replaced
    job has its key cleared. ``version`` is bumped on every state transition
    and guards compare-and-set updates.
    """

    __tablename__ = "batch_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.QUEUED.value, index=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_heartbeat: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # {"progress": [[prompt_id, provider_id], ...], "total": n, "succeeded": n, "failed": n, ...}
    job_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
