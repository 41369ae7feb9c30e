import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class UsageCounter(Base):
    """Per-tenant, per-day usage totals. Only ever incremented."""

    __tablename__ = "usage_counters"
    __table_args__ = (UniqueConstraint("tenant_id", "usage_date", name="uq_usage_counter_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    runs_executed: Mapped[int] = mapped_column(Integer, default=0)
    successful_runs: Mapped[int] = mapped_column(Integer, default=0)
    token_in: Mapped[int] = mapped_column(Integer, default=0)
    token_out: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )
