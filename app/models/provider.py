from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType


class Provider(Base):
    """Reference row for an LLM answer engine (openai, perplexity, gemini)."""

    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    model: Mapped[str | None] = mapped_column(String(80), nullable=True)  # None = collector default
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    # Subscription tiers allowed to use this provider; empty list = fall back to tier policy
    allowed_tiers: Mapped[list] = mapped_column(JSONType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
