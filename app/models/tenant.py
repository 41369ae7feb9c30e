import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, LargeBinary, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType


class Tenant(Base):
    """An organisation whose brand visibility is tracked."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan: Mapped[str] = mapped_column(String(20), default="free")  # free | starter | growth | pro
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Gazetteer seeds: alternative spellings of the tenant's own brand
    brand_variants: Mapped[list] = mapped_column(JSONType, default=list)
    # Competitors declared by the tenant, matched alongside the common brand list
    competitors: Mapped[list] = mapped_column(JSONType, default=list)

    # IANA zone used for the daily window and the idempotency date
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # LLM API credentials (encrypted)
    openai_api_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    perplexity_api_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    gemini_api_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    prompts: Mapped[list["Prompt"]] = relationship("Prompt", back_populates="tenant", cascade="all, delete-orphan")  # noqa: F821
