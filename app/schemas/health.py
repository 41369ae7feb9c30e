"""Health monitor payload."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class StuckJobDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    tenant_id: str = Field(..., alias="tenantId")
    last_heartbeat: datetime | None = Field(None, alias="lastHeartbeat")
    elapsed_seconds: int = Field(..., alias="elapsedSeconds")


class StuckJobsSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int
    job_ids: list[str] = Field(default_factory=list, alias="jobIds")
    details: list[StuckJobDetail] = Field(default_factory=list)


class CitationsSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    extraction_rate: float = Field(..., alias="extractionRate")
    quality_rate: float = Field(..., alias="qualityRate")
    sample_size: int = Field(..., alias="sampleSize")
    health: str
    alert: str | None = None


class OverallSection(BaseModel):
    status: str


class HealthReport(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    stuck_jobs: StuckJobsSection = Field(..., alias="stuckJobs")
    citations: CitationsSection
    overall: OverallSection
