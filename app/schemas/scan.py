"""Request/response models for the scan API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    org_id: str = Field(..., alias="orgId", min_length=1)
    test: bool = False
    replace: bool = False
    resume_job_id: str | None = Field(None, alias="resumeJobId")
    action: Literal["resume"] | None = None


class TriggerData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(None, alias="jobId")
    accepted: bool
    reason: str | None = None
    successful_runs: int = Field(0, alias="successfulRuns")
    total_runs: int = Field(0, alias="totalRuns")


class TriggerResponse(BaseModel):
    success: bool
    data: TriggerData | None = None
    error: str | None = None


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    tenant_id: str = Field(..., alias="tenantId")
    status: str  # stored status, or "stuck" when the heartbeat is stale
    stored_status: str = Field(..., alias="storedStatus")
    idempotency_key: str | None = Field(None, alias="idempotencyKey")
    started_at: datetime | None = Field(None, alias="startedAt")
    last_heartbeat: datetime | None = Field(None, alias="lastHeartbeat")
    completed_at: datetime | None = Field(None, alias="completedAt")
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class ScoreCorrectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    org_brand_present: bool = Field(..., alias="orgBrandPresent")
    org_brand_prominence: int | None = Field(None, alias="orgBrandProminence", ge=1)
    competitor_count: int = Field(..., alias="competitorCount", ge=0)
    reason: str = Field(..., min_length=3, max_length=500)
    corrected_by: str = Field(..., alias="correctedBy", min_length=1, max_length=255)


class ScoreCorrectionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: int = Field(..., alias="runId")
    previous_score: float = Field(..., alias="previousScore")
    new_score: float = Field(..., alias="newScore")
    divergence: bool


class CancelJobRequest(BaseModel):
    reason: str = Field("cancelled", min_length=1, max_length=500)


class CancelJobResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId")
    status: str
    previous_status: str = Field(..., alias="previousStatus")
