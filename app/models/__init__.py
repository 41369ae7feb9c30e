from app.models.batch_job import BatchJob, JobStatus
from app.models.prompt import Prompt
from app.models.prompt_run import PromptRun
from app.models.provider import Provider
from app.models.score_correction import ScoreCorrection
from app.models.tenant import Tenant
from app.models.usage_counter import UsageCounter
from app.models.visibility_result import VisibilityResult

__all__ = [
    "BatchJob",
    "JobStatus",
    "Prompt",
    "PromptRun",
    "Provider",
    "ScoreCorrection",
    "Tenant",
    "UsageCounter",
    "VisibilityResult",
]
