from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TIMEOUT_MS = 300000
DEDUPLICATED_JOB_ID = "deduplicated"


class CustomBaseModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    POSTPONED = "POSTPONED"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"

    def __str__(self):
        return self.value


# Statuses a row may be claimed from
CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.FAILED, JobStatus.POSTPONED)


#
#  JOBS
#
class JobBase(CustomBaseModel):
    """Base model for durable job rows.

    ``parameters`` holds the merged job input (type defaults, caller params and
    options). ``result`` is only populated once the job has completed.
    """

    type: Optional[str] = None
    user_id: Optional[str] = None
    target_id: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    priority: Optional[int] = 0
    status: Optional[JobStatus] = JobStatus.PENDING
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    retry_count: Optional[int] = 0
    timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS
    result: Optional[Any] = None
    error: Optional[str] = None
    dedupe_key: Optional[str] = None


class JobCreate(JobBase):
    type: str
    user_id: str
    target_id: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class JobUpdate(JobBase):
    """Partial update; only fields explicitly set are written."""

    pass


class Job(JobBase):
    id: str
    type: str
    user_id: str
    target_id: str
    status: JobStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_placeholder(self) -> bool:
        return self.id == DEDUPLICATED_JOB_ID

    @classmethod
    def deduplicated_placeholder(cls, job_type: str, user_id: str, target_id: str) -> "Job":
        """Synthetic job returned when a live job already holds the dedupe key."""
        return cls(
            id=DEDUPLICATED_JOB_ID,
            type=job_type,
            user_id=user_id,
            target_id=target_id,
            status=JobStatus.COMPLETED,
        )


class JobFilter(CustomBaseModel):
    type: Optional[str] = None
    user_id: Optional[str] = None
    target_id: Optional[str] = None
    status: Optional[JobStatus] = None
    statuses: Optional[List[JobStatus]] = None
    dedupe_key: Optional[str] = None
