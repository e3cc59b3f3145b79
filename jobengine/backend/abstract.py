from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from jobengine.backend.models import Job, JobCreate, JobFilter, JobStatus, JobUpdate


class AbstractBackend(ABC):
    """Durable store contract used by the job engine.

    Every state transition is expressed as a single conditional row update so
    that no multi-row transaction or external lock is needed for correctness.
    """

    # ----------- LIFECYCLE -----------
    @abstractmethod
    def initialize(self) -> None:
        """Create tables/indexes if needed and mark the store ready."""
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    # ----------- JOBS -----------
    @abstractmethod
    def create_job(self, new_job: JobCreate) -> Job:
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    def list_jobs(self, filters: Optional[JobFilter] = None) -> List[Job]:
        pass

    @abstractmethod
    def find_live_job_by_dedupe_key(self, dedupe_key: str) -> Optional[Job]:
        """Return a non-terminal job holding ``dedupe_key``, if any.

        Non-terminal means PENDING, RUNNING, POSTPONED, or FAILED with a
        pending ``next_retry_at``.
        """
        pass

    @abstractmethod
    def list_eligible_jobs(self, now: datetime, limit: int = 10) -> List[Job]:
        """Jobs ready to be claimed, ordered ``priority DESC, queued_at ASC``.

        Eligible: PENDING with ``queued_at <= now``, or FAILED/POSTPONED with
        ``next_retry_at <= now``.
        """
        pass

    @abstractmethod
    def claim_job(
        self, job_id: str, prior_status: JobStatus, now: datetime
    ) -> Optional[Job]:
        """Atomically move a job from ``prior_status`` to RUNNING.

        Returns the claimed job, or None when another claimant won.
        """
        pass

    @abstractmethod
    def update_job(
        self,
        job_id: str,
        update_data: JobUpdate,
        expected_status: Optional[JobStatus] = None,
    ) -> Optional[Job]:
        """Apply the explicitly-set fields of ``update_data``.

        When ``expected_status`` is given the update only applies if the row is
        still in that status; None is returned otherwise.
        """
        pass

    @abstractmethod
    def count_jobs_by_status(self) -> Dict[str, int]:
        pass
