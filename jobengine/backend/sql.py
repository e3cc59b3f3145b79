from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Engine,
    Index,
    Integer,
    String,
    Text,
    and_,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from jobengine.backend.abstract import AbstractBackend
from jobengine.backend.models import (
    DEFAULT_TIMEOUT_MS,
    Job,
    JobCreate,
    JobFilter,
    JobStatus,
    JobUpdate,
)
from jobengine.lib.logger import configure_logger
from jobengine.lib.utils import utcnow

logger = configure_logger(__name__)


Base = declarative_base()


class JobSQL(Base):
    __tablename__ = "jobs"

    id = Column(String(64), primary_key=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    type = Column(Text, nullable=False)
    user_id = Column(String(255), nullable=False)
    target_id = Column(Text, nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)
    priority = Column(Integer, default=0)
    status = Column(String(16), default=JobStatus.PENDING.value)
    queued_at = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    next_retry_at = Column(DateTime)
    retry_count = Column(Integer, default=0)
    timeout_ms = Column(Integer, default=DEFAULT_TIMEOUT_MS)
    result = Column(JSON)
    error = Column(Text)
    dedupe_key = Column(Text)

    __table_args__ = (
        Index("ix_jobs_status_queued_at", "status", "queued_at"),
        Index("ix_jobs_next_retry_at", "next_retry_at"),
        Index("ix_jobs_status_type", "status", "type"),
        Index("ix_jobs_target_id_type", "target_id", "type"),
        Index("ix_jobs_user_id", "user_id"),
        Index("ix_jobs_dedupe_key", "dedupe_key"),
    )


_COLUMNS = [column.name for column in JobSQL.__table__.columns]


def _row_to_job(row: JobSQL) -> Job:
    return Job(**{name: getattr(row, name) for name in _COLUMNS})


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value.value if isinstance(value, JobStatus) else value
        for key, value in values.items()
    }


def _live_condition():
    """Rows that still hold their dedupe key."""
    return or_(
        JobSQL.status.in_(
            [
                JobStatus.PENDING.value,
                JobStatus.RUNNING.value,
                JobStatus.POSTPONED.value,
            ]
        ),
        and_(
            JobSQL.status == JobStatus.FAILED.value,
            JobSQL.next_retry_at.is_not(None),
        ),
    )


def _eligible_condition(now: datetime, status: Optional[JobStatus] = None):
    pending = and_(
        JobSQL.status == JobStatus.PENDING.value,
        or_(JobSQL.queued_at.is_(None), JobSQL.queued_at <= now),
    )
    retrying = and_(
        JobSQL.status.in_([JobStatus.FAILED.value, JobStatus.POSTPONED.value]),
        JobSQL.next_retry_at.is_not(None),
        JobSQL.next_retry_at <= now,
    )
    if status is None:
        return or_(pending, retrying)
    if status == JobStatus.PENDING:
        return pending
    return and_(retrying, JobSQL.status == status.value)


class SQLBackend(AbstractBackend):
    """SQLAlchemy implementation of the job store."""

    def __init__(self, sqlalchemy_engine: Engine):
        self.sqlalchemy_engine = sqlalchemy_engine
        self.Session = sessionmaker(bind=self.sqlalchemy_engine, expire_on_commit=False)
        self._ready = False

    # ----------- LIFECYCLE -----------
    def initialize(self) -> None:
        Base.metadata.create_all(self.sqlalchemy_engine)
        self._ready = True
        logger.debug(
            "Job store initialized",
            extra={"url": str(self.sqlalchemy_engine.url), "event_type": "store_ready"},
        )

    def is_ready(self) -> bool:
        return self._ready

    # ----------- JOBS -----------
    def create_job(self, new_job: JobCreate) -> Job:
        now = utcnow()
        payload = _serialize(new_job.model_dump(exclude_unset=True))
        payload.setdefault("status", JobStatus.PENDING.value)
        payload.setdefault("queued_at", now)
        payload.setdefault("retry_count", 0)
        payload.setdefault("parameters", {})
        payload.setdefault("timeout_ms", DEFAULT_TIMEOUT_MS)
        if payload.get("priority") is None:
            payload["priority"] = 0

        row = JobSQL(id=uuid4().hex, created_at=now, updated_at=now, **payload)
        with self.Session.begin() as session:
            session.add(row)

        created = _row_to_job(row)
        logger.debug(
            f"Created job {created.id}",
            extra={
                "job_type": created.type,
                "dedupe_key": created.dedupe_key,
                "event_type": "job_created",
            },
        )
        return created

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.Session() as session:
            row = session.get(JobSQL, job_id)
            return _row_to_job(row) if row else None

    def list_jobs(self, filters: Optional[JobFilter] = None) -> List[Job]:
        stmt = select(JobSQL)
        if filters:
            if filters.type is not None:
                stmt = stmt.where(JobSQL.type == filters.type)
            if filters.user_id is not None:
                stmt = stmt.where(JobSQL.user_id == filters.user_id)
            if filters.target_id is not None:
                stmt = stmt.where(JobSQL.target_id == filters.target_id)
            if filters.status is not None:
                stmt = stmt.where(JobSQL.status == filters.status.value)
            if filters.statuses:
                stmt = stmt.where(
                    JobSQL.status.in_([status.value for status in filters.statuses])
                )
            if filters.dedupe_key is not None:
                stmt = stmt.where(JobSQL.dedupe_key == filters.dedupe_key)
        stmt = stmt.order_by(JobSQL.created_at.asc(), JobSQL.id.asc())
        with self.Session() as session:
            return [_row_to_job(row) for row in session.scalars(stmt)]

    def find_live_job_by_dedupe_key(self, dedupe_key: str) -> Optional[Job]:
        stmt = (
            select(JobSQL)
            .where(JobSQL.dedupe_key == dedupe_key, _live_condition())
            .limit(1)
        )
        with self.Session() as session:
            row = session.scalars(stmt).first()
            return _row_to_job(row) if row else None

    def list_eligible_jobs(self, now: datetime, limit: int = 10) -> List[Job]:
        stmt = (
            select(JobSQL)
            .where(_eligible_condition(now))
            .order_by(
                JobSQL.priority.desc(),
                JobSQL.queued_at.asc(),
                JobSQL.created_at.asc(),
                JobSQL.id.asc(),
            )
            .limit(limit)
        )
        with self.Session() as session:
            return [_row_to_job(row) for row in session.scalars(stmt)]

    def claim_job(
        self, job_id: str, prior_status: JobStatus, now: datetime
    ) -> Optional[Job]:
        stmt = (
            update(JobSQL)
            .where(JobSQL.id == job_id, _eligible_condition(now, prior_status))
            .values(
                status=JobStatus.RUNNING.value,
                started_at=now,
                completed_at=None,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self.Session.begin() as session:
            claimed = session.execute(stmt).rowcount == 1

        if not claimed:
            logger.debug(
                f"Claim lost for job {job_id}",
                extra={"prior_status": str(prior_status), "event_type": "claim_lost"},
            )
            return None
        return self.get_job(job_id)

    def update_job(
        self,
        job_id: str,
        update_data: JobUpdate,
        expected_status: Optional[JobStatus] = None,
    ) -> Optional[Job]:
        payload = _serialize(update_data.model_dump(exclude_unset=True))
        if not payload:
            return self.get_job(job_id)

        payload["updated_at"] = utcnow()
        stmt = update(JobSQL).where(JobSQL.id == job_id)
        if expected_status is not None:
            stmt = stmt.where(JobSQL.status == expected_status.value)
        stmt = stmt.values(**payload).execution_options(synchronize_session=False)

        with self.Session.begin() as session:
            updated = session.execute(stmt).rowcount == 1

        if not updated:
            return None
        return self.get_job(job_id)

    def count_jobs_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        stmt = select(JobSQL.status, func.count()).group_by(JobSQL.status)
        with self.Session() as session:
            for status, count in session.execute(stmt):
                counts[status] = count
        return counts
