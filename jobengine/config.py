import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from jobengine.lib.logger import configure_logger

logger = configure_logger(__name__)

load_dotenv()


@dataclass
class DatabaseConfig:
    backend: str = os.getenv("JOBENGINE_BACKEND", "sqlalchemy")
    url: str = os.getenv("JOBENGINE_DATABASE_URL", "sqlite:///jobengine.db")
    echo: bool = os.getenv("JOBENGINE_DATABASE_ECHO", "false").lower() == "true"


@dataclass
class QueueConfig:
    """Dispatcher and job default settings."""

    max_concurrent_jobs: int = int(os.getenv("JOBENGINE_MAX_CONCURRENT_JOBS", "20"))
    poll_interval_ms: int = int(os.getenv("JOBENGINE_POLL_INTERVAL_MS", "100"))
    # Upper bound on candidates fetched per poll
    batch_size: int = int(os.getenv("JOBENGINE_BATCH_SIZE", "10"))
    default_max_retries: int = int(os.getenv("JOBENGINE_DEFAULT_MAX_RETRIES", "3"))
    default_timeout_ms: int = int(
        os.getenv("JOBENGINE_DEFAULT_TIMEOUT_MS", "300000")
    )  # 5 minutes


@dataclass
class SchedulerConfig:
    """Recurring job scheduling (APScheduler)."""

    enabled: bool = os.getenv("JOBENGINE_SCHEDULER_ENABLED", "true").lower() == "true"
    misfire_grace_seconds: int = int(
        os.getenv("JOBENGINE_SCHEDULER_MISFIRE_GRACE_SECONDS", "60")
    )
    system_user_id: str = os.getenv("JOBENGINE_SYSTEM_USER_ID", "system")


@dataclass
class Config:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    def validate(self) -> None:
        if self.queue.max_concurrent_jobs < 1:
            raise ValueError("JOBENGINE_MAX_CONCURRENT_JOBS must be at least 1")
        if self.queue.poll_interval_ms < 1:
            raise ValueError("JOBENGINE_POLL_INTERVAL_MS must be at least 1")
        if self.queue.batch_size < 1:
            raise ValueError("JOBENGINE_BATCH_SIZE must be at least 1")
        if self.queue.default_max_retries < 0:
            raise ValueError("JOBENGINE_DEFAULT_MAX_RETRIES must not be negative")

    @classmethod
    def load(cls) -> "Config":
        """Load and validate configuration"""
        config = cls()
        config.validate()
        logger.debug("Configuration loaded successfully")
        return config


# Global configuration instance
config = Config.load()
