"""Tagged execution outcomes returned by jobs."""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Success:
    data: Any = None


@dataclass(frozen=True)
class Failure:
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class Postpone:
    """Reschedule without counting a failure."""

    delay_seconds: float
    reason: Optional[str] = None

    def __post_init__(self):
        if self.delay_seconds <= 0:
            raise ValueError("postpone requires a positive number of seconds")

    @property
    def message(self) -> str:
        return self.reason or f"Postponed for {self.delay_seconds:g} seconds"


Outcome = Union[Success, Failure, Postpone]


def as_outcome(value: Any) -> Outcome:
    """Treat a plain return value as a successful outcome."""
    if isinstance(value, (Success, Failure, Postpone)):
        return value
    return Success(value)
