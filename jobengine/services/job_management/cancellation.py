"""Cooperative cancellation tokens and token-bound execution."""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Optional

from jobengine.lib.logger import configure_logger

from .errors import JobCancelledError, JobTimeoutError
from .outcome import Failure, Outcome, as_outcome

logger = configure_logger(__name__)


class CancelReason(str, Enum):
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class CancellationToken:
    """Signal a running job should observe to stop early.

    A timeout is a cancellation triggered by an internal timer; see
    ``with_timeout``. Jobs observe the token via ``cancelled`` or
    ``raise_if_cancelled``; nothing is force-killed by the token itself.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[CancelReason] = None
        self._timeout_ms: Optional[int] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @classmethod
    def with_timeout(cls, timeout_ms: Optional[int]) -> "CancellationToken":
        token = cls()
        if timeout_ms:
            token.cancel_after(timeout_ms)
        return token

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[CancelReason]:
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.CANCELLED) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        self._clear_timer()

    def cancel_after(self, timeout_ms: int) -> None:
        """Arm a timer that fires the token after ``timeout_ms``."""
        self._clear_timer()
        self._timeout_ms = timeout_ms
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            timeout_ms / 1000, self.cancel, CancelReason.TIMEOUT
        )

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()

    def error(self) -> Exception:
        if self._reason == CancelReason.TIMEOUT:
            return JobTimeoutError(f"Job timed out after {self._timeout_ms}ms")
        return JobCancelledError("Job was cancelled")

    def dispose(self) -> None:
        self._clear_timer()

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def _consume_result(task: asyncio.Future) -> None:
    # Abandoned tasks may still finish with an error; retrieve it so it is not
    # reported as never retrieved.
    if not task.cancelled() and task.exception() is not None:
        logger.debug(
            "Abandoned job task finished with error",
            extra={"error": str(task.exception()), "event_type": "abandoned_task_error"},
        )


async def run_with_token(work: Awaitable[Any], token: CancellationToken) -> Outcome:
    """Await ``work`` until it finishes or ``token`` fires.

    Exceptions raised by the work become ``Failure`` outcomes; a token firing
    first becomes ``Failure(JobTimeoutError)`` or ``Failure(JobCancelledError)``.
    """
    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        try:
            return as_outcome(task.result())
        except asyncio.CancelledError as e:
            return Failure(JobCancelledError("Job task was cancelled", cause=e))
        except Exception as e:
            return Failure(e)

    task.add_done_callback(_consume_result)
    task.cancel()
    return Failure(token.error())
