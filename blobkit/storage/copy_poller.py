"""
Polling loop for asynchronous server-side copies.

Some backends answer a copy request with a "pending" status and finish the
copy in the background. ``wait_for_copy`` hides that protocol behind a single
awaitable that returns on success and raises on anything else.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

from .errors import StorageError

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.5  # seconds
DEFAULT_MAX_POLL_ERRORS = 3


class CopyStatus(str, Enum):
    """States of an asynchronous copy."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"

    @classmethod
    def parse(cls, value: "str | CopyStatus | None") -> "CopyStatus | str":
        """Map a backend status onto CopyStatus, keeping unknown values verbatim."""
        if isinstance(value, CopyStatus):
            return value
        text = str(getattr(value, "value", value) or "").lower()
        try:
            return cls(text)
        except ValueError:
            return text


async def wait_for_copy(
    initial_status: "str | CopyStatus | None",
    fetch_status: Callable[[], Awaitable["str | CopyStatus | None"]],
    *,
    interval: float = DEFAULT_POLL_INTERVAL,
    max_errors: int = DEFAULT_MAX_POLL_ERRORS,
) -> None:
    """
    Wait until a copy leaves the pending state.

    Args:
        initial_status: Status returned by the call that started the copy.
        fetch_status: Coroutine function returning the current copy status.
        interval: Delay between two status checks, in seconds.
        max_errors: Number of consecutive failed status checks tolerated;
            the last one is raised once that many checks in a row have failed.

    Raises:
        StorageError: If the copy ends in any state other than success.
    """
    status = CopyStatus.parse(initial_status)
    n_errors = 0
    while status == CopyStatus.PENDING:
        # Cancellation of the caller surfaces here as CancelledError.
        await asyncio.sleep(interval)
        try:
            fetched = await fetch_status()
        except Exception as e:
            n_errors += 1
            logger.warning("Copy status check failed", attempt=n_errors, error=str(e))
            if n_errors >= max_errors:
                raise
            continue
        n_errors = 0
        status = CopyStatus.parse(fetched)

    if status != CopyStatus.SUCCESS:
        status_text = status.value if isinstance(status, CopyStatus) else status
        logger.error("Copy ended in terminal state", status=status_text)
        raise StorageError(f"copy failed with status: {status_text}")
