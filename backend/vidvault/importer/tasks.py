from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded

from vidvault.core.errors import RetryableTaskError, VidVaultError

logger = logging.getLogger(__name__)

# Seconds past the soft limit before the worker kills the task outright.
HARD_TIME_LIMIT_GRACE_SECONDS = 30

# Failures a retry may fix; everything else fails the task on the first raise.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (RetryableTaskError, SoftTimeLimitExceeded)


class TaskExhaustedError(VidVaultError):
    """A queued task hit its attempt cap; raised instead of another retry."""

    http_status_code = 500
    default_code = "TASK_EXHAUSTED"


@dataclass(frozen=True)
class TaskDescriptor:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    tries: int = 3
    timeout_seconds: float = 3600
    max_exceptions: int = 2
    delay_seconds: float = 0
    priority: int = 0
    queue: str = "default"

    @property
    def attempt_cap(self) -> int:
        return max(1, min(self.tries, self.max_exceptions))

    def task_kwargs(self) -> dict[str, Any]:
        # The worker needs the caps; Celery's own max_retries is static per task.
        return {**self.payload, "tries": self.tries, "max_exceptions": self.max_exceptions}

    def apply_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "queue": self.queue,
            "priority": self.priority,
            "soft_time_limit": self.timeout_seconds,
            "time_limit": self.timeout_seconds + HARD_TIME_LIMIT_GRACE_SECONDS,
        }
        if self.delay_seconds > 0:
            options["countdown"] = self.delay_seconds
        return options


def enqueue(task: Any, descriptor: TaskDescriptor) -> str:
    """Put one task on its broker queue; returns the Celery task id."""
    result = task.apply_async(kwargs=descriptor.task_kwargs(), **descriptor.apply_options())
    logger.info(
        "Task queued",
        extra={
            "extra_data": {
                "task": descriptor.name,
                "task_id": result.id,
                "queue": descriptor.queue,
                "priority": descriptor.priority,
            }
        },
    )
    return result.id


def check_attempt_cap(*, retries: int, tries: int, max_exceptions: int, exc: BaseException) -> None:
    """
    Called with a retryable failure of attempt ``retries + 1``.

    Raises `TaskExhaustedError` once the attempt count reaches ``tries`` or
    ``max_exceptions`` (timeouts count as exceptions), which takes the failure
    out of ``autoretry_for``. Otherwise returns and the caller re-raises.
    """
    attempt = retries + 1
    if attempt >= max(1, min(tries, max_exceptions)):
        message = str(exc) or type(exc).__name__
        raise TaskExhaustedError(
            f"Gave up after {attempt} attempt(s): {message}",
            metadata={"attempts": attempt, "error": message},
        ) from exc


def log_task_failure(
    name: str, task_id: str | None, payload: dict[str, Any], attempts: int, exc: BaseException | None
) -> None:
    logger.error(
        "Task failed permanently",
        exc_info=exc,
        extra={
            "extra_data": {
                "task": name,
                "task_id": task_id,
                "payload": payload,
                "attempts": attempts,
                "error": str(exc) if exc is not None else None,
            }
        },
    )
