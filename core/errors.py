"""
Error categories for browser-driven work.

Navigation failures are split into soft (transient, retried) and hard
(surfaced once the attempt budget is spent). Everything else is treated as
a per-pass failure that the schedulers absorb.
"""

import re
from enum import Enum


class ErrorCategory(str, Enum):
    SOFT_NAVIGATION = "soft_navigation"
    HARD_NAVIGATION = "hard_navigation"
    UNKNOWN = "unknown"


SOFT_NAVIGATION_PATTERN = re.compile(
    r"ERR_ABORTED|Navigation failed because|Execution context was destroyed"
    r"|interrupted by another navigation|frame was detached",
    re.IGNORECASE,
)

ABORTED_PATTERN = re.compile(r"ERR_ABORTED", re.IGNORECASE)


class WorkerLaunchError(RuntimeError):
    """The browser session for a worker could not be started."""


def get_error_category(error: BaseException) -> ErrorCategory:
    message = str(error)
    if SOFT_NAVIGATION_PATTERN.search(message):
        return ErrorCategory.SOFT_NAVIGATION
    if "net::" in message or "Timeout" in message:
        return ErrorCategory.HARD_NAVIGATION
    return ErrorCategory.UNKNOWN


def is_soft_navigation_error(error: BaseException) -> bool:
    return get_error_category(error) == ErrorCategory.SOFT_NAVIGATION


def is_aborted(error: BaseException) -> bool:
    return bool(ABORTED_PATTERN.search(str(error)))
