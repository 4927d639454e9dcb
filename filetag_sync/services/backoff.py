"""Failure classification and cooldown for the sync scheduler."""

import logging
import re
import time
from collections.abc import Callable

from filetag_sync.core.exceptions import CloudPermissionError
from filetag_sync.services.cloud_client import PERMISSION_DENIED_CODE

logger = logging.getLogger(__name__)

_PERMISSION_DENIED_RE = re.compile(r"permission denied", re.IGNORECASE)


def is_permission_denied(exc: BaseException) -> bool:
    """True if ``exc`` carries an authorization/policy rejection signature."""
    if isinstance(exc, CloudPermissionError):
        return True
    if str(getattr(exc, "code", "")) == PERMISSION_DENIED_CODE:
        return True
    message = str(exc)
    return bool(_PERMISSION_DENIED_RE.search(message)) or PERMISSION_DENIED_CODE in message


class BackoffController:
    """Suspends sync cycles for a cooldown after a permission-denied failure.

    Other failures never set a cooldown; the next tick simply re-selects the
    rows that are still pending.
    """

    def __init__(
        self,
        cooldown_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._resume_at: float | None = None

    def is_suspended(self) -> bool:
        if self._resume_at is None:
            return False
        if self._clock() >= self._resume_at:
            self._resume_at = None
            return False
        return True

    def remaining_seconds(self) -> float:
        """Seconds until ticks resume (0 when not suspended)."""
        if not self.is_suspended():
            return 0.0
        return max(self._resume_at - self._clock(), 0.0)

    def record_success(self) -> None:
        self._resume_at = None

    def record_failure(self, exc: BaseException) -> bool:
        """Classify a cycle failure.

        Returns:
            True if a cooldown was engaged.
        """
        if not is_permission_denied(exc):
            return False
        self._resume_at = self._clock() + self.cooldown_seconds
        logger.warning(
            f"Cloud permission error, suspending sync for {self.cooldown_seconds / 60:.0f} minutes"
        )
        return True
