# common/errors.py
# -*- coding: utf-8 -*-
"""
Exception types shared by the startup orchestrator and the stage actions.

Every exception carries the process exit code it maps to, so the CLI can
turn any failure into a status without inspecting the type.
"""

from typing import Optional


class StartupError(Exception):
    """Base class for all orchestrator errors."""

    exit_code: int = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(StartupError):
    """A required setting is missing or a configured value is invalid."""

    exit_code = 2


class LockTimeoutError(StartupError):
    """The startup lock could not be acquired within the allowed time."""

    exit_code = 3

    def __init__(
        self,
        message: str,
        lock_path: Optional[str] = None,
        owner_pid: Optional[int] = None,
    ):
        super().__init__(message)
        self.lock_path = lock_path
        self.owner_pid = owner_pid


class StageOrderError(StartupError, ValueError):
    """A stage list does not follow the canonical dependency order."""


class StageActionError(StartupError):
    """A stage action did not complete."""

    retryable: bool = False


class TransientActionError(StageActionError):
    """A failure that may succeed when attempted again."""

    retryable = True


class FatalActionError(StageActionError):
    """A failure that retrying cannot fix, e.g. a missing device."""


class RetryExhaustedError(StageActionError):
    """All retry attempts of an action failed."""

    def __init__(self, message: str, attempts: int, exit_code: int = 1):
        super().__init__(message, exit_code=exit_code)
        self.attempts = attempts


class StartupInterrupted(SystemExit):
    """Raised from a signal handler so that cleanup scopes unwind."""

    def __init__(self, signum: int):
        super().__init__(128 + signum)
        self.signum = signum
