# common/lock_utils.py
# -*- coding: utf-8 -*-
"""
Cross-process startup lock.

The lock is a file holding the owner's pid, created atomically with
O_CREAT|O_EXCL. Creation and stale reclaim run under an flock on a sibling
`.guard` file, so two contenders cannot both judge the same lock stale.
Release is guaranteed on normal exit, on exceptions and on
SIGINT/SIGTERM/SIGHUP: the signal handlers raise StartupInterrupted so every
`with`/`finally` scope unwinds, and an atexit hook removes the file as a
last resort.
"""

import atexit
import fcntl
import logging
import os
import signal
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from common.errors import LockTimeoutError, StartupInterrupted

module_logger = logging.getLogger(__name__)

RELEASE_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


def _raise_interrupted(signum, frame):
    raise StartupInterrupted(signum)


def pid_is_alive(pid: int) -> bool:
    """Whether a process with `pid` exists (signal 0 probe)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user.
        return True
    return True


class PidLock:
    """
    Exclusive lock held by at most one live orchestrator on the host.

    Usage:
        with PidLock("/var/lock/dk-b-server-startup.lock", timeout=300):
            ...

    A lock whose recorded process no longer exists is reclaimed once the
    file is older than `stale_grace` seconds, unless `reclaim_stale` is
    False, in which case the caller waits for the timeout like any other
    contender.
    """

    def __init__(
        self,
        path: str,
        timeout: float = 300,
        poll_interval: float = 5,
        reclaim_stale: bool = True,
        stale_grace: float = 10,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = path
        self.guard_path = f"{path}.guard"
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.reclaim_stale = reclaim_stale
        self.stale_grace = stale_grace
        self.logger = logger or module_logger
        self._held = False
        self._previous_handlers: Dict[int, Any] = {}

    @property
    def is_held(self) -> bool:
        return self._held

    def read_owner_pid(self) -> Optional[int]:
        """Return the pid recorded in the lock file, or None."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read().strip()
        except OSError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    @contextmanager
    def _guarded(self):
        """Hold the exclusive guard flock for a create-or-reclaim attempt."""
        fd = os.open(self.guard_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            # Closing the descriptor drops the flock.
            os.close(fd)

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{os.getpid()}\n")
        return True

    def _lock_age(self) -> Optional[float]:
        try:
            return time.time() - os.stat(self.path).st_mtime
        except OSError:
            return None

    def _reclaim_if_stale(self) -> bool:
        """
        Remove the lock file when its owner is gone. Returns True if removed.

        Must be called while holding the guard.
        """
        if not self.reclaim_stale:
            return False
        age = self._lock_age()
        if age is None or age < self.stale_grace:
            # Missing, or young enough that the owner may still be writing its pid.
            return False
        owner = self.read_owner_pid()
        if owner is not None and pid_is_alive(owner):
            return False
        self.logger.warning(
            f"Reclaiming stale lock {self.path} (owner pid {owner if owner is not None else 'unknown'} is not running)"
        )
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        return True

    def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Block until the lock is ours.

        Raises:
            LockTimeoutError: the lock is still held by another process after
                `timeout` seconds (default: the instance timeout).
        """
        if self._held:
            return
        wait_limit = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + wait_limit

        lock_dir = os.path.dirname(self.path)
        if lock_dir:
            os.makedirs(lock_dir, exist_ok=True)

        while True:
            with self._guarded():
                acquired = self._try_create() or (
                    self._reclaim_if_stale() and self._try_create()
                )
            if acquired:
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                owner = self.read_owner_pid()
                raise LockTimeoutError(
                    f"Could not acquire lock {self.path} within {wait_limit}s (held by pid {owner})",
                    lock_path=self.path,
                    owner_pid=owner,
                )
            self.logger.info(
                f"Waiting for lock {self.path} (held by pid {self.read_owner_pid()})..."
            )
            time.sleep(min(self.poll_interval, remaining))

        self._held = True
        atexit.register(self.release)
        self._install_signal_handlers()
        self.logger.debug(f"Acquired lock {self.path} (pid {os.getpid()})")

    def release(self) -> None:
        """Remove the lock file if this instance holds it. Safe to call twice."""
        if not self._held:
            return
        self._held = False
        try:
            if self.read_owner_pid() == os.getpid():
                os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove lock file {self.path}: {e}")
        self._restore_signal_handlers()
        atexit.unregister(self.release)
        self.logger.debug(f"Released lock {self.path}")

    def _install_signal_handlers(self) -> None:
        for signum in RELEASE_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(
                    signum, _raise_interrupted
                )
            except ValueError:
                # Not in the main thread; atexit still covers normal exits.
                break

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(
                    signum, handler if handler is not None else signal.SIG_DFL
                )
            except ValueError:
                break
        self._previous_handlers = {}

    def __enter__(self) -> "PidLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()
