# common/retry_utils.py
# -*- coding: utf-8 -*-
"""
Bounded retry with exponential backoff for flaky system operations
(package downloads, iSCSI discovery and login, VPN bring-up, NFS mounts).
"""

import logging
import subprocess
import time
from typing import Any, Callable, Optional, Tuple, Type

from common.errors import RetryExhaustedError, TransientActionError

module_logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
    TransientActionError,
    subprocess.CalledProcessError,
)


def _status_code(value: Any) -> Optional[int]:
    """Exit status carried by an ActionResult, CompletedProcess or exception."""
    for attribute in ("exit_code", "returncode"):
        code = getattr(value, attribute, None)
        if isinstance(code, int):
            return code
    return None


def _default_is_failure(result: Any) -> bool:
    code = _status_code(result)
    return code is not None and code != 0


def retry(
    action: Callable[[], Any],
    max_attempts: int = 3,
    initial_delay: float = 10,
    retry_on: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_ON,
    is_failure: Optional[Callable[[Any], bool]] = None,
    description: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """
    Call `action` until it succeeds, at most `max_attempts` times.

    A failed attempt is either an exception of one of the `retry_on` types
    or a returned value for which `is_failure` is true (by default: an
    object with a non-zero `exit_code`/`returncode`). Between attempts the
    wait starts at `initial_delay` seconds and doubles after every failure;
    there is no wait after the final attempt. Exceptions not listed in
    `retry_on` propagate immediately.

    Returns:
        The result of the first successful attempt.

    Raises:
        RetryExhaustedError: every attempt failed. It carries the number of
            attempts and the exit code of the last failure, and is chained
            from the last exception when there was one.
    """
    logger_to_use = logger if logger else module_logger
    check_failure = is_failure if is_failure else _default_is_failure
    label = description or getattr(action, "__name__", "action")
    attempts = max(1, int(max_attempts))
    delay = initial_delay
    last_error: Optional[BaseException] = None
    last_code = 1

    for attempt in range(1, attempts + 1):
        logger_to_use.debug(f"Attempt {attempt}/{attempts}: {label}")
        try:
            result = action()
        except retry_on as e:
            last_error = e
            last_code = _status_code(e) or 1
            logger_to_use.warning(
                f"Attempt {attempt}/{attempts} of '{label}' failed: {e}"
            )
        else:
            if not check_failure(result):
                return result
            last_error = None
            last_code = _status_code(result) or 1
            logger_to_use.warning(
                f"Attempt {attempt}/{attempts} of '{label}' failed with exit code {last_code}"
            )

        if attempt < attempts:
            logger_to_use.info(f"Retrying '{label}' in {delay}s...")
            time.sleep(delay)
            delay *= 2

    logger_to_use.error(
        f"'{label}' failed after {attempts} attempts (exit code {last_code})"
    )
    raise RetryExhaustedError(
        f"'{label}' failed after {attempts} attempts",
        attempts=attempts,
        exit_code=last_code,
    ) from last_error
