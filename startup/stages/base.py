# startup/stages/base.py
# -*- coding: utf-8 -*-
"""
Base class for all stage actions.

A stage action performs the system changes of one stage and reports the
outcome as an ActionResult. Actions are idempotent: each one first detects
configuration left by an earlier run and skips the destructive steps.
Failures are raised as TransientActionError (worth retrying) or
FatalActionError (retrying cannot help).
"""

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence

from common.command_utils import (
    command_succeeds,
    log_server,
    run_command,
    run_elevated_command,
)
from common.debian.apt_manager import AptManager
from common.errors import FatalActionError, TransientActionError
from common.retry_utils import retry
from common.system_utils import enable_service, service_is_active
from startup.config_models import SYMBOLS_DEFAULT, AppSettings
from startup.stage_models import ActionResult


class StageAction(ABC):
    """
    Base class for all stage actions.

    Subclasses set `name` and implement `run()`.
    """

    name: str = ""

    def __init__(
        self,
        app_settings: Optional[AppSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the action.

        Args:
            app_settings: The application settings.
            logger: Optional logger instance. If not provided, a logger named
                after the class is used.
        """
        self.app_settings = app_settings
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._apt: Optional[AptManager] = None

    @abstractmethod
    def run(self) -> ActionResult:
        """
        Perform the stage.

        Returns:
            ActionResult with exit code 0 on success.

        Raises:
            TransientActionError: a failure that may go away on a retry.
            FatalActionError: a failure that retrying cannot fix.
        """

    @property
    def symbols(self):
        if self.app_settings and self.app_settings.symbols:
            return self.app_settings.symbols
        return SYMBOLS_DEFAULT

    @property
    def apt(self) -> AptManager:
        if self._apt is None:
            self._apt = AptManager(self.app_settings, logger=self.logger)
        return self._apt

    def log(self, message: str, level: str = "info") -> None:
        log_server(message, level, self.logger, self.app_settings)

    def elevated(
        self,
        command: List[str],
        check: bool = True,
        capture_output: bool = False,
        cmd_input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        return run_elevated_command(
            command,
            self.app_settings,
            check=check,
            capture_output=capture_output,
            cmd_input=cmd_input,
            current_logger=self.logger,
        )

    def output(self, command: List[str]) -> str:
        """stdout of an elevated command that must succeed."""
        return self.elevated(command, capture_output=True).stdout or ""

    def succeeds(self, command: List[str]) -> bool:
        return command_succeeds(command, self.app_settings, self.logger)

    def retry_command(
        self, command: List[str], description: Optional[str] = None
    ) -> Any:
        """
        Run an elevated command with the configured retry policy.

        Raises:
            RetryExhaustedError: every attempt failed.
        """
        max_attempts = self.app_settings.max_retries if self.app_settings else 3
        initial_delay = self.app_settings.retry_delay if self.app_settings else 10
        return retry(
            lambda: self.elevated(command, capture_output=True),
            max_attempts=max_attempts,
            initial_delay=initial_delay,
            description=description or " ".join(command),
            logger=self.logger,
        )

    def wait_for_block_device(self, device: str, timeout: int) -> bool:
        """Poll every 2s until `device` is a block device or `timeout` passes."""
        self.log(f"Waiting for device {device}...")
        waited = 0
        while True:
            if self.succeeds(["test", "-b", device]):
                self.log(f"Device {device} is available")
                return True
            if waited >= timeout:
                return False
            time.sleep(2)
            waited += 2

    def ensure_service_running(self, service: str) -> None:
        """
        Enable and start `service`, then verify it is active.

        Raises:
            FatalActionError: the service did not start.
        """
        if service_is_active(service, self.app_settings, self.logger):
            self.log(f"Service {service} is running")
            return
        try:
            enable_service(service, self.app_settings, self.logger)
        except subprocess.CalledProcessError as e:
            raise FatalActionError(
                f"Failed to start {service}", exit_code=e.returncode
            ) from e
        time.sleep(2)
        self.require(
            service_is_active(service, self.app_settings, self.logger),
            f"Service {service} failed to start",
        )
        self.log(f"Service {service} is running")

    def require(self, condition: bool, message: str, exit_code: int = 1) -> None:
        """Raise FatalActionError with `message` unless `condition` holds."""
        if not condition:
            self.log(f"{self.symbols.get('error', '❌')} {message}", "error")
            raise FatalActionError(message, exit_code=exit_code)


class ScriptAction(StageAction):
    """Runs an external shell script in place of a built-in stage action."""

    def __init__(
        self,
        script_path: str,
        args: Sequence[str] = (),
        app_settings: Optional[AppSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(app_settings, logger)
        self.script_path = script_path
        self.args = tuple(args)
        self.name = os.path.basename(script_path)

    def run(self) -> ActionResult:
        if not os.path.isfile(self.script_path):
            raise FatalActionError(
                f"Stage script not found: {self.script_path}", exit_code=1
            )
        try:
            result = run_command(
                ["bash", self.script_path, *self.args],
                self.app_settings,
                check=False,
                current_logger=self.logger,
            )
        except FileNotFoundError as e:
            raise FatalActionError(f"Cannot execute bash: {e}") from e
        if result.returncode != 0:
            return ActionResult(
                exit_code=result.returncode,
                detail=f"{self.script_path} exited with {result.returncode}",
            )
        return ActionResult(detail=f"{self.script_path} completed")


class CallableAction(StageAction):
    """
    Wraps a plain callable.

    The callable may return an ActionResult, an int exit status, a bool, or
    None (success). Exceptions propagate unchanged.
    """

    def __init__(
        self,
        func: Callable[[], Any],
        app_settings: Optional[AppSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(app_settings, logger)
        self.func = func
        self.name = getattr(func, "__name__", "callable")

    def run(self) -> ActionResult:
        outcome = self.func()
        if isinstance(outcome, ActionResult):
            return outcome
        if outcome is None or outcome is True:
            return ActionResult()
        if outcome is False:
            return ActionResult(exit_code=1)
        if isinstance(outcome, int):
            return ActionResult(exit_code=outcome)
        raise TransientActionError(
            f"{self.name} returned an unsupported value: {outcome!r}"
        )
