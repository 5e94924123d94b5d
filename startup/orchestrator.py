# startup/orchestrator.py
# -*- coding: utf-8 -*-
"""
Orchestrator for the file server startup.

This module provides the StartupOrchestrator class, which runs the stages
strictly in order under the startup lock, stops at the first failure and
finishes with the status report.
"""

import logging
from typing import Callable, List, Optional, Sequence

from common.command_utils import log_server
from common.errors import ConfigurationError
from common.lock_utils import PidLock
from startup import config as static_config
from startup.config_models import AppSettings
from startup.stage_catalog import setting_value, validate_stage_order
from startup.stage_models import (
    OrchestrationReport,
    RunResult,
    RunState,
    Stage,
)
from startup.stage_runner import execute_stage
from startup.status_report import StatusReporter

BANNER = "=" * 40

ErrorHandler = Callable[[AppSettings, Stage, RunResult, Sequence[RunResult], logging.Logger], None]


def log_startup_failure(
    app_settings: AppSettings,
    stage: Stage,
    result: RunResult,
    completed: Sequence[RunResult],
    logger: logging.Logger,
) -> None:
    """Log the failure banner with everything needed to resume by hand."""

    def error(message: str) -> None:
        log_server(message, "error", logger, app_settings)

    error(BANNER)
    error(f"  Startup Failed at: {stage.description} ({stage.name})")
    error(f"  Exit code: {result.exit_code}")
    error(BANNER)
    succeeded = [r.stage_name for r in completed if r.succeeded and not r.skipped]
    error(
        f"Stages completed before the failure: {', '.join(succeeded) if succeeded else 'none'}"
    )
    error("Check logs for details:")
    error(f"  Log directory: {app_settings.log_dir}")
    error(f"  Stage log: {app_settings.log_dir}/{stage.name}.log")
    error("To retry individual steps, run:")
    for name in static_config.CANONICAL_STAGE_ORDER:
        error(f"  {static_config.CLI_NAME} --stage {name}")


class StartupOrchestrator:
    """
    Runs the provisioning stages in canonical order.

    The stage list is validated on construction. `run()` performs the
    pre-flight check, takes the startup lock and executes the stages one by
    one; the first failure aborts the run without invoking the remaining
    stages. Nothing is rolled back.
    """

    def __init__(
        self,
        app_settings: AppSettings,
        stages: Sequence[Stage],
        logger: Optional[logging.Logger] = None,
        lock: Optional[PidLock] = None,
        error_handler: Optional[ErrorHandler] = None,
        status_reporter: Optional[StatusReporter] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            app_settings: The application settings.
            stages: Stages to run; must follow the canonical order.
            logger: Optional logger instance.
            lock: Lock to hold during the run. Defaults to a PidLock on
                LOCK_FILE.
            error_handler: Called once with the failing stage. Defaults to
                `log_startup_failure`.
            status_reporter: Produces the final status block and summary.

        Raises:
            StageOrderError: the stage list is not in canonical order.
        """
        validate_stage_order([stage.name for stage in stages])
        self.app_settings = app_settings
        self.stages: List[Stage] = list(stages)
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.lock = lock or PidLock(
            app_settings.lock_file,
            timeout=app_settings.lock_timeout,
            poll_interval=app_settings.lock_poll_interval,
            reclaim_stale=app_settings.lock_reclaim_stale,
            stale_grace=app_settings.lock_stale_grace,
            logger=self.logger,
        )
        self.error_handler = error_handler or log_startup_failure
        self.status_reporter = status_reporter or StatusReporter(
            app_settings, self.logger
        )
        self.state = RunState.NOT_STARTED
        self.current_stage: Optional[str] = None
        self.results: List[RunResult] = []

    def log(self, message: str, level: str = "info") -> None:
        log_server(message, level, self.logger, self.app_settings)

    def preflight(self) -> None:
        """
        Check that every enabled stage has its required settings.

        Raises:
            ConfigurationError: naming every missing setting.
        """
        missing = []
        for stage in self.stages:
            if not stage.enabled:
                continue
            for dotted_path in stage.required_settings:
                value = setting_value(self.app_settings, dotted_path)
                if value is None or (isinstance(value, str) and not value.strip()):
                    missing.append(f"{dotted_path} (stage {stage.name})")
        if missing:
            raise ConfigurationError(
                "Missing required settings: " + ", ".join(missing)
            )

    def _log_intro(self) -> None:
        self.log(BANNER)
        self.log(f"  {static_config.PROJECT_NAME} Service Orchestration")
        self.log(BANNER)
        self.log(f"Configuration file: {self.app_settings.config_file}")
        self.log(f"Log directory: {self.app_settings.log_dir}")
        self.log("Service startup order:")
        for position, stage in enumerate(self.stages, start=1):
            suffix = "" if stage.enabled else " (disabled)"
            self.log(f"  {position}. {stage.description}{suffix}")

    def _report(self, report: OrchestrationReport) -> OrchestrationReport:
        try:
            summary = self.status_reporter.report(report.results)
        except Exception as e:
            self.log(f"Could not produce the status report: {e}", "warning")
        else:
            report.summary_path = str(summary) if summary else None
        return report

    def run(self) -> OrchestrationReport:
        """
        Execute the stages.

        Returns:
            OrchestrationReport with state COMPLETED (exit code 0) or
            ABORTED (exit code of the failing stage).

        Raises:
            ConfigurationError: pre-flight failed; no stage ran.
            LockTimeoutError: another run holds the lock.
        """
        self.results = []
        self.current_stage = None
        self._log_intro()
        self.preflight()

        with self.lock:
            self.state = RunState.RUNNING
            for stage in self.stages:
                self.current_stage = stage.name
                result = execute_stage(stage, self.app_settings, self.logger)
                self.results.append(result)
                if not result.succeeded:
                    self.state = RunState.ABORTED
                    self.error_handler(
                        self.app_settings,
                        stage,
                        result,
                        tuple(self.results[:-1]),
                        self.logger,
                    )
                    report = OrchestrationReport(
                        state=self.state,
                        results=tuple(self.results),
                        exit_code=result.exit_code or 1,
                        failed_stage=stage.name,
                    )
                    return self._report(report)

            self.current_stage = None
            self.state = RunState.COMPLETED
            report = OrchestrationReport(
                state=self.state, results=tuple(self.results), exit_code=0
            )
            self._report(report)

        self.log(BANNER)
        self.log("  All services started successfully!")
        self.log(BANNER)
        if report.summary_path:
            self.log(f"Review the summary report: {report.summary_path}")
        self.log(f"For troubleshooting, check logs in: {self.app_settings.log_dir}")
        return report
