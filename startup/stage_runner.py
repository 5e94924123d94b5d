# startup/stage_runner.py
# -*- coding: utf-8 -*-
"""
Runs a single stage and turns its outcome into a RunResult.

The runner never decides whether the run continues; that is the
orchestrator's job.
"""

import logging
import subprocess
import time
from typing import Optional

from common.command_utils import log_server
from common.core_utils import log_level_from_name, stage_log_file
from common.errors import StageActionError
from common.retry_utils import retry
from startup.config_models import AppSettings
from startup.stage_models import ActionResult, RunResult, Stage

module_logger = logging.getLogger(__name__)

BANNER = "=" * 40


def _failure_exit_code(error: BaseException) -> int:
    if isinstance(error, subprocess.CalledProcessError):
        return error.returncode or 1
    if isinstance(error, StageActionError):
        return error.exit_code or 1
    return 1


def execute_stage(
    stage: Stage,
    app_settings: AppSettings,
    logger: Optional[logging.Logger] = None,
) -> RunResult:
    """
    Execute one stage.

    A disabled stage is reported as skipped without touching its action.
    An enabled stage runs with its own log file attached, through the retry
    executor when `stage.retry` is set. Any exception raised by the action
    is converted into a failed RunResult carrying the action's exit code.
    After a success the stage's `post_delay` is slept.

    Args:
        stage: The stage to run.
        app_settings: The resolved settings.
        logger: Optional logger to use instead of the module logger.

    Returns:
        RunResult describing the outcome.
    """
    logger_to_use = logger if logger else module_logger
    symbols = app_settings.symbols

    if not stage.enabled:
        log_server(
            f"{stage.description} is disabled, skipping...",
            "info",
            logger_to_use,
            app_settings,
        )
        return RunResult(
            stage_name=stage.name,
            succeeded=True,
            exit_code=0,
            skipped=True,
            message="disabled",
        )

    log_server(BANNER, "info", logger_to_use, app_settings)
    log_server(
        f"Starting: {stage.description}", "info", logger_to_use, app_settings
    )
    log_server(f"Stage: {stage.name}", "info", logger_to_use, app_settings)
    log_server(BANNER, "info", logger_to_use, app_settings)

    started = time.monotonic()
    outcome: Optional[ActionResult] = None
    error: Optional[BaseException] = None
    with stage_log_file(
        app_settings.log_dir,
        stage.name,
        log_level=log_level_from_name(app_settings.log_level),
        log_prefix=app_settings.log_prefix,
        symbols=symbols,
    ):
        try:
            if stage.retry:
                outcome = retry(
                    stage.action.run,
                    max_attempts=app_settings.max_retries,
                    initial_delay=app_settings.retry_delay,
                    description=stage.description,
                    logger=logger_to_use,
                )
            else:
                outcome = stage.action.run()
        except Exception as e:
            error = e
            log_server(
                f"Stage '{stage.name}' raised {type(e).__name__}: {e}",
                "debug",
                logger_to_use,
                app_settings,
                exc_info=True,
            )
    duration = time.monotonic() - started

    if error is not None:
        exit_code = _failure_exit_code(error)
        message = str(error)
    elif outcome is None or outcome.exit_code != 0:
        exit_code = outcome.exit_code if outcome is not None else 1
        message = outcome.detail if outcome is not None else "no result"
    else:
        if outcome.already_configured:
            log_server(
                f"{symbols.get('success', '✅')} SUCCESS: {stage.description} already configured",
                "info",
                logger_to_use,
                app_settings,
            )
        else:
            log_server(
                f"{symbols.get('success', '✅')} SUCCESS: {stage.description} completed",
                "info",
                logger_to_use,
                app_settings,
            )
        if stage.post_delay > 0:
            log_server(
                f"Waiting {stage.post_delay}s before next stage...",
                "info",
                logger_to_use,
                app_settings,
            )
            time.sleep(stage.post_delay)
        return RunResult(
            stage_name=stage.name,
            succeeded=True,
            exit_code=0,
            duration=duration,
            already_configured=outcome.already_configured,
            message=outcome.detail,
        )

    log_server(
        f"{symbols.get('error', '❌')} FAILED: {stage.description} failed with exit code {exit_code}",
        "error",
        logger_to_use,
        app_settings,
    )
    if message:
        log_server(f"   {message}", "error", logger_to_use, app_settings)
    return RunResult(
        stage_name=stage.name,
        succeeded=False,
        exit_code=exit_code,
        duration=duration,
        message=message,
    )
