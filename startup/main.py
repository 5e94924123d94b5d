# startup/main.py
# -*- coding: utf-8 -*-
"""
Main entry point for the file server startup.

Handles argument parsing, logging setup and settings loading, then hands
the stage list to the StartupOrchestrator and maps the outcome to an exit
code.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from common.command_utils import log_server
from common.core_utils import log_level_from_name, setup_logging
from common.errors import (
    ConfigurationError,
    LockTimeoutError,
    StageOrderError,
    StartupError,
)
from startup import config
from startup.cli_handler import list_stages, show_status, view_configuration
from startup.config_loader import load_app_settings
from startup.orchestrator import StartupOrchestrator
from startup.stage_catalog import build_stages

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=config.CLI_NAME,
        description=f"{config.PROJECT_NAME} startup: brings up network, iSCSI storage, SSD cache, file sharing, external NFS and Nextcloud sync in order.",
        epilog=f"Example: {config.CLI_NAME} --config /etc/dk-b-server.conf",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Configuration file (YAML or KEY=value). Default: $CONFIG_FILE or {config.CONFIG_FILE_DEFAULT}.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log severity threshold (overrides LOG_LEVEL).",
    )
    parser.add_argument(
        "--log-dir", default=None, help="Log directory (overrides LOG_DIR)."
    )
    parser.add_argument(
        "--lock-timeout",
        default=None,
        type=int,
        help="Seconds to wait for the startup lock (overrides LOCK_TIMEOUT).",
    )
    parser.add_argument(
        "--stage",
        action="append",
        dest="stages",
        choices=list(config.CANONICAL_STAGE_ORDER),
        metavar="NAME",
        help="Run only this stage (repeatable). Named stages run even when disabled. "
        f"Choices: {', '.join(config.CANONICAL_STAGE_ORDER)}.",
    )
    parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Do not wait between stages.",
    )
    parser.add_argument(
        "--list-stages", action="store_true", help="List the stages and exit."
    )
    parser.add_argument(
        "--view-config",
        action="store_true",
        help="View current configuration settings and exit.",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Report the current system status without running any stage.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {config.SCRIPT_VERSION}",
    )
    return parser


def main(args: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        parsed_args = parser.parse_args(args)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1

    try:
        app_settings = load_app_settings(parsed_args, current_logger=logger)
    except ConfigurationError as e:
        setup_logging(log_level=logging.INFO, log_to_console=True)
        log_server(f"Configuration error: {e}", "critical", logger)
        return e.exit_code

    informational = (
        parsed_args.view_config or parsed_args.list_stages or parsed_args.status
    )
    setup_logging(
        log_level=log_level_from_name(app_settings.log_level),
        log_file=None
        if informational
        else str(Path(app_settings.log_dir) / f"{config.ORCHESTRATOR_LOG_NAME}.log"),
        log_to_console=True,
        log_prefix=app_settings.log_prefix,
        symbols=app_settings.symbols,
    )
    symbols = app_settings.symbols

    if parsed_args.view_config:
        view_configuration(app_settings, current_logger=logger)
        return 0

    try:
        stages = build_stages(
            app_settings,
            only=parsed_args.stages,
            force_enabled=parsed_args.stages or (),
        )
    except StageOrderError as e:
        log_server(f"{symbols.get('error', '❌')} {e}", "error", logger, app_settings)
        return e.exit_code

    if parsed_args.list_stages:
        list_stages(stages)
        return 0
    if parsed_args.status:
        show_status(app_settings, current_logger=logger)
        return 0

    if os.geteuid() != 0:
        log_server(
            f"{symbols.get('error', '❌')} This script must be run as root.",
            "error",
            logger,
            app_settings,
        )
        return 1

    log_server(
        f"{symbols.get('sparkles', '✨')} Starting {config.PROJECT_NAME} startup (version {config.SCRIPT_VERSION})...",
        "info",
        logger,
        app_settings,
    )

    try:
        orchestrator = StartupOrchestrator(app_settings, stages, logger=logger)
        report = orchestrator.run()
    except ConfigurationError as e:
        log_server(
            f"{symbols.get('critical', '🔥')} Configuration error: {e}",
            "critical",
            logger,
            app_settings,
        )
        return e.exit_code
    except LockTimeoutError as e:
        log_server(
            f"{symbols.get('lock', '🔒')} {e}", "error", logger, app_settings
        )
        return e.exit_code
    except StartupError as e:
        log_server(
            f"{symbols.get('critical', '🔥')} Startup failed: {e}",
            "critical",
            logger,
            app_settings,
            exc_info=True,
        )
        return e.exit_code
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
