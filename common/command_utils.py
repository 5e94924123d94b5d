# common/command_utils.py
# -*- coding: utf-8 -*-
"""
Utilities for executing shell commands and logging their output.
"""

import logging
import os
import shutil
import subprocess
from typing import Dict, List, Optional, Union

from startup.config_models import SYMBOLS_DEFAULT, AppSettings

module_logger = logging.getLogger(__name__)


def log_server(
    message: str,
    level: str = "info",
    current_logger: Optional[logging.Logger] = None,
    app_settings: Optional[AppSettings] = None,
    exc_info: bool = False,
) -> None:
    """
    Logs a message at the named level on the given logger, or on the module
    logger when none is passed.

    Args:
        message (str): The log message to be recorded.
        level (str): "debug", "info", "warning", "error" or "critical".
            "success" is accepted as an alias of "info". Defaults to "info".
        current_logger (Optional[logging.Logger]): Logger to emit on.
        app_settings (Optional[AppSettings]): Settings of the current run;
            accepted so every call site can pass the same arguments.
        exc_info (bool): Attach the active exception's traceback.
    """
    effective_logger = current_logger if current_logger else module_logger

    if level == "warning":
        effective_logger.warning(message, exc_info=exc_info)
    elif level == "error":
        effective_logger.error(message, exc_info=exc_info)
    elif level == "critical":
        effective_logger.critical(message, exc_info=exc_info)
    elif level == "debug":
        effective_logger.debug(message, exc_info=exc_info)
    else:
        effective_logger.info(message, exc_info=exc_info)


def _get_elevated_command_prefix() -> List[str]:
    """Return ['sudo'] if the current user is not root, otherwise an empty list."""
    return [] if os.geteuid() == 0 else ["sudo"]


def run_command(
    command: Union[List[str], str],
    app_settings: Optional[AppSettings],
    check: bool = True,
    shell: bool = False,
    capture_output: bool = False,
    text: bool = True,
    cmd_input: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    quiet: bool = False,
    sensitive: bool = False,
) -> subprocess.CompletedProcess:
    """
    Executes a system command and logs the process details and results.

    Args:
        command: The command to execute, as a list of strings or a string.
            With `shell=True` a list is joined into a single string.
        app_settings: Settings providing the logging symbols.
        check: Raise CalledProcessError on a non-zero exit code.
        shell: Execute through the shell.
        capture_output: Capture stdout and stderr.
        text: Decode stdout/stderr as text.
        cmd_input: Data passed to the command's standard input.
        current_logger: Logger to use instead of the module logger.
        cwd: Working directory for the command.
        env: Environment for the command.
        quiet: Log the invocation and captured output at DEBUG instead of
            INFO. Used by read-only probes that run many times.
        sensitive: Never log captured stdout, and log stderr only when the
            command fails. For commands whose output may carry secrets
            (`tee` echoing its input, `cat` of a credentials file).

    Returns:
        subprocess.CompletedProcess for the finished command.

    Raises:
        subprocess.CalledProcessError: `check` is True and the command failed.
        FileNotFoundError: The executable does not exist.
    """
    effective_logger = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    chatter_level = "debug" if quiet else "info"
    command_to_log_str: str
    command_to_run: Union[List[str], str]

    if shell:
        if isinstance(command, list):
            command_to_run = " ".join(command)
        else:
            command_to_run = command
        command_to_log_str = str(command_to_run)
    else:
        if isinstance(command, str):
            log_server(
                f"{symbols.get('warning', '!')} Running string command '{command}' without shell=True. Consider list format.",
                "warning",
                effective_logger,
                app_settings,
            )
            command_to_run = command.split()
            command_to_log_str = command
        else:
            command_to_run = command
            command_to_log_str = subprocess.list2cmdline(command)

    log_server(
        f"{symbols.get('gear', '⚙️')} Executing: {command_to_log_str}{f' (in {cwd})' if cwd else ''}",
        chatter_level,
        effective_logger,
        app_settings,
    )
    try:
        result = subprocess.run(
            command_to_run,
            check=check,
            shell=shell,
            capture_output=capture_output,
            text=text,
            input=cmd_input,
            cwd=cwd,
            env=env,
        )
        if capture_output and not sensitive:
            if result.stdout and result.stdout.strip():
                log_server(
                    f"   stdout: {result.stdout.strip()}",
                    "debug",
                    effective_logger,
                    app_settings,
                )
            if result.stderr and result.stderr.strip():
                log_server(
                    f"   stderr: {result.stderr.strip()}",
                    "debug",
                    effective_logger,
                    app_settings,
                )
        return result
    except subprocess.CalledProcessError as e:
        stdout_info = (
            e.stdout.strip()
            if e.stdout and hasattr(e.stdout, "strip")
            else "N/A"
        )
        stderr_info = (
            e.stderr.strip()
            if e.stderr and hasattr(e.stderr, "strip")
            else "N/A"
        )
        cmd_executed_str = (
            subprocess.list2cmdline(e.cmd)
            if isinstance(e.cmd, list)
            else str(e.cmd)
        )
        log_server(
            f"{symbols.get('error', '❌')} Command `{cmd_executed_str}` failed (rc {e.returncode}).",
            "warning" if quiet else "error",
            effective_logger,
            app_settings,
        )
        if stdout_info != "N/A" and not sensitive:
            log_server(
                f"   stdout: {stdout_info}",
                "debug",
                effective_logger,
                app_settings,
            )
        if stderr_info != "N/A":
            log_server(
                f"   stderr: {stderr_info}",
                "warning" if quiet else "error",
                effective_logger,
                app_settings,
            )
        raise
    except FileNotFoundError as e:
        log_server(
            f"{symbols.get('error', '❌')} Command not found: {e.filename}. Ensure it's installed and in PATH.",
            "warning" if quiet else "error",
            effective_logger,
            app_settings,
        )
        raise


def run_elevated_command(
    command: List[str],
    app_settings: Optional[AppSettings],
    check: bool = True,
    capture_output: bool = False,
    cmd_input: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    quiet: bool = False,
    sensitive: bool = False,
) -> subprocess.CompletedProcess:
    """
    Executes a command with elevated permissions.

    Prepends `sudo` when the current process is not root and delegates to
    `run_command`. Elevated commands never go through the shell.
    """
    prefix = _get_elevated_command_prefix()
    elevated_command_list = prefix + list(command)
    return run_command(
        elevated_command_list,
        app_settings,
        check=check,
        shell=False,
        capture_output=capture_output,
        text=True,
        cmd_input=cmd_input,
        current_logger=current_logger,
        cwd=cwd,
        env=env,
        quiet=quiet,
        sensitive=sensitive,
    )


def command_succeeds(
    command: List[str],
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
    elevated: bool = True,
) -> bool:
    """
    Run a check command and report whether it exited with status 0.

    Output is captured and logged at DEBUG only. A missing executable counts
    as failure. Used for the "is it already configured?" checks that
    precede every system change.
    """
    runner = run_elevated_command if elevated else run_command
    try:
        result = runner(
            command,
            app_settings,
            check=False,
            capture_output=True,
            current_logger=current_logger,
            quiet=True,
        )
    except FileNotFoundError:
        return False
    return result.returncode == 0


def command_exists(command_name: str) -> bool:
    """
    Check if a command exists in the system's PATH.

    Parameters:
        command_name (str): The name of the command to check for existence.

    Returns:
        bool: True if the command is found in the system's PATH, False otherwise.
    """
    return shutil.which(command_name) is not None


def check_package_installed(
    package: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Check if an apt package is installed using `dpkg-query`.

    Args:
        package: The name of the package to check.
        app_settings: Settings providing the logging symbols.
        current_logger: Optional logger instance.

    Returns:
        True if the package is installed, False otherwise.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )
    try:
        result = run_command(
            ["dpkg-query", "-W", "-f=${Status}", package],
            app_settings,
            check=False,
            capture_output=True,
            text=True,
            current_logger=logger_to_use,
            quiet=True,
        )
        return (
            result.returncode == 0 and "install ok installed" in result.stdout
        )
    except FileNotFoundError:
        log_server(
            f"{symbols.get('error', '❌')} dpkg-query command not found. Cannot check package '{package}'.",
            "error",
            logger_to_use,
            app_settings,
        )
        return False
