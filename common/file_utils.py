# common/file_utils.py
# -*- coding: utf-8 -*-
"""
File system helpers for the stage actions: timestamped backups, writing
root-owned files, and idempotent edits of shared configuration files
(/etc/fstab, /etc/modules, smb.conf, /etc/exports).

All writes go through elevated commands so that the tool also works when
started through sudo from a non-root account.
"""

import datetime
import logging
import subprocess
from typing import List, Optional

from startup import config as static_config
from startup.config_models import SYMBOLS_DEFAULT, AppSettings

from .command_utils import log_server, run_elevated_command

module_logger = logging.getLogger(__name__)


def backup_file(
    file_path: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Backup a specified file to a timestamped backup file.

    The copy is placed beside the original as `<file>.bak.<YYYYmmdd-HHMMSS>`
    with `cp -a`. A missing source file needs no backup.

    Parameters:
        file_path (str): The path of the file to be backed up.
        app_settings (Optional[AppSettings]): Settings providing log symbols.
        current_logger (Optional[logging.Logger]): Logger instance to use.

    Returns:
        bool: True if the backup was made or was not needed, False if the
            copy failed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )

    try:
        run_elevated_command(
            ["test", "-f", file_path],
            app_settings,
            check=True,
            capture_output=True,
            current_logger=logger_to_use,
            quiet=True,
        )
    except subprocess.CalledProcessError:
        log_server(
            f"{symbols.get('info', 'ℹ️')} File {file_path} does not exist. No backup needed.",
            "debug",
            logger_to_use,
            app_settings,
        )
        return True

    timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_path = f"{file_path}.bak.{timestamp}"
    try:
        run_elevated_command(
            ["cp", "-a", file_path, backup_path],
            app_settings,
            current_logger=logger_to_use,
        )
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        log_server(
            f"{symbols.get('error', '❌')} Failed to backup {file_path} to {backup_path}: {e}",
            "error",
            logger_to_use,
            app_settings,
        )
        return False
    log_server(
        f"{symbols.get('success', '✅')} Backed up {file_path} to {backup_path}",
        "info",
        logger_to_use,
        app_settings,
    )
    return True


def read_file(
    file_path: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
    sensitive: bool = False,
) -> Optional[str]:
    """
    Return the contents of a (possibly root-only) file, or None if it cannot be read.

    Pass `sensitive=True` for files holding credentials so the contents
    never reach the log.
    """
    try:
        result = run_elevated_command(
            ["cat", file_path],
            app_settings,
            check=False,
            capture_output=True,
            current_logger=current_logger,
            quiet=True,
            sensitive=sensitive,
        )
    except FileNotFoundError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def write_root_file(
    file_path: str,
    content: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
    mode: Optional[str] = None,
    backup: bool = True,
) -> None:
    """
    Write `content` to `file_path` with elevated `tee`.

    An existing file is backed up first unless `backup` is False. With a
    `mode` (e.g. "600") the file is recreated empty with that mode by
    `install` before any content is written, so it is never readable with
    wider permissions. The content echoed back by tee is not logged.

    Raises:
        subprocess.CalledProcessError: install or tee failed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    if backup:
        backup_file(file_path, app_settings, logger_to_use)
    if mode:
        run_elevated_command(
            ["install", "-m", mode, "/dev/null", file_path],
            app_settings,
            current_logger=logger_to_use,
        )
    run_elevated_command(
        ["tee", file_path],
        app_settings,
        cmd_input=content,
        capture_output=True,
        current_logger=logger_to_use,
        sensitive=True,
    )
    log_server(
        f"Wrote {file_path}", "debug", logger_to_use, app_settings
    )


def ensure_directory(
    dir_path: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Create `dir_path` (and parents) as root if it does not exist."""
    run_elevated_command(
        ["mkdir", "-p", dir_path],
        app_settings,
        current_logger=current_logger,
        quiet=True,
    )


def append_line_if_missing(
    file_path: str,
    line: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Append `line` to `file_path` unless an identical line is already present.

    Returns True when the file was changed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    existing = read_file(file_path, app_settings, logger_to_use) or ""
    if line.strip() in (
        existing_line.strip() for existing_line in existing.splitlines()
    ):
        log_server(
            f"'{line}' already present in {file_path}",
            "debug",
            logger_to_use,
            app_settings,
        )
        return False
    backup_file(file_path, app_settings, logger_to_use)
    run_elevated_command(
        ["tee", "-a", file_path],
        app_settings,
        cmd_input=line.rstrip("\n") + "\n",
        capture_output=True,
        current_logger=logger_to_use,
    )
    log_server(
        f"Added '{line}' to {file_path}", "info", logger_to_use, app_settings
    )
    return True


def fstab_entry_for(fstab_text: str, mount_point: str) -> Optional[str]:
    """Return the active fstab line mounting `mount_point`, if any."""
    for line in fstab_text.splitlines():
        fields = line.split()
        if not fields or fields[0].startswith("#"):
            continue
        if len(fields) >= 2 and fields[1] == mount_point:
            return line
    return None


def set_fstab_entry(
    mount_point: str,
    entry: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
    fstab_path: str = static_config.FSTAB_PATH,
) -> bool:
    """
    Make `entry` the only fstab line for `mount_point`.

    Other lines for the same mount point are dropped. Returns True when the
    file was changed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    current = read_file(fstab_path, app_settings, logger_to_use) or ""
    if fstab_entry_for(current, mount_point) == entry:
        log_server(
            f"fstab entry for {mount_point} already present",
            "debug",
            logger_to_use,
            app_settings,
        )
        return False

    kept: List[str] = []
    for line in current.splitlines():
        fields = line.split()
        if (
            len(fields) >= 2
            and not fields[0].startswith("#")
            and fields[1] == mount_point
        ):
            continue
        kept.append(line)
    kept.append(entry)
    write_root_file(
        fstab_path, "\n".join(kept) + "\n", app_settings, logger_to_use
    )
    log_server(
        f"Updated fstab entry for {mount_point}: {entry}",
        "info",
        logger_to_use,
        app_settings,
    )
    return True


def render_managed_block(
    existing_text: str,
    body: str,
    begin_marker: str = static_config.MANAGED_BLOCK_BEGIN,
    end_marker: str = static_config.MANAGED_BLOCK_END,
) -> str:
    """
    Return `existing_text` with the managed block replaced by `body`.

    The block is delimited by the marker lines. Without markers in the text
    the block is appended at the end.
    """
    block = f"{begin_marker}\n{body.rstrip()}\n{end_marker}\n"
    lines = existing_text.splitlines(keepends=True)
    begin_index = end_index = None
    for index, line in enumerate(lines):
        if line.strip() == begin_marker and begin_index is None:
            begin_index = index
        elif line.strip() == end_marker and begin_index is not None:
            end_index = index
            break

    if begin_index is None or end_index is None:
        prefix = existing_text
        if prefix and not prefix.endswith("\n"):
            prefix += "\n"
        return prefix + block
    return "".join(lines[:begin_index]) + block + "".join(lines[end_index + 1 :])


def ensure_managed_block(
    file_path: str,
    body: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Write the managed block into `file_path` when its content differs.

    Returns True when the file was changed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    current = read_file(file_path, app_settings, logger_to_use) or ""
    updated = render_managed_block(current, body)
    if updated == current:
        log_server(
            f"Managed block in {file_path} is up to date",
            "debug",
            logger_to_use,
            app_settings,
        )
        return False
    write_root_file(file_path, updated, app_settings, logger_to_use)
    log_server(
        f"Updated managed block in {file_path}",
        "info",
        logger_to_use,
        app_settings,
    )
    return True
