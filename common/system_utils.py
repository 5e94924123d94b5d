# common/system_utils.py
# -*- coding: utf-8 -*-
"""
System-level utility functions for the file server startup.

Most functions here are read-only status probes used for the final status
report and the `--status` mode. Probes never raise: any failure (missing
tool, non-zero exit, unreadable file) is reported as "not running" or an
empty result.
"""

import logging
import platform
import re
import socket
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from common.command_utils import (
    command_succeeds,
    log_server,
    run_command,
    run_elevated_command,
)
from startup.config_models import (
    SYMBOLS_DEFAULT,
    AppSettings,
)

module_logger = logging.getLogger(__name__)

SPECIAL_MOUNT_PATTERN = re.compile(r"iscsi|nfs|bcache", re.IGNORECASE)
MEMINFO_PATH = "/proc/meminfo"


def _probe_output(
    command: List[str],
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """stdout of a successful read-only command, or None."""
    try:
        result = run_command(
            command,
            app_settings,
            check=False,
            capture_output=True,
            current_logger=current_logger,
            quiet=True,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout or ""


def network_is_up(
    host: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
    wait_seconds: int = 5,
) -> bool:
    """Single ping to `host` with a `wait_seconds` reply timeout."""
    try:
        return command_succeeds(
            ["ping", "-c", "1", "-W", str(wait_seconds), host],
            app_settings,
            current_logger,
            elevated=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False


def service_is_active(
    service: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    try:
        return command_succeeds(
            ["systemctl", "is-active", "--quiet", service],
            app_settings,
            current_logger,
            elevated=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False


def wireguard_is_active(
    interface: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """Whether `wg show <interface>` succeeds."""
    try:
        return command_succeeds(
            ["wg", "show", interface], app_settings, current_logger
        )
    except (OSError, subprocess.SubprocessError):
        return False


def iscsi_sessions(
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Lines of `iscsiadm -m session`; empty when there are no sessions."""
    output = _probe_output(
        ["iscsiadm", "-m", "session"], app_settings, current_logger
    )
    if not output:
        return []
    return [line.strip() for line in output.splitlines() if line.strip()]


def is_mount_point(
    path: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    try:
        return command_succeeds(
            ["mountpoint", "-q", path],
            app_settings,
            current_logger,
            elevated=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False


def mount_source(
    path: str,
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """Device or remote share mounted at `path` (`findmnt -n -o SOURCE`)."""
    output = _probe_output(
        ["findmnt", "-n", "-o", "SOURCE", path], app_settings, current_logger
    )
    if not output or not output.strip():
        return None
    return output.strip().splitlines()[0]


def bcache_devices(dev_dir: str = "/dev") -> List[str]:
    """Paths of the /dev/bcacheN block devices present."""
    try:
        return sorted(
            str(path)
            for path in Path(dev_dir).glob("bcache*")
            if re.fullmatch(r"bcache\d+", path.name)
        )
    except OSError:
        return []


def special_mounts(
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> List[str]:
    """`df -h` lines for iSCSI, NFS and bcache backed filesystems."""
    output = _probe_output(["df", "-h"], app_settings, current_logger)
    if not output:
        return []
    return [
        line
        for line in output.splitlines()[1:]
        if SPECIAL_MOUNT_PATTERN.search(line)
    ]


def total_memory(meminfo_path: str = MEMINFO_PATH) -> Optional[str]:
    """Total memory as reported by /proc/meminfo, e.g. '16314188 kB'."""
    try:
        with open(meminfo_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        return None
    return None


def get_system_info(meminfo_path: str = MEMINFO_PATH) -> Dict[str, str]:
    """Hostname, kernel release and total memory for the status report."""
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = "unknown"
    return {
        "hostname": hostname or "unknown",
        "kernel": platform.release() or "unknown",
        "memory": total_memory(meminfo_path) or "unknown",
    }


def systemd_reload(
    app_settings: AppSettings, current_logger: Optional[logging.Logger] = None
) -> None:
    """
    Reload the systemd daemon.

    Raises:
        subprocess.CalledProcessError: systemctl failed.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols if app_settings else SYMBOLS_DEFAULT
    log_server(
        f"{symbols.get('gear', '⚙️')} Reloading systemd daemon...",
        "info",
        logger_to_use,
        app_settings,
    )
    run_elevated_command(
        ["systemctl", "daemon-reload"],
        app_settings,
        current_logger=logger_to_use,
    )


def enable_service(
    unit: str,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
    start: bool = True,
) -> None:
    """
    `systemctl enable [--now] <unit>`.

    Raises:
        subprocess.CalledProcessError: systemctl failed.
    """
    command = ["systemctl", "enable"]
    if start:
        command.append("--now")
    command.append(unit)
    run_elevated_command(command, app_settings, current_logger=current_logger)
