# startup/status_report.py
# -*- coding: utf-8 -*-
"""
Final system status block and the startup summary report file.

Everything here is informational: probe failures show up as "not running"
or "unknown" and never affect the run's outcome.
"""

import datetime
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from common.command_utils import log_server
from common.system_utils import (
    bcache_devices,
    get_system_info,
    iscsi_sessions,
    is_mount_point,
    network_is_up,
    service_is_active,
    special_mounts,
    wireguard_is_active,
)
from startup import config as static_config
from startup.config_models import AppSettings
from startup.stage_models import RunResult

module_logger = logging.getLogger(__name__)

BANNER = "=" * 40

# (section title, [(ok, ok_text, fail_text), ...])
StatusSection = Tuple[str, List[Tuple[bool, str, str]]]


class StatusReporter:
    """Probes the system after a run and writes LOG_DIR/startup-summary.txt."""

    def __init__(
        self,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
    ):
        self.app_settings = app_settings
        self.logger = logger or module_logger

    @property
    def summary_path(self) -> Path:
        return Path(self.app_settings.log_dir) / static_config.SUMMARY_REPORT_NAME

    def collect_status(self) -> List[StatusSection]:
        settings = self.app_settings
        probe_args = (settings, self.logger)

        network: List[Tuple[bool, str, str]] = [
            (
                network_is_up(settings.network.check_host, *probe_args),
                "Network is up",
                "Network issues detected",
            )
        ]
        if settings.enable_wireguard:
            network.append(
                (
                    wireguard_is_active(settings.wireguard.interface, *probe_args),
                    "WireGuard VPN is active",
                    "WireGuard VPN is not active",
                )
            )

        mount_point = settings.iscsi.mount_point
        sections: List[StatusSection] = [
            ("Network", network),
            (
                "Storage",
                [
                    (
                        bool(iscsi_sessions(*probe_args)),
                        "iSCSI connected",
                        "iSCSI not connected",
                    ),
                    (
                        is_mount_point(mount_point, *probe_args),
                        f"iSCSI mounted at {mount_point}",
                        "iSCSI not mounted",
                    ),
                ],
            ),
            (
                "Cache",
                [
                    (
                        bool(bcache_devices()),
                        "bcache device active",
                        "No bcache device found",
                    )
                ],
            ),
            (
                "File Sharing",
                [
                    (
                        service_is_active(static_config.SAMBA_SERVICE, *probe_args),
                        "Samba is running",
                        "Samba is not running",
                    ),
                    (
                        service_is_active(static_config.NFS_SERVICE, *probe_args),
                        "NFS server is running",
                        "NFS server is not running",
                    ),
                ],
            ),
        ]
        if settings.enable_external_nfs:
            ext_mount = settings.external_nfs.mount_point
            sections.append(
                (
                    "External NFS",
                    [
                        (
                            is_mount_point(ext_mount, *probe_args),
                            f"External NFS mounted at {ext_mount}",
                            "External NFS not mounted",
                        )
                    ],
                )
            )
        if settings.enable_nextcloud:
            sections.append(
                (
                    "Nextcloud",
                    [
                        (
                            service_is_active(
                                static_config.NEXTCLOUD_TIMER_UNIT, *probe_args
                            ),
                            "Nextcloud sync timer is active",
                            "Nextcloud sync timer is not active",
                        )
                    ],
                )
            )
        return sections

    def log_final_status(self, sections: Sequence[StatusSection]) -> None:
        symbols = self.app_settings.symbols
        log_server(BANNER, "info", self.logger, self.app_settings)
        log_server("  Final System Status", "info", self.logger, self.app_settings)
        log_server(BANNER, "info", self.logger, self.app_settings)
        for title, checks in sections:
            log_server(f"{title}:", "info", self.logger, self.app_settings)
            for ok, ok_text, fail_text in checks:
                line = (
                    f"  {symbols.get('ok', '✓')} {ok_text}"
                    if ok
                    else f"  {symbols.get('fail', '✗')} {fail_text}"
                )
                log_server(line, "info", self.logger, self.app_settings)
        log_server(BANNER, "info", self.logger, self.app_settings)

    def services_status(self) -> Dict[str, bool]:
        settings = self.app_settings
        probe_args = (settings, self.logger)
        services = {
            "Samba": service_is_active(static_config.SAMBA_SERVICE, *probe_args),
            "NFS": service_is_active(static_config.NFS_SERVICE, *probe_args),
        }
        if settings.enable_wireguard:
            services["WireGuard"] = wireguard_is_active(
                settings.wireguard.interface, *probe_args
            )
        if settings.enable_nextcloud:
            services["Nextcloud"] = service_is_active(
                static_config.NEXTCLOUD_TIMER_UNIT, *probe_args
            )
        return services

    def render_summary(
        self,
        results: Sequence[RunResult],
        generated: Optional[datetime.datetime] = None,
    ) -> str:
        settings = self.app_settings
        generated = generated or datetime.datetime.now()
        system_info = get_system_info()

        lines = [
            f"{static_config.PROJECT_NAME} Startup Summary",
            f"Generated: {generated.strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "=" * 42,
            "",
            "System Information:",
            f"  Hostname: {system_info['hostname']}",
            f"  Kernel: {system_info['kernel']}",
            f"  Memory: {system_info['memory']}",
            "",
            "Configuration:",
            f"  Config file: {settings.config_file}",
            f"  Log directory: {settings.log_dir}",
            f"  WireGuard: {'enabled' if settings.enable_wireguard else 'disabled'}",
            f"  External NFS: {'enabled' if settings.enable_external_nfs else 'disabled'}",
            f"  Nextcloud: {'enabled' if settings.enable_nextcloud else 'disabled'}",
            "",
            "Stage Results:",
        ]
        if results:
            for result in results:
                lines.append(
                    f"  {result.stage_name}: {result.status_label} "
                    f"(exit code {result.exit_code}, {result.duration:.1f}s)"
                )
        else:
            lines.append("  No stages were run")
        lines.append("")

        lines.append("Services Status:")
        for service, running in self.services_status().items():
            lines.append(f"  {service}: {'Running' if running else 'Not running'}")
        lines.append("")

        lines.append("Mount Points:")
        mounts = special_mounts(settings, self.logger)
        if mounts:
            lines.extend(f"  {line}" for line in mounts)
        else:
            lines.append("  No special mounts found")
        return "\n".join(lines) + "\n"

    def write_summary(self, results: Sequence[RunResult]) -> Path:
        """
        Write the summary report and return its path.

        Raises:
            OSError: the log directory is not writable.
        """
        path = self.summary_path
        log_server(
            f"Creating summary report: {path}", "info", self.logger, self.app_settings
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_summary(results), encoding="utf-8")
        log_server("Summary report created", "info", self.logger, self.app_settings)
        return path

    def report(self, results: Sequence[RunResult]) -> Path:
        """Log the final status block and write the summary file."""
        self.log_final_status(self.collect_status())
        return self.write_summary(results)
