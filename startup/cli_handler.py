# startup/cli_handler.py
# -*- coding: utf-8 -*-
"""
Handles the informational CLI modes: configuration view, stage list and
the probe-only status report.
"""

import logging
from typing import List, Optional, Sequence

from common.command_utils import log_server
from startup import config as static_config
from startup.config_models import AppSettings
from startup.stage_models import Stage
from startup.status_report import StatusReporter

module_logger = logging.getLogger(__name__)


def _secret_display(value) -> str:
    return "[SET]" if value is not None and value.get_secret_value() else "[NOT SET]"


def format_configuration(app_config: AppSettings) -> str:
    """
    Render the effective configuration as text.

    Passwords are never shown, only whether they are set.
    """
    symbols = app_config.symbols
    wg = app_config.wireguard
    iscsi = app_config.iscsi
    cache = app_config.cache
    sharing = app_config.sharing
    ext = app_config.external_nfs
    nextcloud = app_config.nextcloud

    config_text = f"{symbols.get('info', 'ℹ️')} Current effective configuration values (CLI > config file > ENV > Defaults):\n\n"
    config_text += f"  Config file:                   {app_config.config_file}\n"
    config_text += f"  Log directory:                 {app_config.log_dir}\n"
    config_text += f"  Log level:                     {app_config.log_level}\n"
    config_text += f"  Lock file:                     {app_config.lock_file}\n"
    config_text += f"  Lock timeout:                  {app_config.lock_timeout}s\n"
    config_text += f"  Service start delay:           {app_config.service_start_delay}s\n"
    config_text += f"  Retries:                       {app_config.max_retries} (initial delay {app_config.retry_delay}s)\n\n"

    config_text += "  Network (network.*, wireguard.*):\n"
    config_text += f"    Check host:                  {app_config.network.check_host}\n"
    config_text += f"    Timeout:                     {app_config.network.timeout}s\n"
    config_text += f"    WireGuard enabled:           {app_config.enable_wireguard}\n"
    config_text += f"    WireGuard interface:         {wg.interface}\n"
    config_text += f"    WireGuard config:            {wg.config_path}\n"
    config_text += f"    VPN test host:               {wg.test_host or '-'}\n\n"

    config_text += "  iSCSI (iscsi.*):\n"
    config_text += f"    Target portal:               {iscsi.target_portal or '-'}\n"
    config_text += f"    Target IQN:                  {iscsi.target_iqn or '-'}\n"
    config_text += f"    Initiator name:              {iscsi.initiator_name or '[generated]'}\n"
    config_text += f"    Mount point:                 {iscsi.mount_point} ({iscsi.fs_type})\n"
    config_text += f"    CHAP:                        {iscsi.use_chap} (user {iscsi.chap_user or '-'}, password {_secret_display(iscsi.chap_password)})\n\n"

    config_text += "  Cache (cache.*):\n"
    config_text += f"    Device:                      {cache.device or '-'}\n"
    config_text += f"    Mode:                        {cache.mode}\n"
    config_text += f"    Sequential cutoff:           {cache.sequential_cutoff}MB\n\n"

    config_text += "  File sharing (sharing.*):\n"
    config_text += f"    Samba share:                 [{sharing.share_name}] workgroup {sharing.samba_workgroup}\n"
    config_text += f"    NFS export:                  {sharing.nfs_allowed_network}({sharing.nfs_export_options})\n\n"

    config_text += "  External NFS (external_nfs.*):\n"
    config_text += f"    Enabled:                     {app_config.enable_external_nfs}\n"
    config_text += f"    Share:                       {ext.server or '-'}:{ext.export or '-'}\n"
    config_text += f"    Mount point:                 {ext.mount_point}\n"
    config_text += f"    Options:                     {ext.options}\n\n"

    config_text += "  Nextcloud (nextcloud.*):\n"
    config_text += f"    Enabled:                     {app_config.enable_nextcloud}\n"
    config_text += f"    URL:                         {nextcloud.url or '-'}\n"
    config_text += f"    User:                        {nextcloud.user or '-'} (password {_secret_display(nextcloud.password)})\n"
    config_text += f"    Local dir:                   {nextcloud.local_dir or '-'}\n"
    config_text += f"    Remote dir:                  {nextcloud.remote_dir}\n"
    config_text += f"    Sync interval:               {nextcloud.sync_interval}\n"

    if app_config.stage_scripts:
        config_text += "\n  Stage script overrides:\n"
        for stage_name, script in sorted(app_config.stage_scripts.items()):
            config_text += f"    {stage_name:<29}{script}\n"
    return config_text


def view_configuration(
    app_config: AppSettings, current_logger: Optional[logging.Logger] = None
) -> None:
    """Print the effective configuration and log that it was shown."""
    logger_to_use = current_logger if current_logger else module_logger
    print(format_configuration(app_config))
    log_server(
        "Configuration displayed.", "debug", logger_to_use, app_config
    )


def list_stages(stages: Sequence[Stage]) -> List[str]:
    """Print the stages in run order with their enabled state."""
    lines = []
    for position, stage in enumerate(stages, start=1):
        state = "enabled" if stage.enabled else "disabled"
        lines.append(
            f"  {position}. {stage.name:<14} {stage.description} [{state}]"
        )
    print(f"{static_config.PROJECT_NAME} stages (run order):")
    for line in lines:
        print(line)
    return lines


def show_status(
    app_config: AppSettings, current_logger: Optional[logging.Logger] = None
) -> None:
    """Log the final status block without running any stage."""
    reporter = StatusReporter(app_config, current_logger)
    reporter.log_final_status(reporter.collect_status())
