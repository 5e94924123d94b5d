# startup/stages/nextcloud.py
# -*- coding: utf-8 -*-
"""
Nextcloud stage: periodic sync of a local directory with the
`nextcloudcmd` command line client, driven by a systemd timer.
"""

import os
from urllib.parse import urlparse

from common.file_utils import ensure_directory, read_file, write_root_file
from common.system_utils import service_is_active, systemd_reload
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

# nextcloudcmd -n reads $HOME/.netrc; the service runs with HOME set to the state dir.
NETRC_NAME = ".netrc"

SERVICE_TEMPLATE = """[Unit]
Description=Nextcloud sync of {local_dir}
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
Environment=HOME={home}
ExecStart=/usr/bin/nextcloudcmd --non-interactive -n --path {remote_dir} {local_dir} {url}
"""

TIMER_TEMPLATE = """[Unit]
Description=Periodic Nextcloud sync

[Timer]
OnBootSec=2min
OnUnitActiveSec={interval}
Unit={service}

[Install]
WantedBy=timers.target
"""


def render_netrc(url: str, user: str, password: str) -> str:
    host = urlparse(url).hostname or url
    return f"machine {host}\nlogin {user}\npassword {password}\n"


class NextcloudAction(StageAction):
    name = "nextcloud"

    @property
    def netrc_path(self) -> str:
        return str(static_config.STATE_DIR / NETRC_NAME)

    def run(self) -> ActionResult:
        nextcloud = self.app_settings.nextcloud
        self.log("Starting Nextcloud client setup...")
        self.log("Installing Nextcloud client...")
        self.apt.install(static_config.NEXTCLOUD_PACKAGES)

        ensure_directory(nextcloud.local_dir, self.app_settings, self.logger)
        ensure_directory(
            str(static_config.STATE_DIR), self.app_settings, self.logger
        )

        changed = self.write_if_changed(
            self.netrc_path,
            render_netrc(
                nextcloud.url,
                nextcloud.user,
                nextcloud.password.get_secret_value()
                if nextcloud.password
                else "",
            ),
            mode="600",
            sensitive=True,
        )
        changed = (
            self.write_if_changed(
                self.unit_path(static_config.NEXTCLOUD_SERVICE_UNIT),
                SERVICE_TEMPLATE.format(
                    local_dir=nextcloud.local_dir,
                    home=static_config.STATE_DIR,
                    remote_dir=nextcloud.remote_dir,
                    url=nextcloud.url,
                ),
            )
            or changed
        )
        changed = (
            self.write_if_changed(
                self.unit_path(static_config.NEXTCLOUD_TIMER_UNIT),
                TIMER_TEMPLATE.format(
                    interval=nextcloud.sync_interval,
                    service=static_config.NEXTCLOUD_SERVICE_UNIT,
                ),
            )
            or changed
        )

        timer_was_active = service_is_active(
            static_config.NEXTCLOUD_TIMER_UNIT, self.app_settings, self.logger
        )
        if changed:
            systemd_reload(self.app_settings, self.logger)
        self.ensure_service_running(static_config.NEXTCLOUD_TIMER_UNIT)
        if changed and timer_was_active:
            # A running timer keeps its old schedule until restarted.
            self.elevated(
                ["systemctl", "restart", static_config.NEXTCLOUD_TIMER_UNIT]
            )

        self.log(
            f"Nextcloud sync of {nextcloud.local_dir} scheduled every {nextcloud.sync_interval}"
        )
        return ActionResult(
            already_configured=timer_was_active and not changed,
            detail=f"syncing {nextcloud.local_dir} with {nextcloud.url}",
        )

    @staticmethod
    def unit_path(unit: str) -> str:
        return os.path.join(static_config.SYSTEMD_UNIT_DIR, unit)

    def write_if_changed(
        self, path: str, content: str, mode=None, sensitive: bool = False
    ) -> bool:
        current = read_file(
            path, self.app_settings, self.logger, sensitive=sensitive
        )
        if current == content:
            self.log(f"{path} is up to date", "debug")
            return False
        write_root_file(path, content, self.app_settings, self.logger, mode=mode)
        self.log(f"Wrote {path}")
        return True
