# startup/stages/external_nfs.py
# -*- coding: utf-8 -*-
"""
External NFS stage: mount a remote NFS share reachable through the
WireGuard tunnel and make the mount persistent.
"""

import os
import subprocess

from common.file_utils import (
    ensure_directory,
    read_file,
    set_fstab_entry,
    write_root_file,
)
from common.system_utils import (
    is_mount_point,
    mount_source,
    network_is_up,
    systemd_reload,
    wireguard_is_active,
)
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

MOUNT_UNIT_TEMPLATE = """[Unit]
Description=External NFS Mount via WireGuard
After=network-online.target
Wants=network-online.target
After=wg-quick@{interface}.service
Requires=wg-quick@{interface}.service

[Mount]
What={what}
Where={where}
Type=nfs
Options=_netdev,{options}

[Install]
WantedBy=multi-user.target
"""


def render_mount_unit(
    interface: str, what: str, where: str, options: str
) -> str:
    return MOUNT_UNIT_TEMPLATE.format(
        interface=interface, what=what, where=where, options=options
    )


class ExternalNfsAction(StageAction):
    name = "external-nfs"

    @property
    def share(self) -> str:
        nfs = self.app_settings.external_nfs
        return f"{nfs.server}:{nfs.export}"

    def run(self) -> ActionResult:
        self.log("Starting external NFS mount setup...")
        self.log("Installing NFS client...")
        self.apt.install(static_config.NFS_CLIENT_PACKAGES)

        self.verify_wireguard()
        self.check_exports()
        already_mounted = self.mount_share()
        self.configure_fstab()
        unit_changed = self.create_systemd_mount()
        self.test_mount()

        self.log("External NFS mount setup completed successfully")
        return ActionResult(
            already_configured=already_mounted and not unit_changed,
            detail=f"{self.share} mounted at {self.app_settings.external_nfs.mount_point}",
        )

    def verify_wireguard(self) -> None:
        interface = self.app_settings.wireguard.interface
        server = self.app_settings.external_nfs.server
        self.log("Verifying WireGuard connectivity...")

        self.require(
            self.succeeds(["ip", "link", "show", interface]),
            f"WireGuard interface {interface} not found; ensure WireGuard is configured and running",
        )
        self.require(
            wireguard_is_active(interface, self.app_settings, self.logger),
            f"WireGuard interface {interface} is not active",
        )
        self.log(f"WireGuard interface {interface} is active")

        self.log(f"Testing connectivity to NFS server: {server}")
        self.require(
            network_is_up(server, self.app_settings, self.logger),
            f"Cannot reach NFS server at {server}; check the VPN configuration, the server and firewall rules",
        )
        self.log("Successfully reached NFS server")

    def check_exports(self) -> None:
        nfs = self.app_settings.external_nfs
        self.log(f"Checking NFS exports on {nfs.server}...")
        result = self.elevated(
            ["showmount", "-e", nfs.server], check=False, capture_output=True
        )
        if result.returncode != 0:
            self.log(
                f"Could not list exports from {nfs.server}, proceeding anyway...",
                "warning",
            )
            return
        self.log(f"Available NFS exports on {nfs.server}:")
        exported = []
        for line in (result.stdout or "").splitlines():
            self.log(f"  {line}")
            fields = line.split()
            if fields:
                exported.append(fields[0])
        if nfs.export in exported:
            self.log(f"Export {nfs.export} is available")
        else:
            self.log(
                f"Export {nfs.export} not found in server exports. This may still work if the server allows it",
                "warning",
            )

    def mount_share(self) -> bool:
        """Mount the share. Returns True if it was already mounted."""
        nfs = self.app_settings.external_nfs
        mount_point = nfs.mount_point
        ensure_directory(mount_point, self.app_settings, self.logger)

        if is_mount_point(mount_point, self.app_settings, self.logger):
            self.log(f"External NFS already mounted at {mount_point}")
            current = mount_source(mount_point, self.app_settings, self.logger)
            if current == self.share:
                self.log("Correct NFS share is mounted")
                return True
            self.log(
                f"Different filesystem ({current}) mounted at {mount_point}, unmounting...",
                "warning",
            )
            self.elevated(["umount", mount_point])

        self.log(f"Mounting {self.share} to {mount_point}...")
        self.log(f"Options: {nfs.options}")
        self.retry_command(
            ["mount", "-t", "nfs", "-o", nfs.options, self.share, mount_point],
            f"mount {self.share}",
        )
        self.require(
            is_mount_point(mount_point, self.app_settings, self.logger),
            "Mount verification failed",
        )
        self.log("External NFS mounted successfully")
        return False

    def configure_fstab(self) -> None:
        nfs = self.app_settings.external_nfs
        self.log("Configuring automatic mounting in /etc/fstab...")
        set_fstab_entry(
            nfs.mount_point,
            f"{self.share} {nfs.mount_point} nfs _netdev,{nfs.options} 0 0",
            self.app_settings,
            self.logger,
        )

    def create_systemd_mount(self) -> bool:
        """Write and enable the mount unit. Returns True if the unit changed."""
        nfs = self.app_settings.external_nfs
        unit_name = self.output(
            ["systemd-escape", "-p", "--suffix=mount", nfs.mount_point]
        ).strip()
        unit_path = os.path.join(static_config.SYSTEMD_UNIT_DIR, unit_name)
        content = render_mount_unit(
            self.app_settings.wireguard.interface,
            self.share,
            nfs.mount_point,
            nfs.options,
        )

        if read_file(unit_path, self.app_settings, self.logger) == content:
            self.log(f"Systemd mount unit {unit_name} is up to date")
            return False

        self.log(f"Creating systemd mount unit: {unit_name}")
        write_root_file(unit_path, content, self.app_settings, self.logger)
        systemd_reload(self.app_settings, self.logger)
        try:
            self.elevated(["systemctl", "enable", unit_name])
        except subprocess.CalledProcessError:
            self.log(f"Failed to enable {unit_name}", "warning")
        self.log("Systemd mount unit configured")
        return True

    def test_mount(self) -> None:
        mount_point = self.app_settings.external_nfs.mount_point
        self.log("Testing NFS mount...")
        result = self.elevated(
            ["ls", "-lah", mount_point], check=False, capture_output=True
        )
        if result.returncode != 0:
            self.log(
                "Could not list directory contents. Check permissions on remote server",
                "warning",
            )
            return
        self.log("Successfully accessed mount point")
        for line in (result.stdout or "").splitlines()[:10]:
            self.log(f"  {line}")
