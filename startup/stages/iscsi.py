# startup/stages/iscsi.py
# -*- coding: utf-8 -*-
"""
iSCSI stage: install open-iscsi, configure the initiator, log in to the
target and mount its block device.
"""

import glob
import os
import re
import subprocess
import time
from typing import Optional

from common.file_utils import (
    ensure_directory,
    read_file,
    set_fstab_entry,
    write_root_file,
)
from common.system_utils import iscsi_sessions, is_mount_point
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

LOGIN_SETTLE_SECONDS = 5


def configure_iscsid_text(
    text: str,
    chap_user: Optional[str] = None,
    chap_password: Optional[str] = None,
) -> str:
    """
    Return iscsid.conf content with automatic node startup and, when
    credentials are given, CHAP authentication enabled.
    """
    updated = re.sub(
        r"^node\.startup = manual$",
        "node.startup = automatic",
        text,
        flags=re.MULTILINE,
    )
    if chap_user is not None and chap_password is not None:
        replacements = (
            ("node.session.auth.authmethod", "CHAP"),
            ("node.session.auth.username", chap_user),
            ("node.session.auth.password", chap_password),
        )
        for key, value in replacements:
            pattern = re.compile(
                rf"^#*\s*{re.escape(key)} = .*$", flags=re.MULTILINE
            )
            line = f"{key} = {value}"
            if pattern.search(updated):
                updated = pattern.sub(lambda _m: line, updated, count=1)
            else:
                if updated and not updated.endswith("\n"):
                    updated += "\n"
                updated += line + "\n"
    return updated


class IscsiAction(StageAction):
    name = "iscsi"

    disk_by_path_dir = "/dev/disk/by-path"
    sys_block_glob = (
        "/sys/class/iscsi_host/host*/device/session*/target*/*/block/*"
    )

    def run(self) -> ActionResult:
        self.log("Starting iSCSI setup...")
        self.log("Installing iSCSI packages...")
        self.apt.install(static_config.ISCSI_PACKAGES)

        self.configure_initiator()
        self.start_services()
        self.discover_target()
        self.connect_target()
        already_mounted = self.mount_device()

        self.log("iSCSI setup completed successfully")
        return ActionResult(
            already_configured=already_mounted,
            detail=f"mounted at {self.app_settings.iscsi.mount_point}",
        )

    def configure_initiator(self) -> None:
        iscsi = self.app_settings.iscsi
        initiator_config = static_config.ISCSI_INITIATOR_CONFIG
        self.log("Configuring iSCSI initiator...")

        current = read_file(initiator_config, self.app_settings, self.logger) or ""
        if iscsi.initiator_name:
            wanted = f"InitiatorName={iscsi.initiator_name}\n"
            if current.strip() != wanted.strip():
                self.log(f"Setting custom initiator name: {iscsi.initiator_name}")
                write_root_file(
                    initiator_config, wanted, self.app_settings, self.logger
                )
        elif not re.search(r"^InitiatorName=", current, flags=re.MULTILINE):
            self.log("Generating initiator name with iscsi-iname")
            generated = self.output(["iscsi-iname"]).strip()
            write_root_file(
                initiator_config,
                f"InitiatorName={generated}\n",
                self.app_settings,
                self.logger,
            )
        else:
            self.log("Using existing initiator name")

        if iscsi.use_chap:
            self.log("Configuring CHAP authentication...")
        self.configure_iscsid(
            iscsi.chap_user if iscsi.use_chap else None,
            iscsi.chap_password.get_secret_value()
            if iscsi.use_chap and iscsi.chap_password
            else None,
        )

    def configure_iscsid(
        self, chap_user: Optional[str], chap_password: Optional[str]
    ) -> None:
        iscsid_config = static_config.ISCSID_CONFIG
        current = read_file(
            iscsid_config, self.app_settings, self.logger, sensitive=True
        )
        if current is None:
            self.log(f"{iscsid_config} not found, leaving defaults", "warning")
            return
        updated = configure_iscsid_text(current, chap_user, chap_password)
        if updated != current:
            write_root_file(
                iscsid_config,
                updated,
                self.app_settings,
                self.logger,
                mode="600",
            )
            self.log(f"Updated {iscsid_config}")

    def start_services(self) -> None:
        self.log("Starting iSCSI services...")
        self.ensure_service_running(static_config.ISCSID_SERVICE)
        try:
            self.elevated(
                ["systemctl", "enable", static_config.OPEN_ISCSI_SERVICE]
            )
        except subprocess.CalledProcessError:
            self.log(
                f"Could not enable {static_config.OPEN_ISCSI_SERVICE}",
                "warning",
            )

    def discover_target(self) -> None:
        portal = self.app_settings.iscsi.target_portal
        self.log(f"Discovering iSCSI targets at {portal}...")
        self.retry_command(
            ["iscsiadm", "-m", "discovery", "-t", "st", "-p", portal],
            f"iSCSI discovery at {portal}",
        )
        self.log("iSCSI target discovery completed")

    def is_logged_in(self) -> bool:
        target_iqn = self.app_settings.iscsi.target_iqn
        return any(
            target_iqn in session
            for session in iscsi_sessions(self.app_settings, self.logger)
        )

    def connect_target(self) -> bool:
        """Log in to the target. Returns True if a session already existed."""
        iscsi = self.app_settings.iscsi
        self.log(f"Connecting to iSCSI target: {iscsi.target_iqn}")
        if self.is_logged_in():
            self.log(f"Already connected to target: {iscsi.target_iqn}")
            return True
        self.retry_command(
            [
                "iscsiadm",
                "-m",
                "node",
                "-T",
                iscsi.target_iqn,
                "-p",
                iscsi.target_portal,
                "--login",
            ],
            f"iSCSI login to {iscsi.target_iqn}",
        )
        self.log("Connected to iSCSI target successfully")
        time.sleep(LOGIN_SETTLE_SECONDS)
        for session in iscsi_sessions(self.app_settings, self.logger):
            self.log(f"  {session}")
        return False

    def find_device(self) -> Optional[str]:
        """Block device of the iSCSI session, resolved from by-path links or sysfs."""
        target_suffix = self.app_settings.iscsi.target_iqn.rsplit(":", 1)[-1]
        candidates = sorted(
            glob.glob(os.path.join(self.disk_by_path_dir, "*iscsi*"))
        ) + sorted(
            glob.glob(os.path.join(self.disk_by_path_dir, f"*{target_suffix}*"))
        )
        for link in candidates:
            if os.path.islink(link):
                device = os.path.realpath(link)
                self.log(f"Found iSCSI device: {device} (link: {link})")
                return device
        for block_dir in sorted(glob.glob(self.sys_block_glob)):
            device = f"/dev/{os.path.basename(block_dir)}"
            self.log(f"Found iSCSI device: {device}")
            return device
        return None

    def mount_device(self) -> bool:
        """Mount the iSCSI filesystem. Returns True if it was already mounted."""
        iscsi = self.app_settings.iscsi
        mount_point = iscsi.mount_point

        device = self.find_device()
        self.require(device is not None, "Could not find iSCSI device")
        self.require(
            self.wait_for_block_device(device, iscsi.device_timeout),
            f"Device {device} not ready after {iscsi.device_timeout}s",
        )
        ensure_directory(mount_point, self.app_settings, self.logger)

        if is_mount_point(mount_point, self.app_settings, self.logger):
            self.log(f"iSCSI device already mounted at {mount_point}")
            return True

        if not self.succeeds(["blkid", device]):
            self.log(f"No filesystem found on {device}", "warning")
            self.log(f"Creating {iscsi.fs_type} filesystem...")
            self.elevated(["mkfs", "-t", iscsi.fs_type, device])

        self.log(f"Mounting {device} to {mount_point}...")
        self.elevated(["mount", "-t", iscsi.fs_type, device, mount_point])
        self.log("iSCSI device mounted successfully")

        set_fstab_entry(
            mount_point,
            f"{device} {mount_point} {iscsi.fs_type} _netdev,defaults 0 0",
            self.app_settings,
            self.logger,
        )
        return False
