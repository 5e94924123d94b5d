# startup/stages/file_sharing.py
# -*- coding: utf-8 -*-
"""
File sharing stage: export the cached iSCSI mount over Samba and NFS.

Both services are configured through a block delimited by marker lines, so
edits made by hand elsewhere in smb.conf and /etc/exports are preserved.
"""

import re
import subprocess

from common.file_utils import ensure_managed_block, read_file, write_root_file
from common.system_utils import is_mount_point, service_is_active
from startup import config as static_config
from startup.stage_models import ActionResult

from .base import StageAction

WORKGROUP_PATTERN = re.compile(r"^(\s*workgroup\s*=\s*).*$", re.MULTILINE)


def render_samba_share(share_name: str, path: str) -> str:
    return (
        f"[{share_name}]\n"
        f"   path = {path}\n"
        "   browseable = yes\n"
        "   read only = no\n"
        "   guest ok = no\n"
        "   create mask = 0664\n"
        "   directory mask = 0775\n"
    )


def render_nfs_export(path: str, network: str, options: str) -> str:
    return f"{path} {network}({options})\n"


def set_samba_workgroup(text: str, workgroup: str) -> str:
    """Set the first `workgroup =` line of smb.conf."""
    return WORKGROUP_PATTERN.sub(
        lambda m: f"{m.group(1)}{workgroup}", text, count=1
    )


class FileSharingAction(StageAction):
    name = "file-sharing"

    def run(self) -> ActionResult:
        sharing = self.app_settings.sharing
        shared_path = self.app_settings.iscsi.mount_point
        self.log("Starting Samba & NFS setup...")

        self.log("Installing file sharing packages...")
        self.apt.install(static_config.FILE_SHARING_PACKAGES)

        self.require(
            is_mount_point(shared_path, self.app_settings, self.logger),
            f"{shared_path} is not mounted; the storage stages must complete first",
        )

        services_were_active = all(
            service_is_active(service, self.app_settings, self.logger)
            for service in (
                static_config.SAMBA_SERVICE,
                static_config.NFS_SERVICE,
            )
        )

        samba_changed = self.configure_samba(sharing.share_name, shared_path)
        exports_changed = self.configure_nfs(shared_path)

        self.ensure_service_running(static_config.SAMBA_SERVICE)
        self.ensure_service_running(static_config.NFS_SERVICE)
        if samba_changed and services_were_active:
            self.elevated(["systemctl", "reload", static_config.SAMBA_SERVICE])

        self.log(
            f"Sharing {shared_path} as [{sharing.share_name}] and to {sharing.nfs_allowed_network}"
        )
        return ActionResult(
            already_configured=services_were_active
            and not samba_changed
            and not exports_changed,
            detail=f"{shared_path} shared over Samba and NFS",
        )

    def configure_samba(self, share_name: str, shared_path: str) -> bool:
        """Write the share block. Returns True if smb.conf changed."""
        config_path = static_config.SAMBA_CONFIG
        self.log(f"Configuring Samba share [{share_name}]...")
        changed = ensure_managed_block(
            config_path,
            render_samba_share(share_name, shared_path),
            self.app_settings,
            self.logger,
        )

        current = read_file(config_path, self.app_settings, self.logger) or ""
        with_workgroup = set_samba_workgroup(
            current, self.app_settings.sharing.samba_workgroup
        )
        if with_workgroup != current:
            write_root_file(
                config_path, with_workgroup, self.app_settings, self.logger
            )
            changed = True

        if changed:
            try:
                self.elevated(["testparm", "-s"], capture_output=True)
            except subprocess.CalledProcessError as e:
                self.require(
                    False,
                    f"Samba configuration {config_path} failed validation",
                    exit_code=e.returncode,
                )
        return changed

    def configure_nfs(self, shared_path: str) -> bool:
        """Write the export line and re-export. Returns True if /etc/exports changed."""
        sharing = self.app_settings.sharing
        self.log(f"Configuring NFS export of {shared_path}...")
        changed = ensure_managed_block(
            static_config.NFS_EXPORTS,
            render_nfs_export(
                shared_path,
                sharing.nfs_allowed_network,
                sharing.nfs_export_options,
            ),
            self.app_settings,
            self.logger,
        )
        self.elevated(["exportfs", "-ra"])
        return changed
