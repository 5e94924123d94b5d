# startup/config.py
"""
Static constants and default values for the file server startup.

Runtime values live in `startup.config_models.AppSettings`; this module only
holds the things that never change between runs: default paths, the
canonical stage order and the package lists each stage installs.
"""

from pathlib import Path
from typing import Dict, List, Tuple

SCRIPT_VERSION: str = "2.0.0"
PROJECT_NAME: str = "DK-B-Server"
CLI_NAME: str = "dkb-server"

# --- Default paths ---
CONFIG_FILE_DEFAULT: str = "/etc/dk-b-server.conf"
LOG_DIR_DEFAULT: str = "/var/log/dk-b-server"
LOCK_FILE_DEFAULT: str = "/var/lock/dk-b-server-startup.lock"
STATE_DIR: Path = Path("/etc/dk-b-server")

ORCHESTRATOR_LOG_NAME: str = "start_services"
SUMMARY_REPORT_NAME: str = "startup-summary.txt"

# --- System files touched by the stages ---
FSTAB_PATH: str = "/etc/fstab"
MODULES_PATH: str = "/etc/modules"
ISCSI_INITIATOR_CONFIG: str = "/etc/iscsi/initiatorname.iscsi"
ISCSID_CONFIG: str = "/etc/iscsi/iscsid.conf"
SAMBA_CONFIG: str = "/etc/samba/smb.conf"
NFS_EXPORTS: str = "/etc/exports"
SYSTEMD_UNIT_DIR: str = "/etc/systemd/system"

# Marker lines wrapping blocks this tool owns inside shared config files.
MANAGED_BLOCK_BEGIN: str = "# BEGIN dk-b-server managed block"
MANAGED_BLOCK_END: str = "# END dk-b-server managed block"

# --- Stage order ---
# Later stages depend on earlier ones at runtime (cache needs the iSCSI
# mount, file sharing needs the cached mount), so this order is fixed.
CANONICAL_STAGE_ORDER: Tuple[str, ...] = (
    "network",
    "iscsi",
    "cache",
    "file-sharing",
    "external-nfs",
    "nextcloud",
)

STAGE_DESCRIPTIONS: Dict[str, str] = {
    "network": "Network initialization",
    "iscsi": "iSCSI storage setup",
    "cache": "SSD cache setup",
    "file-sharing": "Samba & NFS setup",
    "external-nfs": "External NFS mount",
    "nextcloud": "Nextcloud client setup",
}

# --- Package lists ---
WIREGUARD_PACKAGES: List[str] = ["wireguard", "wireguard-tools"]
ISCSI_PACKAGES: List[str] = ["open-iscsi"]
BCACHE_PACKAGES: List[str] = ["bcache-tools"]
FILE_SHARING_PACKAGES: List[str] = ["samba", "nfs-kernel-server"]
NFS_CLIENT_PACKAGES: List[str] = ["nfs-common"]
NEXTCLOUD_PACKAGES: List[str] = ["nextcloud-desktop-cmd"]

# --- Service and unit names ---
SAMBA_SERVICE: str = "smbd"
NFS_SERVICE: str = "nfs-server"
ISCSID_SERVICE: str = "iscsid"
OPEN_ISCSI_SERVICE: str = "open-iscsi"
NEXTCLOUD_SERVICE_UNIT: str = "nextcloud-sync.service"
NEXTCLOUD_TIMER_UNIT: str = "nextcloud-sync.timer"
