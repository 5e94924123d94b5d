# startup/config_models.py
# -*- coding: utf-8 -*-
"""
Pydantic models for application configuration.

This module defines the structured settings for the file server startup,
including defaults, type annotations, and descriptions. Top-level options
are read from unprefixed environment variables (ENABLE_WIREGUARD, LOG_DIR,
...); each stage section reads its own prefixed variables. All models are
frozen: a settings object is built once at startup and passed explicitly.
"""

from typing import Dict, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from startup import config as static_config

LOG_PREFIX_DEFAULT: str = "[DKB-SERVER]"
SERVICE_START_DELAY_DEFAULT: int = 5
MAX_RETRIES_DEFAULT: int = 3
RETRY_DELAY_DEFAULT: int = 10
LOCK_TIMEOUT_DEFAULT: int = 300
LOCK_POLL_INTERVAL_DEFAULT: int = 5
LOCK_STALE_GRACE_DEFAULT: int = 10

NETWORK_TIMEOUT_DEFAULT: int = 30
NETWORK_CHECK_HOST_DEFAULT: str = "8.8.8.8"
WG_INTERFACE_DEFAULT: str = "wg0"
ISCSI_MOUNT_POINT_DEFAULT: str = "/mnt/iscsi"
EXTERNAL_NFS_MOUNT_POINT_DEFAULT: str = "/mnt/external-nfs"
EXTERNAL_NFS_OPTIONS_DEFAULT: str = "rw,hard,intr,rsize=8192,wsize=8192"

SYMBOLS_DEFAULT: Dict[str, str] = {
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
    "step": "➡️",
    "gear": "⚙️",
    "package": "📦",
    "rocket": "🚀",
    "sparkles": "✨",
    "critical": "🔥",
    "debug": "🐛",
    "lock": "🔒",
    "ok": "✓",
    "fail": "✗",
}

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


class NetworkSettings(BaseSettings):
    """Basic connectivity check."""

    model_config = SettingsConfigDict(
        env_prefix="NETWORK_", extra="ignore", frozen=True
    )

    timeout: int = Field(
        default=NETWORK_TIMEOUT_DEFAULT,
        ge=0,
        description="Seconds to wait for network connectivity.",
    )
    check_host: str = Field(
        default=NETWORK_CHECK_HOST_DEFAULT,
        description="Host pinged to decide whether the network is up.",
    )


class WireGuardSettings(BaseSettings):
    """WireGuard VPN interface used by the network and external NFS stages."""

    model_config = SettingsConfigDict(
        env_prefix="WG_", extra="ignore", frozen=True, populate_by_name=True
    )

    interface: str = Field(
        default=WG_INTERFACE_DEFAULT, description="WireGuard interface name."
    )
    config: Optional[str] = Field(
        default=None,
        description="WireGuard config file. Defaults to /etc/wireguard/<interface>.conf.",
    )
    test_host: Optional[str] = Field(
        default=None,
        validation_alias="vpn_test_host",
        description="Optional host pinged through the tunnel after bring-up.",
    )

    @property
    def config_path(self) -> str:
        return self.config or f"/etc/wireguard/{self.interface}.conf"


class IscsiSettings(BaseSettings):
    """iSCSI initiator and target settings."""

    model_config = SettingsConfigDict(
        env_prefix="ISCSI_", extra="ignore", frozen=True
    )

    target_portal: Optional[str] = Field(
        default=None, description="Target portal, e.g. 192.168.1.10:3260."
    )
    target_iqn: Optional[str] = Field(
        default=None, description="Target IQN to log in to."
    )
    initiator_name: Optional[str] = Field(
        default=None,
        description="Custom initiator name. Generated with iscsi-iname when unset.",
    )
    mount_point: str = Field(
        default=ISCSI_MOUNT_POINT_DEFAULT,
        description="Where the iSCSI (later bcache) filesystem is mounted.",
    )
    fs_type: str = Field(default="ext4", description="Filesystem type.")
    use_chap: bool = Field(
        default=False, description="Enable CHAP authentication."
    )
    chap_user: Optional[str] = Field(default=None, description="CHAP user.")
    chap_password: Optional[SecretStr] = Field(
        default=None, description="CHAP password."
    )
    device_timeout: int = Field(
        default=30,
        ge=0,
        description="Seconds to wait for the block device after login.",
    )


class CacheSettings(BaseSettings):
    """bcache settings."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_", extra="ignore", frozen=True
    )

    device: Optional[str] = Field(
        default=None, description="SSD device used as bcache cache, e.g. /dev/md128."
    )
    mode: Literal["writeback", "writethrough", "writearound", "none"] = Field(
        default="writeback", description="bcache cache_mode."
    )
    sequential_cutoff: int = Field(
        default=4, ge=0, description="Sequential cutoff in MB."
    )


class SharingSettings(BaseSettings):
    """Samba and NFS export of the cached mount point."""

    model_config = SettingsConfigDict(extra="ignore", frozen=True)

    share_name: str = Field(default="storage", description="Samba share name.")
    samba_workgroup: str = Field(
        default="WORKGROUP", description="Samba workgroup."
    )
    nfs_allowed_network: str = Field(
        default="192.168.0.0/16", description="Network allowed to mount the NFS export."
    )
    nfs_export_options: str = Field(
        default="rw,sync,no_subtree_check,no_root_squash",
        description="Options for the /etc/exports entry.",
    )


class ExternalNfsSettings(BaseSettings):
    """Remote NFS share mounted through the VPN."""

    model_config = SettingsConfigDict(
        env_prefix="EXTERNAL_NFS_", extra="ignore", frozen=True
    )

    server: Optional[str] = Field(default=None, description="NFS server address.")
    export: Optional[str] = Field(default=None, description="Exported path.")
    mount_point: str = Field(
        default=EXTERNAL_NFS_MOUNT_POINT_DEFAULT, description="Local mount point."
    )
    options: str = Field(
        default=EXTERNAL_NFS_OPTIONS_DEFAULT, description="NFS mount options."
    )


class NextcloudSettings(BaseSettings):
    """Nextcloud command line sync client."""

    model_config = SettingsConfigDict(
        env_prefix="NEXTCLOUD_", extra="ignore", frozen=True
    )

    url: Optional[str] = Field(default=None, description="Nextcloud server URL.")
    user: Optional[str] = Field(default=None, description="Nextcloud user.")
    password: Optional[SecretStr] = Field(
        default=None, description="Nextcloud (app) password."
    )
    local_dir: Optional[str] = Field(
        default=None, description="Local directory to sync."
    )
    remote_dir: str = Field(default="/", description="Remote folder to sync.")
    sync_interval: str = Field(
        default="15min", description="systemd OnUnitActiveSec value for the timer."
    )


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(extra="ignore", frozen=True)

    enable_wireguard: bool = Field(
        default=False, description="Bring up the WireGuard VPN in the network stage."
    )
    enable_external_nfs: bool = Field(
        default=False, description="Run the external NFS mount stage."
    )
    enable_nextcloud: bool = Field(
        default=False, description="Run the Nextcloud sync stage."
    )
    service_start_delay: int = Field(
        default=SERVICE_START_DELAY_DEFAULT,
        ge=0,
        description="Seconds to wait after a stage succeeds before the next one.",
    )
    max_retries: int = Field(
        default=MAX_RETRIES_DEFAULT, ge=1, description="Attempts per retried command."
    )
    retry_delay: int = Field(
        default=RETRY_DELAY_DEFAULT,
        ge=0,
        description="Initial retry delay in seconds, doubled after each failure.",
    )
    log_level: LogLevel = Field(default="INFO", description="Log severity threshold.")
    log_dir: str = Field(
        default=static_config.LOG_DIR_DEFAULT, description="Directory for log files."
    )
    config_file: str = Field(
        default=static_config.CONFIG_FILE_DEFAULT,
        description="Configuration file (YAML or KEY=value).",
    )
    lock_file: str = Field(
        default=static_config.LOCK_FILE_DEFAULT, description="Startup lock file."
    )
    lock_timeout: int = Field(
        default=LOCK_TIMEOUT_DEFAULT, ge=0, description="Seconds to wait for the lock."
    )
    lock_poll_interval: int = Field(
        default=LOCK_POLL_INTERVAL_DEFAULT, ge=1, description="Lock poll interval."
    )
    lock_reclaim_stale: bool = Field(
        default=True,
        description="Reclaim a lock whose owning process no longer exists.",
    )
    lock_stale_grace: int = Field(
        default=LOCK_STALE_GRACE_DEFAULT,
        ge=0,
        description="Minimum lock file age before it may be reclaimed as stale.",
    )
    log_prefix: str = Field(
        default=LOG_PREFIX_DEFAULT, description="Prefix for console and file log lines."
    )
    stage_scripts: Dict[str, str] = Field(
        default_factory=dict,
        description="Stage name -> external script replacing the built-in action.",
    )

    network: NetworkSettings = Field(default_factory=NetworkSettings)
    wireguard: WireGuardSettings = Field(default_factory=WireGuardSettings)
    iscsi: IscsiSettings = Field(default_factory=IscsiSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    sharing: SharingSettings = Field(default_factory=SharingSettings)
    external_nfs: ExternalNfsSettings = Field(default_factory=ExternalNfsSettings)
    nextcloud: NextcloudSettings = Field(default_factory=NextcloudSettings)

    symbols: Dict[str, str] = Field(default_factory=lambda: dict(SYMBOLS_DEFAULT))

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value
