# tests/conftest.py
import logging

import pytest

from startup.config_models import (
    AppSettings,
    CacheSettings,
    ExternalNfsSettings,
    IscsiSettings,
    NextcloudSettings,
    WireGuardSettings,
)

ENV_KEYS = (
    "CONFIG_FILE",
    "LOG_LEVEL",
    "LOG_DIR",
    "ENABLE_WIREGUARD",
    "ENABLE_EXTERNAL_NFS",
    "ENABLE_NEXTCLOUD",
    "SERVICE_START_DELAY",
    "MAX_RETRIES",
    "RETRY_DELAY",
    "LOCK_TIMEOUT",
    "ISCSI_TARGET_PORTAL",
    "ISCSI_TARGET_IQN",
    "CACHE_DEVICE",
    "NEXTCLOUD_URL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep settings read by BaseSettings independent of the host environment."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.fixture
def test_logger():
    return logging.getLogger("test_logger")


@pytest.fixture
def app_settings(tmp_path):
    """Fully configured settings with all waits disabled."""
    return AppSettings(
        log_dir=str(tmp_path / "logs"),
        lock_file=str(tmp_path / "startup.lock"),
        config_file=str(tmp_path / "dk-b-server.conf"),
        service_start_delay=0,
        retry_delay=0,
        lock_timeout=1,
        lock_poll_interval=1,
        enable_wireguard=True,
        enable_external_nfs=True,
        enable_nextcloud=True,
        wireguard=WireGuardSettings(interface="wg0", test_host="10.0.0.1"),
        iscsi=IscsiSettings(
            target_portal="192.168.1.10:3260",
            target_iqn="iqn.2024-01.com.example:storage",
            mount_point="/mnt/iscsi",
        ),
        cache=CacheSettings(device="/dev/md128"),
        external_nfs=ExternalNfsSettings(
            server="10.0.0.2", export="/srv/share"
        ),
        nextcloud=NextcloudSettings(
            url="https://cloud.example.com",
            user="backup",
            password="app-password",
            local_dir="/mnt/iscsi/nextcloud",
        ),
    )
