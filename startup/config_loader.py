# startup/config_loader.py
# -*- coding: utf-8 -*-
"""
Configuration loader for the application.

Handles loading settings from Pydantic model defaults, the configuration
file, environment variables, and command-line arguments, applying a specific
order of precedence:
1. Pydantic Model Defaults
2. Environment Variables (via Pydantic's BaseSettings initialization)
3. Configuration File (YAML, or the shell-style KEY=value file)
4. Command-Line Arguments

The configuration file may be a YAML document with nested sections, or the
traditional `/etc/dk-b-server.conf` made of `KEY=value` lines. The latter is
parsed with python-dotenv and mapped onto the nested settings through
SHELL_KEY_MAP.
"""

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from common.errors import ConfigurationError
from startup import config as static_config

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")

# KEY=value name -> path inside the AppSettings dump.
SHELL_KEY_MAP: Dict[str, Tuple[str, ...]] = {
    "ENABLE_WIREGUARD": ("enable_wireguard",),
    "ENABLE_EXTERNAL_NFS": ("enable_external_nfs",),
    "ENABLE_NEXTCLOUD": ("enable_nextcloud",),
    "SERVICE_START_DELAY": ("service_start_delay",),
    "MAX_RETRIES": ("max_retries",),
    "RETRY_DELAY": ("retry_delay",),
    "LOG_LEVEL": ("log_level",),
    "LOG_DIR": ("log_dir",),
    "LOG_PREFIX": ("log_prefix",),
    "LOCK_FILE": ("lock_file",),
    "LOCK_TIMEOUT": ("lock_timeout",),
    "LOCK_POLL_INTERVAL": ("lock_poll_interval",),
    "LOCK_RECLAIM_STALE": ("lock_reclaim_stale",),
    "LOCK_STALE_GRACE": ("lock_stale_grace",),
    "NETWORK_TIMEOUT": ("network", "timeout"),
    "NETWORK_CHECK_HOST": ("network", "check_host"),
    "WG_INTERFACE": ("wireguard", "interface"),
    "WG_CONFIG": ("wireguard", "config"),
    "VPN_TEST_HOST": ("wireguard", "test_host"),
    "ISCSI_TARGET_PORTAL": ("iscsi", "target_portal"),
    "ISCSI_TARGET_IQN": ("iscsi", "target_iqn"),
    "ISCSI_INITIATOR_NAME": ("iscsi", "initiator_name"),
    "ISCSI_MOUNT_POINT": ("iscsi", "mount_point"),
    "ISCSI_FS_TYPE": ("iscsi", "fs_type"),
    "ISCSI_USE_CHAP": ("iscsi", "use_chap"),
    "ISCSI_CHAP_USER": ("iscsi", "chap_user"),
    "ISCSI_CHAP_PASSWORD": ("iscsi", "chap_password"),
    "ISCSI_DEVICE_TIMEOUT": ("iscsi", "device_timeout"),
    "CACHE_DEVICE": ("cache", "device"),
    "CACHE_MODE": ("cache", "mode"),
    "CACHE_SEQUENTIAL_CUTOFF": ("cache", "sequential_cutoff"),
    "SHARE_NAME": ("sharing", "share_name"),
    "SAMBA_WORKGROUP": ("sharing", "samba_workgroup"),
    "NFS_ALLOWED_NETWORK": ("sharing", "nfs_allowed_network"),
    "NFS_EXPORT_OPTIONS": ("sharing", "nfs_export_options"),
    "EXTERNAL_NFS_SERVER": ("external_nfs", "server"),
    "EXTERNAL_NFS_EXPORT": ("external_nfs", "export"),
    "EXTERNAL_NFS_MOUNT_POINT": ("external_nfs", "mount_point"),
    "EXTERNAL_NFS_OPTIONS": ("external_nfs", "options"),
    "NEXTCLOUD_URL": ("nextcloud", "url"),
    "NEXTCLOUD_USER": ("nextcloud", "user"),
    "NEXTCLOUD_PASSWORD": ("nextcloud", "password"),
    "NEXTCLOUD_LOCAL_DIR": ("nextcloud", "local_dir"),
    "NEXTCLOUD_REMOTE_DIR": ("nextcloud", "remote_dir"),
    "NEXTCLOUD_SYNC_INTERVAL": ("nextcloud", "sync_interval"),
}

# argparse dest -> path inside the AppSettings dump.
CLI_KEY_MAP: Dict[str, Tuple[str, ...]] = {
    "log_level": ("log_level",),
    "log_dir": ("log_dir",),
    "lock_timeout": ("lock_timeout",),
}


def _deep_update(
    source: Dict[str, Any], overrides: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Recursively update `source` with the non-None values of `overrides`.

    Nested dictionaries are merged key by key; any other value replaces the
    one in `source`. `source` is modified in place and returned.
    """
    for key, value in overrides.items():
        if (
            isinstance(value, dict)
            and key in source
            and isinstance(source[key], dict)
        ):
            source[key] = _deep_update(source[key], value)
        elif value is not None:
            source[key] = value
    return source


def _set_path(target: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    node = target
    for part in path[:-1]:
        node = node.setdefault(part, {})
    node[path[-1]] = value


def shell_values_to_settings_dict(
    values: Dict[str, Optional[str]],
    current_logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """
    Convert flat KEY=value pairs into the nested layout of AppSettings.

    Empty values are treated as unset so that `ISCSI_INITIATOR_NAME=""` in
    the shell file keeps the default. Unknown keys are ignored.
    """
    logger_to_use = current_logger if current_logger else module_logger
    nested: Dict[str, Any] = {}
    for key, value in values.items():
        path = SHELL_KEY_MAP.get(key.upper())
        if path is None:
            logger_to_use.debug(f"Ignoring unknown configuration key '{key}'.")
            continue
        if value is None or value == "":
            continue
        _set_path(nested, path, value)
    return nested


def read_config_file(
    config_path: Path, current_logger: Optional[logging.Logger] = None
) -> Dict[str, Any]:
    """
    Read a configuration file into a nested dictionary.

    A missing file is not an error: the caller falls back to defaults and
    environment variables. An unreadable or unparsable file is logged and
    ignored the same way.
    """
    logger_to_use = current_logger if current_logger else module_logger

    if not config_path.is_file():
        logger_to_use.info(
            f"Configuration file '{config_path}' not found. Using defaults, environment variables, and CLI args."
        )
        return {}

    if config_path.suffix.lower() in YAML_SUFFIXES:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger_to_use.warning(
                f"Could not parse YAML config file '{config_path}': {e}. Using defaults and environment variables."
            )
            return {}
        except IOError as e:
            logger_to_use.warning(
                f"Could not read config file '{config_path}': {e}. Using defaults and environment variables."
            )
            return {}
        if yaml_data is None:
            return {}
        if not isinstance(yaml_data, dict):
            logger_to_use.warning(
                f"Config file '{config_path}' does not contain a valid YAML dictionary. Ignoring."
            )
            return {}
        logger_to_use.info(f"Loaded configuration from {config_path}")
        return yaml_data

    try:
        shell_values = dotenv_values(config_path)
    except (IOError, UnicodeDecodeError) as e:
        logger_to_use.warning(
            f"Could not read config file '{config_path}': {e}. Using defaults and environment variables."
        )
        return {}
    logger_to_use.info(f"Loaded configuration from {config_path}")
    return shell_values_to_settings_dict(dict(shell_values), logger_to_use)


def load_app_settings(
    cli_args: Optional[argparse.Namespace] = None,
    config_file_path: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> AppSettings:
    """
    Loads application settings with the following precedence:
    1. Pydantic Model Defaults.
    2. Environment Variables (BaseSettings reads them on construction).
    3. Values from the configuration file. Its path comes from, in order,
       `config_file_path`, the `--config` CLI argument, the CONFIG_FILE
       environment variable, and finally the built-in default.
    4. Command-Line Arguments (highest precedence, overrides all else).

    Args:
        cli_args: Parsed command-line arguments (from argparse).
        config_file_path: Explicit configuration file path.
        current_logger: Optional logger to use instead of the module logger.

    Returns:
        A frozen AppSettings instance with the fully resolved configuration.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    logger_to_use = current_logger if current_logger else module_logger

    try:
        settings_after_env_and_defaults = AppSettings()
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration in environment variables: {e}"
        ) from e
    current_values_dict = settings_after_env_and_defaults.model_dump()

    cli_config = getattr(cli_args, "config", None) if cli_args else None
    resolved_config_path = (
        config_file_path
        or cli_config
        or os.environ.get("CONFIG_FILE")
        or static_config.CONFIG_FILE_DEFAULT
    )
    file_values = read_config_file(Path(resolved_config_path), logger_to_use)
    current_values_dict = _deep_update(current_values_dict, file_values)
    current_values_dict["config_file"] = str(resolved_config_path)

    if cli_args:
        cli_overrides: Dict[str, Any] = {}
        for cli_key, cli_value in vars(cli_args).items():
            if cli_value is None:
                continue
            path = CLI_KEY_MAP.get(cli_key)
            if path:
                _set_path(cli_overrides, path, cli_value)
            elif cli_key == "no_delay" and cli_value:
                cli_overrides["service_start_delay"] = 0
        current_values_dict = _deep_update(current_values_dict, cli_overrides)

    try:
        return AppSettings(**current_values_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
