# startup/stage_catalog.py
# -*- coding: utf-8 -*-
"""
The fixed list of provisioning stages.

Stages are built once from the settings, always in the canonical order.
A subset may be selected (single-stage runs) but never reordered.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from common.errors import StageOrderError
from startup import config as static_config
from startup.config_models import AppSettings
from startup.stage_models import Stage
from startup.stages import ACTION_CLASSES, ScriptAction, StageAction

# Settings that must be non-empty for an enabled stage.
REQUIRED_SETTINGS: Dict[str, Tuple[str, ...]] = {
    "network": (),
    "iscsi": (
        "iscsi.target_portal",
        "iscsi.target_iqn",
        "iscsi.mount_point",
    ),
    "cache": ("cache.device", "iscsi.mount_point"),
    "file-sharing": ("iscsi.mount_point", "sharing.share_name"),
    "external-nfs": (
        "external_nfs.server",
        "external_nfs.export",
        "external_nfs.mount_point",
    ),
    "nextcloud": (
        "nextcloud.url",
        "nextcloud.user",
        "nextcloud.local_dir",
    ),
}

RETRIED_STAGES = frozenset({"network"})


def setting_value(app_settings: AppSettings, dotted_path: str) -> Any:
    """Resolve `section.field` against the settings object."""
    value: Any = app_settings
    for part in dotted_path.split("."):
        value = getattr(value, part, None)
        if value is None:
            return None
    return value


def stage_enabled(app_settings: AppSettings, stage_name: str) -> bool:
    if stage_name == "external-nfs":
        return app_settings.enable_external_nfs
    if stage_name == "nextcloud":
        return app_settings.enable_nextcloud
    return True


def validate_stage_order(stage_names: Sequence[str]) -> None:
    """
    Raise StageOrderError unless `stage_names` is a subsequence of the
    canonical order without duplicates or unknown names.
    """
    seen = set()
    last_index = -1
    for name in stage_names:
        if name not in static_config.CANONICAL_STAGE_ORDER:
            raise StageOrderError(f"Unknown stage '{name}'")
        if name in seen:
            raise StageOrderError(f"Stage '{name}' listed more than once")
        index = static_config.CANONICAL_STAGE_ORDER.index(name)
        if index < last_index:
            raise StageOrderError(
                f"Stage '{name}' is out of order; stages must run as "
                + " -> ".join(static_config.CANONICAL_STAGE_ORDER)
            )
        seen.add(name)
        last_index = index


def build_action(
    stage_name: str,
    app_settings: AppSettings,
    logger: Optional[logging.Logger] = None,
) -> StageAction:
    script = app_settings.stage_scripts.get(stage_name)
    if script:
        return ScriptAction(script, app_settings=app_settings, logger=logger)
    return ACTION_CLASSES[stage_name](app_settings, logger)


def build_stages(
    app_settings: AppSettings,
    only: Optional[Iterable[str]] = None,
    force_enabled: Iterable[str] = (),
    logger: Optional[logging.Logger] = None,
) -> List[Stage]:
    """
    Build the stage list in canonical order.

    Args:
        app_settings: The resolved settings.
        only: Restrict to these stage names (order of the argument is
            ignored; the result is always canonical).
        force_enabled: Stage names to run even when disabled in the
            configuration (explicit `--stage NAME`).
        logger: Logger handed to the stage actions.

    Raises:
        StageOrderError: `only` names an unknown stage.
    """
    selected = list(static_config.CANONICAL_STAGE_ORDER)
    if only is not None:
        wanted = list(only)
        for name in wanted:
            if name not in static_config.CANONICAL_STAGE_ORDER:
                raise StageOrderError(f"Unknown stage '{name}'")
        selected = [name for name in selected if name in wanted]

    forced = set(force_enabled)
    enabled = {
        name: name in forced or stage_enabled(app_settings, name)
        for name in selected
    }
    # No delay after the last stage that actually runs.
    running = [name for name in selected if enabled[name]]
    last_running = running[-1] if running else None
    stages: List[Stage] = []
    for name in selected:
        stages.append(
            Stage(
                name=name,
                description=static_config.STAGE_DESCRIPTIONS[name],
                action=build_action(name, app_settings, logger),
                enabled=enabled[name],
                post_delay=(
                    0
                    if name == last_running
                    else app_settings.service_start_delay
                ),
                retry=name in RETRIED_STAGES,
                required_settings=REQUIRED_SETTINGS[name],
            )
        )
    return stages
