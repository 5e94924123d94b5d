import pytest

from common.errors import StageOrderError
from startup.config import CANONICAL_STAGE_ORDER
from startup.stage_catalog import (
    build_stages,
    setting_value,
    stage_enabled,
    validate_stage_order,
)
from startup.stages import CacheAction, ScriptAction


def test_build_stages_canonical_order(app_settings):
    stages = build_stages(app_settings)

    assert tuple(stage.name for stage in stages) == CANONICAL_STAGE_ORDER
    assert [stage.description for stage in stages] == [
        "Network initialization",
        "iSCSI storage setup",
        "SSD cache setup",
        "Samba & NFS setup",
        "External NFS mount",
        "Nextcloud client setup",
    ]


def test_only_network_stage_is_retried(app_settings):
    stages = build_stages(app_settings)

    assert [stage.name for stage in stages if stage.retry] == ["network"]


def test_post_delay_between_stages_only(app_settings):
    settings = app_settings.model_copy(update={"service_start_delay": 5})

    stages = build_stages(settings)

    assert [stage.post_delay for stage in stages] == [5, 5, 5, 5, 5, 0]


def test_no_post_delay_after_last_enabled_stage(app_settings):
    settings = app_settings.model_copy(
        update={
            "service_start_delay": 5,
            "enable_external_nfs": False,
            "enable_nextcloud": False,
        }
    )

    delays = {stage.name: stage.post_delay for stage in build_stages(settings)}

    assert delays["cache"] == 5
    assert delays["file-sharing"] == 0


def test_optional_stages_follow_flags(app_settings):
    settings = app_settings.model_copy(
        update={"enable_external_nfs": False, "enable_nextcloud": False}
    )

    enabled = {stage.name: stage.enabled for stage in build_stages(settings)}

    assert enabled["external-nfs"] is False
    assert enabled["nextcloud"] is False
    assert enabled["iscsi"] is True
    assert stage_enabled(settings, "cache") is True


def test_subset_is_returned_in_canonical_order(app_settings):
    stages = build_stages(app_settings, only=["file-sharing", "iscsi"])

    assert [stage.name for stage in stages] == ["iscsi", "file-sharing"]
    assert stages[-1].post_delay == 0


def test_forced_stage_runs_even_when_disabled(app_settings):
    settings = app_settings.model_copy(update={"enable_nextcloud": False})

    stages = build_stages(
        settings, only=["nextcloud"], force_enabled=["nextcloud"]
    )

    assert stages[0].enabled is True


def test_unknown_stage_rejected(app_settings):
    with pytest.raises(StageOrderError, match="Unknown stage"):
        build_stages(app_settings, only=["backup"])


def test_stage_script_override(app_settings):
    settings = app_settings.model_copy(
        update={"stage_scripts": {"cache": "/opt/dkb/setup-cache.sh"}}
    )

    stages = {stage.name: stage for stage in build_stages(settings)}

    assert isinstance(stages["cache"].action, ScriptAction)
    assert stages["cache"].action.script_path == "/opt/dkb/setup-cache.sh"
    assert isinstance(
        build_stages(app_settings, only=["cache"])[0].action, CacheAction
    )


@pytest.mark.parametrize(
    "names",
    [
        ["network", "iscsi", "cache"],
        ["iscsi", "nextcloud"],
        [],
        list(CANONICAL_STAGE_ORDER),
    ],
)
def test_validate_stage_order_accepts_canonical_subsequences(names):
    validate_stage_order(names)


@pytest.mark.parametrize(
    "names, message",
    [
        (["cache", "iscsi"], "out of order"),
        (["network", "network"], "more than once"),
        (["network", "backup"], "Unknown stage"),
    ],
)
def test_validate_stage_order_rejects(names, message):
    with pytest.raises(StageOrderError, match=message):
        validate_stage_order(names)


def test_setting_value(app_settings):
    assert setting_value(app_settings, "iscsi.target_portal") == "192.168.1.10:3260"
    assert setting_value(app_settings, "cache.device") == "/dev/md128"
    assert setting_value(app_settings, "iscsi.initiator_name") is None
