import os
from unittest.mock import MagicMock

import pytest

from common.errors import FatalActionError
from startup.stages.iscsi import IscsiAction, configure_iscsid_text

ISCSID_CONF = """# iscsid.conf
node.startup = manual
#node.session.auth.authmethod = CHAP
#node.session.auth.username = username
#node.session.auth.password = password
"""


@pytest.fixture
def action(app_settings, mocker, tmp_path):
    mocker.patch("startup.stages.iscsi.time.sleep")
    mocker.patch("startup.stages.base.time.sleep")
    iscsi_action = IscsiAction(app_settings)
    iscsi_action._apt = MagicMock()
    iscsi_action.disk_by_path_dir = str(tmp_path / "by-path")
    iscsi_action.sys_block_glob = str(tmp_path / "sys" / "*" / "block" / "*")
    mocker.patch.object(iscsi_action, "elevated")
    mocker.patch.object(iscsi_action, "retry_command")
    return iscsi_action


def test_configure_iscsid_text_automatic_startup():
    updated = configure_iscsid_text(ISCSID_CONF)

    assert "node.startup = automatic" in updated
    assert "node.startup = manual" not in updated
    assert "#node.session.auth.authmethod = CHAP" in updated


def test_configure_iscsid_text_with_chap():
    updated = configure_iscsid_text(ISCSID_CONF, "initiator", "s3cret")

    assert "\nnode.session.auth.authmethod = CHAP\n" in updated
    assert "\nnode.session.auth.username = initiator\n" in updated
    assert "\nnode.session.auth.password = s3cret\n" in updated
    assert configure_iscsid_text(updated, "initiator", "s3cret") == updated


def test_configure_iscsid_text_appends_missing_keys():
    updated = configure_iscsid_text("node.startup = automatic", "u", "p")

    assert updated.endswith("node.session.auth.password = p\n")


def test_configure_iscsid_handles_chap_secret_privately(action, mocker):
    mock_read = mocker.patch(
        "startup.stages.iscsi.read_file", return_value=ISCSID_CONF
    )
    mock_write = mocker.patch("startup.stages.iscsi.write_root_file")

    action.configure_iscsid("initiator", "s3cret")

    assert mock_read.call_args.kwargs["sensitive"] is True
    assert mock_write.call_args[0][0] == "/etc/iscsi/iscsid.conf"
    assert mock_write.call_args.kwargs["mode"] == "600"


def test_configure_initiator_generates_name(action, mocker):
    mocker.patch("startup.stages.iscsi.read_file", side_effect=["", None])
    mock_write = mocker.patch("startup.stages.iscsi.write_root_file")
    mocker.patch.object(
        action, "output", return_value="iqn.2004-10.com.ubuntu:01:abc\n"
    )

    action.configure_initiator()

    mock_write.assert_called_once_with(
        "/etc/iscsi/initiatorname.iscsi",
        "InitiatorName=iqn.2004-10.com.ubuntu:01:abc\n",
        action.app_settings,
        action.logger,
    )


def test_configure_initiator_keeps_existing_name(action, mocker):
    mocker.patch(
        "startup.stages.iscsi.read_file",
        side_effect=["InitiatorName=iqn.existing\n", "node.startup = automatic\n"],
    )
    mock_write = mocker.patch("startup.stages.iscsi.write_root_file")

    action.configure_initiator()

    mock_write.assert_not_called()


def test_connect_target_skips_existing_session(action, mocker):
    mocker.patch(
        "startup.stages.iscsi.iscsi_sessions",
        return_value=[
            "tcp: [1] 192.168.1.10:3260,1 iqn.2024-01.com.example:storage (non-flash)"
        ],
    )

    assert action.connect_target() is True
    action.retry_command.assert_not_called()


def test_connect_target_logs_in(action, mocker):
    mocker.patch("startup.stages.iscsi.iscsi_sessions", return_value=[])

    assert action.connect_target() is False

    assert action.retry_command.call_args[0][0] == [
        "iscsiadm",
        "-m",
        "node",
        "-T",
        "iqn.2024-01.com.example:storage",
        "-p",
        "192.168.1.10:3260",
        "--login",
    ]


def test_find_device_from_by_path_link(action, tmp_path):
    by_path = tmp_path / "by-path"
    by_path.mkdir()
    target = tmp_path / "sdb"
    target.touch()
    os.symlink(
        target,
        by_path / "ip-192.168.1.10:3260-iscsi-iqn.2024-01.com.example:storage-lun-0",
    )

    assert action.find_device() == os.path.realpath(target)


def test_find_device_from_sysfs(action, tmp_path):
    (tmp_path / "sys" / "session1" / "block" / "sdc").mkdir(parents=True)

    assert action.find_device() == "/dev/sdc"


def test_find_device_missing(action):
    assert action.find_device() is None


def test_mount_device_already_mounted(action, mocker):
    mocker.patch.object(action, "find_device", return_value="/dev/sdb")
    mocker.patch.object(action, "wait_for_block_device", return_value=True)
    mocker.patch("startup.stages.iscsi.ensure_directory")
    mocker.patch("startup.stages.iscsi.is_mount_point", return_value=True)
    mock_fstab = mocker.patch("startup.stages.iscsi.set_fstab_entry")

    assert action.mount_device() is True

    action.elevated.assert_not_called()
    mock_fstab.assert_not_called()


def test_mount_device_formats_new_disk(action, mocker):
    mocker.patch.object(action, "find_device", return_value="/dev/sdb")
    mocker.patch.object(action, "wait_for_block_device", return_value=True)
    mocker.patch.object(action, "succeeds", return_value=False)
    mocker.patch("startup.stages.iscsi.ensure_directory")
    mocker.patch("startup.stages.iscsi.is_mount_point", return_value=False)
    mock_fstab = mocker.patch("startup.stages.iscsi.set_fstab_entry")

    assert action.mount_device() is False

    commands = [c[0][0] for c in action.elevated.call_args_list]
    assert commands == [
        ["mkfs", "-t", "ext4", "/dev/sdb"],
        ["mount", "-t", "ext4", "/dev/sdb", "/mnt/iscsi"],
    ]
    mock_fstab.assert_called_once_with(
        "/mnt/iscsi",
        "/dev/sdb /mnt/iscsi ext4 _netdev,defaults 0 0",
        action.app_settings,
        action.logger,
    )


def test_mount_device_keeps_existing_filesystem(action, mocker):
    mocker.patch.object(action, "find_device", return_value="/dev/sdb")
    mocker.patch.object(action, "wait_for_block_device", return_value=True)
    mocker.patch.object(action, "succeeds", return_value=True)
    mocker.patch("startup.stages.iscsi.ensure_directory")
    mocker.patch("startup.stages.iscsi.is_mount_point", return_value=False)
    mocker.patch("startup.stages.iscsi.set_fstab_entry")

    action.mount_device()

    commands = [c[0][0] for c in action.elevated.call_args_list]
    assert ["mkfs", "-t", "ext4", "/dev/sdb"] not in commands


def test_mount_device_without_device(action, mocker):
    mocker.patch.object(action, "find_device", return_value=None)

    with pytest.raises(FatalActionError, match="Could not find iSCSI device"):
        action.mount_device()


def test_run_reports_already_configured(action, mocker):
    for step in (
        "configure_initiator",
        "start_services",
        "discover_target",
        "connect_target",
    ):
        mocker.patch.object(action, step)
    mocker.patch.object(action, "mount_device", return_value=True)

    result = action.run()

    assert result.already_configured
    action._apt.install.assert_called_once_with(["open-iscsi"])
