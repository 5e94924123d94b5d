from unittest.mock import MagicMock, Mock

import pytest

from common.errors import FatalActionError
from startup.stages.external_nfs import ExternalNfsAction, render_mount_unit

UNIT_NAME = "mnt-external\\x2dnfs.mount"


@pytest.fixture
def action(app_settings, mocker):
    nfs_action = ExternalNfsAction(app_settings)
    nfs_action._apt = MagicMock()
    mocker.patch.object(
        nfs_action, "elevated", return_value=Mock(returncode=0, stdout="")
    )
    mocker.patch.object(nfs_action, "retry_command")
    return nfs_action


def test_render_mount_unit():
    unit = render_mount_unit("wg0", "10.0.0.2:/srv/share", "/mnt/external-nfs", "rw,hard")

    assert "Requires=wg-quick@wg0.service" in unit
    assert "What=10.0.0.2:/srv/share" in unit
    assert "Where=/mnt/external-nfs" in unit
    assert "Options=_netdev,rw,hard" in unit


def test_verify_wireguard_missing_interface(action, mocker):
    mocker.patch.object(action, "succeeds", return_value=False)

    with pytest.raises(FatalActionError, match="interface wg0 not found"):
        action.verify_wireguard()


def test_verify_wireguard_unreachable_server(action, mocker):
    mocker.patch.object(action, "succeeds", return_value=True)
    mocker.patch(
        "startup.stages.external_nfs.wireguard_is_active", return_value=True
    )
    mocker.patch("startup.stages.external_nfs.network_is_up", return_value=False)

    with pytest.raises(FatalActionError, match="Cannot reach NFS server at 10.0.0.2"):
        action.verify_wireguard()


def test_check_exports_never_fails(action, caplog):
    action.elevated.return_value = Mock(returncode=1, stdout="")
    action.check_exports()
    assert "proceeding anyway" in caplog.text

    action.elevated.return_value = Mock(
        returncode=0, stdout="Export list for 10.0.0.2:\n/srv/other 10.8.0.0/24\n"
    )
    action.check_exports()
    assert "Export /srv/share not found" in caplog.text


def test_mount_share_correct_share_already_mounted(action, mocker):
    mocker.patch("startup.stages.external_nfs.ensure_directory")
    mocker.patch("startup.stages.external_nfs.is_mount_point", return_value=True)
    mocker.patch(
        "startup.stages.external_nfs.mount_source",
        return_value="10.0.0.2:/srv/share",
    )

    assert action.mount_share() is True
    action.retry_command.assert_not_called()
    action.elevated.assert_not_called()


def test_mount_share_replaces_wrong_mount(action, mocker):
    mocker.patch("startup.stages.external_nfs.ensure_directory")
    mocker.patch(
        "startup.stages.external_nfs.is_mount_point", side_effect=[True, True]
    )
    mocker.patch(
        "startup.stages.external_nfs.mount_source", return_value="/dev/sdz1"
    )

    assert action.mount_share() is False

    action.elevated.assert_called_once_with(["umount", "/mnt/external-nfs"])
    assert action.retry_command.call_args[0][0] == [
        "mount",
        "-t",
        "nfs",
        "-o",
        "rw,hard,intr,rsize=8192,wsize=8192",
        "10.0.0.2:/srv/share",
        "/mnt/external-nfs",
    ]


def test_mount_share_verification_failure(action, mocker):
    mocker.patch("startup.stages.external_nfs.ensure_directory")
    mocker.patch("startup.stages.external_nfs.is_mount_point", return_value=False)

    with pytest.raises(FatalActionError, match="Mount verification failed"):
        action.mount_share()


def test_configure_fstab(action, mocker):
    mock_fstab = mocker.patch("startup.stages.external_nfs.set_fstab_entry")

    action.configure_fstab()

    mock_fstab.assert_called_once_with(
        "/mnt/external-nfs",
        "10.0.0.2:/srv/share /mnt/external-nfs nfs _netdev,rw,hard,intr,rsize=8192,wsize=8192 0 0",
        action.app_settings,
        action.logger,
    )


def test_create_systemd_mount_writes_new_unit(action, mocker):
    mocker.patch.object(action, "output", return_value=UNIT_NAME + "\n")
    mocker.patch("startup.stages.external_nfs.read_file", return_value=None)
    mock_write = mocker.patch("startup.stages.external_nfs.write_root_file")
    mock_reload = mocker.patch("startup.stages.external_nfs.systemd_reload")

    assert action.create_systemd_mount() is True

    assert mock_write.call_args[0][0] == f"/etc/systemd/system/{UNIT_NAME}"
    mock_reload.assert_called_once()
    action.elevated.assert_called_once_with(["systemctl", "enable", UNIT_NAME])


def test_create_systemd_mount_unchanged(action, mocker, app_settings):
    mocker.patch.object(action, "output", return_value=UNIT_NAME + "\n")
    current = render_mount_unit(
        "wg0",
        "10.0.0.2:/srv/share",
        "/mnt/external-nfs",
        app_settings.external_nfs.options,
    )
    mocker.patch("startup.stages.external_nfs.read_file", return_value=current)
    mock_write = mocker.patch("startup.stages.external_nfs.write_root_file")
    mock_reload = mocker.patch("startup.stages.external_nfs.systemd_reload")

    assert action.create_systemd_mount() is False
    mock_write.assert_not_called()
    mock_reload.assert_not_called()


def test_run_already_configured(action, mocker):
    mocker.patch.object(action, "verify_wireguard")
    mocker.patch.object(action, "check_exports")
    mocker.patch.object(action, "mount_share", return_value=True)
    mocker.patch.object(action, "configure_fstab")
    mocker.patch.object(action, "create_systemd_mount", return_value=False)

    result = action.run()

    assert result.already_configured
    action._apt.install.assert_called_once_with(["nfs-common"])
