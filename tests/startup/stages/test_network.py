from unittest.mock import MagicMock, Mock

import pytest

from common.errors import FatalActionError, TransientActionError
from startup.stages.network import NetworkAction


@pytest.fixture
def action(app_settings, mocker):
    mocker.patch("startup.stages.network.time.sleep")
    network_action = NetworkAction(app_settings)
    network_action._apt = MagicMock()
    mocker.patch.object(
        network_action,
        "elevated",
        return_value=Mock(returncode=0, stdout="wg0 UP 10.8.0.2/24\n"),
    )
    return network_action


def test_wait_for_network_succeeds(action, mocker):
    mock_ping = mocker.patch(
        "startup.stages.network.network_is_up", side_effect=[False, True]
    )

    action.wait_for_network()

    assert mock_ping.call_count == 2


def test_wait_for_network_times_out(action, mocker, app_settings):
    mocker.patch("startup.stages.network.network_is_up", return_value=False)

    with pytest.raises(TransientActionError, match="Network not available"):
        action.wait_for_network()


def test_run_without_wireguard(app_settings, mocker):
    settings = app_settings.model_copy(update={"enable_wireguard": False})
    network_action = NetworkAction(settings)
    mocker.patch.object(
        network_action, "elevated", return_value=Mock(returncode=0, stdout="")
    )
    mocker.patch("startup.stages.network.network_is_up", return_value=True)
    mock_setup = mocker.patch.object(network_action, "setup_wireguard")

    result = network_action.run()

    assert result.succeeded
    mock_setup.assert_not_called()


def test_setup_wireguard_brings_interface_up(action, mocker):
    mocker.patch.object(action, "succeeds", return_value=True)
    mocker.patch("startup.stages.network.command_exists", return_value=True)
    mocker.patch(
        "startup.stages.network.wireguard_is_active", side_effect=[False, True]
    )
    mock_retry = mocker.patch.object(action, "retry_command")

    assert action.setup_wireguard() is False

    assert mock_retry.call_args[0][0] == ["wg-quick", "up", "wg0"]
    action.elevated.assert_called_with(
        ["systemctl", "enable", "wg-quick@wg0"]
    )
    action._apt.install.assert_not_called()


def test_setup_wireguard_already_active(action, mocker):
    mocker.patch.object(action, "succeeds", return_value=True)
    mocker.patch("startup.stages.network.command_exists", return_value=False)
    mocker.patch("startup.stages.network.wireguard_is_active", return_value=True)
    mock_retry = mocker.patch.object(action, "retry_command")

    assert action.setup_wireguard() is True

    action._apt.install.assert_called_once_with(["wireguard", "wireguard-tools"])
    mock_retry.assert_not_called()


def test_setup_wireguard_missing_config(action, mocker):
    mocker.patch.object(action, "succeeds", return_value=False)

    with pytest.raises(FatalActionError, match="/etc/wireguard/wg0.conf"):
        action.setup_wireguard()


def test_wireguard_failure_is_not_fatal(action, mocker, caplog):
    mocker.patch("startup.stages.network.network_is_up", return_value=True)
    mocker.patch("startup.stages.network.wireguard_is_active", return_value=False)
    mocker.patch.object(
        action,
        "setup_wireguard",
        side_effect=FatalActionError("WireGuard VPN failed to start properly"),
    )

    result = action.run()

    assert result.succeeded
    assert result.already_configured is False
    assert "continuing without VPN" in caplog.text


def test_run_with_active_vpn_is_already_configured(action, mocker):
    mock_ping = mocker.patch(
        "startup.stages.network.network_is_up", return_value=True
    )
    mocker.patch("startup.stages.network.wireguard_is_active", return_value=True)
    mocker.patch.object(action, "setup_wireguard", return_value=True)

    result = action.run()

    assert result.already_configured
    # check host, then the VPN test host
    assert [c.args[0] for c in mock_ping.call_args_list] == ["8.8.8.8", "10.0.0.1"]


def test_show_network_status_tolerates_missing_tools(action, mocker, caplog):
    mocker.patch(
        "startup.stages.network.wireguard_is_active", return_value=True
    )
    action.elevated.side_effect = FileNotFoundError(2, "No such file", "ip")

    action.show_network_status()

    assert "ip not available" in caplog.text
    assert "wg not available" in caplog.text
    assert action.elevated.call_count == 3
