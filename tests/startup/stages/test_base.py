import subprocess
from unittest.mock import Mock

import pytest

from common.errors import (
    FatalActionError,
    RetryExhaustedError,
    TransientActionError,
)
from startup.stage_models import ActionResult
from startup.stages.base import CallableAction, ScriptAction, StageAction


class EchoAction(StageAction):
    name = "echo"

    def run(self) -> ActionResult:
        return ActionResult(detail="echo")


@pytest.fixture(autouse=True)
def no_sleep(mocker):
    mocker.patch("startup.stages.base.time.sleep")
    mocker.patch("common.retry_utils.time.sleep")


@pytest.mark.parametrize(
    "returned, exit_code",
    [(None, 0), (True, 0), (False, 1), (0, 0), (3, 3)],
)
def test_callable_action_normalises_results(returned, exit_code):
    result = CallableAction(lambda: returned).run()
    assert result.exit_code == exit_code


def test_callable_action_passes_action_result_through():
    outcome = ActionResult(already_configured=True, detail="mounted")
    assert CallableAction(lambda: outcome).run() is outcome


def test_callable_action_rejects_unknown_values():
    with pytest.raises(TransientActionError):
        CallableAction(lambda: "yes").run()


def test_callable_action_propagates_exceptions():
    def broken():
        raise FatalActionError("no device")

    with pytest.raises(FatalActionError):
        CallableAction(broken).run()


def test_script_action_missing_script(tmp_path, app_settings):
    action = ScriptAction(str(tmp_path / "missing.sh"), app_settings=app_settings)
    with pytest.raises(FatalActionError, match="not found"):
        action.run()


def test_script_action_exit_status(tmp_path, app_settings, mocker):
    script = tmp_path / "setup-cache.sh"
    script.write_text("#!/bin/bash\nexit 0\n")
    mock_run = mocker.patch(
        "startup.stages.base.run_command", return_value=Mock(returncode=4)
    )

    result = ScriptAction(
        str(script), args=("--fast",), app_settings=app_settings
    ).run()

    assert result.exit_code == 4
    assert mock_run.call_args[0][0] == ["bash", str(script), "--fast"]

    mock_run.return_value = Mock(returncode=0)
    assert ScriptAction(str(script), app_settings=app_settings).run().succeeded


def test_require(app_settings):
    action = EchoAction(app_settings)
    action.require(True, "fine")
    with pytest.raises(FatalActionError) as excinfo:
        action.require(False, "Cache device /dev/md128 does not exist", exit_code=5)
    assert excinfo.value.exit_code == 5


def test_retry_command_uses_settings(app_settings, mocker):
    mock_run = mocker.patch(
        "startup.stages.base.run_elevated_command",
        side_effect=subprocess.CalledProcessError(1, ["iscsiadm"]),
    )
    action = EchoAction(app_settings)

    with pytest.raises(RetryExhaustedError):
        action.retry_command(["iscsiadm", "-m", "discovery"])
    assert mock_run.call_count == app_settings.max_retries


def test_wait_for_block_device(app_settings, mocker):
    action = EchoAction(app_settings)
    mocker.patch.object(action, "succeeds", side_effect=[False, False, True])
    assert action.wait_for_block_device("/dev/sdb", timeout=10) is True

    mocker.patch.object(action, "succeeds", return_value=False)
    assert action.wait_for_block_device("/dev/sdb", timeout=4) is False
    assert action.succeeds.call_count == 3


def test_ensure_service_running_already_active(app_settings, mocker):
    mocker.patch("startup.stages.base.service_is_active", return_value=True)
    mock_enable = mocker.patch("startup.stages.base.enable_service")

    EchoAction(app_settings).ensure_service_running("smbd")

    mock_enable.assert_not_called()


def test_ensure_service_running_starts_service(app_settings, mocker):
    mocker.patch(
        "startup.stages.base.service_is_active", side_effect=[False, True]
    )
    mock_enable = mocker.patch("startup.stages.base.enable_service")

    EchoAction(app_settings).ensure_service_running("nfs-server")

    mock_enable.assert_called_once_with("nfs-server", app_settings, mocker.ANY)


def test_ensure_service_running_failure(app_settings, mocker):
    mocker.patch("startup.stages.base.service_is_active", return_value=False)
    mocker.patch("startup.stages.base.enable_service")

    with pytest.raises(FatalActionError, match="failed to start"):
        EchoAction(app_settings).ensure_service_running("iscsid")


def test_ensure_service_running_enable_error(app_settings, mocker):
    mocker.patch("startup.stages.base.service_is_active", return_value=False)
    mocker.patch(
        "startup.stages.base.enable_service",
        side_effect=subprocess.CalledProcessError(5, ["systemctl"]),
    )

    with pytest.raises(FatalActionError) as excinfo:
        EchoAction(app_settings).ensure_service_running("iscsid")
    assert excinfo.value.exit_code == 5
