import logging
import subprocess
from pathlib import Path
from unittest.mock import Mock

import pytest

from common.errors import FatalActionError, TransientActionError
from startup.stage_models import ActionResult, Stage
from startup.stage_runner import execute_stage
from startup.stages import CallableAction


@pytest.fixture(autouse=True)
def no_sleep(mocker):
    mocker.patch("startup.stage_runner.time.sleep")
    mocker.patch("common.retry_utils.time.sleep")


def make_stage(func, name="iscsi", **kwargs):
    return Stage(
        name=name,
        description=f"{name} stage",
        action=CallableAction(func),
        **kwargs,
    )


def test_successful_stage(app_settings, caplog):
    caplog.set_level("INFO")

    result = execute_stage(make_stage(lambda: None), app_settings)

    assert result.succeeded
    assert result.exit_code == 0
    assert result.status_label == "OK"
    assert "SUCCESS: iscsi stage completed" in caplog.text


def test_already_configured_stage(app_settings, caplog):
    caplog.set_level("INFO")
    stage = make_stage(lambda: ActionResult(already_configured=True))

    result = execute_stage(stage, app_settings)

    assert result.already_configured
    assert result.status_label == "OK (already configured)"
    assert "iscsi stage already configured" in caplog.text


def test_disabled_stage_is_skipped(app_settings, caplog):
    caplog.set_level("INFO")
    func = Mock()

    result = execute_stage(make_stage(func, enabled=False), app_settings)

    func.assert_not_called()
    assert result.skipped
    assert result.succeeded
    assert result.status_label == "SKIPPED"
    assert "iscsi stage is disabled, skipping..." in caplog.text


def test_nonzero_exit_code_is_failure(app_settings, caplog):
    result = execute_stage(make_stage(lambda: 4), app_settings)

    assert not result.succeeded
    assert result.exit_code == 4
    assert "FAILED: iscsi stage failed with exit code 4" in caplog.text


def test_exception_becomes_failed_result(app_settings):
    def broken():
        raise FatalActionError("device /dev/sdx not found", exit_code=6)

    result = execute_stage(make_stage(broken), app_settings)

    assert not result.succeeded
    assert result.exit_code == 6
    assert "device /dev/sdx not found" in result.message


def test_called_process_error_exit_code(app_settings):
    def broken():
        raise subprocess.CalledProcessError(32, ["mount"])

    assert execute_stage(make_stage(broken), app_settings).exit_code == 32


def test_unexpected_exception_exit_code(app_settings):
    def broken():
        raise KeyError("oops")

    assert execute_stage(make_stage(broken), app_settings).exit_code == 1


def test_retried_stage_recovers(app_settings):
    func = Mock(side_effect=[TransientActionError("no network"), None])

    result = execute_stage(
        make_stage(func, name="network", retry=True), app_settings
    )

    assert result.succeeded
    assert func.call_count == 2


def test_retried_stage_exhausts_attempts(app_settings):
    func = Mock(side_effect=TransientActionError("no network", exit_code=9))

    result = execute_stage(
        make_stage(func, name="network", retry=True), app_settings
    )

    assert not result.succeeded
    assert result.exit_code == 9
    assert func.call_count == app_settings.max_retries


def test_post_delay_after_success_only(app_settings, mocker):
    mock_sleep = mocker.patch("startup.stage_runner.time.sleep")

    execute_stage(make_stage(lambda: None, post_delay=5), app_settings)
    execute_stage(make_stage(lambda: False, post_delay=5), app_settings)

    mock_sleep.assert_called_once_with(5)


def test_stage_log_file_written(app_settings):
    def chatty():
        logging.getLogger("IscsiAction").warning("portal slow to answer")

    execute_stage(make_stage(chatty), app_settings)

    stage_log = Path(app_settings.log_dir) / "iscsi.log"
    content = stage_log.read_text()
    assert "portal slow to answer" in content
