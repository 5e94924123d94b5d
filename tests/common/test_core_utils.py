import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock

from common.core_utils import (
    SymbolFormatter,
    build_formatter,
    log_level_from_name,
    setup_logging,
    stage_log_file,
)


def test_setup_logging_with_file_and_console(mocker):
    """Test setup_logging when both log_file and log_to_console are provided."""
    mock_file_handler = mocker.patch("logging.FileHandler")
    mock_stream_handler = mocker.patch("logging.StreamHandler")
    mock_formatter = mocker.patch("common.core_utils.SymbolFormatter")

    mock_root_logger = MagicMock()
    mocker.patch("logging.getLogger", return_value=mock_root_logger)
    mock_root_logger.handlers = []

    log_file_path = str(Path("logs/test.log"))
    mocker.patch("common.core_utils.Path.mkdir")

    setup_logging(log_file=log_file_path, log_to_console=True)

    mock_file_handler.assert_called_once_with(Path(log_file_path), mode="a")
    mock_stream_handler.assert_called_once_with(sys.stdout)
    assert mock_formatter.call_count == 1
    assert mock_root_logger.addHandler.call_count == 2


def test_setup_logging_replaces_existing_handlers(tmp_path):
    """Calling setup_logging twice leaves one set of handlers."""
    log_file = tmp_path / "logs" / "start_services.log"

    setup_logging(log_level=logging.DEBUG, log_file=str(log_file))
    setup_logging(log_level=logging.DEBUG, log_file=str(log_file))

    root_logger = logging.getLogger()
    assert len(root_logger.handlers) == 2
    assert root_logger.level == logging.DEBUG

    logging.getLogger("startup.test").info("hello from the run log")
    for handler in root_logger.handlers:
        handler.flush()
    assert "hello from the run log" in log_file.read_text()


def test_setup_logging_threshold_filters_records(tmp_path):
    log_file = tmp_path / "run.log"
    setup_logging(
        log_level=logging.WARNING, log_file=str(log_file), log_to_console=False
    )

    logging.getLogger("startup.test").info("quiet info")
    logging.getLogger("startup.test").warning("loud warning")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = log_file.read_text()
    assert "quiet info" not in content
    assert "loud warning" in content


def test_symbol_formatter_uses_level_symbols():
    formatter = SymbolFormatter(
        fmt="%(symbol)s %(message)s",
        symbols={"warning": "W", "error": "E"},
    )
    record = logging.LogRecord(
        "x", logging.WARNING, __file__, 1, "careful", None, None
    )
    assert formatter.format(record) == "W careful"

    record = logging.LogRecord(
        "x", logging.ERROR, __file__, 1, "broken", None, None
    )
    assert formatter.format(record) == "E broken"


def test_build_formatter_prefix():
    formatter = build_formatter("[dkb]", {"info": "i"})
    record = logging.LogRecord(
        "startup", logging.INFO, __file__, 1, "message", None, None
    )
    assert formatter.format(record).startswith("[dkb] ")


def test_log_level_from_name():
    assert log_level_from_name("debug") == logging.DEBUG
    assert log_level_from_name("WARNING") == logging.WARNING
    assert log_level_from_name("verbose") == logging.INFO


def test_stage_log_file_captures_stage_records(tmp_path):
    log_dir = tmp_path / "logs"
    stage_logger = logging.getLogger("startup.stages.test")
    logging.getLogger().setLevel(logging.INFO)

    with stage_log_file(str(log_dir), "iscsi") as log_path:
        stage_logger.info("inside the stage")
    stage_logger.info("after the stage")

    assert log_path == log_dir / "iscsi.log"
    content = log_path.read_text()
    assert "inside the stage" in content
    assert "after the stage" not in content


def test_stage_log_file_detaches_on_error(tmp_path):
    root_logger = logging.getLogger()
    before = list(root_logger.handlers)

    try:
        with stage_log_file(str(tmp_path), "cache"):
            raise RuntimeError("stage blew up")
    except RuntimeError:
        pass

    assert root_logger.handlers == before


def test_stage_log_file_unwritable_directory(tmp_path, mocker):
    mocker.patch(
        "common.core_utils.logging.FileHandler",
        side_effect=PermissionError("denied"),
    )

    with stage_log_file(str(tmp_path), "network") as log_path:
        assert log_path is None
