import logging
import logging.handlers

import pytest

from projector.app.logging_config import LOG_FILENAME, build_logging_config, configure_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_config_with_file(tmp_path):
    config = build_logging_config("debug", tmp_path / "run.log", retention_days=0)

    assert config["root"] == {"level": "DEBUG", "handlers": ["console", "runtime_file"]}
    runtime = config["handlers"]["runtime_file"]
    assert runtime["filename"] == str(tmp_path / "run.log")
    assert runtime["backupCount"] == 1
    assert config["loggers"]["ultralytics"] == {"level": "WARNING"}


def test_config_console_only():
    config = build_logging_config("INFO", None)
    assert list(config["handlers"]) == ["console"]
    assert config["root"]["handlers"] == ["console"]


def test_unknown_level_rejected():
    with pytest.raises(ValueError):
        build_logging_config("LOUD", None)


def test_configure_creates_log_directory(tmp_path):
    log_dir = tmp_path / "nested" / "logs"
    configure_logging("info", log_dir)

    assert log_dir.is_dir()
    files = [h for h in logging.getLogger().handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
    assert [h.baseFilename for h in files] == [str(log_dir / LOG_FILENAME)]
    assert logging.getLogger("httpx").level == logging.WARNING


def test_unusable_log_directory_falls_back_to_console(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    configure_logging("INFO", blocker / "logs")

    handlers = logging.getLogger().handlers
    assert handlers
    assert not any(isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in handlers)
