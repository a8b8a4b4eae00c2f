"""Logging bootstrap for the projector (HTTP shell and kiosk)."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME = "projector-runtime.log"

# Third-party loggers that are chatty at INFO (per-inference, per-request lines)
QUIET_LOGGERS = {
    "ultralytics": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "absl": "WARNING",
}


def build_logging_config(level: str, log_file: Optional[Path], retention_days: int = 14) -> Dict[str, Any]:
    """dictConfig payload: console always, a midnight-rotated file when ``log_file`` is set."""
    level = level.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {level}")

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        },
    }
    if log_file is not None:
        handlers["runtime_file"] = {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "formatter": "default",
            "level": level,
            "filename": str(log_file),
            "when": "midnight",
            "backupCount": max(int(retention_days), 1),
            "utc": True,
            "delay": True,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT}},
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
        "loggers": {name: {"level": quiet} for name, quiet in QUIET_LOGGERS.items()},
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """
    Install projector logging.

    A log directory that cannot be created (read-only image, missing mount)
    leaves the projector running with console logging only.
    """
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()

    log_file: Optional[Path] = log_dir / LOG_FILENAME
    dir_error: Optional[OSError] = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        log_file = None
        dir_error = e

    dictConfig(build_logging_config(level, log_file, retention_days))

    logger = logging.getLogger(__name__)
    if dir_error is not None:
        logger.warning("Log directory %s unavailable (%s) - console logging only", log_dir, dir_error)
    else:
        logger.debug("Logging to %s (level=%s)", log_file, level.upper())


__all__ = ["configure_logging", "build_logging_config"]
