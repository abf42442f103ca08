"""Logging configuration for markpilot."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["get_log_path", "resolve_level", "setup_logging"]

_LOG_DIR_ENV = "MARKPILOT_LOG_DIR"
_LOG_FILENAME = "markpilot.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_log_path: Path | None = None


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install a rotating file handler (plus stderr) on the root logger.

    Repeated calls are no-ops unless ``force`` is set. Returns the log file path.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    numeric_level = resolve_level(level)
    directory = _resolve_log_dir(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / _LOG_FILENAME
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_external_loggers(numeric_level)

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _log_path


def resolve_level(level: int | str) -> int:
    """Turn ``"debug"``/``"INFO"``/``10`` into a numeric logging level."""

    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    if log_dir is not None:
        return Path(log_dir).expanduser()
    override = os.environ.get(_LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".markpilot" / "logs"


def _quiet_external_loggers(root_level: int) -> None:
    floor = max(root_level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)
