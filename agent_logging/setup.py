"""
Logging Setup
Installs rotating file and console handlers on the pipeline's package loggers.

Only the package loggers (``questlog``, ``goals``) get handlers; module
loggers such as ``questlog.relevance`` reach them through propagation.
"""
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from questlog.config import resolve_state_dir

PIPELINE_LOGGERS = ("questlog", "goals")

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Marks handlers installed here so reconfiguring replaces only those.
_HANDLER_TAG = "_questlog_pipeline_handler"


def _resolve_level(log_level: Optional[str]) -> int:
    name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        logging.getLogger(__name__).warning(f"Unknown log level '{name}', using INFO")
        return logging.INFO
    return level


def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _file_handler(name: str, log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{name}_{datetime.now().strftime('%Y%m%d')}.log"
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    # The file gets everything the logger lets through.
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return _tag(handler)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return _tag(handler)


def setup_logging(
    name: str,
    log_dir: Optional[Union[str, Path]] = None,
    log_level: Optional[str] = None,
    console_output: bool = True,
) -> logging.Logger:
    """
    Attach pipeline handlers to one package logger.

    Handlers installed by an earlier call are closed and replaced, so the
    function can be called again to change level or directory. Handlers
    added by the host application are left alone.

    Args:
        name: Logger name (``questlog``, ``goals``, ...)
        log_dir: Directory for the log file (defaults to <state_dir>/logs/{name}/)
        log_level: Level name; falls back to LOG_LEVEL, then INFO
        console_output: Whether to also log to stdout

    Returns:
        The configured logger
    """
    if log_dir is None:
        log_dir = resolve_state_dir() / "logs" / name
    log_dir = Path(log_dir).expanduser()
    level = _resolve_level(log_level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_file_handler(name, log_dir))
    if console_output:
        logger.addHandler(_console_handler(level))
    logger.propagate = False

    logger.debug(f"{name} logging to {log_dir} at {logging.getLevelName(level)}")
    return logger


def configure_pipeline_loggers(
    log_level: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
    console_output: bool = True,
) -> list[logging.Logger]:
    """
    Configure the package logger of every pipeline package.

    Args:
        log_level: Level name; falls back to LOG_LEVEL, then INFO
        log_dir: Base log directory; each package logs to a subdirectory.
            Defaults to <state_dir>/logs.
        console_output: Whether to also log to stdout
    """
    base = Path(log_dir) if log_dir is not None else resolve_state_dir() / "logs"
    return [
        setup_logging(name, log_dir=base / name, log_level=log_level, console_output=console_output)
        for name in PIPELINE_LOGGERS
    ]
