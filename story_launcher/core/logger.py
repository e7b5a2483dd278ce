# story_launcher/core/logger.py

"""
Central logging helper for Story Launcher.

Provides:
- get_logger(name) -> logging.Logger
    Standard Python logger named "story_launcher.<name>".
- log_action(action_name, status, info="")
    Structured one-line record of a user or automatic action
    (tool update, tool launch, self-update restart, ...).

All logs are written under:
    <data_dir>/logs/<YYYY-MM-DD>.log

where <data_dir> comes from config.get_data_dir().
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Dict

from .config import get_logs_dir

# Cache of created loggers
_LOGGERS: Dict[str, logging.Logger] = {}

_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _get_log_file_path() -> Path:
    """
    Return the full path to today's log file, creating the logs folder.
    """
    log_dir = get_logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.date.today().isoformat()
    return log_dir / f"{date_str}.log"


def get_logger(name: str) -> logging.Logger:
    """
    Return a Python logger that writes into today's log file.

    If the file handler cannot be created (read-only home, sandbox, ...)
    the logger falls back to stderr so messages are never lost.
    """
    if name in _LOGGERS:
        return _LOGGERS[name]

    logger = logging.getLogger(f"story_launcher.{name}")
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        formatter = logging.Formatter(_FORMAT, _DATE_FORMAT)
        try:
            fh = logging.FileHandler(_get_log_file_path(), encoding="utf-8")
            fh.setLevel(logging.INFO)
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError:
            sh = logging.StreamHandler()
            sh.setLevel(logging.INFO)
            sh.setFormatter(formatter)
            logger.addHandler(sh)

    _LOGGERS[name] = logger
    return logger


_action_logger = get_logger("actions")


def log_action(action_name: str, status: str, info: str = "") -> None:
    """
    Log a structured action entry.
    status example: 'START', 'SUCCESS', 'SKIP', 'ERROR'
    """
    msg = f"ACTION {status}: {action_name}"
    if info:
        msg += f" | {info}"
    if status == "ERROR":
        _action_logger.warning(msg)
    else:
        _action_logger.info(msg)
