from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_LEVEL = "warn"
SYSLOG_TAG = "zonestats"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_LEVEL_TAGS = {
    logging.DEBUG: "[debug]",
    logging.INFO: "[info]",
    logging.WARNING: "[warn]",
    logging.ERROR: "[error]",
    logging.CRITICAL: "[crit]",
}


def _level_tag(levelno: int) -> str:
    return _LEVEL_TAGS.get(levelno, f"[lvl{levelno}]")


def level_from_name(name: Any) -> int:
    """Brief: Map a config/CLI level name to a logging level (unknown -> WARNING)."""

    return LEVELS.get(str(name or DEFAULT_LEVEL).strip().lower(), logging.WARNING)


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output: program tag, level tag, no timestamp."""

    def __init__(self, tag: str = SYSLOG_TAG) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return f"{self.tag}: {record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Formatter with bracketed lowercase level tags and UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        """Format the record time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = _level_tag(record.levelno)
        return super().format(record)


def _syslog_handler(syslog_cfg: Any) -> logging.Handler:
    address: Any = "/dev/log"
    facility = logging.handlers.SysLogHandler.LOG_USER
    tag = SYSLOG_TAG
    if isinstance(syslog_cfg, dict):
        address = syslog_cfg.get("address", address)
        if isinstance(address, list):
            address = tuple(address)
        facility = getattr(
            logging.handlers.SysLogHandler,
            f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
            facility,
        )
        tag = str(syslog_cfg.get("tag") or tag)
    handler = logging.handlers.SysLogHandler(address=address, facility=facility)
    handler.setFormatter(SyslogFormatter(tag))
    return handler


def init_logging(cfg: Optional[Dict[str, Any]], level: Optional[str] = None) -> None:
    """
    Configure the root logger for a zonestats run.

    Args:
        cfg: ``logging`` section of the merged configuration, optional keys:
            - level: debug, info, warn, error, crit (default: warn)
            - stderr: log to stderr (default: True)
            - file: path of a log file to append to
            - syslog: True, or a dict with address, facility and tag
              (default tag: zonestats)
        level: level name that overrides cfg["level"] (from --log-level).

    Example config:
        logging:
          level: info
          file: ~/zonestats.log
          syslog: {address: /dev/log, tag: zonestats}
    """
    cfg = cfg or {}

    root = logging.getLogger()
    root.setLevel(level_from_name(level or cfg.get("level", DEFAULT_LEVEL)))
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(name)s: %(message)s")

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            root.addHandler(_syslog_handler(syslog_cfg))
        except (OSError, ValueError) as e:  # pragma: no cover - environment specific
            root.warning("Failed to configure syslog: %s", e)

    logging.captureWarnings(True)
