"""
Logging setup for the control plane.

Nothing is configured on import. Applications call ``setup_logging`` once,
usually with the process ``Settings``; library modules only ever do
``logger = logging.getLogger(__name__)``.

What ``setup_logging`` installs on the root logger:

- one console handler at the configured level,
- optionally a size-rotated ``apex_control.log`` under ``APEX_LOG_FILE_DIR``
  that always receives DEBUG,
- per-package levels from ``MODULE_LOG_LEVELS``.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .config import Settings
from .config import settings as default_settings

SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

LOG_FILE_NAME = "apex_control.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

MODULE_LOG_LEVELS: Dict[str, str] = {
    # Run and merge transitions are the audit-relevant noise.
    "apex_control.workflow": "DEBUG",
    "apex_control.reconciliation": "DEBUG",
    "apex_control.service": "DEBUG",
    "apex_control.access": "INFO",
    "apex_control.graph": "INFO",
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "aiosqlite": "WARNING",
    "langgraph": "WARNING",
}

_FORMATS = {"simple": SIMPLE_FORMAT, "detailed": DETAILED_FORMAT}


class JsonFormatter(logging.Formatter):
    """One JSON object per record, encoded with ``json.dumps`` so any message text is safe."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "where": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_type"] = record.exc_info[0].__name__
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter_for(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JsonFormatter()
    return logging.Formatter(_FORMATS.get(fmt, DETAILED_FORMAT), datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    settings: Optional[Settings] = None,
    *,
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: bool = True,
) -> None:
    """
    Replace the root logger's handlers with the control plane's.

    Calling it again is safe; handlers are swapped, not stacked.

    Args:
        settings: Source of the defaults; the process-wide ``settings`` when omitted.
        log_level: Console level overriding ``APEX_LOG_LEVEL``.
        log_format: ``simple``, ``detailed`` or ``json``, overriding ``APEX_LOG_FORMAT``.
        enable_file: Set to False to skip the file handler even when
            ``APEX_ENABLE_FILE_LOGGING`` is on.
    """
    cfg = settings or default_settings
    level = (log_level or cfg.log_level).upper()
    fmt = log_format or cfg.log_format
    formatter = _formatter_for(fmt)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    log_path: Optional[Path] = None
    if enable_file and cfg.enable_file_logging:
        log_dir = Path(cfg.log_file_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / LOG_FILE_NAME
        file_handler = RotatingFileHandler(log_path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(name).setLevel(module_level)

    root.debug(f"Logging ready: level={level} format={fmt} file={log_path or 'off'}")


def get_logger(name: str) -> logging.Logger:
    """Shorthand for ``logging.getLogger(name)``."""
    return logging.getLogger(name)
