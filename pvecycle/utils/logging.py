"""
Project-wide logging setup for pvecycle.

Console logging plus an optional per-run operational log file. The file is
truncated at the start of every run and mailed out on completion, so it
holds exactly one workflow's history.

Controlled via environment variables:
- PVECYCLE_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
- PVECYCLE_LOG_FORMAT: text|json (default: text)
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _get_level(level: Optional[str] = None) -> int:
    level = (level or os.getenv("PVECYCLE_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level, logging.INFO)


def _console_formatter() -> logging.Formatter:
    fmt = os.getenv("PVECYCLE_LOG_FORMAT", "text").lower()
    if fmt == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)


def operational_log_path(log_dir: str | Path, action: str) -> Path:
    """Location of the operational log for one workflow action."""
    return Path(log_dir) / f"proxmox-cluster-{action}.log"


def setup_logging(
    force: bool = False,
    *,
    logger: Optional[logging.Logger] = None,
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> None:
    """Configure root logging for console output and the operational log.

    If a handler is already present and force is False, this is a no-op.
    When ``log_file`` is given the file is opened in write mode, wiping the
    previous run's log.
    """
    target_logger = logger or logging.getLogger()
    if target_logger.handlers and not force:
        return

    if force:
        for h in list(target_logger.handlers):
            target_logger.removeHandler(h)
            h.close()

    target_logger.setLevel(_get_level(level))

    handler = logging.StreamHandler()
    handler.setFormatter(_console_formatter())
    target_logger.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
        target_logger.addHandler(file_handler)
