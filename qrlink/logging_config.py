"""Logging bootstrap for the scanner service.

Besides the console and the runtime log, join attempts get their own audit log
(`qrlink-joins.log`) so Wi-Fi outcomes can be reviewed without the frame noise.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Optional

JOIN_LOGGER = "qrlink.network.join"


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """Apply logging defaults: console, a daily rotated runtime log and the join audit log."""

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[1] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level.upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                },
                "join": {
                    "format": "%(asctime)s | %(levelname)s | %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "runtime_file": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "default",
                    "level": level,
                    "filename": str(log_dir / "qrlink-runtime.log"),
                    "when": "midnight",
                    "backupCount": max(int(retention_days), 1),
                    "utc": True,
                    "delay": True,
                    "encoding": "utf-8",
                },
                "join_file": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "join",
                    "level": "INFO",
                    "filename": str(log_dir / "qrlink-joins.log"),
                    "when": "midnight",
                    "backupCount": max(int(retention_days), 1),
                    "utc": True,
                    "delay": True,
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                JOIN_LOGGER: {"level": "INFO", "handlers": ["join_file"]},
                # One INFO line per webhook request otherwise.
                "httpx": {"level": "WARNING"},
            },
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)


__all__ = ["JOIN_LOGGER", "configure_logging"]
