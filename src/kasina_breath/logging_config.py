"""
Logging setup for kasina-breath.

Console output goes to stderr; a rotating file under ~/.kasina-breath/logs
keeps the DEBUG trail of connection and recovery events. Both are tuned
from the [logging] table of the config file:

    [logging]
    enabled = true          # write the log file
    level = "DEBUG"         # file handler level
    max_size_mb = 10
    backup_count = 5
    bleak_level = "WARNING" # bleak logs every GATT operation at DEBUG
    dir = "/tmp/kasina"     # log directory override
"""

import logging
import logging.config
import os
import sys

from pathlib import Path
from typing import Any

from kasina_breath.config import load_config
from kasina_breath.constants import (
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
)

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOGGING_DEFAULTS: dict[str, Any] = {
    "enabled": True,
    "level": "DEBUG",
    "max_size_mb": DEFAULT_LOG_MAX_BYTES // (1024 * 1024),
    "backup_count": DEFAULT_LOG_BACKUP_COUNT,
    "bleak_level": "WARNING",
    "dir": None,
}

_logging_configured = False


def logging_options(table: dict[str, Any] | None = None) -> dict[str, Any]:
    """Merge a [logging] table (read from the config file when None) over the defaults."""
    if table is None:
        table = load_config().get("logging", {})
    if not isinstance(table, dict):
        table = {}
    return {**LOGGING_DEFAULTS, **{k: v for k, v in table.items() if k in LOGGING_DEFAULTS}}


def build_logging_config(
    verbose: bool = False,
    console_format: str | None = None,
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the dictConfig dictionary.

    Args:
        verbose: Console at DEBUG instead of INFO
        console_format: Console format string; the file format when None
        options: Merged [logging] options; read from the config file when None
    """
    options = options or logging_options()

    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_format or FILE_FORMAT},
            "file": {"format": FILE_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if verbose else "INFO",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "bleak": {"level": str(options["bleak_level"]).upper()},
        },
        "root": {"level": "DEBUG", "handlers": ["console"]},
    }

    if options["enabled"]:
        log_dir = Path(options["dir"]).expanduser() if options["dir"] else DEFAULT_LOG_DIR
        os.makedirs(log_dir, mode=0o700, exist_ok=True)
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": str(options["level"]).upper(),
            "formatter": "file",
            "filename": str(log_dir / DEFAULT_LOG_FILE),
            "maxBytes": int(float(options["max_size_mb"]) * 1024 * 1024),
            "backupCount": int(options["backup_count"]),
            "encoding": "utf-8",
        }
        config["root"]["handlers"].append("file")

    return config


def setup_logging(*, verbose: bool = False, console_format: str | None = None) -> None:
    """Configure logging once per process. A bad [logging] table falls back to basicConfig."""
    global _logging_configured

    if _logging_configured:
        return

    try:
        logging.config.dictConfig(
            build_logging_config(verbose=verbose, console_format=console_format)
        )
    except (ValueError, TypeError, OSError) as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format=console_format or "%(levelname)s: %(message)s",
        )

    _logging_configured = True
