"""
Structured logging configuration for the fee audit.

Console output is plain text by default and JSON on request; the optional
log file is always JSON with rotation. Logs go to stderr so that reports
printed on stdout stay machine-readable.

Usage:
    from feeaudit.core.logging_config import setup_logging

    setup_logging(level="DEBUG", log_file="/var/log/feeaudit/audit.json")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, service, environment and source fields.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        environment: Optional[str] = None,
        service_name: str = "feeaudit",
    ):
        super().__init__(fmt=fmt)
        self.environment = environment or "production"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "feeaudit",
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_console: bool = False,
    environment: str = "production",
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 10,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        name: Logger to configure (the package root by default)
        level: Logging level name
        log_file: Path of a rotating JSON log file (optional)
        json_console: Emit JSON instead of text on the console
        environment: Environment identifier added to JSON records
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured logger
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    logger.handlers = []

    json_formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(json_formatter if json_console else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(json_formatter)
        logger.addHandler(file_handler)

    return logger
