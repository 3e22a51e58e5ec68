"""Logging setup: structlog routed through stdlib logging to stdout and a log file."""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from .config import APP_BASE_PATH, get_settings


def setup_logging(log_dir: Optional[Path] = None, level: Optional[str] = None) -> Path:
    """
    Configure logging to file and console.

    Returns:
        Path of the log file
    """
    settings = get_settings()
    log_dir = log_dir or APP_BASE_PATH / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "movement_intake.log"

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
    ))
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
    ))

    # Configure standard logging
    logging.basicConfig(
        level=(level or settings.app_log_level).upper(),
        format="%(message)s",
        handlers=[console, file_handler],
        force=True,
    )

    # Configure structlog to use standard logging
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return log_file
