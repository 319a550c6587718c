"""
Structured logging setup — stdlib logging routed through structlog.

Call once at process start (workers, feeders):
  setup_logging(level="DEBUG", json=False)
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from config.settings import LoggingConfig


def setup_logging(level: str = "INFO", json: bool = True) -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

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
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_logging_from_config(config: Optional[LoggingConfig] = None) -> None:
    config = config or LoggingConfig()
    setup_logging(level=config.level, json=config.json)
