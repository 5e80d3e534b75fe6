"""
Logging setup for keeper SDK tools.

Library code only creates module loggers; applications (and the CLI)
call setup_logging() once at startup.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import KeeperSettings, LogFormat


def setup_logging(settings: KeeperSettings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Client settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == LogFormat.JSON:
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from the transport
    if level > logging.DEBUG:
        logging.getLogger("kazoo").setLevel(logging.WARNING)
