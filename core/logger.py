#!/usr/bin/env python3
"""
Service Logger Setup

Configures the standard library logging tree for a microservice from
LoggingConfig. Modules keep using ``logging.getLogger(__name__)``; this is
called once at service start-up.
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured_services = set()


def setup_service_logger(
    service_name: str,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root handlers and return the service logger.

    Args:
        service_name: Logger name used for service-level messages
        config: Logging configuration (defaults to environment)

    Returns:
        Logger for the service
    """
    config = config or LoggingConfig.from_env()
    logger = logging.getLogger(service_name)

    if service_name in _configured_services:
        return logger

    root = logging.getLogger()
    root.setLevel(config.log_level.upper())
    formatter = logging.Formatter(config.log_format)

    if config.enable_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    _configured_services.add(service_name)
    logger.debug(
        f"Logging configured for {service_name} "
        f"(level={config.log_level}, environment={config.environment})"
    )
    return logger


__all__ = ["setup_service_logger"]
