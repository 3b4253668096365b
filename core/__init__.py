#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the campaign performance platform.

COMPONENTS:
    - config/: Environment-driven configuration (infra, engine, logging)
    - logger.py: Service logger setup
    - postgres_client.py: Async PostgreSQL access (asyncpg pool)
    - nats_client.py: NATS event bus for event-driven architecture

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("performance_service")
"""

__version__ = "2.0.0"
