#!/usr/bin/env python3
"""Modular configuration system for the campaign performance platform

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- engine_config: Optimization cycle thresholds and timings
- logging_config: Logging configuration
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .engine_config import EngineConfig
from .infra_config import InfraConfig
from .logging_config import LoggingConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)


@dataclass
class PlatformConfig:
    """Combined settings for the performance platform"""
    environment: str = "development"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infra: InfraConfig = field(default_factory=InfraConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    @classmethod
    def from_env(cls) -> 'PlatformConfig':
        return cls(
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
            logging=LoggingConfig.from_env(),
            infra=InfraConfig.from_env(),
            engine=EngineConfig.from_env(),
        )


# Create global settings instance
settings = PlatformConfig.from_env()


def get_settings() -> PlatformConfig:
    """Get global settings instance"""
    return settings


def reload_settings() -> PlatformConfig:
    """Reload settings from environment"""
    global settings
    settings = PlatformConfig.from_env()
    return settings


__all__ = [
    'PlatformConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'InfraConfig',
    'EngineConfig',
]
