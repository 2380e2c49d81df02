"""Configuration management for the placement protection engine."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_app_config, load_config, validate_config_file
from .models import (
    DEFAULT_SCHEDULE,
    AppConfig,
    CheckInConfig,
    ClassifierConfig,
    EmailConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    Milestone,
    PaymentsConfig,
    ProtectionConfig,
    SchedulerConfig,
)

__all__ = [
    "load_config",
    "load_app_config",
    "validate_config_file",
    "load_environment_config",
    "AppConfig",
    "CheckInConfig",
    "ClassifierConfig",
    "EmailConfig",
    "EnvironmentConfig",
    "LoggingConfig",
    "Milestone",
    "PaymentsConfig",
    "ProtectionConfig",
    "SchedulerConfig",
    "DEFAULT_SCHEDULE",
    "LogLevel",
    "LogFormat",
    "ConfigurationError",
]
