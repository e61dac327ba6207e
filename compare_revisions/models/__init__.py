"""Configuration data structures."""

from compare_revisions.models.config import (
    APIConfig,
    AppConfig,
    Config,
    ConfigRepo,
    Environment,
    GitConfig,
    ImageConfig,
    LogConfig,
)

__all__ = [
    "APIConfig",
    "AppConfig",
    "Config",
    "ConfigRepo",
    "Environment",
    "GitConfig",
    "ImageConfig",
    "LogConfig",
]
