"""Configuration management for the deployment pipeline."""

from .models import (
    PipelineSettings,
    AWSConfig,
    CredentialsConfig,
    RegistryConfig,
    ServiceConfig,
    WatchConfig,
    RetryConfig,
    PipelineConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "PipelineSettings",
    "AWSConfig",
    "CredentialsConfig",
    "RegistryConfig",
    "ServiceConfig",
    "WatchConfig",
    "RetryConfig",
    "PipelineConfig",
    "Config",
    "ConfigValidationError",
]
