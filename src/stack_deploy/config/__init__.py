"""Configuration management for stack deployments."""

from .models import (
    ConcurrencyConfig,
    DeploymentMethod,
    DeployOptions,
    EngineSettings,
    EnvironmentRef,
    FileAssetConfig,
    StackConfig,
)
from .parser import Config, ConfigValidationError, parse_parameter_flags

__all__ = [
    "ConcurrencyConfig",
    "DeploymentMethod",
    "DeployOptions",
    "EngineSettings",
    "EnvironmentRef",
    "FileAssetConfig",
    "StackConfig",
    "Config",
    "ConfigValidationError",
    "parse_parameter_flags",
]
