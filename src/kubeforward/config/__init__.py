"""Configuration model and loader for kubeforward."""

from kubeforward.config.loader import ConfigLoadError, load_config, parse_config
from kubeforward.config.models import (
    Config,
    EnvironmentDefinition,
    EnvironmentGuards,
    ForwardDefinition,
    HealthCheck,
    Metadata,
    PortMapping,
    PortProtocol,
    ResourceKind,
    ResourceSelector,
    RestartPolicy,
    TargetDefaults,
)

__all__ = [
    "Config",
    "ConfigLoadError",
    "EnvironmentDefinition",
    "EnvironmentGuards",
    "ForwardDefinition",
    "HealthCheck",
    "Metadata",
    "PortMapping",
    "PortProtocol",
    "ResourceKind",
    "ResourceSelector",
    "RestartPolicy",
    "TargetDefaults",
    "load_config",
    "parse_config",
]
