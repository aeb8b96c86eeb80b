"""Agent settings and deployment descriptors."""

from binarydeploy.config.descriptor import (
    DESCRIPTOR_NAME,
    DeploymentConfig,
    load_deploy_config,
    parse_key_value,
)
from binarydeploy.config.settings import AgentSettings, default_warnings, load_settings

__all__ = [
    "DESCRIPTOR_NAME",
    "DeploymentConfig",
    "load_deploy_config",
    "parse_key_value",
    "AgentSettings",
    "default_warnings",
    "load_settings",
]
