"""Agent settings.

Settings are read from a JSON file (``config.json``) or, when the file name
ends in ``.yaml``/``.yml``, from YAML. The webhook secret can be supplied
through the ``BINARYDEPLOY_SECRET`` environment variable instead of the file.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from binarydeploy.errors import ConfigError

logger = logging.getLogger(__name__)

SECRET_ENV_VAR: Final = "BINARYDEPLOY_SECRET"


def _default_binary_path() -> str:
    return str(Path(sys.argv[0]).resolve())


class AgentSettings(BaseModel):
    """Configuration of the webhook agent itself."""

    host: str = "0.0.0.0"
    port: int = 8080
    # Empty secret disables signature checking entirely
    secret: str = ""
    target_repo_url: str = ""
    self_update_repo_url: str = ""
    deploy_dir: Path = Path("./deployments")
    self_update_dir: Path = Path("./self-update")
    allowed_branches: list[str] = Field(default_factory=list)
    binary_path: Path = Field(default_factory=_default_binary_path)
    backup_path: Path | None = None
    log_file: Path | None = None

    @field_validator("allowed_branches", mode="before")
    @classmethod
    def _split_branches(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [branch.strip() for branch in value.split(",") if branch.strip()]
        return value


def load_settings(path: Path) -> AgentSettings:
    """Load agent settings from a JSON or YAML file.

    Raises:
        ConfigError: If the file cannot be read or fails validation.
    """
    try:
        text = path.read_text()
    except OSError as err:
        raise ConfigError(f"config file {path} not found or unreadable: {err}") from err

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as err:
        raise ConfigError(f"failed to parse config file {path}: {err}") from err

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    env_secret = os.environ.get(SECRET_ENV_VAR)
    if env_secret:
        data["secret"] = env_secret

    try:
        return AgentSettings.model_validate(data)
    except ValidationError as err:
        raise ConfigError(f"invalid config file {path}: {err}") from err


def default_warnings(settings: AgentSettings) -> list[str]:
    """Describe settings that were left at risky or default values."""
    warnings = []
    defaults = AgentSettings()

    if not settings.secret:
        warnings.append("No webhook secret configured; signature checking is disabled")
    if not settings.target_repo_url:
        warnings.append("No target_repo_url configured; target deployments are disabled")
    if not settings.self_update_repo_url:
        warnings.append("No self_update_repo_url configured; self-update is disabled")
    if not settings.allowed_branches:
        warnings.append("allowed_branches is empty; pushes to every branch are deployed")
    if settings.deploy_dir == defaults.deploy_dir:
        warnings.append(f"Using default deploy directory {defaults.deploy_dir}")
    if settings.self_update_dir == defaults.self_update_dir:
        warnings.append(f"Using default self-update directory {defaults.self_update_dir}")

    return warnings
