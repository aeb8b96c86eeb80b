"""Deployment descriptor (``deploy.config``) loading.

A repository describes how it is built and run with a key=value file at its
root::

    # deploy.config
    build_command = make build
    run_command = "./bin/server --port 9000"
    working_dir = ./
    max_restarts = 3
    restart_delay = 5

Values may be wrapped in single or double quotes; ``#`` starts a comment.
"""

import logging
from pathlib import Path
from typing import Final

from pydantic import BaseModel, ConfigDict

from binarydeploy.errors import ConfigError

logger = logging.getLogger(__name__)

DESCRIPTOR_NAME: Final = "deploy.config"

# Keys whose values are parsed as integers; unparsable values keep the default
_INT_KEYS: Final = ("port", "restart_delay", "max_restarts")


class DeploymentConfig(BaseModel):
    """How to build and run one deployed repository."""

    model_config = ConfigDict(frozen=True)

    build_command: str
    run_command: str = ""
    working_dir: str = "./"
    environment: str = ""
    port: int = 8080
    restart_delay: int = 5
    max_restarts: int = 3
    backup_binary: str | None = None
    restart_command: str | None = None


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_key_value(text: str) -> dict[str, str]:
    """Parse key=value lines into a dict.

    Raises:
        ConfigError: If a non-blank line has no ``=`` or an empty key.
    """
    values: dict[str, str] = {}

    for line_num, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        if "=" not in line:
            raise ConfigError(f"line {line_num}: missing '=' separator in '{line}'")

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigError(f"line {line_num}: empty key in '{line}'")

        values[key] = _strip_quotes(value.strip())

    return values


def load_deploy_config(path: Path, require_run_command: bool = True) -> DeploymentConfig:
    """Load a deployment descriptor from ``path``.

    Args:
        path: Path to the ``deploy.config`` file.
        require_run_command: Target deployments need a run command; the
            self-update descriptor only needs a build command.

    Raises:
        ConfigError: If the file is missing, malformed or lacks required keys.
    """
    try:
        text = path.read_text()
    except OSError as err:
        raise ConfigError(f"reading deploy config {path}: {err}") from err

    values = parse_key_value(text)

    if "build_command" not in values:
        raise ConfigError("missing required field: build_command")
    if require_run_command and "run_command" not in values:
        raise ConfigError("missing required field: run_command")

    fields: dict[str, object] = {
        key: values[key]
        for key in ("build_command", "run_command", "working_dir", "environment")
        if key in values
    }

    for key in _INT_KEYS:
        if key not in values:
            continue
        try:
            fields[key] = int(values[key])
        except ValueError:
            logger.warning(f"Ignoring non-integer {key}={values[key]!r} in {path}")

    # Empty optional paths behave as unset
    for key in ("backup_binary", "restart_command"):
        if values.get(key):
            fields[key] = values[key]

    return DeploymentConfig(**fields)
