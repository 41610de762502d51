"""Global and per-task configuration loaded from TOML."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import tomli
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


DEFAULT_CLI = "q chat"

DEFAULT_GLOBAL_CONFIG = """# Grill Configuration
default_cli = "q chat"

[clis]
q = "q chat"
"""

DEFAULT_TASK_CONFIG = """# Task Configuration
cli = "q chat"
"""


class GlobalConfig(BaseModel):
    """Contents of ``.grill/config.toml``."""

    default_cli: str = DEFAULT_CLI
    clis: Dict[str, str] = Field(default_factory=lambda: {"q": DEFAULT_CLI})
    hooks: Dict[str, str] = Field(default_factory=dict)


class TaskConfig(BaseModel):
    """Contents of ``.grill/tasks/<name>/config.toml``."""

    cli: Optional[str] = None
    hooks: Dict[str, str] = Field(default_factory=dict)


def _load_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def load_global_config(path: Path) -> GlobalConfig:
    """Load the global config; a missing file yields the defaults."""
    if not path.exists():
        return GlobalConfig()
    try:
        return GlobalConfig(**_load_toml(path))
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e


def load_task_config(path: Path) -> TaskConfig:
    """Load a task config; a missing file yields an empty config."""
    if not path.exists():
        return TaskConfig()
    try:
        return TaskConfig(**_load_toml(path))
    except ValidationError as e:
        raise ConfigError(f"Invalid task config file {path}: {e}") from e
