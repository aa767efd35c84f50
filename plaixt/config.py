"""
Configuration for plaixt.

Settings come from, highest priority first:
    1. Environment variables prefixed with PLAIXT_ (e.g. PLAIXT_ROOT_FOLDER)
    2. A YAML file (`plaixt.yaml` in the working directory, or --config)
    3. The defaults below

Mapping-valued settings are given as JSON in the environment:

    PLAIXT_CHECK_MODULES='{"budget": "mychecks.budget:check"}'

Invariants:
    - Settings are immutable once loaded
    - Secrets (paperless_token) are never logged

How to change safely:
    - Add new settings with defaults so existing config files keep working
    - Keep names stable, they are part of the environment contract
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import PlaixtError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PLAIXT_"
DEFAULT_CONFIG_FILE = "plaixt.yaml"


class ConfigError(PlaixtError):
    """The configuration file or environment is invalid."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message, code="INVALID_CONFIG", source=source)


class Settings(BaseSettings):
    """plaixt configuration."""

    # Store layout
    root_folder: Path = Field(default=Path("."))
    definitions_dir: str = Field(default="definitions")
    record_glob: str = Field(default="**/*.plrecs")

    # Loading
    workers: int = Field(default=1, ge=1, description="Threads used to parse record files")
    reject_failed_checks: bool = Field(default=True)
    check_modules: Dict[str, str] = Field(
        default_factory=dict, description="Check name to 'package.module:callable'"
    )
    check_commands: Dict[str, List[str]] = Field(
        default_factory=dict, description="Check name to subprocess argv"
    )

    # Queries
    query_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    # Document-management service
    paperless_url: Optional[str] = Field(default=None)
    paperless_token: Optional[str] = Field(default=None, repr=False)
    paperless_timeout_seconds: float = Field(default=10.0, gt=0)

    # Observability
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    # HTTP API
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)

    model_config = {"env_prefix": ENV_PREFIX, "extra": "forbid", "frozen": True}

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{value}'")
        return level

    @classmethod
    def load(cls, config_file: Optional[str | Path] = None, **overrides: Any) -> Settings:
        """Load settings from a YAML file, the environment and overrides.

        Args:
            config_file: YAML file; defaults to ./plaixt.yaml when present
            overrides: Values that win over every other source (CLI flags)

        Raises:
            ConfigError: If the file cannot be read or a value is invalid
        """
        path = Path(config_file) if config_file is not None else Path(DEFAULT_CONFIG_FILE)
        file_values: Dict[str, Any] = {}
        if config_file is not None or path.is_file():
            file_values = _read_yaml(path)

        # Environment variables win over the file, overrides win over both.
        values = {
            key: value
            for key, value in file_values.items()
            if f"{ENV_PREFIX}{key.upper()}" not in os.environ
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}", source=str(path)) from e

    @property
    def definitions_path(self) -> Path:
        return self.root_folder / self.definitions_dir

    def validate_paths(self) -> List[str]:
        """Report layout problems as warnings (the store reports them again on load)."""
        warnings = []
        if not self.root_folder.is_dir():
            warnings.append(f"Root folder does not exist: {self.root_folder}")
        elif not self.definitions_path.is_dir():
            warnings.append(f"Definitions folder does not exist: {self.definitions_path}")
        for warning in warnings:
            logger.warning(warning)
        return warnings

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Configuration loaded",
            extra={
                "root_folder": str(self.root_folder),
                "definitions_dir": self.definitions_dir,
                "record_glob": self.record_glob,
                "workers": self.workers,
                "checks": sorted(self.check_modules) + sorted(self.check_commands),
                "paperless_url": self.paperless_url,
                "log_level": self.log_level,
            },
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file: {e}", source=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML: {e}", source=str(path)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must hold a mapping", source=str(path))
    return data
