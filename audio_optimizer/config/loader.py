"""Configuration loading and the OptimizerConfig root model."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import InvalidConfigurationError
from .paths import DEFAULT_CONFIG_PATH, get_config_path
from .settings import (
    CPUPoolSettings,
    DeviceIdentity,
    PathSettings,
    PrioritySettings,
    TimingSettings,
    TunableSettings,
    XrunSettings,
)

logger = logging.getLogger(__name__)


class OptimizerConfig(BaseModel):
    """Top-level optimizer configuration. Every section has defaults."""

    model_config = ConfigDict(extra="forbid")

    device: DeviceIdentity = Field(default_factory=DeviceIdentity)
    cpu_pools: CPUPoolSettings = Field(default_factory=CPUPoolSettings)
    priorities: PrioritySettings = Field(default_factory=PrioritySettings)
    xrun: XrunSettings = Field(default_factory=XrunSettings)
    timing: TimingSettings = Field(default_factory=TimingSettings)
    tunables: TunableSettings = Field(default_factory=TunableSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    log_level: str = Field(default="INFO")


def load_optimizer_config(path: Optional[Path] = None) -> OptimizerConfig:
    """Load and validate the optimizer configuration.

    Resolution order: explicit ``path``, ``$AUDIO_OPTIMIZER_CONFIG``, the
    installed default. A missing default file yields built-in defaults; a
    missing explicitly requested file is an error.

    Raises:
        InvalidConfigurationError: unreadable YAML or failed validation
    """
    explicit = path is not None or get_config_path() != DEFAULT_CONFIG_PATH
    config_path = Path(path) if path is not None else get_config_path()

    if not config_path.exists():
        if explicit:
            raise InvalidConfigurationError(
                "Configuration file not found", config_path=str(config_path)
            )
        logger.info("No configuration at %s, using built-in defaults", config_path)
        return OptimizerConfig()

    try:
        raw: Dict[str, Any] = yaml.safe_load(config_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise InvalidConfigurationError(
            f"Cannot read configuration: {e}",
            config_path=str(config_path),
            original_exception=e,
        ) from e

    if not isinstance(raw, dict):
        raise InvalidConfigurationError(
            "Configuration root must be a mapping", config_path=str(config_path)
        )

    return build_config(raw, source=str(config_path))


def build_config(raw: Dict[str, Any], source: str = "<dict>") -> OptimizerConfig:
    """Validate a raw mapping into an OptimizerConfig."""
    try:
        return OptimizerConfig(**raw)
    except ValidationError as e:
        raise InvalidConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s): {e}",
            config_path=source,
            original_exception=e,
        ) from e
