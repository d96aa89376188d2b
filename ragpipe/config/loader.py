"""YAML configuration loader with environment variable overrides.

Configuration is resolved in layers (later layers override earlier):

  1. Defaults declared on :class:`~ragpipe.models.pipeline.PipelineConfig`
  2. ``config/ragpipe.yaml`` -- the ``pipeline:`` mapping
  3. ``.env`` file and environment variables, via :class:`Settings`

Only settings that were explicitly provided (present in the environment or
``.env``) override the YAML file; pydantic-settings defaults do not.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ragpipe.config.settings import Settings
from ragpipe.models.pipeline import PipelineConfig
from ragpipe.utils.errors import ConfigurationError


def load_config(
    path: str | Path | None = None,
    settings: Settings | None = None,
) -> PipelineConfig:
    """Load the YAML config and merge explicitly-set environment overrides.

    Args:
        path: Path to the YAML configuration file.  Defaults to
              ``settings.config_path``.  A missing file is not an error.
        settings: Settings instance to read overrides from.  A fresh one
                  is built from the environment when omitted.

    Returns:
        A validated, frozen :class:`PipelineConfig`.

    Raises:
        ConfigurationError: If the YAML is malformed or a value fails
            validation.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)

    values: dict[str, Any] = {}
    values.update(_read_yaml_section(config_path))
    values.update(_explicit_overrides(settings))

    try:
        return PipelineConfig(**values)
    except ValidationError as exc:
        raise ConfigurationError(
            message=f"Invalid pipeline configuration: {exc}",
        ) from exc


def _read_yaml_section(config_path: Path) -> dict[str, Any]:
    """Return the ``pipeline:`` mapping of *config_path*, or ``{}``."""
    if not config_path.exists():
        return {}
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Malformed YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(message=f"{config_path} must contain a mapping")
    section = raw.get("pipeline", {}) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(message=f"'pipeline' in {config_path} must be a mapping")
    return section


def _explicit_overrides(settings: Settings) -> dict[str, Any]:
    """Return PipelineConfig fields that were set via environment or ``.env``."""
    return {
        name: getattr(settings, name)
        for name in PipelineConfig.model_fields
        if name in settings.model_fields_set
    }
