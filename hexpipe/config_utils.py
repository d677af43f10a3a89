"""Helpers for working with the pipeline configuration file."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from hexpipe.schema import PipelineSettings

CONFIG_PATH = Path("config.yaml")

logger = logging.getLogger(__name__)


def load_config(path: Path | str = CONFIG_PATH) -> dict[str, Any]:
    """Load the YAML configuration; a missing file yields an empty mapping."""
    config_path = Path(path)
    if not config_path.exists():
        logger.debug("No configuration file at %s; using defaults", config_path)
        return {}

    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file {config_path} must contain a mapping.")
    return dict(data)


def build_settings(
    config: Mapping[str, Any], overrides: Mapping[str, Any] | None = None
) -> PipelineSettings:
    """Merge CLI overrides over file values and validate the result.

    Overrides whose value is ``None`` are treated as "not given" so the file
    value (or the model default) wins.
    """
    merged = dict(config)
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    return PipelineSettings.model_validate(merged)


def load_settings(
    path: Path | str = CONFIG_PATH, **overrides: Any
) -> PipelineSettings:
    return build_settings(load_config(path), overrides)
