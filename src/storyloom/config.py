"""Engine configuration loading.

Settings live in an optional ``storyloom.yaml`` next to the story documents.
Resolution order for each layout value:

1. Environment variable (e.g. ``STORYLOOM_X_STEP``)
2. Config file
3. Built-in default
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

CONFIG_FILENAME = "storyloom.yaml"

# Default layout geometry (pixels)
DEFAULT_PADDING = 40
DEFAULT_X_STEP = 240
DEFAULT_Y_STEP = 120
DEFAULT_NODE_WIDTH = 180
DEFAULT_NODE_HEIGHT = 72
DEFAULT_MAX_ANCESTOR_STEPS = 1000

# Default affinity bookkeeping
DEFAULT_AFFINITY_BASELINE = 50
DEFAULT_AFFINITY_MIN = 0
DEFAULT_AFFINITY_MAX = 100

_ENV_OVERRIDES = {
    "padding": "STORYLOOM_PADDING",
    "x_step": "STORYLOOM_X_STEP",
    "y_step": "STORYLOOM_Y_STEP",
}


@dataclass
class LayoutSettings:
    """Geometry used by the layout engine.

    Attributes:
        padding: Margin around the canvas.
        x_step: Horizontal distance between depth columns.
        y_step: Vertical distance between nodes in one column.
        node_width: Width reported for every positioned node.
        node_height: Height reported for every positioned node.
        max_ancestor_steps: Cap on parent-pointer walks when highlighting paths.
    """

    padding: int = DEFAULT_PADDING
    x_step: int = DEFAULT_X_STEP
    y_step: int = DEFAULT_Y_STEP
    node_width: int = DEFAULT_NODE_WIDTH
    node_height: int = DEFAULT_NODE_HEIGHT
    max_ancestor_steps: int = DEFAULT_MAX_ANCESTOR_STEPS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LayoutSettings:
        """Create settings from a dict, applying environment overrides.

        Args:
            data: Mapping with any subset of the dataclass fields.

        Returns:
            LayoutSettings instance.
        """
        values: dict[str, int] = {}
        for name in (
            "padding",
            "x_step",
            "y_step",
            "node_width",
            "node_height",
            "max_ancestor_steps",
        ):
            if name in data:
                values[name] = int(data[name])
        for name, env_var in _ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                try:
                    values[name] = int(env_value)
                except ValueError:
                    raise ValueError(f"{env_var} must be an integer, got {env_value!r}") from None
        return cls(**values)


@dataclass
class PlaySettings:
    """Affinity bookkeeping bounds used by the play session."""

    affinity_baseline: int = DEFAULT_AFFINITY_BASELINE
    affinity_min: int = DEFAULT_AFFINITY_MIN
    affinity_max: int = DEFAULT_AFFINITY_MAX

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlaySettings:
        """Create settings from a dict."""
        return cls(
            affinity_baseline=int(data.get("affinity_baseline", DEFAULT_AFFINITY_BASELINE)),
            affinity_min=int(data.get("affinity_min", DEFAULT_AFFINITY_MIN)),
            affinity_max=int(data.get("affinity_max", DEFAULT_AFFINITY_MAX)),
        )


@dataclass
class EngineConfig:
    """Top-level engine configuration."""

    layout: LayoutSettings = field(default_factory=LayoutSettings)
    play: PlaySettings = field(default_factory=PlaySettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary with optional ``layout`` and ``play`` sections.

        Returns:
            EngineConfig instance.
        """
        return cls(
            layout=LayoutSettings.from_dict(dict(data.get("layout") or {})),
            play=PlaySettings.from_dict(dict(data.get("play") or {})),
        )


class ConfigError(Exception):
    """Raised when engine configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


def load_config(directory: Path) -> EngineConfig:
    """Load engine configuration from ``storyloom.yaml`` in *directory*.

    A missing file yields the defaults (with environment overrides).

    Args:
        directory: Directory that may contain ``storyloom.yaml``.

    Returns:
        EngineConfig instance.

    Raises:
        ConfigError: If the file exists but cannot be parsed, or an
            environment override is not an integer.
    """
    config_path = directory / CONFIG_FILENAME

    yaml = YAML(typ="safe")
    try:
        if not config_path.exists():
            return EngineConfig.from_dict({})

        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            return EngineConfig.from_dict({})
        if not isinstance(data, dict):
            raise ConfigError(config_path, "Top level must be a mapping")

        return EngineConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e
