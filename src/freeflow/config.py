"""
Configuration for freeflow.

Provides a configuration dataclass that can be loaded from YAML/JSON-style
dicts or constructed programmatically.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from freeflow.geometry import CLEARANCE_MARGIN
from freeflow.settings import DrawSettings

DEFAULT_DEBOUNCE_MS = 100

# Searched in order by find_config()
CONFIG_PATHS = (
    Path("freeflow.yaml"),
    Path(".freeflow.yaml"),
    Path.home() / ".config" / "freeflow" / "config.yaml",
)


def get_debounce_ms(default: int = DEFAULT_DEBOUNCE_MS) -> int:
    """Get the reconciliation quiet period from FREEFLOW_DEBOUNCE_MS, if set."""
    val = os.environ.get("FREEFLOW_DEBOUNCE_MS", "")
    try:
        ms = int(val)
    except ValueError:
        return default
    return ms if ms >= 0 else default


@dataclass
class FreeflowConfig:
    """
    Main configuration for freeflow.

    Example YAML:
        debounce_ms: 100
        clearance_margin: 16
        label_prefix: "[Free Flow]"
        storage_key: saved-arrows
        watch_debounce_ms: 250
        log_level: WARNING
        defaults:
          color: "1E88E5"
          weight: 3
          line_style: CURVE
    """

    # Reconciliation
    debounce_ms: int = field(default_factory=get_debounce_ms)  # Quiet period before a flush
    clearance_margin: float = CLEARANCE_MARGIN  # Grid margin around the start node

    # Scene representation
    label_prefix: str = "[Free Flow]"  # Prefix of connector display names
    storage_key: str = "saved-arrows"  # Page plugin data key for connector records
    marker_key: str = "free-arrow"  # Node plugin data key marking managed connectors
    label_font: str = "Inter"

    # CLI
    watch_debounce_ms: int = 250  # Debounce for scene document file changes
    log_level: str = "WARNING"

    # Defaults for newly drawn connectors
    defaults: DrawSettings = field(default_factory=DrawSettings)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FreeflowConfig:
        """Create config from a dictionary."""
        return cls(
            debounce_ms=int(data.get("debounce_ms", get_debounce_ms())),
            clearance_margin=float(data.get("clearance_margin", CLEARANCE_MARGIN)),
            label_prefix=data.get("label_prefix", "[Free Flow]"),
            storage_key=data.get("storage_key", "saved-arrows"),
            marker_key=data.get("marker_key", "free-arrow"),
            label_font=data.get("label_font", "Inter"),
            watch_debounce_ms=int(data.get("watch_debounce_ms", 250)),
            log_level=data.get("log_level", "WARNING"),
            defaults=DrawSettings.from_dict(data.get("defaults") or {}),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> FreeflowConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> FreeflowConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary."""
        return {
            "debounce_ms": self.debounce_ms,
            "clearance_margin": self.clearance_margin,
            "label_prefix": self.label_prefix,
            "storage_key": self.storage_key,
            "marker_key": self.marker_key,
            "label_font": self.label_font,
            "watch_debounce_ms": self.watch_debounce_ms,
            "log_level": self.log_level,
            "defaults": self.defaults.to_dict(),
        }


def find_config(paths: tuple[Path, ...] = CONFIG_PATHS) -> Path | None:
    """Return the first existing config file, if any."""
    for path in paths:
        if path.exists():
            return path
    return None


def load_config(path: Path | None = None) -> FreeflowConfig:
    """Load config from ``path``, or from the first file found, or defaults."""
    path = path or find_config()
    if path is None:
        return FreeflowConfig()
    return FreeflowConfig.from_yaml(path)
