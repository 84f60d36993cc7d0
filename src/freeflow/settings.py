"""
Draw settings: the style and geometry applied to newly drawn connectors.

Settings persist on the document root so they survive across sessions. Each
field is stored under its own plugin data key as a string.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any

from freeflow.colors import hex_to_rgb
from freeflow.logging import get_logger
from freeflow.models import ConnectorGeometry, ConnectorStyle, LineStyle, StrokeCap
from freeflow.scene.base import SceneHost

logger = get_logger("settings")

# Inclusive bounds of numeric settings
RANGES: dict[str, tuple[int, int]] = {
    "opacity": (0, 100),
    "start_margin": (0, 10),
    "end_margin": (0, 10),
    "weight": (1, 10),
    "radius": (0, 100),
    "dash": (0, 10),
    "dash_gap": (0, 10),
}

STORAGE_KEYS: dict[str, str] = {
    "color": "savedColor",
    "opacity": "savedOpacity",
    "start_margin": "savedStartMargin",
    "end_margin": "savedEndMargin",
    "weight": "savedWeight",
    "radius": "savedRadius",
    "dash": "savedDash",
    "dash_gap": "savedDashGap",
    "start_cap": "savedStartCap",
    "end_cap": "savedEndCap",
    "line_style": "savedLineStyle",
}


def _clamp(name: str, value: int) -> int:
    low, high = RANGES[name]
    return max(low, min(high, value))


@dataclass
class DrawSettings:
    """Current drawing defaults."""

    color: str = "000000"
    opacity: int = 100
    start_margin: int = 0
    end_margin: int = 0
    weight: int = 2
    radius: int = 12
    dash: int = 0
    dash_gap: int = 0
    start_cap: StrokeCap = StrokeCap.ROUND
    end_cap: StrokeCap = StrokeCap.ARROW_LINES
    line_style: LineStyle = LineStyle.GRID

    def __post_init__(self) -> None:
        self.color = self.color.lstrip("#").upper()
        hex_to_rgb(self.color)  # raises ValueError on a malformed colour
        for name in RANGES:
            setattr(self, name, _clamp(name, int(getattr(self, name))))
        self.start_cap = StrokeCap(self.start_cap)
        self.end_cap = StrokeCap(self.end_cap)
        self.line_style = LineStyle(self.line_style)

    def style(self) -> ConnectorStyle:
        return ConnectorStyle(
            color=self.color,
            opacity=self.opacity,
            weight=self.weight,
            radius=self.radius,
            dash=self.dash,
            dash_gap=self.dash_gap,
        )

    def geometry(self) -> ConnectorGeometry:
        return ConnectorGeometry(
            start_margin=self.start_margin,
            end_margin=self.end_margin,
            start_cap=self.start_cap,
            end_cap=self.end_cap,
            line_style=self.line_style,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.value if isinstance(value, (StrokeCap, LineStyle)) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DrawSettings:
        """Build settings from a dict; unknown keys are ignored."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


class SettingsStore:
    """
    Loads and persists :class:`DrawSettings` on a host's document root.

    Stored values that are empty or unparsable fall back to ``defaults``.
    """

    def __init__(self, host: SceneHost, defaults: DrawSettings | None = None) -> None:
        self.host = host
        self.defaults = defaults or DrawSettings()
        self._settings = self.load()

    @property
    def settings(self) -> DrawSettings:
        return self._settings

    def load(self) -> DrawSettings:
        """Read settings from the document root."""
        settings = self.defaults
        for name, key in STORAGE_KEYS.items():
            raw = self.host.get_plugin_data(self.host.root, key)
            if raw == "":
                continue
            try:
                value: Any = int(float(raw)) if name in RANGES else raw
                settings = replace(settings, **{name: value})
            except (ValueError, OverflowError):
                logger.warning("Ignoring stored %s=%r", name, raw)
        return settings

    def update(self, **changes: Any) -> DrawSettings:
        """Merge ``changes`` into the settings and persist the changed fields."""
        changes = {k: v for k, v in changes.items() if v is not None}
        unknown = set(changes) - set(STORAGE_KEYS)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        self._settings = replace(self._settings, **changes)
        stored = self._settings.to_dict()
        for name in changes:
            self.host.set_plugin_data(self.host.root, STORAGE_KEYS[name], str(stored[name]))
        return self._settings

    def style(self) -> ConnectorStyle:
        return self._settings.style()

    def geometry(self) -> ConnectorGeometry:
        return self._settings.geometry()
