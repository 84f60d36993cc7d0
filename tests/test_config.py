"""Tests for configuration."""

from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

from freeflow.config import (
    DEFAULT_DEBOUNCE_MS,
    FreeflowConfig,
    find_config,
    get_debounce_ms,
    load_config,
)
from freeflow.models import LineStyle


class TestFreeflowConfig:
    """Tests for FreeflowConfig."""

    def test_default_values(self, monkeypatch) -> None:
        """Should have sensible defaults."""
        monkeypatch.delenv("FREEFLOW_DEBOUNCE_MS", raising=False)
        config = FreeflowConfig()

        assert config.debounce_ms == 100
        assert config.debounce_seconds == 0.1
        assert config.clearance_margin == 16
        assert config.label_prefix == "[Free Flow]"
        assert config.storage_key == "saved-arrows"
        assert config.marker_key == "free-arrow"
        assert config.watch_debounce_ms == 250
        assert config.log_level == "WARNING"
        assert config.defaults.line_style == LineStyle.GRID

    def test_from_yaml_string(self) -> None:
        """Should load config from a YAML string."""
        config = FreeflowConfig.from_yaml_string(
            dedent("""
            debounce_ms: 50
            label_prefix: "[Flow]"
            defaults:
              color: "#1e88e5"
              weight: 3
              line_style: CURVE
            """)
        )

        assert config.debounce_ms == 50
        assert config.label_prefix == "[Flow]"
        assert config.defaults.color == "1E88E5"
        assert config.defaults.weight == 3
        assert config.defaults.line_style == LineStyle.CURVE

    def test_empty_yaml(self) -> None:
        assert FreeflowConfig.from_yaml_string("").storage_key == "saved-arrows"

    def test_to_dict_round_trip(self) -> None:
        config = FreeflowConfig(debounce_ms=30, label_font="Roboto")
        assert FreeflowConfig.from_dict(config.to_dict()) == config

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "freeflow.yaml"
        path.write_text("clearance_margin: 24\nwatch_debounce_ms: 500\n")

        config = load_config(path)

        assert config.clearance_margin == 24
        assert config.watch_debounce_ms == 500


class TestEnvironment:
    """Tests for environment overrides."""

    def test_debounce_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("FREEFLOW_DEBOUNCE_MS", "250")
        assert get_debounce_ms() == 250
        assert FreeflowConfig().debounce_ms == 250

    @pytest.mark.parametrize("value", ["", "soon", "-5"])
    def test_invalid_env_uses_default(self, value: str, monkeypatch) -> None:
        monkeypatch.setenv("FREEFLOW_DEBOUNCE_MS", value)
        assert get_debounce_ms() == DEFAULT_DEBOUNCE_MS


class TestFindConfig:
    def test_first_existing_path_wins(self, tmp_path: Path) -> None:
        first = tmp_path / "freeflow.yaml"
        second = tmp_path / ".freeflow.yaml"
        second.write_text("debounce_ms: 10\n")

        assert find_config((first, second)) == second

        first.write_text("debounce_ms: 20\n")
        assert find_config((first, second)) == first

    def test_nothing_found(self, tmp_path: Path) -> None:
        assert find_config((tmp_path / "missing.yaml",)) is None
