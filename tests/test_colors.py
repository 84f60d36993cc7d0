"""Tests for colour helpers."""

from __future__ import annotations

import pytest

from freeflow.colors import (
    BLACK,
    WHITE,
    contrast_ratio,
    hex_to_rgb,
    opacity_to_unit,
    text_color_for,
)
from freeflow.models import RGB


class TestHexToRgb:
    def test_six_digits(self) -> None:
        assert hex_to_rgb("FF0000") == RGB(1.0, 0.0, 0.0)

    def test_shorthand_with_hash(self) -> None:
        assert hex_to_rgb("#fff") == WHITE

    def test_mixed_channels(self) -> None:
        color = hex_to_rgb("1E88E5")
        assert color.r == pytest.approx(30 / 255)
        assert color.g == pytest.approx(136 / 255)
        assert color.b == pytest.approx(229 / 255)

    @pytest.mark.parametrize("value", ["", "12345", "GGGGGG", "#1234567"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            hex_to_rgb(value)


class TestContrast:
    def test_opacity_to_unit(self) -> None:
        assert opacity_to_unit(100) == 1.0
        assert opacity_to_unit(35) == 0.35

    def test_black_on_white_is_maximal(self) -> None:
        assert contrast_ratio(BLACK, WHITE) == pytest.approx(21.0)

    @pytest.mark.parametrize(
        "background,expected",
        [
            ("000000", WHITE),
            ("FFFFFF", BLACK),
            ("FFFF00", BLACK),
            ("0000FF", WHITE),
            ("1E88E5", BLACK),
        ],
    )
    def test_text_color_for(self, background: str, expected: RGB) -> None:
        assert text_color_for(background) == expected
