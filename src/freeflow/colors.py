"""Colour helpers for connector strokes and labels."""

from __future__ import annotations

from freeflow.models import RGB

BLACK = RGB(0.0, 0.0, 0.0)
WHITE = RGB(1.0, 1.0, 1.0)


def hex_to_rgb(hex_color: str) -> RGB:
    """
    Convert a hex colour (``"FF8800"`` or shorthand ``"F80"``, optional ``#``)
    to unit-interval channels.

    Raises ValueError if the string is not a valid hex colour.
    """
    value = hex_color.lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    if len(value) != 6:
        raise ValueError(f"Invalid hex colour: {hex_color!r}")
    num = int(value, 16)
    return RGB(
        r=((num >> 16) & 255) / 255,
        g=((num >> 8) & 255) / 255,
        b=(num & 255) / 255,
    )


def opacity_to_unit(opacity: float) -> float:
    """Scale a 0-100 opacity to 0-1."""
    return opacity / 100


def _channel_luminance(channel: float) -> float:
    return channel / 12.92 if channel <= 0.03928 else ((channel + 0.055) / 1.055) ** 2.4


def relative_luminance(color: RGB) -> float:
    """WCAG 2.x relative luminance of a colour."""
    return (
        0.2126 * _channel_luminance(color.r)
        + 0.7152 * _channel_luminance(color.g)
        + 0.0722 * _channel_luminance(color.b)
    )


def contrast_ratio(a: RGB, b: RGB) -> float:
    """WCAG contrast ratio between two colours (1.0 - 21.0)."""
    la, lb = relative_luminance(a), relative_luminance(b)
    lighter, darker = max(la, lb), min(la, lb)
    return (lighter + 0.05) / (darker + 0.05)


def text_color_for(background_hex: str) -> RGB:
    """Pick black or white text, whichever contrasts more with the background."""
    background = hex_to_rgb(background_hex)
    if contrast_ratio(BLACK, background) > contrast_ratio(WHITE, background):
        return BLACK
    return WHITE
