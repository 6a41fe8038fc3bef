"""Deterministic category colors for legends.

Colors are spaced evenly around the hue wheel at fixed saturation and
lightness. Category order is always first-seen order, so the same data
yields the same colors on every run.
"""

import colorsys
from typing import Any, Dict, List, Sequence

from .classify import transition_label, value_key
from .core.types import EqualityPolicy

SATURATION = 70
LIGHTNESS = 60

UNCHANGED_COLOR = "#10b981"
FALLBACK_COLOR = "#888888"


def _format_hue(hue: float) -> str:
    return f"{hue:.4f}".rstrip("0").rstrip(".")


def hsl_to_hex(hue: float, saturation: float = SATURATION, lightness: float = LIGHTNESS) -> str:
    """Convert HSL (degrees, percent, percent) to ``#rrggbb``."""
    r, g, b = colorsys.hls_to_rgb((hue % 360) / 360.0, lightness / 100.0, saturation / 100.0)
    return "#{:02x}{:02x}{:02x}".format(round(r * 255), round(g * 255), round(b * 255))


def palette(count: int, fmt: str = "hsl") -> List[str]:
    """Generate ``count`` visually distinct colors.

    Color ``i`` has hue ``i * 360 / count``.

    Args:
        count: Number of colors
        fmt: ``"hsl"`` for CSS ``hsl(...)`` strings, ``"hex"`` for ``#rrggbb``

    Returns:
        List of color strings

    Examples:
        >>> palette(3)
        ['hsl(0, 70%, 60%)', 'hsl(120, 70%, 60%)', 'hsl(240, 70%, 60%)']
        >>> palette(2, fmt="hex")
        ['#e05252', '#52e0e0']
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    if fmt not in ("hsl", "hex"):
        raise ValueError(f"Unknown color format: {fmt}")

    colors = []
    for i in range(count):
        hue = (i * 360.0 / count) % 360
        if fmt == "hex":
            colors.append(hsl_to_hex(hue))
        else:
            colors.append(f"hsl({_format_hue(hue)}, {SATURATION}%, {LIGHTNESS}%)")
    return colors


def category_color_map(categories: Sequence[Any], fmt: str = "hsl") -> Dict[Any, str]:
    """Map each category, in the given order, to its palette slot."""
    return dict(zip(categories, palette(len(categories), fmt)))


def combined_distinct_values(
    before,
    after,
    attribute: str,
    policy: EqualityPolicy = EqualityPolicy.STRICT,
) -> List[Any]:
    """Distinct values of ``attribute`` over the before set, then the after set."""
    seen: Dict[Any, Any] = {}
    for polygon_set in (before, after):
        for value in polygon_set.distinct_values(attribute, policy):
            seen.setdefault(value_key(value, policy), value)
    return list(seen.values())


def value_color_map(
    before,
    after,
    attribute: str,
    policy: EqualityPolicy = EqualityPolicy.STRICT,
    fmt: str = "hsl",
) -> Dict[Any, str]:
    """Colors for every attribute value found in either polygon set."""
    return category_color_map(combined_distinct_values(before, after, attribute, policy), fmt)


def color_for(colors: Dict[Any, str], key: Any) -> str:
    """Color of ``key`` in ``colors``; null and unknown keys get the fallback gray."""
    if key is None:
        return FALLBACK_COLOR
    return colors.get(key, FALLBACK_COLOR)


def transition_color_map(result, fmt: str = "hsl") -> Dict[str, str]:
    """Colors for every transition label in ``result.change_features``.

    Unchanged regions are left out; they use :data:`UNCHANGED_COLOR`.
    """
    labels: Dict[str, None] = {}
    for record in result.change_features:
        transition = record.transition
        if transition is not None:
            labels.setdefault(transition_label(*transition), None)
    return category_color_map(list(labels), fmt)


__all__ = [
    "UNCHANGED_COLOR",
    "FALLBACK_COLOR",
    "hsl_to_hex",
    "palette",
    "category_color_map",
    "combined_distinct_values",
    "value_color_map",
    "color_for",
    "transition_color_map",
]
