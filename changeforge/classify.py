"""Change classification of overlap regions.

Each non-trivial overlap between a before polygon and an after polygon
becomes one :class:`ChangeRecord`, labeled ``changed`` when the attribute
values differ and ``unchanged`` otherwise. What "differ" means is decided by
an :class:`~changeforge.core.types.EqualityPolicy` fixed in the analysis
configuration, never by the runtime types of whatever values show up.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Number
from typing import Any, Callable, Dict, Hashable, NamedTuple, Optional

from shapely.geometry import mapping

from .core.geometry_utils import Polygonal
from .core.types import ChangeStatus, EqualityPolicy

DEFAULT_SLIVER_THRESHOLD = 1e-4

TRANSITION_SEPARATOR = " → "


class TransitionKey(NamedTuple):
    """Ordered (before, after) value pair of a changed region."""

    from_value: Any
    to_value: Any

    @property
    def label(self) -> str:
        return transition_label(self.from_value, self.to_value)


def transition_label(from_value: Any, to_value: Any) -> str:
    """Render a transition for legends, e.g. ``"forest → urban"``."""
    return f"{_display(from_value)}{TRANSITION_SEPARATOR}{_display(to_value)}"


def _display(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _strict_key(value: Any) -> Hashable:
    # bool is a Number subclass but must never equal 1/0
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, Number):
        return ("number", value)
    return (type(value).__name__, value)


def _normalize_number(number: float) -> str:
    if not math.isfinite(number):
        return repr(number)
    return str(int(number)) if number.is_integer() else repr(number)


def _normalized_key(value: Any) -> Hashable:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Number):
        return _normalize_number(float(value))

    text = str(value).strip()
    try:
        return str(int(text))
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return _normalize_number(number) if math.isfinite(number) else text


_KEY_FUNCTIONS: Dict[EqualityPolicy, Callable[[Any], Hashable]] = {
    EqualityPolicy.STRICT: _strict_key,
    EqualityPolicy.NORMALIZED: _normalized_key,
}


def value_key(value: Any, policy: EqualityPolicy = EqualityPolicy.STRICT) -> Hashable:
    """Hashable identity of ``value`` under ``policy``.

    Two values are equal exactly when their keys are equal, so the same key
    drives classification, transition grouping and distinct-value counting.

    Examples:
        >>> value_key(1) == value_key("1")
        False
        >>> value_key(1, EqualityPolicy.NORMALIZED) == value_key("1", EqualityPolicy.NORMALIZED)
        True
    """
    return _KEY_FUNCTIONS[policy](value)


def values_equal(a: Any, b: Any, policy: EqualityPolicy = EqualityPolicy.STRICT) -> bool:
    return value_key(a, policy) == value_key(b, policy)


@dataclass(frozen=True)
class ChangeRecord:
    """One classified overlap between a before and an after polygon."""

    geometry: Polygonal
    before_value: Any
    after_value: Any
    status: ChangeStatus
    area: float
    before_index: Optional[int] = None
    after_index: Optional[int] = None

    @property
    def is_changed(self) -> bool:
        return self.status == ChangeStatus.CHANGED

    @property
    def transition(self) -> Optional[TransitionKey]:
        """TransitionKey for changed records, None for unchanged ones."""
        if not self.is_changed:
            return None
        return TransitionKey(self.before_value, self.after_value)

    def to_feature(self) -> Dict[str, Any]:
        """GeoJSON-shaped feature for rendering collaborators."""
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry),
            "properties": {
                "before_value": self.before_value,
                "after_value": self.after_value,
                "status": self.status.value,
                "area_m2": self.area,
            },
        }


def classify(
    before_value: Any,
    after_value: Any,
    geometry: Polygonal,
    area: float,
    threshold: float = DEFAULT_SLIVER_THRESHOLD,
    policy: EqualityPolicy = EqualityPolicy.STRICT,
    before_index: Optional[int] = None,
    after_index: Optional[int] = None,
) -> Optional[ChangeRecord]:
    """Classify one overlap region.

    Args:
        before_value: Attribute value of the before polygon
        after_value: Attribute value of the after polygon
        geometry: Overlap geometry
        area: Overlap area, measured by the caller
        threshold: Slivers with ``area < threshold`` are discarded
        policy: Value equality policy
        before_index: Position of the before polygon in its set
        after_index: Position of the after polygon in its set

    Returns:
        ChangeRecord, or None for a sliver (including any non-positive area)

    Examples:
        >>> record = classify("forest", "urban", overlap, 25.0)
        >>> record.status
        <ChangeStatus.CHANGED: 'changed'>
        >>> classify("forest", "urban", overlap, 9.9999e-5) is None
        True
    """
    if not area > 0 or area < threshold:
        return None

    if values_equal(before_value, after_value, policy):
        status = ChangeStatus.UNCHANGED
    else:
        status = ChangeStatus.CHANGED

    return ChangeRecord(
        geometry=geometry,
        before_value=before_value,
        after_value=after_value,
        status=status,
        area=float(area),
        before_index=before_index,
        after_index=after_index,
    )


__all__ = [
    "DEFAULT_SLIVER_THRESHOLD",
    "TransitionKey",
    "ChangeRecord",
    "transition_label",
    "value_key",
    "values_equal",
    "classify",
]
