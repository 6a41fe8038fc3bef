"""Type definitions for changeforge operations.

This module defines enums for strategy parameters and states used throughout
the library.
"""

from enum import Enum


class ChangeStatus(Enum):
    """Classification of an overlap region.

    Attributes:
        CHANGED: Before and after values differ
        UNCHANGED: Before and after values are equal
    """
    CHANGED = 'changed'
    UNCHANGED = 'unchanged'


class AreaMethod(Enum):
    """Method used to measure polygon area.

    Attributes:
        PLANAR: Cartesian area in the squared working unit of the coordinates
        GEODESIC: Ellipsoidal area on WGS84 in square meters (lon/lat input)
        AUTO: Geodesic when all coordinates fall in lon/lat range, else planar

    Examples:
        >>> from changeforge import analyze_changes, AnalysisConfig, AreaMethod
        >>> config = AnalysisConfig(area_method=AreaMethod.PLANAR)
        >>> result = analyze_changes(before, after, 'landuse', config=config)
    """
    PLANAR = 'planar'
    GEODESIC = 'geodesic'
    AUTO = 'auto'


class EqualityPolicy(Enum):
    """Rule deciding whether a before value equals an after value.

    Attributes:
        STRICT: Type-sensitive comparison (1 != "1", True != 1, 1 == 1.0)
        NORMALIZED: Compare string-normalized values (1 == 1.0 == "1" == " 1 ")

    Examples:
        >>> config = AnalysisConfig(equality=EqualityPolicy.NORMALIZED)
    """
    STRICT = 'strict'
    NORMALIZED = 'normalized'


class RunState(Enum):
    """Lifecycle of an overlay run."""
    IDLE = 'idle'
    RUNNING = 'running'
    COMPLETE = 'complete'
    FAILED = 'failed'


class InputErrorReason(Enum):
    """Structured reason attached to an :class:`InputError`."""
    EMPTY_SET = 'empty_set'
    MISSING_ATTRIBUTE = 'missing_attribute'
    TOO_MANY_VALUES = 'too_many_values'
    MALFORMED_GEOMETRY = 'malformed_geometry'


__all__ = [
    'ChangeStatus',
    'AreaMethod',
    'EqualityPolicy',
    'RunState',
    'InputErrorReason',
]
