"""Core types and utilities for changeforge.

This module provides type definitions, enums, exceptions, and the geometry
and spatial-index primitives used throughout the library.
"""

from .types import (
    ChangeStatus,
    AreaMethod,
    EqualityPolicy,
    RunState,
    InputErrorReason,
)

from .errors import (
    ChangeforgeError,
    InputError,
    GeometryError,
    ConfigurationError,
)

from .geometry_utils import (
    bounding_box,
    extract_polygonal,
    geometry_from_mapping,
    repair_polygonal,
)

from .spatial_utils import SpatialIndex

__all__ = [
    # Enums
    'ChangeStatus',
    'AreaMethod',
    'EqualityPolicy',
    'RunState',
    'InputErrorReason',

    # Exceptions
    'ChangeforgeError',
    'InputError',
    'GeometryError',
    'ConfigurationError',

    # Geometry primitives
    'bounding_box',
    'extract_polygonal',
    'geometry_from_mapping',
    'repair_polygonal',

    # Spatial index
    'SpatialIndex',
]
