"""Changeforge - Polygon overlay change detection.

This library compares two attributed polygon datasets of the same geography
at two points in time and reports where and how an attribute changed, using
Shapely for the geometry work.
"""

import logging

# Data model
from .dataset import AttributedPolygon, PolygonSet

# Configuration
from .config import AnalysisConfig

# Engine components
from .metrics import area
from .intersect import intersect_pair
from .classify import ChangeRecord, TransitionKey, classify
from .aggregate import Aggregator, ChangeMatrixEntry

# Orchestration
from .overlay import (
    AnalysisResult,
    Diagnostics,
    OverlayRun,
    PairFailure,
    analyze_changes,
)

# Color assignment
from .palette import (
    UNCHANGED_COLOR,
    palette,
    transition_color_map,
    value_color_map,
    color_for,
)

# Core types (enums)
from .core import (
    ChangeStatus,
    AreaMethod,
    EqualityPolicy,
    RunState,
    InputErrorReason,
    SpatialIndex,
)

# Core exceptions
from .core import (
    ChangeforgeError,
    InputError,
    GeometryError,
    ConfigurationError,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [

    # Data model
    'AttributedPolygon',
    'PolygonSet',

    # Configuration
    'AnalysisConfig',

    # Engine components
    'area',
    'intersect_pair',
    'SpatialIndex',
    'ChangeRecord',
    'TransitionKey',
    'classify',
    'Aggregator',
    'ChangeMatrixEntry',

    # Orchestration
    'AnalysisResult',
    'Diagnostics',
    'OverlayRun',
    'PairFailure',
    'analyze_changes',

    # Color assignment
    'UNCHANGED_COLOR',
    'palette',
    'transition_color_map',
    'value_color_map',
    'color_for',

    # Core types (enums)
    'ChangeStatus',
    'AreaMethod',
    'EqualityPolicy',
    'RunState',
    'InputErrorReason',

    # Core exceptions
    'ChangeforgeError',
    'InputError',
    'GeometryError',
    'ConfigurationError',
]
