"""Common geometry construction and cleanup utilities.

This module turns GeoJSON-shaped coordinate arrays into shapely polygons and
provides the small helpers the overlay engine needs to keep working on
polygonal geometry only.
"""

from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import shapely
from shapely.errors import GEOSException
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from .errors import GeometryError, InputError
from .types import InputErrorReason

BoundingBox = Tuple[float, float, float, float]
Polygonal = Union[Polygon, MultiPolygon]

_COORD_TOLERANCE = 0.0


def clean_ring(coords: Sequence[Sequence[float]], tolerance: float = _COORD_TOLERANCE) -> Optional[np.ndarray]:
    """Drop consecutive duplicate vertices and the closing vertex of a ring.

    Args:
        coords: Ring coordinates, closed or open, 2D or 3D (only X/Y kept)
        tolerance: Vertices closer than this to their predecessor are dropped

    Returns:
        Open ring as an (N, 2) array, or None if fewer than 3 distinct
        vertices remain

    Examples:
        >>> clean_ring([(0, 0), (1, 0), (1, 0), (1, 1), (0, 0)])
        array([[0., 0.],
               [1., 0.],
               [1., 1.]])
        >>> clean_ring([(0, 0), (1, 1), (0, 0)]) is None
        True
    """
    if coords is None or len(coords) == 0:
        return None

    arr = np.asarray([tuple(c)[:2] for c in coords], dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        return None
    if not np.all(np.isfinite(arr)):
        return None

    unique = [arr[0]]
    for point in arr[1:]:
        if np.linalg.norm(point - unique[-1]) > tolerance:
            unique.append(point)

    # Closing vertex
    if len(unique) > 1 and np.linalg.norm(unique[-1] - unique[0]) <= tolerance:
        unique.pop()

    if len(unique) < 3:
        return None
    if len({(float(x), float(y)) for x, y in unique}) < 3:
        return None
    return np.array(unique)


def polygon_from_rings(rings: Sequence[Sequence[Sequence[float]]]) -> Polygon:
    """Build a polygon from an exterior ring followed by hole rings.

    A degenerate exterior yields an empty polygon; degenerate holes are
    dropped. Nothing here raises for degenerate input.
    """
    if not rings:
        return Polygon()

    shell = clean_ring(rings[0])
    if shell is None:
        return Polygon()

    holes = []
    for ring in rings[1:]:
        hole = clean_ring(ring)
        if hole is not None:
            holes.append(hole)

    return Polygon(shell, holes=holes)


def geometry_from_mapping(mapping: Optional[Mapping[str, Any]]) -> Polygonal:
    """Build a polygonal geometry from a GeoJSON-shaped geometry mapping.

    Args:
        mapping: ``{"type": "Polygon" | "MultiPolygon", "coordinates": ...}``
            or None

    Returns:
        Polygon or MultiPolygon (empty Polygon for a null geometry)

    Raises:
        InputError: If the geometry type is not polygonal or the coordinates
            are not nested the way the type requires
    """
    if mapping is None:
        return Polygon()
    if not isinstance(mapping, Mapping):
        raise InputError(
            f"Geometry must be a mapping, got {type(mapping).__name__}",
            InputErrorReason.MALFORMED_GEOMETRY,
            {'geometry_type': None},
        )

    geom_type = mapping.get('type')
    coordinates = mapping.get('coordinates')

    try:
        if geom_type == 'Polygon':
            return polygon_from_rings(coordinates or [])
        if geom_type == 'MultiPolygon':
            parts = [polygon_from_rings(rings) for rings in (coordinates or [])]
            parts = [p for p in parts if not p.is_empty]
            if not parts:
                return Polygon()
            return MultiPolygon(parts)
    except (TypeError, ValueError, IndexError) as e:
        raise InputError(
            f"Malformed {geom_type} coordinates: {e}",
            InputErrorReason.MALFORMED_GEOMETRY,
            {'geometry_type': geom_type},
        ) from e

    raise InputError(
        f"Unsupported geometry type: {geom_type!r} (expected Polygon or MultiPolygon)",
        InputErrorReason.MALFORMED_GEOMETRY,
        {'geometry_type': geom_type},
    )


def ensure_polygonal(geometry: Optional[BaseGeometry]) -> Polygonal:
    """Accept a shapely geometry as polygon input, rejecting other types."""
    if geometry is None or geometry.is_empty:
        return Polygon()
    if isinstance(geometry, (Polygon, MultiPolygon)):
        return geometry
    raise InputError(
        f"Unsupported geometry type: {geometry.geom_type} (expected Polygon or MultiPolygon)",
        InputErrorReason.MALFORMED_GEOMETRY,
        {'geometry_type': geometry.geom_type},
    )


def bounding_box(geometry: BaseGeometry) -> Optional[BoundingBox]:
    """Return ``(minx, miny, maxx, maxy)``, or None for empty geometry."""
    if geometry is None or geometry.is_empty:
        return None
    minx, miny, maxx, maxy = geometry.bounds
    return (float(minx), float(miny), float(maxx), float(maxy))


def boxes_intersect(a: Optional[BoundingBox], b: Optional[BoundingBox]) -> bool:
    """True if two closed bounding boxes share at least one point."""
    if a is None or b is None:
        return False
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


def is_degenerate(geometry: BaseGeometry) -> bool:
    """True if geometry is empty or encloses no area."""
    if geometry is None or geometry.is_empty:
        return True
    return not geometry.area > 0


def extract_polygonal(geometry: Optional[BaseGeometry]) -> Optional[Polygonal]:
    """Keep only the polygonal parts of a geometry.

    Overlay results can mix polygons with the lines and points left where
    inputs only touch. Those lower-dimensional parts carry no area and are
    dropped.

    Args:
        geometry: Any shapely geometry

    Returns:
        Polygon, MultiPolygon, or None if no polygonal part with area remains

    Examples:
        >>> from shapely.geometry import LineString
        >>> mixed = GeometryCollection([square, LineString([(0, 0), (5, 5)])])
        >>> extract_polygonal(mixed).equals(square)
        True
    """
    if geometry is None or geometry.is_empty:
        return None

    if isinstance(geometry, Polygon):
        return geometry if geometry.area > 0 else None

    if isinstance(geometry, MultiPolygon):
        parts = [p for p in geometry.geoms if p.area > 0]
    elif isinstance(geometry, GeometryCollection):
        parts = []
        for part in geometry.geoms:
            polygonal = extract_polygonal(part)
            if polygonal is None:
                continue
            if isinstance(polygonal, MultiPolygon):
                parts.extend(polygonal.geoms)
            else:
                parts.append(polygonal)
    else:
        return None

    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


def repair_polygonal(geometry: BaseGeometry) -> Polygonal:
    """Return a valid polygonal version of ``geometry``.

    Valid input is returned unchanged. Invalid input goes through
    ``shapely.make_valid`` first and the buffer(0) trick second; only the
    polygonal parts of the repaired geometry are kept.

    Raises:
        GeometryError: If neither repair yields a valid polygonal geometry
    """
    if geometry.is_empty or geometry.is_valid:
        return geometry

    for repair in (shapely.make_valid, lambda g: g.buffer(0)):
        try:
            fixed = extract_polygonal(repair(geometry))
        except (GEOSException, ValueError):
            continue
        if fixed is not None and fixed.is_valid:
            return fixed

    raise GeometryError(
        f"Could not repair {geometry.geom_type}: {shapely.is_valid_reason(geometry)}"
    )


__all__ = [
    'BoundingBox',
    'Polygonal',
    'clean_ring',
    'polygon_from_rings',
    'geometry_from_mapping',
    'ensure_polygonal',
    'bounding_box',
    'boxes_intersect',
    'is_degenerate',
    'extract_polygonal',
    'repair_polygonal',
]
