"""Robust polygon overlay of a single before/after pair.

The clipping itself is done by GEOS through shapely. This module adds what
the change engine needs around it: empty and touching inputs give "no
intersection" instead of an error, invalid inputs are repaired or rejected,
results are cut down to their polygonal parts, and output is normalized so
identical inputs always produce identical coordinates.
"""

from typing import Optional

import shapely
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from .core.errors import GeometryError
from .core.geometry_utils import Polygonal, extract_polygonal, repair_polygonal


def prepare_polygon(geometry: BaseGeometry, repair: bool = True) -> Polygonal:
    """Get one input polygon ready for repeated overlay.

    Valid geometry is returned as-is. Invalid geometry is repaired when
    ``repair`` is set and rejected otherwise.

    Raises:
        GeometryError: If the geometry is invalid and cannot be (or may not
            be) repaired
    """
    if geometry.is_empty or geometry.is_valid:
        return geometry
    if not repair:
        raise GeometryError(f"Invalid geometry: {shapely.is_valid_reason(geometry)}")
    return repair_polygonal(geometry)


def intersect_pair(
    before: BaseGeometry,
    after: BaseGeometry,
    grid_size: Optional[float] = None,
) -> Optional[Polygonal]:
    """Compute the polygonal overlap of two polygons.

    Supports holes and multi-part inputs. Disjoint and merely touching
    inputs return None; so does an overlap that collapses to lines or points.

    Args:
        before: Before polygon or multi-polygon (expected valid)
        after: After polygon or multi-polygon (expected valid)
        grid_size: If set, the overlay runs on a fixed-precision grid of this
            size, which snaps near-coincident vertices together

    Returns:
        Polygon or MultiPolygon in normalized form, or None

    Raises:
        GeometryError: If GEOS fails on this pair

    Examples:
        >>> a = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)])
        >>> b = Polygon([(5, 5), (15, 5), (15, 15), (5, 15)])
        >>> intersect_pair(a, b).area
        25.0
        >>> c = Polygon([(10, 0), (20, 0), (20, 10), (10, 10)])
        >>> intersect_pair(a, c) is None
        True
    """
    if before is None or after is None or before.is_empty or after.is_empty:
        return None

    try:
        if not before.intersects(after):
            return None
        if grid_size:
            overlap = shapely.intersection(before, after, grid_size=grid_size)
        else:
            overlap = shapely.intersection(before, after)
    except GEOSException as e:
        raise GeometryError(f"Overlay failed: {e}") from e

    polygonal = extract_polygonal(overlap)
    if polygonal is None:
        return None

    if not polygonal.is_valid:
        # Mixed results can reassemble into touching parts
        polygonal = repair_polygonal(polygonal)

    return shapely.normalize(polygonal)


__all__ = [
    "prepare_polygon",
    "intersect_pair",
]
