"""Area measurement helpers for changeforge geometries.

Every area the engine reports goes through :func:`area` so planar and
geodesic inputs are measured consistently. Geodesic areas are ellipsoidal
areas on WGS84 computed with :class:`pyproj.Geod`.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pyproj import Geod
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from .core.geometry_utils import BoundingBox, bounding_box
from .core.types import AreaMethod

GEOD_WGS84 = Geod(ellps="WGS84")

_LON_RANGE = (-180.0, 180.0)
_LAT_RANGE = (-90.0, 90.0)


def planar_area(geometry: BaseGeometry) -> float:
    """Cartesian area in the squared unit of the coordinates."""
    if geometry is None or geometry.is_empty:
        return 0.0
    return abs(float(geometry.area))


def geodesic_area(geometry: BaseGeometry, geod: Geod = GEOD_WGS84) -> float:
    """Ellipsoidal area in square meters of a lon/lat geometry."""
    if geometry is None or geometry.is_empty:
        return 0.0
    if not geometry.area > 0:
        return 0.0
    # Signed ring areas only add up with CCW shells and CW holes
    if isinstance(geometry, MultiPolygon):
        parts = [orient(part, 1.0) for part in geometry.geoms]
    elif isinstance(geometry, Polygon):
        parts = [orient(geometry, 1.0)]
    else:
        parts = [geometry]
    total = 0.0
    for part in parts:
        result, _ = geod.geometry_area_perimeter(part)
        total += abs(float(result))
    return total


def area(geometry: BaseGeometry, method: AreaMethod = AreaMethod.GEODESIC) -> float:
    """Return the non-negative area of ``geometry``.

    Degenerate geometries (empty, or rings enclosing nothing) measure 0.

    Args:
        geometry: Polygon or MultiPolygon, holes included
        method: ``AreaMethod.PLANAR`` or ``AreaMethod.GEODESIC``. ``AUTO`` must
            be resolved with :func:`resolve_area_method` first.

    Returns:
        Area in the squared working unit (planar) or square meters (geodesic)

    Examples:
        >>> square = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)])
        >>> area(square, AreaMethod.PLANAR)
        100.0
    """
    if method == AreaMethod.PLANAR:
        return planar_area(geometry)
    if method == AreaMethod.GEODESIC:
        return geodesic_area(geometry)
    raise ValueError(f"Area method must be resolved before measuring: {method}")


def in_lonlat_range(bbox: Optional[BoundingBox]) -> bool:
    """True if a bounding box fits inside longitude/latitude bounds."""
    if bbox is None:
        return True
    minx, miny, maxx, maxy = bbox
    return (
        _LON_RANGE[0] <= minx and maxx <= _LON_RANGE[1]
        and _LAT_RANGE[0] <= miny and maxy <= _LAT_RANGE[1]
    )


def resolve_area_method(
    method: AreaMethod,
    geometries: Iterable[BaseGeometry],
) -> AreaMethod:
    """Turn ``AreaMethod.AUTO`` into a concrete method for ``geometries``.

    AUTO picks geodesic measurement when every geometry lies inside lon/lat
    range, planar otherwise. Concrete methods are returned unchanged.
    """
    if method != AreaMethod.AUTO:
        return method
    for geometry in geometries:
        if not in_lonlat_range(bounding_box(geometry)):
            return AreaMethod.PLANAR
    return AreaMethod.GEODESIC


__all__ = [
    "GEOD_WGS84",
    "planar_area",
    "geodesic_area",
    "area",
    "in_lonlat_range",
    "resolve_area_method",
]
