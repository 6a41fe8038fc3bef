"""Spatial indexing for candidate pair generation.

Uses STRtree for efficient bounding-box lookups so that overlaying two
polygon sets costs roughly O(n log m + k) instead of O(n * m).
"""

from typing import List, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from .geometry_utils import BoundingBox


class SpatialIndex:
    """Read-only bounding-box index over one set of geometries.

    Queries return a superset of the geometries that truly intersect the
    query: every geometry whose envelope meets the query envelope is a
    candidate, including ones that merely touch. Empty geometries are never
    returned.

    Args:
        geometries: Geometries to index; their positions are the indices
            returned by queries

    Examples:
        >>> index = SpatialIndex(after_geometries)
        >>> index.candidates_for((0.0, 0.0, 10.0, 10.0))
        [0, 3]
    """

    def __init__(self, geometries: Sequence[BaseGeometry]):
        self._geometries = list(geometries)
        self._tree = STRtree(self._geometries) if self._geometries else None

    def __len__(self) -> int:
        return len(self._geometries)

    def candidates_for(self, bbox: BoundingBox) -> List[int]:
        """Indices of indexed geometries whose envelopes meet ``bbox``."""
        if bbox is None or len(self._geometries) == 0:
            return []
        hits = self._tree.query(shapely.box(*bbox))
        return sorted(int(i) for i in hits)

    def candidates_for_geometry(self, geometry: BaseGeometry) -> List[int]:
        """Indices of indexed geometries whose envelopes meet ``geometry``'s."""
        if geometry is None or geometry.is_empty or len(self._geometries) == 0:
            return []
        hits = self._tree.query(geometry)
        return sorted(int(i) for i in hits)

    def candidate_pairs(self, geometries: Sequence[BaseGeometry]) -> List[Tuple[int, int]]:
        """Bulk query: all ``(query_index, indexed_index)`` envelope hits.

        Pairs are sorted by query index, then indexed index, so callers
        iterate them in a stable order.
        """
        if len(geometries) == 0 or len(self._geometries) == 0:
            return []
        query_idx, tree_idx = self._tree.query(np.asarray(geometries, dtype=object))
        order = np.lexsort((tree_idx, query_idx))
        return [(int(query_idx[k]), int(tree_idx[k])) for k in order]


__all__ = [
    'SpatialIndex',
]
