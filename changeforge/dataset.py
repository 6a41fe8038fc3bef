"""Attributed polygon datasets.

A :class:`PolygonSet` is one temporal snapshot ("before" or "after") of a
geography: an ordered, read-only sequence of :class:`AttributedPolygon`.
Sets are built from GeoJSON-shaped feature collections, as produced by an
external shapefile decoder, or straight from shapely geometries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from shapely.geometry.base import BaseGeometry

from .classify import value_key
from .core.errors import InputError
from .core.geometry_utils import (
    BoundingBox,
    Polygonal,
    bounding_box,
    ensure_polygonal,
    geometry_from_mapping,
)
from .core.types import EqualityPolicy, InputErrorReason


@dataclass(frozen=True)
class AttributedPolygon:
    """A polygon or multi-polygon with its attribute values."""

    geometry: Polygonal
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties or {})))

    @classmethod
    def from_feature(cls, feature: Mapping[str, Any]) -> "AttributedPolygon":
        """Build from a ``{"geometry": ..., "properties": ...}`` mapping.

        The geometry may be a GeoJSON mapping, a shapely geometry, or None.
        """
        if not isinstance(feature, Mapping):
            raise InputError(
                f"Feature must be a mapping, got {type(feature).__name__}",
                InputErrorReason.MALFORMED_GEOMETRY,
            )
        raw = feature.get("geometry")
        if isinstance(raw, BaseGeometry):
            geometry = ensure_polygonal(raw)
        else:
            geometry = geometry_from_mapping(raw)
        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise InputError(
                f"Feature properties must be a mapping, got {type(properties).__name__}",
                InputErrorReason.MALFORMED_GEOMETRY,
            )
        return cls(geometry, properties)

    def value(self, attribute: str) -> Any:
        """Attribute value, or None when the feature lacks the attribute."""
        return self.properties.get(attribute)

    @property
    def bbox(self) -> Optional[BoundingBox]:
        return bounding_box(self.geometry)


@dataclass(frozen=True)
class PolygonSet:
    """Ordered, read-only sequence of attributed polygons.

    Examples:
        >>> before = PolygonSet.from_geojson(before_collection, label="before")
        >>> before.attribute_columns()
        ['landuse', 'owner']
        >>> before.distinct_values('landuse')
        ['forest', 'urban']
    """

    features: Tuple[AttributedPolygon, ...]
    label: str = ""

    def __post_init__(self):
        object.__setattr__(self, "features", tuple(self.features))

    @classmethod
    def from_features(
        cls,
        features: Iterable[Any],
        label: str = "",
    ) -> "PolygonSet":
        """Build from feature mappings or ready-made :class:`AttributedPolygon`."""
        items: List[AttributedPolygon] = []
        for position, feature in enumerate(features):
            if isinstance(feature, AttributedPolygon):
                items.append(feature)
                continue
            try:
                items.append(AttributedPolygon.from_feature(feature))
            except InputError as e:
                e.details.setdefault("set", label)
                e.details.setdefault("feature_index", position)
                raise
        return cls(tuple(items), label)

    @classmethod
    def from_geojson(cls, collection: Mapping[str, Any], label: str = "") -> "PolygonSet":
        """Build from a GeoJSON-shaped ``FeatureCollection`` mapping."""
        if not isinstance(collection, Mapping) or "features" not in collection:
            raise InputError(
                f"{label or 'Polygon set'} is not a feature collection",
                InputErrorReason.EMPTY_SET,
                {"set": label},
            )
        return cls.from_features(collection.get("features") or [], label)

    @classmethod
    def from_geometries(
        cls,
        geometries: Sequence[BaseGeometry],
        properties: Optional[Sequence[Mapping[str, Any]]] = None,
        label: str = "",
    ) -> "PolygonSet":
        """Build from parallel sequences of shapely geometries and attributes."""
        if properties is None:
            properties = [{}] * len(geometries)
        if len(properties) != len(geometries):
            raise ValueError("geometries and properties must have the same length")
        features = [
            AttributedPolygon(ensure_polygonal(geom), props)
            for geom, props in zip(geometries, properties)
        ]
        return cls(tuple(features), label)

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    def __getitem__(self, index: int) -> AttributedPolygon:
        return self.features[index]

    def geometries(self) -> List[Polygonal]:
        return [f.geometry for f in self.features]

    def bounds(self) -> Optional[BoundingBox]:
        """Envelope of every non-empty geometry in the set."""
        boxes = [f.bbox for f in self.features if f.bbox is not None]
        if not boxes:
            return None
        return (
            min(b[0] for b in boxes),
            min(b[1] for b in boxes),
            max(b[2] for b in boxes),
            max(b[3] for b in boxes),
        )

    def attribute_columns(self) -> List[str]:
        """Attribute names in first-seen order across all features."""
        seen: Dict[str, None] = {}
        for feature in self.features:
            for key in feature.properties:
                seen.setdefault(key, None)
        return list(seen)

    def has_attribute(self, attribute: str) -> bool:
        return any(attribute in f.properties for f in self.features)

    def distinct_values(
        self,
        attribute: str,
        policy: EqualityPolicy = EqualityPolicy.STRICT,
    ) -> List[Any]:
        """Distinct non-null values of ``attribute`` in first-seen order.

        Values that are equal under ``policy`` count once; the first one seen
        represents them.
        """
        seen: Dict[Any, Any] = {}
        for feature in self.features:
            value = feature.value(attribute)
            if value is None:
                continue
            seen.setdefault(value_key(value, policy), value)
        return list(seen.values())


__all__ = [
    "AttributedPolygon",
    "PolygonSet",
]
