"""Overlay orchestration: from two polygon sets to an analysis result.

The run is an embarrassingly parallel batch over before polygons. For each
one the spatial index over the after set yields candidate pairs, each pair is
intersected, measured and classified, and the records feed an aggregator.
Work is split into contiguous chunks of before polygons; each chunk fills
its own partial aggregator and the partials are merged in chunk order, so
results are identical for any number of workers.

Input problems (empty sets, unknown attribute, too many distinct values,
malformed geometry) fail the whole run before any overlay work starts.
Failures on a single pair are recorded and the run carries on.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pyproj.exceptions import GeodError
from shapely.errors import GEOSException

from .aggregate import Aggregator, ChangeMatrixEntry
from .classify import ChangeRecord, classify
from .config import AnalysisConfig
from .core.errors import ConfigurationError, GeometryError, InputError
from .core.geometry_utils import Polygonal, bounding_box
from .core.spatial_utils import SpatialIndex
from .core.types import AreaMethod, InputErrorReason, RunState
from .dataset import PolygonSet
from .intersect import intersect_pair, prepare_polygon
from .metrics import area as measure_area
from .metrics import resolve_area_method
from .palette import combined_distinct_values

logger = logging.getLogger(__name__)

PolygonSetLike = Union[PolygonSet, Mapping[str, Any], Sequence[Any]]

_SQUARE_METERS_PER_HECTARE = 10000.0
_CHUNKS_PER_WORKER = 4

# Failures confined to one candidate pair
_PAIR_ERRORS = (GeometryError, GEOSException, GeodError)


@dataclass(frozen=True)
class PairFailure:
    """A candidate pair whose overlay could not be computed."""

    before_index: int
    after_index: int
    message: str


@dataclass(frozen=True)
class Diagnostics:
    """Counters describing how a run went, for callers that want detail."""

    candidate_pairs: int = 0
    intersected_pairs: int = 0
    sliver_count: int = 0
    failures: Tuple[PairFailure, ...] = ()

    @property
    def geometry_error_count(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class AnalysisResult:
    """Immutable outcome of one change analysis.

    Attributes:
        attribute: Compared attribute column
        area_method: Concrete method the areas were measured with
        total_area: Sum of all kept overlap areas
        changed_area: Sum of ``changed`` overlap areas
        unchanged_area: Sum of ``unchanged`` overlap areas
        change_percentage: ``changed_area / total_area * 100``, 0 if no area
        change_matrix: Transitions sorted by descending area, ties in
            first-seen order
        change_features: Every kept record, ordered by before index then
            after index
        diagnostics: Pair counts and per-pair failures
    """

    attribute: str
    area_method: AreaMethod
    total_area: float
    changed_area: float
    unchanged_area: float
    change_percentage: float
    change_matrix: Tuple[ChangeMatrixEntry, ...]
    change_features: Tuple[ChangeRecord, ...]
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def unchanged_percentage(self) -> float:
        if self.total_area > 0:
            return self.unchanged_area / self.total_area * 100.0
        return 0.0

    def to_feature_collection(self) -> Dict[str, Any]:
        """GeoJSON-shaped FeatureCollection of the change features."""
        return {
            "type": "FeatureCollection",
            "features": [record.to_feature() for record in self.change_features],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "area_method": self.area_method.value,
            "total_area": self.total_area,
            "changed_area": self.changed_area,
            "unchanged_area": self.unchanged_area,
            "change_percentage": self.change_percentage,
            "change_matrix": [entry.to_dict() for entry in self.change_matrix],
            "change_features": self.to_feature_collection()["features"],
            "geometry_error_count": self.diagnostics.geometry_error_count,
        }

    def summary(self) -> Dict[str, Any]:
        """Report-style figures: hectares and per-transition shares.

        Hectares assume areas in square meters (geodesic measurement).
        """
        transitions = []
        for entry in self.change_matrix:
            share = entry.area / self.changed_area * 100.0 if self.changed_area > 0 else 0.0
            transitions.append({
                "label": entry.label,
                "from_value": entry.from_value,
                "to_value": entry.to_value,
                "area_ha": entry.area / _SQUARE_METERS_PER_HECTARE,
                "count": entry.count,
                "share_of_changed": share,
            })
        return {
            "total_area_ha": self.total_area / _SQUARE_METERS_PER_HECTARE,
            "changed_area_ha": self.changed_area / _SQUARE_METERS_PER_HECTARE,
            "unchanged_area_ha": self.unchanged_area / _SQUARE_METERS_PER_HECTARE,
            "change_percentage": self.change_percentage,
            "unchanged_percentage": self.unchanged_percentage,
            "transitions": transitions,
        }


@dataclass
class _ChunkOutcome:
    aggregator: Aggregator
    candidate_pairs: int = 0
    intersected_pairs: int = 0
    sliver_count: int = 0
    failures: List[PairFailure] = field(default_factory=list)


def _as_polygon_set(value: PolygonSetLike, label: str) -> PolygonSet:
    if isinstance(value, PolygonSet):
        return value
    if value is None:
        raise InputError(f"{label} polygon set is missing", InputErrorReason.EMPTY_SET, {"set": label})
    if isinstance(value, Mapping):
        return PolygonSet.from_geojson(value, label=label)
    return PolygonSet.from_features(value, label=label)


class OverlayRun:
    """One change analysis, from input validation to :class:`AnalysisResult`.

    The run moves ``IDLE -> RUNNING -> COMPLETE``, or to ``FAILED`` when the
    input is structurally unusable. Calling :meth:`run` again on a complete
    run returns the same result; on a failed run it re-raises the error.

    Args:
        before: Before snapshot (PolygonSet, FeatureCollection mapping, or a
            sequence of features)
        after: After snapshot, same forms as ``before``
        attribute: Attribute column to compare
        config: Analysis settings

    Examples:
        >>> run = OverlayRun(before, after, "landuse")
        >>> result = run.run()
        >>> run.state
        <RunState.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        before: PolygonSetLike,
        after: PolygonSetLike,
        attribute: str,
        config: Optional[AnalysisConfig] = None,
    ):
        self._before_input = before
        self._after_input = after
        self.attribute = attribute
        self.config = config or AnalysisConfig()
        self.before: Optional[PolygonSet] = None
        self.after: Optional[PolygonSet] = None
        self.distinct_values: List[Any] = []
        self._state = RunState.IDLE
        self._error: Optional[Exception] = None
        self._result: Optional[AnalysisResult] = None
        self._area_method: Optional[AreaMethod] = None
        self._before_ready: List[Optional[Polygonal]] = []
        self._after_ready: List[Optional[Polygonal]] = []
        self._rejected: Dict[Tuple[str, int], str] = {}
        self._index: Optional[SpatialIndex] = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._result

    def run(self) -> AnalysisResult:
        """Execute the analysis and return its result.

        Raises:
            InputError: If the input is unusable; no partial result exists
        """
        if self._state == RunState.COMPLETE:
            return self._result
        if self._state == RunState.FAILED:
            raise self._error
        if self._state == RunState.RUNNING:
            raise RuntimeError("Overlay run is already in progress")

        self._state = RunState.RUNNING
        try:
            self._validate()
            self._prepare()
            outcomes = self._execute()
            self._result = self._assemble(outcomes)
        except Exception as e:
            self._state = RunState.FAILED
            self._error = e
            if isinstance(e, InputError):
                logger.error("Change analysis rejected input (%s): %s", e.reason.value, e)
            raise

        self._state = RunState.COMPLETE
        return self._result

    # ------------------------------------------------------------------
    # Validation and preparation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        self.before = _as_polygon_set(self._before_input, "before")
        self.after = _as_polygon_set(self._after_input, "after")

        roles = (("before", self.before), ("after", self.after))
        for role, polygon_set in roles:
            if len(polygon_set) == 0:
                raise InputError(
                    f"{role} polygon set is empty",
                    InputErrorReason.EMPTY_SET,
                    {"set": role},
                )

        if not self.attribute:
            raise InputError(
                "No attribute column selected",
                InputErrorReason.MISSING_ATTRIBUTE,
                {"attribute": self.attribute},
            )

        for role, polygon_set in roles:
            if not polygon_set.has_attribute(self.attribute):
                raise InputError(
                    f"Attribute {self.attribute!r} not found in {role} polygon set",
                    InputErrorReason.MISSING_ATTRIBUTE,
                    {
                        "set": role,
                        "attribute": self.attribute,
                        "available": polygon_set.attribute_columns(),
                    },
                )

        values = combined_distinct_values(self.before, self.after, self.attribute, self.config.equality)
        if len(values) > self.config.max_distinct_values:
            raise InputError(
                f"Too many distinct values ({len(values)}) for attribute {self.attribute!r}; "
                f"select an attribute with at most {self.config.max_distinct_values}",
                InputErrorReason.TOO_MANY_VALUES,
                {
                    "attribute": self.attribute,
                    "count": len(values),
                    "limit": self.config.max_distinct_values,
                },
            )
        self.distinct_values = values

    def _prepare(self) -> None:
        self._area_method = resolve_area_method(
            self.config.area_method,
            self.before.geometries() + self.after.geometries(),
        )
        self._before_ready = self._prepare_set(self.before, "before")
        self._after_ready = self._prepare_set(self.after, "after")
        # Raw geometries: a repaired polygon never extends past its original envelope
        self._index = SpatialIndex(self.after.geometries())

    def _prepare_set(self, polygon_set: PolygonSet, role: str) -> List[Optional[Polygonal]]:
        ready: List[Optional[Polygonal]] = []
        for position, feature in enumerate(polygon_set):
            try:
                ready.append(prepare_polygon(feature.geometry, repair=self.config.repair_invalid))
            except GeometryError as e:
                logger.debug("Rejected %s polygon %d: %s", role, position, e)
                self._rejected[(role, position)] = str(e)
                ready.append(None)
        return ready

    # ------------------------------------------------------------------
    # Overlay
    # ------------------------------------------------------------------

    def _chunks(self) -> List[range]:
        total = len(self.before)
        workers = self.config.max_workers
        size = self.config.chunk_size or max(1, math.ceil(total / (workers * _CHUNKS_PER_WORKER)))
        return [range(start, min(start + size, total)) for start in range(0, total, size)]

    def _execute(self) -> List[_ChunkOutcome]:
        chunks = self._chunks()
        logger.info(
            "Starting change analysis on %r: %d before x %d after polygons, %d chunk(s), %d worker(s)",
            self.attribute, len(self.before), len(self.after), len(chunks), self.config.max_workers,
        )
        if self.config.max_workers == 1 or len(chunks) == 1:
            return [self._process_chunk(chunk) for chunk in chunks]

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            # map() yields in submission order regardless of completion order
            return list(executor.map(self._process_chunk, chunks))

    def _process_chunk(self, indices: range) -> _ChunkOutcome:
        outcome = _ChunkOutcome(aggregator=Aggregator(self.config.equality))
        for before_index in indices:
            self._process_before(before_index, outcome)
        return outcome

    def _process_before(self, before_index: int, outcome: _ChunkOutcome) -> None:
        feature = self.before[before_index]
        candidates = self._index.candidates_for(bounding_box(feature.geometry))
        if not candidates:
            return

        before_value = feature.value(self.attribute)
        before_geom = self._before_ready[before_index]

        for after_index in candidates:
            outcome.candidate_pairs += 1
            after_geom = self._after_ready[after_index]
            try:
                if before_geom is None or after_geom is None:
                    raise GeometryError(self._rejection_message(before_index, after_index))
                overlap = intersect_pair(before_geom, after_geom, grid_size=self.config.grid_size)
                if overlap is None:
                    continue
                record = classify(
                    before_value,
                    self.after[after_index].value(self.attribute),
                    overlap,
                    measure_area(overlap, self._area_method),
                    threshold=self.config.sliver_threshold,
                    policy=self.config.equality,
                    before_index=before_index,
                    after_index=after_index,
                )
            except _PAIR_ERRORS as e:
                logger.debug("Skipping pair (%d, %d): %s", before_index, after_index, e)
                outcome.failures.append(PairFailure(before_index, after_index, str(e)))
                continue

            outcome.intersected_pairs += 1
            if record is None:
                outcome.sliver_count += 1
                continue
            outcome.aggregator.add(record)

    def _rejection_message(self, before_index: int, after_index: int) -> str:
        reasons = []
        if ("before", before_index) in self._rejected:
            reasons.append(f"before polygon {before_index}: {self._rejected[('before', before_index)]}")
        if ("after", after_index) in self._rejected:
            reasons.append(f"after polygon {after_index}: {self._rejected[('after', after_index)]}")
        return "; ".join(reasons) or "input polygon rejected"

    def _assemble(self, outcomes: List[_ChunkOutcome]) -> AnalysisResult:
        aggregator = Aggregator(self.config.equality)
        failures: List[PairFailure] = []
        candidate_pairs = intersected_pairs = sliver_count = 0
        for outcome in outcomes:
            aggregator.merge(outcome.aggregator)
            failures.extend(outcome.failures)
            candidate_pairs += outcome.candidate_pairs
            intersected_pairs += outcome.intersected_pairs
            sliver_count += outcome.sliver_count

        totals = aggregator.finalize()
        diagnostics = Diagnostics(
            candidate_pairs=candidate_pairs,
            intersected_pairs=intersected_pairs,
            sliver_count=sliver_count,
            failures=tuple(failures),
        )

        if failures:
            logger.warning(
                "%d candidate pair(s) could not be intersected and were skipped",
                len(failures),
            )
        logger.info(
            "Change analysis complete: %d record(s), total %.4f, changed %.4f (%.2f%%)",
            len(totals.records), totals.total_area, totals.changed_area, totals.change_percentage,
        )

        return AnalysisResult(
            attribute=self.attribute,
            area_method=self._area_method,
            total_area=totals.total_area,
            changed_area=totals.changed_area,
            unchanged_area=totals.unchanged_area,
            change_percentage=totals.change_percentage,
            change_matrix=totals.change_matrix,
            change_features=totals.records,
            diagnostics=diagnostics,
        )


def analyze_changes(
    before: PolygonSetLike,
    after: PolygonSetLike,
    attribute: str,
    config: Optional[AnalysisConfig] = None,
    **overrides: Any,
) -> AnalysisResult:
    """Compare two polygon snapshots on one attribute.

    Args:
        before: Before snapshot (PolygonSet, FeatureCollection mapping, or a
            sequence of features)
        after: After snapshot, same forms as ``before``
        attribute: Attribute column to compare
        config: Analysis settings (default: :class:`AnalysisConfig()`)
        **overrides: Individual config fields overriding ``config``

    Returns:
        AnalysisResult

    Raises:
        InputError: If either set is empty, the attribute is missing, or the
            attribute has too many distinct values
        ConfigurationError: If an override is invalid

    Examples:
        >>> result = analyze_changes(before, after, "landuse", area_method="planar")
        >>> result.change_matrix[0].label
        'forest → urban'
        >>> result.change_percentage
        100.0
    """
    config = config or AnalysisConfig()
    if overrides:
        try:
            config = replace(config, **overrides)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration override: {e}") from None
    return OverlayRun(before, after, attribute, config).run()


__all__ = [
    "PairFailure",
    "Diagnostics",
    "AnalysisResult",
    "OverlayRun",
    "analyze_changes",
]
