"""Tests for the overlay orchestrator and analysis result."""

from unittest.mock import patch

import pytest
from pyproj.exceptions import GeodError
from shapely.geometry import MultiPolygon, Polygon, box, mapping

from changeforge import (
    AnalysisConfig,
    AreaMethod,
    ChangeStatus,
    ConfigurationError,
    GeometryError,
    InputError,
    InputErrorReason,
    OverlayRun,
    PolygonSet,
    RunState,
    analyze_changes,
)

PLANAR = AnalysisConfig(area_method=AreaMethod.PLANAR)


def _set(rows, attribute="landuse", label=""):
    return PolygonSet.from_geometries(
        [geom for geom, _ in rows],
        [{attribute: value} for _, value in rows],
        label=label,
    )


def _collection(rows, attribute="landuse"):
    return {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": mapping(geom), "properties": {attribute: value}}
            for geom, value in rows
        ],
    }


def _bowtie() -> Polygon:
    """Self-intersecting bowtie polygon."""
    return Polygon([(0, 0), (2, 2), (2, 0), (0, 2)])


def _grid(values, offset=0.0, size=10.0, columns=4):
    rows = []
    for i, value in enumerate(values):
        x = (i % columns) * size + offset
        y = (i // columns) * size
        rows.append((box(x, y, x + size, y + size), value))
    return rows


def _mixed_sets():
    before = _set(_grid(["forest", "urban", "water", "forest", "forest", "urban", "water", "water"]))
    after = _set(_grid(["urban", "urban", "forest", "water", "forest", "water", "urban", "water"], offset=3.0))
    return before, after


class TestScenario:
    """Two overlapping squares with different land use."""

    def setup_method(self):
        before = _set([(box(0, 0, 10, 10), "forest")])
        after = _set([(box(5, 5, 15, 15), "urban")])
        self.result = analyze_changes(before, after, "landuse", config=PLANAR)

    def test_single_change_record(self):
        assert len(self.result.change_features) == 1
        record = self.result.change_features[0]
        assert record.geometry.equals(box(5, 5, 10, 10))
        assert record.area == 25.0
        assert record.status == ChangeStatus.CHANGED
        assert (record.before_value, record.after_value) == ("forest", "urban")

    def test_change_matrix(self):
        assert len(self.result.change_matrix) == 1
        entry = self.result.change_matrix[0]
        assert (entry.from_value, entry.to_value) == ("forest", "urban")
        assert entry.area == 25.0
        assert entry.count == 1

    def test_totals(self):
        assert self.result.total_area == 25.0
        assert self.result.changed_area == 25.0
        assert self.result.unchanged_area == 0.0
        assert self.result.change_percentage == 100.0
        assert self.result.unchanged_percentage == 0.0

    def test_same_value_is_unchanged(self):
        before = _set([(box(0, 0, 10, 10), "forest")])
        after = _set([(box(5, 5, 15, 15), "forest")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.change_features[0].status == ChangeStatus.UNCHANGED
        assert result.change_matrix == ()
        assert result.change_percentage == 0.0
        assert result.unchanged_area == 25.0


class TestConservation:
    """Area and matrix conservation on a mixed dataset."""

    def test_total_is_changed_plus_unchanged(self):
        result = analyze_changes(*_mixed_sets(), "landuse", config=PLANAR)
        assert result.total_area == pytest.approx(result.changed_area + result.unchanged_area)
        assert result.changed_area > 0
        assert result.unchanged_area > 0

    def test_matrix_sums_to_changed_area(self):
        result = analyze_changes(*_mixed_sets(), "landuse", config=PLANAR)
        assert sum(e.area for e in result.change_matrix) == pytest.approx(result.changed_area)
        assert sum(e.count for e in result.change_matrix) == sum(
            1 for r in result.change_features if r.status == ChangeStatus.CHANGED
        )

    def test_total_matches_overlap_of_coverages(self):
        before, after = _mixed_sets()
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        # 8 cells shifted by 3 units: each row overlaps over 40 - 3 = 37 units
        assert result.total_area == pytest.approx(2 * 37.0 * 10.0)

    def test_every_record_above_threshold(self):
        result = analyze_changes(*_mixed_sets(), "landuse", config=PLANAR)
        assert all(r.area >= 1e-4 for r in result.change_features)

    def test_matrix_sorted_descending(self):
        result = analyze_changes(*_mixed_sets(), "landuse", config=PLANAR)
        areas = [e.area for e in result.change_matrix]
        assert areas == sorted(areas, reverse=True)


class TestDeterminism:
    """Identical input gives identical output."""

    def test_repeat_runs_identical(self):
        before, after = _mixed_sets()
        first = analyze_changes(before, after, "landuse", config=PLANAR)
        second = analyze_changes(before, after, "landuse", config=PLANAR)
        assert first.to_dict() == second.to_dict()

    def test_worker_count_does_not_change_output(self):
        before, after = _mixed_sets()
        sequential = analyze_changes(before, after, "landuse", config=PLANAR)
        parallel = analyze_changes(
            before, after, "landuse", config=PLANAR, max_workers=4, chunk_size=1,
        )
        assert parallel.to_dict() == sequential.to_dict()
        assert [(r.before_index, r.after_index) for r in parallel.change_features] == [
            (r.before_index, r.after_index) for r in sequential.change_features
        ]

    def test_equal_areas_ranked_by_first_seen(self):
        before = _set([(box(0, 0, 10, 10), "a"), (box(20, 0, 30, 10), "c")])
        after = _set([(box(20, 0, 30, 10), "d"), (box(0, 0, 10, 10), "b")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert [e.label for e in result.change_matrix] == ["a → b", "c → d"]

    def test_records_ordered_by_before_then_after(self):
        result = analyze_changes(*_mixed_sets(), "landuse", config=PLANAR)
        keys = [(r.before_index, r.after_index) for r in result.change_features]
        assert keys == sorted(keys)


class TestSlivers:
    """Sliver exclusion at the default threshold."""

    def test_sliver_excluded_and_larger_kept(self):
        before = _set([(box(0, 0, 1, 1), "forest")])
        after = _set([
            (box(0, 0, 0.01, 0.0099999), "urban"),
            (box(0.5, 0.5, 0.51, 0.510001), "water"),
        ])
        result = analyze_changes(before, after, "landuse", config=PLANAR)

        assert len(result.change_features) == 1
        kept = result.change_features[0]
        assert kept.after_value == "water"
        assert kept.area == pytest.approx(1.0001e-4)
        assert result.total_area == pytest.approx(1.0001e-4)
        assert [e.to_value for e in result.change_matrix] == ["water"]
        assert result.diagnostics.sliver_count == 1


class TestSpatialPruning:
    """Pairs with disjoint envelopes never reach the intersection engine."""

    def test_disjoint_envelopes_skip_intersection(self):
        before = _set([(box(0, 0, 1, 1), "forest")])
        after = _set([(box(5, 5, 6, 6), "urban")])
        with patch("changeforge.overlay.intersect_pair") as mock_intersect:
            result = analyze_changes(before, after, "landuse", config=PLANAR)
        mock_intersect.assert_not_called()
        assert result.change_features == ()
        assert result.diagnostics.candidate_pairs == 0

    def test_only_candidates_intersected(self):
        before = _set([(box(0, 0, 10, 10), "forest")])
        after = _set([(box(5, 5, 15, 15), "urban"), (box(50, 50, 60, 60), "water")])
        with patch("changeforge.overlay.intersect_pair", return_value=None) as mock_intersect:
            analyze_changes(before, after, "landuse", config=PLANAR)
        assert mock_intersect.call_count == 1

    def test_envelope_overlap_without_geometry_overlap(self):
        l_shape = Polygon([(0, 0), (10, 0), (10, 2), (2, 2), (2, 10), (0, 10)])
        before = _set([(l_shape, "forest")])
        after = _set([(box(6, 6, 9, 9), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.diagnostics.candidate_pairs == 1
        assert result.diagnostics.intersected_pairs == 0
        assert result.change_features == ()

    def test_touching_polygons_contribute_nothing(self):
        before = _set([(box(0, 0, 10, 10), "forest")])
        after = _set([(box(10, 0, 20, 10), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.total_area == 0.0


class TestEmptyResult:

    def test_no_overlap_gives_zero_percentage(self):
        before = _set([(box(0, 0, 1, 1), "forest")])
        after = _set([(box(5, 5, 6, 6), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.total_area == 0.0
        assert result.change_percentage == 0.0
        assert result.unchanged_percentage == 0.0
        assert result.change_matrix == ()

    def test_degenerate_polygons_do_not_crash(self):
        before = PolygonSet.from_features([
            {"geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]},
             "properties": {"landuse": "forest"}},
            {"geometry": None, "properties": {"landuse": "water"}},
        ])
        after = _set([(box(0, 0, 1, 1), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.total_area == 0.0
        assert result.change_percentage == 0.0


class TestComplexGeometry:
    """Holes and multi-part polygons."""

    def test_hole_excluded_from_area(self):
        holed = Polygon(
            [(0, 0), (10, 0), (10, 10), (0, 10)],
            holes=[[(2, 2), (4, 2), (4, 4), (2, 4)]],
        )
        before = _set([(holed, "forest")])
        after = _set([(box(0, 0, 10, 10), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.total_area == pytest.approx(96.0)

    def test_multipart_pair_gives_one_record(self):
        before = _set([(box(0, 0, 30, 10), "forest")])
        after = _set([(MultiPolygon([box(0, 0, 5, 5), box(20, 0, 25, 5)]), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)

        assert len(result.change_features) == 1
        record = result.change_features[0]
        assert isinstance(record.geometry, MultiPolygon)
        assert record.area == pytest.approx(50.0)
        assert result.change_matrix[0].count == 1


class TestGeometryErrors:
    """Per-pair failures are counted and never abort the run."""

    def test_unrepaired_invalid_polygon_counted(self):
        before = _set([(_bowtie(), "forest"), (box(10, 10, 12, 12), "water")])
        after = _set([(box(0, 0, 2, 2), "urban"), (box(10, 10, 12, 12), "water")])
        run = OverlayRun(before, after, "landuse", AnalysisConfig(area_method="planar", repair_invalid=False))
        result = run.run()

        assert run.state == RunState.COMPLETE
        assert result.diagnostics.geometry_error_count == 1
        failure = result.diagnostics.failures[0]
        assert (failure.before_index, failure.after_index) == (0, 0)
        assert "before polygon 0" in failure.message
        assert result.unchanged_area == pytest.approx(4.0)
        assert result.changed_area == 0.0

    def test_invalid_polygon_repaired_by_default(self):
        before = _set([(_bowtie(), "forest")])
        after = _set([(box(0, 0, 2, 2), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert result.diagnostics.geometry_error_count == 0
        assert result.changed_area == pytest.approx(2.0)

    def test_engine_failure_skips_pair_only(self):
        from changeforge.intersect import intersect_pair as real_intersect

        def flaky(before, after, grid_size=None):
            if before.bounds[0] == 0:
                raise GeometryError("TopologyException")
            return real_intersect(before, after, grid_size)

        before = _set([(box(0, 0, 10, 10), "forest"), (box(20, 0, 30, 10), "forest")])
        after = _set([(box(0, 0, 30, 10), "urban")])
        with patch("changeforge.overlay.intersect_pair", side_effect=flaky):
            result = analyze_changes(before, after, "landuse", config=PLANAR)

        assert result.diagnostics.geometry_error_count == 1
        assert result.changed_area == pytest.approx(100.0)
        assert len(result.change_features) == 1

    def test_measurement_failure_skips_pair_only(self):
        from changeforge.metrics import area as real_area

        def flaky(geometry, method):
            if geometry.bounds[0] == 0:
                raise GeodError("geod failure")
            return real_area(geometry, method)

        before = _set([(box(0, 0, 10, 10), "forest"), (box(20, 0, 30, 10), "forest")])
        after = _set([(box(0, 0, 30, 10), "urban")])
        with patch("changeforge.overlay.measure_area", side_effect=flaky):
            run = OverlayRun(before, after, "landuse", PLANAR)
            result = run.run()

        assert run.state == RunState.COMPLETE
        assert result.diagnostics.geometry_error_count == 1
        assert result.diagnostics.failures[0].before_index == 0
        assert result.changed_area == pytest.approx(100.0)


class TestInputErrors:
    """Structurally invalid input fails the run up front."""

    def _assert_fails(self, before, after, attribute, reason, config=PLANAR):
        run = OverlayRun(before, after, attribute, config)
        with pytest.raises(InputError) as exc_info:
            run.run()
        assert exc_info.value.reason == reason
        assert run.state == RunState.FAILED
        assert run.result is None
        return exc_info.value

    def test_empty_before_set(self):
        after = _set([(box(0, 0, 1, 1), "urban")])
        error = self._assert_fails(_set([]), after, "landuse", InputErrorReason.EMPTY_SET)
        assert error.details["set"] == "before"

    def test_empty_after_collection(self):
        before = _set([(box(0, 0, 1, 1), "urban")])
        empty = {"type": "FeatureCollection", "features": []}
        error = self._assert_fails(before, empty, "landuse", InputErrorReason.EMPTY_SET)
        assert error.details["set"] == "after"

    def test_missing_set(self):
        before = _set([(box(0, 0, 1, 1), "urban")])
        self._assert_fails(before, None, "landuse", InputErrorReason.EMPTY_SET)

    def test_missing_attribute(self):
        before = _set([(box(0, 0, 1, 1), "forest")])
        after = _set([(box(0, 0, 1, 1), "urban")], attribute="zoning")
        error = self._assert_fails(before, after, "landuse", InputErrorReason.MISSING_ATTRIBUTE)
        assert error.details["set"] == "after"
        assert error.details["available"] == ["zoning"]

    def test_no_attribute_selected(self):
        rows = [(box(0, 0, 1, 1), "forest")]
        self._assert_fails(_set(rows), _set(rows), "", InputErrorReason.MISSING_ATTRIBUTE)

    def test_too_many_distinct_values(self):
        before = _set([(box(i, 0, i + 1, 1), f"class-{i}") for i in range(60)])
        after = _set([(box(i, 0, i + 1, 1), f"class-{i + 41}") for i in range(60)])
        error = self._assert_fails(before, after, "landuse", InputErrorReason.TOO_MANY_VALUES)
        assert error.details["count"] == 101
        assert error.details["limit"] == 100

    def test_distinct_value_cap_is_inclusive(self):
        before = _set([(box(i, 0, i + 1, 1), f"class-{i}") for i in range(60)])
        after = _set([(box(i, 0, i + 1, 1), f"class-{i + 40}") for i in range(60)])
        run = OverlayRun(before, after, "landuse", PLANAR)
        run.run()
        assert len(run.distinct_values) == 100

    def test_custom_cap(self):
        before = _set([(box(0, 0, 1, 1), "a"), (box(1, 0, 2, 1), "b")])
        after = _set([(box(0, 0, 1, 1), "c")])
        config = AnalysisConfig(area_method="planar", max_distinct_values=2)
        self._assert_fails(before, after, "landuse", InputErrorReason.TOO_MANY_VALUES, config)

    def test_cap_checked_before_overlay(self):
        before = _set([(box(i, 0, i + 1, 1), i) for i in range(101)])
        after = _set([(box(0, 0, 1, 1), 0)])
        with patch("changeforge.overlay.intersect_pair") as mock_intersect:
            with pytest.raises(InputError):
                analyze_changes(before, after, "landuse", config=PLANAR)
        mock_intersect.assert_not_called()

    def test_malformed_geometry(self):
        bad = _collection([(box(0, 0, 1, 1), "forest")])
        bad["features"].append({
            "type": "Feature",
            "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
            "properties": {"landuse": "urban"},
        })
        after = _collection([(box(0, 0, 1, 1), "urban")])
        error = self._assert_fails(bad, after, "landuse", InputErrorReason.MALFORMED_GEOMETRY)
        assert error.details["feature_index"] == 1

    def test_geometry_not_a_mapping(self):
        before = _collection([(box(0, 0, 1, 1), "forest")])
        bad = _collection([(box(0, 0, 1, 1), "urban")])
        bad["features"][0]["geometry"] = [[0, 0], [1, 0], [1, 1]]
        error = self._assert_fails(before, bad, "landuse", InputErrorReason.MALFORMED_GEOMETRY)
        assert error.details["set"] == "after"
        assert error.details["feature_index"] == 0

    def test_properties_not_a_mapping(self):
        bad = _collection([(box(0, 0, 1, 1), "forest"), (box(1, 0, 2, 1), "water")])
        bad["features"][1]["properties"] = ["landuse"]
        after = _collection([(box(0, 0, 1, 1), "urban")])
        error = self._assert_fails(bad, after, "landuse", InputErrorReason.MALFORMED_GEOMETRY)
        assert error.details["set"] == "before"
        assert error.details["feature_index"] == 1

    def test_failed_run_reraises(self):
        run = OverlayRun(_set([]), _set([(box(0, 0, 1, 1), "a")]), "landuse", PLANAR)
        with pytest.raises(InputError):
            run.run()
        with pytest.raises(InputError):
            run.run()


class TestOverlayRun:
    """Run lifecycle and result export."""

    def test_state_transitions(self):
        run = OverlayRun(_set([(box(0, 0, 1, 1), "a")]), _set([(box(0, 0, 1, 1), "b")]), "landuse", PLANAR)
        assert run.state == RunState.IDLE
        result = run.run()
        assert run.state == RunState.COMPLETE
        assert run.run() is result

    def test_geojson_input_and_output(self):
        before = _collection([(box(0, 0, 10, 10), "forest")])
        after = _collection([(box(5, 5, 15, 15), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)

        collection = result.to_feature_collection()
        assert collection["type"] == "FeatureCollection"
        assert len(collection["features"]) == 1
        props = collection["features"][0]["properties"]
        assert props == {
            "before_value": "forest",
            "after_value": "urban",
            "status": "changed",
            "area_m2": 25.0,
        }

    def test_to_dict(self):
        before = _set([(box(0, 0, 10, 10), "forest")])
        after = _set([(box(5, 5, 15, 15), "urban")])
        data = analyze_changes(before, after, "landuse", config=PLANAR).to_dict()
        assert data["change_matrix"] == [
            {"from_value": "forest", "to_value": "urban", "area_m2": 25.0, "count": 1}
        ]
        assert data["area_method"] == "planar"
        assert data["geometry_error_count"] == 0

    def test_summary_in_hectares(self):
        before = _set([(box(0, 0, 200, 100), "forest")])
        after = _set([(box(0, 0, 100, 100), "urban"), (box(100, 0, 200, 100), "forest")])
        summary = analyze_changes(before, after, "landuse", config=PLANAR).summary()
        assert summary["total_area_ha"] == pytest.approx(2.0)
        assert summary["changed_area_ha"] == pytest.approx(1.0)
        assert summary["unchanged_percentage"] == pytest.approx(50.0)
        assert summary["transitions"][0]["share_of_changed"] == pytest.approx(100.0)
        assert summary["transitions"][0]["label"] == "forest → urban"

    def test_missing_attribute_on_some_features_is_null(self):
        before = PolygonSet.from_features([
            {"geometry": mapping(box(0, 0, 10, 10)), "properties": {"landuse": "forest"}},
            {"geometry": mapping(box(20, 0, 30, 10)), "properties": {}},
        ])
        after = _set([(box(0, 0, 30, 10), "urban")])
        result = analyze_changes(before, after, "landuse", config=PLANAR)
        assert [(e.from_value, e.to_value) for e in result.change_matrix] == [
            ("forest", "urban"),
            (None, "urban"),
        ]

    def test_normalized_equality(self):
        before = _set([(box(0, 0, 10, 10), 1)])
        after = _set([(box(0, 0, 10, 10), "1")])
        strict = analyze_changes(before, after, "landuse", config=PLANAR)
        normalized = analyze_changes(before, after, "landuse", config=PLANAR, equality="normalized")
        assert strict.change_percentage == 100.0
        assert normalized.change_percentage == 0.0

    def test_auto_area_method_on_lonlat(self):
        before = _set([(box(0, 0, 1, 1), "forest")])
        after = _set([(box(0.5, 0.5, 1.5, 1.5), "urban")])
        result = analyze_changes(before, after, "landuse", area_method="auto")
        assert result.area_method == AreaMethod.GEODESIC
        # A quarter of a one-degree cell at the equator, in m2
        assert result.total_area == pytest.approx(1.2309e10 / 4, rel=0.01)

    def test_invalid_override(self):
        rows = [(box(0, 0, 1, 1), "a")]
        with pytest.raises(ConfigurationError):
            analyze_changes(_set(rows), _set(rows), "landuse", max_workers=0)

    def test_unknown_override(self):
        rows = [(box(0, 0, 1, 1), "a")]
        with pytest.raises(ConfigurationError, match="area_methd"):
            analyze_changes(_set(rows), _set(rows), "landuse", area_methd="planar")
