"""Tests for the shape decomposition arbiter."""
import pytest
from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon, box

import load_audit.shape_decomposer as shape_decomposer
from load_audit.contracts import AuditConfig, Axis, ShapeTerm, TermKind
from load_audit.shape_decomposer import (
    decompose,
    decompose_with_trace,
    matrix_strategy,
    merge_strips,
    select_additive,
    slicing_strategy,
    subtractive_candidate,
)


def _rect(w, h, sign=1):
    return ShapeTerm(TermKind.RECTANGLE, w, h, w * h, sign)


class TestFastPaths:

    def test_rectangle_is_one_term(self):
        result = decompose(box(2, 1, 6, 4))
        assert result.formula == "4x3"
        assert result.term_count == 1
        assert result.exact
        assert result.strategy == "rectangle"

    def test_near_rectangle_within_one_percent(self):
        # Notch of 0.05 m2 on a 12 m2 rectangle
        region = Polygon([(0, 0), (4, 0), (4, 3), (0.1, 3), (0.1, 2.5), (0, 2.5)])
        result = decompose(region)
        assert result.term_count == 1
        (term,) = result.terms
        assert (term.width, term.height) == pytest.approx((4.0, 3.0))
        assert not result.exact

    def test_triangle_is_one_term(self):
        result = decompose(Polygon([(0, 0), (4, 0), (0, 3)]))
        assert result.formula == "1/2x4x3"
        assert result.exact
        assert result.area == pytest.approx(6.0)

    def test_segment(self):
        result = decompose(LineString([(0, 0), (6, 0)]))
        assert result.formula == "L=6"
        assert result.exact

    def test_empty_region(self):
        result = decompose(Polygon())
        assert result.term_count == 0
        assert not result.exact


class TestScenarios:

    def test_l_shape_is_two_additive_terms(self, l_shape):
        result = decompose(l_shape)
        assert result.formula == "4x3 + 2x3"
        assert result.term_count == 2
        assert result.exact
        assert result.strategy == "matrix"

    def test_slab_with_hole_is_subtractive(self, hole_slab):
        result = decompose(hole_slab)
        assert result.formula == "10x10 - 2x2"
        assert result.strategy == "subtractive"
        assert result.exact
        assert result.area == pytest.approx(96.0)

    def test_house_outline_falls_back_to_approximate(self):
        # Rectangle with a gable: subtractive is exact but not shorter
        region = Polygon([(0, 0), (4, 0), (4, 3), (2, 5), (0, 3)])
        result = decompose(region)
        assert not result.exact
        assert result.strategy == "approximate"
        assert result.formula == "~16"

    def test_thin_l_skips_subtractive(self):
        region = Polygon([(0, 0), (10, 0), (10, 1), (1, 1), (1, 10), (0, 10)])
        result, trace = decompose_with_trace(region)
        assert result.term_count == 2
        assert result.exact
        assert "solid_fraction_below_subtractive" in trace["reason_codes"]
        assert all(a["strategy"] != "subtractive" for a in trace["alternatives"])


class TestExactness:

    @pytest.mark.parametrize("region", [
        Polygon([(0, 0), (4, 0), (4, 3), (2, 3), (2, 6), (0, 6)]),
        Polygon([(0, 0), (6, 0), (6, 2), (4, 2), (4, 4), (2, 4), (2, 2), (0, 2)]),
        Polygon([(0, 0), (9, 0), (9, 6), (6, 6), (6, 3), (3, 3), (3, 6), (0, 6)]),
        Polygon([(0, 0), (10, 0), (10, 10), (0, 10)], holes=[[(2, 2), (3, 2), (3, 3), (2, 3)]]),
    ])
    def test_exact_terms_sum_to_region_area(self, region):
        result = decompose(region)
        assert result.exact
        assert result.area == pytest.approx(region.area, rel=1e-6)

    def test_terms_ordered_largest_first(self):
        region = Polygon([(0, 0), (9, 0), (9, 6), (6, 6), (6, 3), (3, 3), (3, 6), (0, 6)])
        areas = [t.area for t in decompose(region).terms]
        assert areas == sorted(areas, reverse=True)

    def test_loose_union_is_never_exact(self, l_shape):
        result, trace = decompose_with_trace(l_shape, loose=True)
        assert result.formula == "4x3 + 2x3"
        assert not result.exact
        assert "loose_union" in trace["reason_codes"]

    def test_kernel_error_gives_approximate(self, monkeypatch, l_shape):
        def _boom(region, config):
            raise GEOSException("IllegalArgumentException")

        monkeypatch.setattr(shape_decomposer, "_arbitrate", _boom)
        result, trace = decompose_with_trace(l_shape)
        assert result.strategy == "approximate"
        assert result.formula == "~18"
        assert trace["reason_codes"] == ["kernel_error"]


class TestStrategies:

    def test_matrix_on_l_shape(self, l_shape):
        terms = matrix_strategy(l_shape)
        assert sorted(t.area for t in terms) == pytest.approx([6.0, 12.0])

    def test_slicing_along_each_axis(self, l_shape):
        along_x = slicing_strategy(l_shape, Axis.X)
        along_y = slicing_strategy(l_shape, Axis.Y)
        assert sorted((t.width, t.height) for t in along_x) == [(2.0, 3.0), (2.0, 6.0)]
        assert sorted((t.width, t.height) for t in along_y) == [(2.0, 3.0), (4.0, 3.0)]

    def test_merge_strips_joins_equal_spans(self):
        strips = [(0, 0, 1, 3), (1, 0, 2, 3), (2, 0, 3, 2)]
        merged = merge_strips(strips, Axis.X, 0.002)
        assert sorted(merged) == [(0, 0, 2, 3), (2, 0, 3, 2)]

    def test_merge_strips_respects_gap(self):
        merged = merge_strips([(0, 0, 1, 3), (1.5, 0, 2, 3)], Axis.X, 0.002)
        assert len(merged) == 2

    def test_subtractive_rejects_irregular_void(self):
        region = Polygon([(0, 0), (10, 0), (10, 10), (0, 10)],
                         holes=[[(4, 4), (6, 4), (6, 5), (5, 6), (4, 6)]])
        assert not subtractive_candidate(region).exact


class TestSelectAdditive:

    def test_fewest_terms_wins(self):
        winner, reasons = select_additive({
            "matrix": [_rect(1, 1)] * 3,
            "slice_x": [_rect(2, 1), _rect(1, 1)],
            "slice_y": [_rect(1, 1)] * 4,
        })
        assert winner == "slice_x"
        assert reasons == ["min_term_count"]

    def test_tie_goes_to_largest_term(self):
        winner, reasons = select_additive({
            "matrix": [_rect(2, 2), _rect(2, 2)],
            "slice_x": [_rect(3, 2), _rect(1, 2)],
            "slice_y": [_rect(2, 2), _rect(2, 2)],
        })
        assert winner == "slice_x"
        assert "largest_term_tiebreak" in reasons

    def test_full_tie_keeps_candidate_order(self):
        winner, _ = select_additive({
            "matrix": [_rect(2, 2)],
            "slice_x": [_rect(2, 2)],
            "slice_y": [_rect(2, 2)],
        })
        assert winner == "matrix"


class TestTrace:

    def test_trace_lists_alternatives(self, hole_slab):
        _, trace = decompose_with_trace(hole_slab)
        names = [a["strategy"] for a in trace["alternatives"]]
        assert names == ["matrix", "slice_x", "slice_y", "subtractive"]
        assert trace["selected"] == "subtractive"
        assert "subtractive_fewer_terms" in trace["reason_codes"]
        assert trace["term_count"] == 2

    def test_subtractive_requires_strictly_fewer_terms(self, l_shape):
        _, trace = decompose_with_trace(l_shape)
        sub = next(a for a in trace["alternatives"] if a["strategy"] == "subtractive")
        assert sub["exact"]
        assert sub["term_count"] == 2
        assert trace["selected"] == "matrix"

    def test_config_is_respected(self, l_shape):
        # Forcing the subtractive threshold above the solid fraction removes it
        _, trace = decompose_with_trace(l_shape, config=AuditConfig(subtractive_solid_fraction=0.9))
        assert all(a["strategy"] != "subtractive" for a in trace["alternatives"])
