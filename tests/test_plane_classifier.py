"""Tests for axis/plane classification of area elements."""
import math

import pytest

from load_audit.contracts import AreaGeometry, AuditConfig, Axis, AxisSignature
from load_audit.plane_classifier import classify_area, classify_normal, structural_type_for


class TestClassifyNormal:

    def test_vertical_normal_is_slab(self):
        sig = classify_normal((0.0, 0.0, 1.0))
        assert sig.axis is Axis.Z
        assert sig.sign == 1

    def test_downward_normal_is_negative(self):
        assert classify_normal((0.0, 0.0, -2.0)).sign == -1

    @pytest.mark.parametrize("normal,axis,sign", [
        ((1.0, 0.0, 0.0), Axis.X, 1),
        ((-1.0, 0.1, 0.0), Axis.X, -1),
        ((0.0, 1.0, 0.0), Axis.Y, 1),
        ((0.1, -1.0, 0.0), Axis.Y, -1),
    ])
    def test_walls(self, normal, axis, sign):
        sig = classify_normal(normal)
        assert sig.axis is axis
        assert sig.sign == sign

    def test_diagonal_plane_is_oblique(self):
        sig = classify_normal((1.0, 1.0, 1.0))
        assert sig.axis is Axis.OBLIQUE
        assert sig.label == "Oblique"

    def test_zero_normal_is_oblique(self):
        assert classify_normal((0.0, 0.0, 0.0)).axis is Axis.OBLIQUE

    def test_dominance_threshold_is_configurable(self):
        # 60 degree slope: |nz| = 0.5
        normal = (math.sin(math.radians(60)), 0.0, math.cos(math.radians(60)))
        assert classify_normal(normal).axis is Axis.X
        assert classify_normal(normal, config=AuditConfig(axis_dominance=0.9)).axis is Axis.OBLIQUE


class TestClassifyArea:

    def test_slab_position_is_elevation(self):
        geometry = AreaGeometry(vertices=((0, 0, 3.1), (4, 0, 3.1), (4, 3, 3.1), (0, 3, 3.1)))
        sig = classify_area(geometry)
        assert sig.axis is Axis.Z
        assert sig.position == pytest.approx(3.1)
        assert sig.label == "+Z"

    def test_wall_sign_follows_winding(self):
        verts = ((5, 0, 0), (5, 4, 0), (5, 4, 3), (5, 0, 3))
        forward = classify_area(AreaGeometry(vertices=verts))
        backward = classify_area(AreaGeometry(vertices=verts[::-1]))
        assert forward.axis is Axis.X and forward.sign == 1
        assert backward.axis is Axis.X and backward.sign == -1
        assert forward.position == pytest.approx(5.0)

    def test_oblique_panel_keeps_unit_normal(self):
        roof = AreaGeometry(vertices=((3, 0, 0), (0, 3, 0), (0, 0, 3)))
        sig = classify_area(roof)
        assert sig.axis is Axis.OBLIQUE
        assert sig.normal == pytest.approx((1 / math.sqrt(3),) * 3)
        assert sig.position == pytest.approx(math.sqrt(3))

    def test_axis_aligned_signature_has_no_normal(self):
        sig = classify_area(AreaGeometry(vertices=((0, 0, 3.1), (4, 0, 3.1), (4, 3, 3.1))))
        assert sig.normal is None

    def test_explicit_normal_overrides_winding(self):
        verts = ((0, 2, 0), (6, 2, 0), (6, 2, 3), (0, 2, 3))
        sig = classify_area(AreaGeometry(vertices=verts, normal=(0.0, 1.0, 0.0)))
        assert sig.axis is Axis.Y
        assert sig.sign == 1
        assert sig.position == pytest.approx(2.0)


class TestStructuralType:

    def test_labels(self):
        assert structural_type_for(AxisSignature(Axis.Z, 1, 0.0)) == "Slab Elements"
        assert structural_type_for(AxisSignature(Axis.Y, -1, 0.0)) == "Wall Elements"
        assert structural_type_for(AxisSignature(Axis.OBLIQUE, 1, 0.0)) == "Oblique Elements"
