"""Tests for contract types: keys, formula text and the report tree."""
import pytest

from load_audit.contracts import (
    AreaGroupingKey,
    AuditConfig,
    AuditEntry,
    AuditReport,
    Axis,
    AxisSignature,
    CategoryGroup,
    DecompositionResult,
    LoadCategory,
    LoadDirection,
    RawLoadRecord,
    ShapeTerm,
    StoryBucket,
    TermKind,
    format_number,
)


class TestFormatting:

    @pytest.mark.parametrize("value,text", [
        (4.0, "4"), (2.5, "2.5"), (0.35, "0.35"), (1.004, "1"), (-0.001, "0"), (12.125, "12.12"),
    ])
    def test_format_number(self, value, text):
        assert format_number(value) == text

    def test_term_text(self):
        assert ShapeTerm(TermKind.RECTANGLE, 4, 3, 12).text() == "4x3"
        assert ShapeTerm(TermKind.TRIANGLE, 4, 3, 6).text() == "1/2x4x3"
        assert ShapeTerm(TermKind.TRIANGLE, 4, 3, 5).text() == "tri(5)"
        assert ShapeTerm(TermKind.SEGMENT, 6, 0, 6).text() == "L=6"
        assert ShapeTerm(TermKind.APPROXIMATE, 4, 4, 14.5).text() == "~14.5"

    def test_formula_signs(self):
        result = DecompositionResult(
            terms=(
                ShapeTerm(TermKind.RECTANGLE, 10, 10, 100),
                ShapeTerm(TermKind.RECTANGLE, 2, 2, 4, sign=-1),
                ShapeTerm(TermKind.TRIANGLE, 2, 1, 1),
            ),
            exact=True,
            strategy="subtractive",
        )
        assert result.formula == "10x10 - 2x2 + 1/2x2x1"
        assert result.area == pytest.approx(97.0)
        assert result.term_count == 3


class TestGroupingKeys:

    def _record(self, magnitude):
        return RawLoadRecord("S1", LoadCategory.AREA, magnitude, LoadDirection.GRAVITY, 3.1)

    def test_key_normalised_before_hashing(self):
        config = AuditConfig()
        sig_a = AxisSignature(Axis.Z, 1, 3.08)
        sig_b = AxisSignature(Axis.Z, 1, 3.12)
        a = AreaGroupingKey.build(sig_a, self._record(2.0001), config)
        b = AreaGroupingKey.build(sig_b, self._record(1.9999), config)
        assert a == b
        assert len({a, b}) == 1

    def test_negative_zero_magnitude_hashes_with_zero(self):
        config = AuditConfig()
        sig = AxisSignature(Axis.Z, 1, 0.0)
        assert AreaGroupingKey.build(sig, self._record(-0.0001), config) == \
            AreaGroupingKey.build(sig, self._record(0.0), config)

    def test_sign_separates_faces(self):
        config = AuditConfig()
        up = AreaGroupingKey.build(AxisSignature(Axis.X, 1, 5.0), self._record(1.0), config)
        down = AreaGroupingKey.build(AxisSignature(Axis.X, -1, 5.0), self._record(1.0), config)
        assert up != down

    def test_oblique_planes_keyed_by_normal(self):
        config = AuditConfig()
        hip = AxisSignature(Axis.OBLIQUE, 1, 2.0, normal=(0.577, 0.577, 0.577))
        same_hip = AxisSignature(Axis.OBLIQUE, 1, 2.1, normal=(0.5771, 0.5769, 0.577))
        ramp = AxisSignature(Axis.OBLIQUE, 1, 2.0, normal=(0.5, 0.5, 0.7071))
        key = AreaGroupingKey.build(hip, self._record(1.0), config)
        assert key == AreaGroupingKey.build(same_hip, self._record(1.0), config)
        assert key != AreaGroupingKey.build(ramp, self._record(1.0), config)

    def test_axis_aligned_keys_ignore_normal(self):
        config = AuditConfig()
        key = AreaGroupingKey.build(AxisSignature(Axis.Z, 1, 3.1), self._record(1.0), config)
        assert key.normal_bin is None


class TestReportTree:

    @staticmethod
    def _entry(force):
        return AuditEntry(location="1 x A", formula="4x3", quantity=12.0, quantity_unit="m2",
                          unit_load=1.0, direction_label="-Z", total_force=12.0, force=force,
                          element_ids=("S1", "S2"), category=LoadCategory.AREA,
                          structural_type="Slab Elements")

    def test_subtotals_are_sums_of_children(self):
        group = CategoryGroup.from_entries(
            LoadCategory.AREA, [self._entry((1.0, 0.0, -12.0)), self._entry((0.0, 2.0, -3.0))])
        assert group.subtotal == (1.0, 2.0, -15.0)
        assert group.element_count == 4

        story = StoryBucket.from_groups("L1", 3.1, [group, group])
        assert story.subtotal == (2.0, 4.0, -30.0)

        report = AuditReport.from_stories("DL", [story], reference_reaction=-40.0)
        assert report.total == (2.0, 4.0, -30.0)
        assert len(report.entries()) == 4
        assert report.reaction_difference == pytest.approx(report.magnitude - 40.0)

    def test_no_reference_reaction(self):
        report = AuditReport.from_stories("DL", [])
        assert report.reaction_difference is None
        assert report.reaction_difference_percent is None
