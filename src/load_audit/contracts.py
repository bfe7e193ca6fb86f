"""Contracts for the load-audit engine: records, geometry, keys and the report tree."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Union

Vec2 = Tuple[float, float]
Vec3 = Tuple[float, float, float]


class LoadCategory(Enum):
    """Which kind of element a load record is applied to."""
    AREA = "Area"
    LINE = "Line"
    POINT = "Point"


class LoadDirection(Enum):
    """Direction descriptor carried by a raw load record."""
    GRAVITY = "Gravity"
    GLOBAL_X = "GlobalX"
    GLOBAL_Y = "GlobalY"
    GLOBAL_Z = "GlobalZ"
    LOCAL_PROJECTED = "LocalProjected"


class Axis(Enum):
    X = "X"
    Y = "Y"
    Z = "Z"
    OBLIQUE = "Oblique"


@dataclass(frozen=True)
class AuditConfig:
    """Tunable tolerances for a load-audit run (lengths in m, areas in m2)."""

    story_tolerance: float = 0.2
    grid_snap_tolerance: float = 0.25
    elevation_decimals: int = 4
    magnitude_decimals: int = 3
    plane_position_tolerance: float = 0.5
    normal_decimals: int = 2
    axis_dominance: float = 0.7

    # Decomposition
    rectangle_tolerance: float = 0.01
    exact_tolerance: float = 1e-6
    subtractive_solid_fraction: float = 0.6
    strip_gap_tolerance: float = 0.002
    min_piece_area: float = 1e-9
    min_area: float = 1e-4

    # Line members
    line_angle_tolerance: float = 0.1
    column_rise_threshold: float = 0.5

    # Region membership after union
    member_overlap_area: float = 1e-9
    member_overlap_distance: float = 1e-6


# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawLoadRecord:
    """One load assignment read from the structural model."""

    element_id: str
    category: LoadCategory
    magnitude: float
    direction: LoadDirection
    elevation: float
    pattern: str = ""
    # Partial distribution along a line member; zero span means full length.
    dist_start: float = 0.0
    dist_end: float = 0.0
    relative: bool = True


@dataclass(frozen=True)
class AreaGeometry:
    """Closed boundary of an area element, at least three 3D vertices."""
    category: ClassVar[LoadCategory] = LoadCategory.AREA

    vertices: Tuple[Vec3, ...]
    # Optional local-3 axis from the host model; derived from winding if absent.
    normal: Optional[Vec3] = None


@dataclass(frozen=True)
class LineGeometry:
    category: ClassVar[LoadCategory] = LoadCategory.LINE

    start: Vec3
    end: Vec3

    @property
    def length(self) -> float:
        return math.dist(self.start, self.end)

    @property
    def plan_length(self) -> float:
        return math.hypot(self.end[0] - self.start[0], self.end[1] - self.start[1])

    @property
    def rise(self) -> float:
        return abs(self.end[2] - self.start[2])


@dataclass(frozen=True)
class PointGeometry:
    category: ClassVar[LoadCategory] = LoadCategory.POINT

    coord: Vec3


ElementGeometry = Union[AreaGeometry, LineGeometry, PointGeometry]


@dataclass(frozen=True)
class ReferenceGrid:
    label: str
    coordinate: float
    axis: Axis


@dataclass(frozen=True)
class ReferenceLevel:
    label: str
    elevation: float


@dataclass(frozen=True)
class AxisSignature:
    """Supporting global axis of an element, outward sign and plane position."""

    axis: Axis
    sign: int
    position: float
    # Unit normal, kept for oblique planes only
    normal: Optional[Vec3] = None

    @property
    def label(self) -> str:
        if self.axis is Axis.OBLIQUE:
            return "Oblique"
        return f"{'+' if self.sign > 0 else '-'}{self.axis.value}"


# ---------------------------------------------------------------------------
# Grouping keys (normalised before hashing)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AreaGroupingKey:
    axis: Axis
    sign: int
    position_bin: int
    magnitude: float
    direction: LoadDirection
    normal_bin: Optional[Tuple[int, int, int]] = None

    @classmethod
    def build(
        cls,
        signature: AxisSignature,
        record: RawLoadRecord,
        config: AuditConfig,
    ) -> "AreaGroupingKey":
        return cls(
            axis=signature.axis,
            sign=signature.sign,
            position_bin=int(round(signature.position / config.plane_position_tolerance)),
            magnitude=round_magnitude(record.magnitude, config),
            direction=record.direction,
            normal_bin=_normal_bin(signature, config),
        )


def _normal_bin(signature: AxisSignature, config: AuditConfig) -> Optional[Tuple[int, int, int]]:
    if signature.axis is not Axis.OBLIQUE or signature.normal is None:
        return None
    scale = 10 ** config.normal_decimals
    bx, by, bz = (int(round(c * scale)) for c in signature.normal)
    return (bx, by, bz)


@dataclass(frozen=True)
class LineGroupingKey:
    grid: str
    subtype: str
    magnitude: float
    direction: LoadDirection


@dataclass(frozen=True)
class PointGroupingKey:
    location: str
    magnitude: float
    direction: LoadDirection


GroupingKey = Union[AreaGroupingKey, LineGroupingKey, PointGroupingKey]


def round_magnitude(value: float, config: AuditConfig) -> float:
    # +0.0 so that -0.0 and 0.0 hash together
    return round(float(value), config.magnitude_decimals) + 0.0


# ---------------------------------------------------------------------------
# Decomposition
# ---------------------------------------------------------------------------

class TermKind(Enum):
    RECTANGLE = "rectangle"
    TRIANGLE = "triangle"
    SEGMENT = "segment"
    APPROXIMATE = "approximate"


@dataclass(frozen=True)
class ShapeTerm:
    """One rectangle/triangle (or segment) term of a quantity formula."""

    kind: TermKind
    width: float
    height: float
    area: float
    sign: int = 1

    def text(self) -> str:
        if self.kind is TermKind.RECTANGLE:
            return f"{format_number(self.width)}x{format_number(self.height)}"
        if self.kind is TermKind.TRIANGLE:
            if math.isclose(self.area, 0.5 * self.width * self.height, rel_tol=1e-6):
                return f"1/2x{format_number(self.width)}x{format_number(self.height)}"
            return f"tri({format_number(self.area)})"
        if self.kind is TermKind.SEGMENT:
            return f"L={format_number(self.width)}"
        return f"~{format_number(self.area)}"


@dataclass(frozen=True)
class DecompositionResult:
    terms: Tuple[ShapeTerm, ...]
    exact: bool
    strategy: str

    @property
    def term_count(self) -> int:
        return len(self.terms)

    @property
    def area(self) -> float:
        return sum(t.sign * t.area for t in self.terms)

    @property
    def formula(self) -> str:
        if not self.terms:
            return ""
        parts = [self.terms[0].text()]
        for term in self.terms[1:]:
            parts.append(("- " if term.sign < 0 else "+ ") + term.text())
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Report tree
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AuditEntry:
    """One explained row of the audit: a region, segment run or point cluster."""

    location: str
    formula: str
    quantity: float
    quantity_unit: str
    unit_load: float
    direction_label: str
    total_force: float
    force: Vec3
    element_ids: Tuple[str, ...]
    category: LoadCategory
    structural_type: str
    exact: bool = True
    explanation: str = ""


@dataclass(frozen=True)
class SkippedElement:
    element_id: str
    reason: str


@dataclass(frozen=True)
class CategoryGroup:
    category: LoadCategory
    entries: Tuple[AuditEntry, ...]
    subtotal: Vec3

    @classmethod
    def from_entries(cls, category: LoadCategory, entries: Sequence[AuditEntry]) -> "CategoryGroup":
        return cls(category=category, entries=tuple(entries),
                   subtotal=sum_vectors(e.force for e in entries))

    @property
    def element_count(self) -> int:
        return sum(len(e.element_ids) for e in self.entries)


@dataclass(frozen=True)
class StoryBucket:
    label: str
    elevation: float
    groups: Tuple[CategoryGroup, ...]
    subtotal: Vec3

    @classmethod
    def from_groups(cls, label: str, elevation: float,
                    groups: Sequence[CategoryGroup]) -> "StoryBucket":
        return cls(label=label, elevation=elevation, groups=tuple(groups),
                   subtotal=sum_vectors(g.subtotal for g in groups))


@dataclass(frozen=True)
class AuditReport:
    pattern: str
    stories: Tuple[StoryBucket, ...]
    total: Vec3
    skipped: Tuple[SkippedElement, ...] = ()
    reference_reaction: Optional[float] = None

    @classmethod
    def from_stories(
        cls,
        pattern: str,
        stories: Sequence[StoryBucket],
        skipped: Sequence[SkippedElement] = (),
        reference_reaction: Optional[float] = None,
    ) -> "AuditReport":
        return cls(pattern=pattern, stories=tuple(stories),
                   total=sum_vectors(s.subtotal for s in stories),
                   skipped=tuple(skipped), reference_reaction=reference_reaction)

    @property
    def magnitude(self) -> float:
        return math.sqrt(sum(c * c for c in self.total))

    @property
    def reaction_difference(self) -> Optional[float]:
        if self.reference_reaction is None:
            return None
        return self.magnitude - abs(self.reference_reaction)

    @property
    def reaction_difference_percent(self) -> Optional[float]:
        diff = self.reaction_difference
        if diff is None or abs(self.reference_reaction) < 1e-12:
            return None
        return diff / abs(self.reference_reaction) * 100.0

    def entries(self) -> List[AuditEntry]:
        return [e for s in self.stories for g in s.groups for e in g.entries]

    def to_dict(self) -> Dict[str, object]:
        return {
            "pattern": self.pattern,
            "total": list(self.total),
            "magnitude": self.magnitude,
            "reference_reaction": self.reference_reaction,
            "skipped": [{"element_id": s.element_id, "reason": s.reason} for s in self.skipped],
            "stories": [
                {
                    "label": story.label,
                    "elevation": story.elevation,
                    "subtotal": list(story.subtotal),
                    "groups": [
                        {
                            "category": group.category.value,
                            "subtotal": list(group.subtotal),
                            "entries": [
                                {
                                    "location": e.location,
                                    "formula": e.formula,
                                    "quantity": e.quantity,
                                    "unit": e.quantity_unit,
                                    "unit_load": e.unit_load,
                                    "direction": e.direction_label,
                                    "total_force": e.total_force,
                                    "force": list(e.force),
                                    "elements": list(e.element_ids),
                                    "structural_type": e.structural_type,
                                    "exact": e.exact,
                                }
                                for e in group.entries
                            ],
                        }
                        for group in story.groups
                    ],
                }
                for story in self.stories
            ],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def sum_vectors(vectors) -> Vec3:
    fx = fy = fz = 0.0
    for v in vectors:
        fx += v[0]
        fy += v[1]
        fz += v[2]
    return (fx, fy, fz)


def format_number(value: float) -> str:
    """Engineering display with at most two decimals (``4``, ``2.5``, ``0.35``)."""
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text
