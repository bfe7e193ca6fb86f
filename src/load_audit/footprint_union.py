"""
Footprint union for groups of records sharing a grouping key.

Each member's projected footprint is merged with Shapely's unary_union.
A kernel failure degrades to a loose (unmerged) region set whose
decomposition is flagged inexact downstream; the run never aborts.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon
from shapely.ops import linemerge, unary_union

from load_audit.contracts import (
    AreaGeometry,
    AuditConfig,
    GroupingKey,
    LineGeometry,
    RawLoadRecord,
)
from load_audit.geometry_primitives import (
    line_parts,
    polygon_from_points,
    polygon_parts,
    project_to_best_plane,
    segment_from_points,
)

logger = logging.getLogger(__name__)

Footprint = Union[Polygon, LineString]


@dataclass(frozen=True)
class FootprintMember:
    """A record with its projected footprint and the quantity it contributes."""

    record: RawLoadRecord
    footprint: Footprint
    quantity: float
    bounds_xy: Tuple[float, float, float, float]
    # Covered sub-span along a line member, when only part of it is loaded
    partial_span: Optional[Tuple[float, float]] = None


@dataclass
class FootprintGroup:
    key: GroupingKey
    members: List[FootprintMember] = field(default_factory=list)


@dataclass(frozen=True)
class UnionedRegion:
    """One connected output of a union, with the records that overlap it."""

    geometry: Footprint
    members: Tuple[FootprintMember, ...]
    loose: bool = False

    @property
    def quantity(self) -> float:
        return sum(m.quantity for m in self.members)

    @property
    def element_ids(self) -> Tuple[str, ...]:
        seen = []
        for m in self.members:
            if m.record.element_id not in seen:
                seen.append(m.record.element_id)
        return tuple(seen)

    @property
    def bounds_xy(self) -> Tuple[float, float, float, float]:
        boxes = [m.bounds_xy for m in self.members]
        return (
            min(b[0] for b in boxes), min(b[1] for b in boxes),
            max(b[2] for b in boxes), max(b[3] for b in boxes),
        )


# ─── Footprints ──────────────────────────────────────────────────────────────

def area_footprint(geometry: AreaGeometry) -> Optional[Polygon]:
    """Best-plane projection of an area boundary, ``None`` if degenerate."""
    if len(geometry.vertices) < 3:
        return None
    return polygon_from_points(project_to_best_plane(geometry.vertices))


def line_footprint(geometry: LineGeometry, vertical: bool) -> Optional[LineString]:
    """Plan segment of a beam, or an elevation-axis segment for a column.

    Columns grouped together share one plan location, so their footprints
    are laid along the elevation axis where stacked members chain up.
    """
    if vertical:
        return segment_from_points((geometry.start[2], 0.0), (geometry.end[2], 0.0))
    return segment_from_points(geometry.start[:2], geometry.end[:2])


# ─── Union ───────────────────────────────────────────────────────────────────

def union_footprints(group: FootprintGroup, config: Optional[AuditConfig] = None) -> List[UnionedRegion]:
    """Union the members' footprints into maximal connected regions.

    Membership is recomputed by overlap: each member belongs to the region
    it overlaps most, so every record lands in exactly one region.
    """
    if config is None:
        config = AuditConfig()
    if not group.members:
        return []

    is_polygonal = isinstance(group.members[0].footprint, Polygon)
    try:
        merged = unary_union([m.footprint for m in group.members])
        if is_polygonal:
            parts = polygon_parts(merged)
        else:
            lines = line_parts(merged)
            parts = line_parts(linemerge(lines)) if lines else []
        overlap_table = [
            [_overlap(m.footprint, part) for part in parts] for m in group.members
        ]
    except (GEOSException, ValueError) as exc:
        logger.warning("Union failed for %s (%s); using loose footprints", group.key, exc)
        return loose_union(group)

    if not parts:
        logger.warning("Union of %d footprints is empty for %s; using loose footprints",
                       len(group.members), group.key)
        return loose_union(group)

    assigned: List[List[FootprintMember]] = [[] for _ in parts]
    for member, overlaps in zip(group.members, overlap_table):
        best = max(range(len(parts)), key=lambda i: overlaps[i])
        threshold = config.member_overlap_area if is_polygonal else config.member_overlap_distance
        if overlaps[best] <= threshold:
            best = min(range(len(parts)), key=lambda i: member.footprint.distance(parts[i]))
            logger.debug("Member %s has no measurable overlap; nearest region %d used",
                         member.record.element_id, best)
        assigned[best].append(member)

    regions = [
        UnionedRegion(geometry=part, members=tuple(members))
        for part, members in zip(parts, assigned)
        if members
    ]
    logger.debug("Union of %d footprints -> %d regions", len(group.members), len(regions))
    return regions


def loose_union(group: FootprintGroup) -> List[UnionedRegion]:
    """Every member as its own region, flagged loose."""
    return [
        UnionedRegion(geometry=m.footprint, members=(m,), loose=True)
        for m in group.members
    ]


def _overlap(footprint: Footprint, part: Footprint) -> float:
    shared = footprint.intersection(part)
    if isinstance(footprint, Polygon):
        return shared.area
    return shared.length
