"""Load aggregation pipeline: raw records -> Story -> Category -> Entry.

One audit run is a single synchronous pass. The geometry snapshot is built
once up front; every later stage only reads it. Entry force vectors are
the per-record signed forces summed in record order, and every subtotal is
the plain sum of its children, so the report reconciles at each level.
"""

from __future__ import annotations

import logging
import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from shapely.ops import substring

from load_audit.audit import (
    PHASE_AGGREGATION,
    PHASE_GROUPING,
    PHASE_STORY_BUCKETING,
    AuditTrail,
)
from load_audit.contracts import (
    AreaGeometry,
    AreaGroupingKey,
    AuditConfig,
    AuditEntry,
    AuditReport,
    Axis,
    AxisSignature,
    CategoryGroup,
    LineGeometry,
    LineGroupingKey,
    LoadCategory,
    LoadDirection,
    PointGeometry,
    PointGroupingKey,
    RawLoadRecord,
    SkippedElement,
    StoryBucket,
    Vec3,
    format_number,
    round_magnitude,
    sum_vectors,
)
from load_audit.footprint_union import (
    FootprintGroup,
    FootprintMember,
    UnionedRegion,
    area_footprint,
    line_footprint,
    union_footprints,
)
from load_audit.geometry_primitives import surface_area_3d
from load_audit.grid_resolver import GridResolver, strip_offset
from load_audit.plane_classifier import classify_area, structural_type_for
from load_audit.providers import GeometrySnapshot, LoadDataProvider, ModelGeometryProvider
from load_audit.shape_decomposer import decompose_with_trace
from load_audit.story_bucketer import ElevationBucket, bucket_records

logger = logging.getLogger(__name__)

COLUMN_ELEMENTS = "Column Elements"
BEAM_ELEMENTS = "Beam Elements"
POINT_ELEMENTS = "Point Elements"

_PATTERN_SEPARATORS = re.compile(r"[,;\s]+")
_LOCATION_SEPARATORS = re.compile(r"[\s\-x/,]+")
_OFFSET_ANNOTATION = re.compile(r"\([^)]*\)")
_LOCATION_KEYWORDS = {"GRID", "DIAGONAL", "AT", "NO"}
_DIRECTION_RANK = {"+X": 1, "-X": 2, "+Y": 3, "-Y": 4}


@dataclass
class _RunContext:
    """Per-run, read-only inputs shared by every story."""

    pattern: str
    snapshot: GeometrySnapshot
    resolver: GridResolver
    config: AuditConfig
    audit: Optional[AuditTrail] = None


# ─── Public entry points ─────────────────────────────────────────────────────

def split_patterns(patterns: str) -> List[str]:
    """``"dl, SDL;LL dl"`` -> ``["DL", "SDL", "LL"]`` (first occurrence order)."""
    names: List[str] = []
    for token in _PATTERN_SEPARATORS.split(patterns or ""):
        name = token.strip().upper()
        if name and name not in names:
            names.append(name)
    return names


def run_audits(
    patterns: str,
    load_provider: LoadDataProvider,
    geometry_provider: ModelGeometryProvider,
    config: Optional[AuditConfig] = None,
    audit: Optional[AuditTrail] = None,
    reference_reactions: Optional[Dict[str, float]] = None,
) -> List[AuditReport]:
    """Run one audit per pattern named in *patterns*."""
    reference_reactions = {k.upper(): v for k, v in (reference_reactions or {}).items()}
    return [
        run_audit(
            name,
            load_provider,
            geometry_provider,
            config=config,
            audit=audit,
            reference_reaction=reference_reactions.get(name),
        )
        for name in split_patterns(patterns)
    ]


def run_audit(
    pattern: str,
    load_provider: LoadDataProvider,
    geometry_provider: ModelGeometryProvider,
    config: Optional[AuditConfig] = None,
    audit: Optional[AuditTrail] = None,
    reference_reaction: Optional[float] = None,
) -> AuditReport:
    """Build the aggregation tree for one load pattern.

    Data-quality problems never raise: the offending element is recorded on
    ``report.skipped`` and the run continues. Missing providers are contract
    violations and raise ``ValueError``.
    """
    if load_provider is None or geometry_provider is None:
        raise ValueError("Both a load provider and a geometry provider are required")
    if config is None:
        config = AuditConfig()

    records = list(load_provider.read_all_loads(pattern))
    logger.info("Auditing pattern %r: %d load records", pattern, len(records))
    if not records:
        return AuditReport.from_stories(pattern, [], reference_reaction=reference_reaction)

    snapshot = GeometrySnapshot.build(geometry_provider, (r.element_id for r in records))
    ctx = _RunContext(
        pattern=pattern,
        snapshot=snapshot,
        resolver=GridResolver(snapshot.grids, config),
        config=config,
        audit=audit,
    )
    skipped: List[SkippedElement] = [
        SkippedElement(element_id, "missing_geometry") for element_id in snapshot.missing
    ]

    buckets = bucket_records(records, snapshot.levels, config)
    if audit is not None:
        audit.write_checkpoint(
            phase=PHASE_STORY_BUCKETING,
            scope=pattern,
            counts={"records": len(records), "stories": len(buckets)},
            invariants={"every_record_bucketed": sum(len(b.records) for b in buckets) == len(records)},
            outputs={"stories": [{"label": b.label, "elevation": b.elevation,
                                  "records": len(b.records)} for b in buckets]},
        )

    stories: List[StoryBucket] = []
    group_counts: Dict[str, int] = {c.value: 0 for c in LoadCategory}
    for bucket in buckets:
        story = _audit_story(bucket, ctx, skipped, group_counts)
        if story.groups:
            stories.append(story)
        else:
            logger.debug("Story %s produced no entries", bucket.label)

    if audit is not None:
        audit.write_checkpoint(
            phase=PHASE_GROUPING,
            scope=pattern,
            counts=dict(group_counts, skipped=len(skipped)),
            invariants={"skipped_recorded": all(s.reason for s in skipped)},
        )

    report = AuditReport.from_stories(pattern, stories, skipped=skipped,
                                      reference_reaction=reference_reaction)
    entry_count = len(report.entries())
    logger.info("Pattern %r: %d stories, %d entries, %d skipped, total=(%.3f, %.3f, %.3f)",
                pattern, len(report.stories), entry_count, len(skipped), *report.total)

    if audit is not None:
        audit.write_checkpoint(
            phase=PHASE_AGGREGATION,
            scope=pattern,
            counts={"stories": len(report.stories), "entries": entry_count},
            invariants=reconciliation_checks(report),
            outputs={"total": list(report.total), "magnitude": report.magnitude},
        )
    return report


def reconciliation_checks(report: AuditReport, abs_tol: float = 1e-9) -> Dict[str, bool]:
    """Vector-sum invariants of a report tree, one flag per level."""
    def same(a: Vec3, b: Vec3) -> bool:
        return all(math.isclose(x, y, rel_tol=1e-12, abs_tol=abs_tol) for x, y in zip(a, b))

    groups_ok = all(
        same(g.subtotal, sum_vectors(e.force for e in g.entries))
        for s in report.stories for g in s.groups
    )
    stories_ok = all(same(s.subtotal, sum_vectors(g.subtotal for g in s.groups))
                     for s in report.stories)
    total_ok = same(report.total, sum_vectors(s.subtotal for s in report.stories))
    return {"group_subtotals": groups_ok, "story_subtotals": stories_ok, "report_total": total_ok}


# ─── Story level ─────────────────────────────────────────────────────────────

def _audit_story(
    bucket: ElevationBucket,
    ctx: _RunContext,
    skipped: List[SkippedElement],
    group_counts: Dict[str, int],
) -> StoryBucket:
    by_category: Dict[LoadCategory, List[Tuple[RawLoadRecord, object]]] = {c: [] for c in LoadCategory}
    for record in bucket.records:
        geometry = ctx.snapshot.geometry(record.element_id)
        if geometry is None:
            continue
        # The element's geometry decides the processing path
        if geometry.category is not record.category:
            logger.info("Rerouting %s load on %s to %s processing",
                        record.category.value, record.element_id, geometry.category.value)
        by_category[geometry.category].append((record, geometry))

    groups: List[CategoryGroup] = []
    for category, items in by_category.items():
        if not items:
            continue
        if category is LoadCategory.AREA:
            entries = _area_entries(items, bucket.label, ctx, skipped, group_counts)
        elif category is LoadCategory.LINE:
            entries = _line_entries(items, bucket.label, ctx, skipped, group_counts)
        else:
            entries = _point_entries(items, ctx, group_counts)
        if entries:
            groups.append(CategoryGroup.from_entries(category, sort_entries(entries)))

    story = StoryBucket.from_groups(bucket.label, bucket.elevation, groups)
    logger.debug("Story %s: %d groups, subtotal=(%.3f, %.3f, %.3f)",
                 story.label, len(groups), *story.subtotal)
    return story


# ─── Area loads ──────────────────────────────────────────────────────────────

def _area_entries(
    items: Sequence[Tuple[RawLoadRecord, AreaGeometry]],
    story: str,
    ctx: _RunContext,
    skipped: List[SkippedElement],
    group_counts: Dict[str, int],
) -> List[AuditEntry]:
    config = ctx.config
    groups: "OrderedDict[AreaGroupingKey, FootprintGroup]" = OrderedDict()
    signatures: Dict[AreaGroupingKey, AxisSignature] = {}

    for record, geometry in items:
        footprint = area_footprint(geometry)
        if footprint is None or footprint.area <= 0.0:
            logger.warning("Degenerate area element %s skipped", record.element_id)
            skipped.append(SkippedElement(record.element_id, "degenerate_geometry"))
            continue
        signature = classify_area(geometry, config)
        key = AreaGroupingKey.build(signature, record, config)
        xs = [v[0] for v in geometry.vertices]
        ys = [v[1] for v in geometry.vertices]
        member = FootprintMember(
            record=record,
            footprint=footprint,
            quantity=surface_area_3d(geometry.vertices),
            bounds_xy=(min(xs), min(ys), max(xs), max(ys)),
        )
        groups.setdefault(key, FootprintGroup(key=key)).members.append(member)
        signatures.setdefault(key, signature)

    group_counts[LoadCategory.AREA.value] += len(groups)
    entries: List[AuditEntry] = []
    for key, group in groups.items():
        logger.debug("Area group %s: %d members", key, len(group.members))
        if sum(m.quantity for m in group.members) < config.min_area:
            logger.warning("Area group %s below minimum area; %d elements skipped",
                           key, len(group.members))
            skipped.extend(SkippedElement(m.record.element_id, "below_min_area")
                           for m in group.members)
            continue

        regions = union_footprints(group, config)
        if ctx.audit is not None and any(r.loose for r in regions):
            ctx.audit.record_loose_union(
                pattern=ctx.pattern,
                story=story,
                element_ids=[m.record.element_id for m in group.members],
                group_key=repr(key),
            )
        signature = signatures[key]
        for region in regions:
            entries.append(_area_entry(region, key, signature, story, ctx))
    return entries


def _area_entry(
    region: UnionedRegion,
    key: AreaGroupingKey,
    signature: AxisSignature,
    story: str,
    ctx: _RunContext,
) -> AuditEntry:
    result, trace = decompose_with_trace(region.geometry, ctx.config, loose=region.loose)
    if ctx.audit is not None:
        ctx.audit.record_decomposition(
            pattern=ctx.pattern,
            story=story,
            element_ids=region.element_ids,
            trace=trace,
        )
    force, total = _sum_forces(((m.record, m.quantity) for m in region.members), signature)
    return AuditEntry(
        location=ctx.resolver.resolve_envelope(*region.bounds_xy),
        formula=result.formula,
        quantity=region.quantity,
        quantity_unit="m2",
        unit_load=key.magnitude,
        direction_label=direction_label(force),
        total_force=total,
        force=force,
        element_ids=region.element_ids,
        category=LoadCategory.AREA,
        structural_type=structural_type_for(signature),
        exact=result.exact,
        explanation="" if result.exact else f"inexact ({result.strategy})",
    )


# ─── Line loads ──────────────────────────────────────────────────────────────

def covered_span(record: RawLoadRecord, geometry: LineGeometry, config: AuditConfig) -> Tuple[float, float]:
    """Loaded sub-span ``(start, end)`` in metres along the member.

    Relative distributions are fractions of the member length; a zero-length
    distribution covers the whole member. The span is clamped to the member.
    """
    length = geometry.length
    if record.relative:
        start, end = record.dist_start * length, record.dist_end * length
    else:
        start, end = record.dist_start, record.dist_end
    if abs(end - start) < config.exact_tolerance:
        return 0.0, length
    lo, hi = sorted((start, end))
    return max(0.0, lo), min(length, hi)


def line_orientation(geometry: LineGeometry, config: AuditConfig) -> Axis:
    """Z for columns, X/Y for members running along that axis, else OBLIQUE."""
    if geometry.rise > config.column_rise_threshold or geometry.plan_length <= config.exact_tolerance:
        return Axis.Z
    angle = abs(math.atan2(geometry.end[1] - geometry.start[1], geometry.end[0] - geometry.start[0]))
    tol = config.line_angle_tolerance
    if angle < tol or abs(angle - math.pi) < tol:
        return Axis.X
    if abs(angle - math.pi / 2) < tol:
        return Axis.Y
    return Axis.OBLIQUE


def primary_grid(geometry: LineGeometry, orientation: Axis, resolver: GridResolver) -> str:
    """Grid line a member runs along (``Grid A``, ``Grid 2``, ``Diagonal 2-A``)."""
    if orientation is Axis.Z:
        return resolver.resolve_location(geometry.start[0], geometry.start[1])
    mid_x = (geometry.start[0] + geometry.end[0]) / 2.0
    mid_y = (geometry.start[1] + geometry.end[1]) / 2.0
    if orientation is Axis.X:
        return f"Grid {resolver.resolve_point(mid_y, Axis.Y)}"
    if orientation is Axis.Y:
        return f"Grid {resolver.resolve_point(mid_x, Axis.X)}"
    return f"Diagonal {resolver.resolve_point(mid_x, Axis.X)}-{resolver.resolve_point(mid_y, Axis.Y)}"


def _line_entries(
    items: Sequence[Tuple[RawLoadRecord, LineGeometry]],
    story: str,
    ctx: _RunContext,
    skipped: List[SkippedElement],
    group_counts: Dict[str, int],
) -> List[AuditEntry]:
    config = ctx.config
    groups: "OrderedDict[LineGroupingKey, FootprintGroup]" = OrderedDict()
    orientations: Dict[LineGroupingKey, Axis] = {}

    for record, geometry in items:
        length = geometry.length
        if length <= config.exact_tolerance:
            logger.warning("Zero-length line element %s skipped", record.element_id)
            skipped.append(SkippedElement(record.element_id, "degenerate_geometry"))
            continue
        orientation = line_orientation(geometry, config)
        vertical = orientation is Axis.Z
        footprint = line_footprint(geometry, vertical)
        if footprint is None:
            skipped.append(SkippedElement(record.element_id, "degenerate_geometry"))
            continue

        start, end = covered_span(record, geometry, config)
        if end - start <= config.exact_tolerance:
            logger.warning("Load distribution on %s lies outside the member; skipped",
                           record.element_id)
            skipped.append(SkippedElement(record.element_id, "empty_distribution"))
            continue
        partial = start > config.strip_gap_tolerance or (length - end) > config.strip_gap_tolerance
        if partial:
            footprint = substring(footprint, start / length, end / length, normalized=True)
        p0, p1 = _point_along(geometry, start / length), _point_along(geometry, end / length)

        key = LineGroupingKey(
            grid=primary_grid(geometry, orientation, ctx.resolver),
            subtype=COLUMN_ELEMENTS if vertical else BEAM_ELEMENTS,
            magnitude=round_magnitude(record.magnitude, config),
            direction=record.direction,
        )
        member = FootprintMember(
            record=record,
            footprint=footprint,
            quantity=end - start,
            bounds_xy=(min(p0[0], p1[0]), min(p0[1], p1[1]), max(p0[0], p1[0]), max(p0[1], p1[1])),
            partial_span=(start, end) if partial else None,
        )
        groups.setdefault(key, FootprintGroup(key=key)).members.append(member)
        orientations.setdefault(key, orientation)

    group_counts[LoadCategory.LINE.value] += len(groups)
    entries: List[AuditEntry] = []
    for key, group in groups.items():
        logger.debug("Line group %s: %d members", key, len(group.members))
        for region in union_footprints(group, config):
            result, trace = decompose_with_trace(region.geometry, config, loose=region.loose)
            if ctx.audit is not None:
                ctx.audit.record_decomposition(
                    pattern=ctx.pattern,
                    story=story,
                    element_ids=region.element_ids,
                    trace=trace,
                )
            force, total = _sum_forces((m.record, m.quantity) for m in region.members)
            cross = cross_axis_range(region, orientations[key], ctx.resolver)
            entries.append(AuditEntry(
                location=f"{key.grid} x {cross}",
                formula=result.formula,
                quantity=region.quantity,
                quantity_unit="m",
                unit_load=key.magnitude,
                direction_label=direction_label(force),
                total_force=total,
                force=force,
                element_ids=region.element_ids,
                category=LoadCategory.LINE,
                structural_type=key.subtype,
                exact=result.exact,
                explanation=", ".join(
                    f"{m.record.element_id}[{format_number(m.partial_span[0])}-"
                    f"{format_number(m.partial_span[1])}]"
                    for m in region.members if m.partial_span is not None
                ),
            ))
    return entries


def cross_axis_range(region: UnionedRegion, orientation: Axis, resolver: GridResolver) -> str:
    """Extent of a member run across the grid lines it passes (``at 2`` or ``1-3``)."""
    if orientation is Axis.Z:
        # Column footprints are laid along the elevation axis
        z_lo, _, z_hi, _ = region.geometry.bounds
        return f"Z={format_number(z_lo)}-{format_number(z_hi)}m"
    minx, miny, maxx, maxy = region.bounds_xy
    if orientation is Axis.X:
        axis, lo, hi = Axis.X, minx, maxx
    else:
        axis, lo, hi = Axis.Y, miny, maxy
    start = resolver.resolve_point(lo, axis)
    end = resolver.resolve_point(hi, axis)
    if start == end:
        return f"at {start}"
    return f"{strip_offset(start)}-{strip_offset(end)}"


def _point_along(geometry: LineGeometry, t: float) -> Vec3:
    return tuple(a + (b - a) * t for a, b in zip(geometry.start, geometry.end))


# ─── Point loads ─────────────────────────────────────────────────────────────

def _point_entries(
    items: Sequence[Tuple[RawLoadRecord, PointGeometry]],
    ctx: _RunContext,
    group_counts: Dict[str, int],
) -> List[AuditEntry]:
    groups: "OrderedDict[PointGroupingKey, List[Tuple[RawLoadRecord, PointGeometry]]]" = OrderedDict()
    for record, geometry in items:
        key = PointGroupingKey(
            location=ctx.resolver.resolve_location(geometry.coord[0], geometry.coord[1]),
            magnitude=round_magnitude(record.magnitude, ctx.config),
            direction=record.direction,
        )
        groups.setdefault(key, []).append((record, geometry))

    group_counts[LoadCategory.POINT.value] += len(groups)
    entries: List[AuditEntry] = []
    for key, members in groups.items():
        records = [r for r, _ in members]
        force, total = _sum_forces((r, 1.0) for r in records)
        ordered = order_points(members)
        entries.append(AuditEntry(
            location=key.location,
            formula=str(len(members)),
            quantity=float(len(members)),
            quantity_unit="ea",
            unit_load=key.magnitude,
            direction_label=direction_label(force),
            total_force=total,
            force=force,
            element_ids=tuple(dict.fromkeys(r.element_id for r, _ in ordered)),
            category=LoadCategory.POINT,
            structural_type=POINT_ELEMENTS,
        ))
    return entries


def order_points(members: Sequence[Tuple[RawLoadRecord, PointGeometry]]):
    """Sort point members along whichever plan axis they spread over more."""
    if len(members) <= 1:
        return list(members)
    xs = [g.coord[0] for _, g in members]
    ys = [g.coord[1] for _, g in members]
    index = 0 if (max(xs) - min(xs)) > (max(ys) - min(ys)) else 1
    return sorted(members, key=lambda m: m[1].coord[index])


# ─── Forces ──────────────────────────────────────────────────────────────────

def resolve_force(
    record: RawLoadRecord,
    quantity: float,
    signature: Optional[AxisSignature] = None,
) -> Tuple[Vec3, float]:
    """Signed force vector and signed total for one record.

    Gravity acts along -Z; global directions act along their axis; a
    locally projected load follows the element's outward axis and sign,
    falling back to vertical when the element has no dominant axis.
    """
    total = record.magnitude * quantity
    direction = record.direction
    if direction is LoadDirection.GRAVITY:
        return (0.0, 0.0, -total), total
    if direction is LoadDirection.GLOBAL_X:
        return (total, 0.0, 0.0), total
    if direction is LoadDirection.GLOBAL_Y:
        return (0.0, total, 0.0), total
    if direction is LoadDirection.GLOBAL_Z:
        return (0.0, 0.0, total), total
    if direction is not LoadDirection.LOCAL_PROJECTED:
        raise TypeError(f"Unknown load direction {direction!r}")

    if signature is not None and signature.axis in (Axis.X, Axis.Y, Axis.Z):
        signed = total * signature.sign
        if signature.axis is Axis.X:
            return (signed, 0.0, 0.0), signed
        if signature.axis is Axis.Y:
            return (0.0, signed, 0.0), signed
        return (0.0, 0.0, signed), signed
    return (0.0, 0.0, total), total


def direction_label(force: Vec3) -> str:
    """``+X``/``-X``/``+Y``/``-Y``/``+Z``/``-Z`` of the dominant component."""
    index = max(range(3), key=lambda i: abs(force[i]))
    if force[index] == 0.0:
        return "0"
    return ("+" if force[index] > 0 else "-") + "XYZ"[index]


def _sum_forces(
    pairs: Iterable[Tuple[RawLoadRecord, float]],
    signature: Optional[AxisSignature] = None,
) -> Tuple[Vec3, float]:
    vectors: List[Vec3] = []
    total = 0.0
    for record, quantity in pairs:
        vector, signed = resolve_force(record, quantity, signature)
        vectors.append(vector)
        total += signed
    return sum_vectors(vectors), total


# ─── Ordering ────────────────────────────────────────────────────────────────

def _location_tokens(location: str) -> List[str]:
    main = _OFFSET_ANNOTATION.sub("", location or "")
    return [t for t in _LOCATION_SEPARATORS.split(main) if t]


def entry_sort_key(entry: AuditEntry) -> Tuple[int, str, float]:
    """Direction (+X, -X, +Y, -Y, others), first grid letter, lowest grid number."""
    tokens = _location_tokens(entry.location)
    alphas = sorted(
        t for t in tokens
        if t[0].isalpha() and t.upper() not in _LOCATION_KEYWORDS and not t.startswith("Z=")
    )
    numbers: List[float] = []
    for token in tokens:
        try:
            numbers.append(float(token))
        except ValueError:
            continue
    return (
        _DIRECTION_RANK.get(entry.direction_label, 5),
        alphas[0] if alphas else "ZZZ",
        min(numbers) if numbers else math.inf,
    )


def sort_entries(entries: Sequence[AuditEntry]) -> List[AuditEntry]:
    return sorted(entries, key=entry_sort_key)
