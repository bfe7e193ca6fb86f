"""
Shape decomposition arbiter: shortest rectangle/triangle formula for a region.

Three additive strategies compete on every non-trivial region:

  1. Matrix   - iterative largest-rectangle extraction from an occupancy grid
  2. Slice X  - sweep unique X coordinates, merge strips sharing a Y span
  3. Slice Y  - sweep unique Y coordinates, merge strips sharing an X span

The fewest terms wins; ties go to the candidate whose largest term is
biggest, then to the order above. A subtractive candidate (envelope minus
clean voids) replaces the additive winner only when it is exact and
strictly shorter. Every function is a pure function of its input region.
"""
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.errors import GEOSException
from shapely.geometry import LineString, Polygon, box

from load_audit.contracts import (
    AuditConfig,
    Axis,
    DecompositionResult,
    ShapeTerm,
    TermKind,
)
from load_audit.geometry_primitives import (
    envelope_of,
    envelope_size,
    is_rectangle,
    is_triangle,
    polygon_parts,
    region_coordinates,
)

logger = logging.getLogger(__name__)

_COORD_DECIMALS = 9
_SPAN_DECIMALS = 6


@dataclass(frozen=True)
class _CellRect:
    area: float
    row_start: int
    row_end: int
    col_start: int
    col_end: int
    bounds: Tuple[float, float, float, float]


def decompose(
    region,
    config: Optional[AuditConfig] = None,
    loose: bool = False,
) -> DecompositionResult:
    """Decompose *region* into the shortest exact (or best-effort) formula."""
    result, _ = decompose_with_trace(region, config=config, loose=loose)
    return result


def decompose_with_trace(
    region,
    config: Optional[AuditConfig] = None,
    loose: bool = False,
) -> Tuple[DecompositionResult, Dict[str, object]]:
    """Like :func:`decompose`, also returning the arbitration evidence.

    The trace lists every evaluated alternative with its term count and
    largest term area, the selected strategy and the reason codes.
    """
    if config is None:
        config = AuditConfig()

    if isinstance(region, LineString):
        result = DecompositionResult(
            terms=(ShapeTerm(TermKind.SEGMENT, region.length, 0.0, region.length),),
            exact=not loose,
            strategy="segment",
        )
        return result, _trace([], result, ["segment"], loose)

    if region is None or region.is_empty or region.area <= 0.0:
        result = DecompositionResult(terms=(), exact=False, strategy="empty")
        return result, _trace([], result, ["empty_region"], loose)

    try:
        result, alternatives, reasons = _arbitrate(region, config)
    except (GEOSException, ValueError) as exc:
        logger.warning("Decomposition kernel error (%s); area-only formula used", exc)
        result, alternatives, reasons = approximate(region), [], ["kernel_error"]

    if loose and result.exact:
        result = replace(result, exact=False)
        reasons.append("loose_union")
    return result, _trace(alternatives, result, reasons, loose)


def _arbitrate(
    region: Polygon,
    config: AuditConfig,
) -> Tuple[DecompositionResult, List[Dict[str, object]], List[str]]:
    area = region.area
    width, height = envelope_size(region)

    if is_rectangle(region, config.rectangle_tolerance):
        exact = abs(area - width * height) <= config.exact_tolerance * area
        term = ShapeTerm(TermKind.RECTANGLE, width, height, width * height)
        return DecompositionResult((term,), exact, "rectangle"), [], ["fast_path_rectangle"]

    if is_triangle(region):
        term = ShapeTerm(TermKind.TRIANGLE, width, height, area)
        return DecompositionResult((term,), True, "triangle"), [], ["fast_path_triangle"]

    candidates = {
        "matrix": matrix_strategy(region, config),
        "slice_x": slicing_strategy(region, Axis.X, config),
        "slice_y": slicing_strategy(region, Axis.Y, config),
    }
    winner, reasons = select_additive(candidates)
    additive_terms = _largest_first(candidates[winner])
    additive = DecompositionResult(
        terms=additive_terms,
        exact=_matches_area(additive_terms, area, config),
        strategy=winner,
    )

    alternatives = [
        _describe(name, terms, _matches_area(terms, area, config))
        for name, terms in candidates.items()
    ]

    solid_fraction = area / (width * height)
    if solid_fraction > config.subtractive_solid_fraction:
        subtractive = subtractive_candidate(region, config)
        alternatives.append(_describe("subtractive", subtractive.terms, subtractive.exact))
        if subtractive.exact and subtractive.term_count < additive.term_count:
            logger.debug("Subtractive %d terms beats %s %d terms",
                         subtractive.term_count, winner, additive.term_count)
            return subtractive, alternatives, reasons + ["subtractive_fewer_terms"]
    else:
        reasons.append("solid_fraction_below_subtractive")

    if not additive.exact:
        return approximate(region), alternatives, reasons + ["additive_inexact"]
    return additive, alternatives, reasons


# ─── Additive strategies ─────────────────────────────────────────────────────

def matrix_strategy(region: Polygon, config: Optional[AuditConfig] = None) -> List[ShapeTerm]:
    """Repeatedly extract the largest occupied rectangle from a cell grid.

    Breakpoints are the region's distinct vertex coordinates; a cell is
    occupied when its centroid lies in the region. The working grid is
    local to this call.
    """
    if config is None:
        config = AuditConfig()
    coords = np.round(region_coordinates(region), _COORD_DECIMALS)
    xs = np.unique(coords[:, 0])
    ys = np.unique(coords[:, 1])
    if len(xs) < 2 or len(ys) < 2:
        width, height = envelope_size(region)
        return [ShapeTerm(TermKind.RECTANGLE, width, height, width * height)]

    cx = (xs[:-1] + xs[1:]) / 2.0
    cy = (ys[:-1] + ys[1:]) / 2.0
    grid_x, grid_y = np.meshgrid(cx, cy)            # (rows, cols)
    work = np.asarray(shapely.intersects_xy(region, grid_x, grid_y), dtype=bool)

    terms: List[ShapeTerm] = []
    while True:
        rect = _largest_rectangle(work, xs, ys)
        if rect is None or rect.area <= config.min_piece_area:
            break
        minx, miny, maxx, maxy = rect.bounds
        terms.append(ShapeTerm(TermKind.RECTANGLE, maxx - minx, maxy - miny, rect.area))
        work[rect.row_start:rect.row_end, rect.col_start:rect.col_end] = False
    return terms


def _largest_rectangle(matrix: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> Optional[_CellRect]:
    """Histogram-expansion scan for the largest real-area occupied rectangle."""
    rows, cols = matrix.shape
    heights = np.zeros(cols, dtype=int)
    best: Optional[_CellRect] = None

    for r in range(rows):
        heights = np.where(matrix[r], heights + 1, 0)
        for c in range(cols):
            h = heights[c]
            if h == 0:
                continue
            row_start = r - h + 1
            real_h = ys[r + 1] - ys[row_start]

            left = c
            while left > 0 and heights[left - 1] >= h:
                left -= 1
            right = c
            while right < cols - 1 and heights[right + 1] >= h:
                right += 1

            area = float((xs[right + 1] - xs[left]) * real_h)
            if best is None or area > best.area:
                best = _CellRect(
                    area=area,
                    row_start=row_start,
                    row_end=r + 1,
                    col_start=left,
                    col_end=right + 1,
                    bounds=(float(xs[left]), float(ys[row_start]),
                            float(xs[right + 1]), float(ys[r + 1])),
                )
    return best


def slicing_strategy(
    region: Polygon,
    axis: Axis,
    config: Optional[AuditConfig] = None,
) -> List[ShapeTerm]:
    """Cut the region into strips at each unique coordinate along *axis*.

    Every connected strip piece contributes its envelope; adjacent pieces
    sharing the same cross-axis span are merged back together.
    """
    if config is None:
        config = AuditConfig()
    column = 0 if axis is Axis.X else 1
    coords = np.round(region_coordinates(region), _COORD_DECIMALS)
    splits = np.unique(coords[:, column])
    minx, miny, maxx, maxy = region.bounds

    pieces: List[Tuple[float, float, float, float]] = []
    for a, b in zip(splits[:-1], splits[1:]):
        strip = box(a, miny, b, maxy) if axis is Axis.X else box(minx, a, maxx, b)
        for part in polygon_parts(region.intersection(strip)):
            if part.area > config.min_piece_area:
                pieces.append(part.bounds)

    merged = merge_strips(pieces, axis, config.strip_gap_tolerance)
    return [
        ShapeTerm(TermKind.RECTANGLE, b[2] - b[0], b[3] - b[1], (b[2] - b[0]) * (b[3] - b[1]))
        for b in merged
    ]


def merge_strips(
    strips: Sequence[Tuple[float, float, float, float]],
    axis: Axis,
    gap_tolerance: float,
) -> List[Tuple[float, float, float, float]]:
    """Merge adjacent strip envelopes along *axis* when their cross spans match."""
    if not strips:
        return []

    groups: Dict[Tuple[float, float], List[Tuple[float, float, float, float]]] = {}
    for s in strips:
        if axis is Axis.X:
            span = (round(s[1], _SPAN_DECIMALS), round(s[3], _SPAN_DECIMALS))
        else:
            span = (round(s[0], _SPAN_DECIMALS), round(s[2], _SPAN_DECIMALS))
        groups.setdefault(span, []).append(s)

    lo, hi = (0, 2) if axis is Axis.X else (1, 3)
    result = []
    for members in groups.values():
        ordered = sorted(members, key=lambda s: s[lo])
        current = ordered[0]
        for nxt in ordered[1:]:
            if abs(current[hi] - nxt[lo]) < gap_tolerance:
                current = (
                    min(current[0], nxt[0]), min(current[1], nxt[1]),
                    max(current[2], nxt[2]), max(current[3], nxt[3]),
                )
            else:
                result.append(current)
                current = nxt
        result.append(current)
    return result


def select_additive(candidates: Dict[str, List[ShapeTerm]]) -> Tuple[str, List[str]]:
    """Fewest terms, then largest single term, then candidate order."""
    fewest = min(len(terms) for terms in candidates.values())
    tied = [name for name, terms in candidates.items() if len(terms) == fewest]
    if len(tied) == 1:
        return tied[0], ["min_term_count"]
    winner = max(tied, key=lambda name: max((t.area for t in candidates[name]), default=0.0))
    return winner, ["min_term_count", "largest_term_tiebreak"]


# ─── Subtractive strategy ────────────────────────────────────────────────────

def subtractive_candidate(region: Polygon, config: Optional[AuditConfig] = None) -> DecompositionResult:
    """Envelope minus each void, exact only if every void is a clean shape."""
    if config is None:
        config = AuditConfig()
    envelope = envelope_of(region)
    width, height = envelope_size(region)
    outer = ShapeTerm(TermKind.RECTANGLE, width, height, width * height)

    voids: List[ShapeTerm] = []
    for void in polygon_parts(envelope.difference(region)):
        if void.area < config.min_area:
            continue
        vw, vh = envelope_size(void)
        if is_rectangle(void, config.exact_tolerance):
            voids.append(ShapeTerm(TermKind.RECTANGLE, vw, vh, vw * vh, sign=-1))
        elif is_triangle(void):
            voids.append(ShapeTerm(TermKind.TRIANGLE, vw, vh, void.area, sign=-1))
        else:
            return DecompositionResult(terms=(), exact=False, strategy="subtractive")

    terms = (outer,) + _largest_first(voids)
    result = DecompositionResult(terms=terms, exact=True, strategy="subtractive")
    if abs(result.area - region.area) > config.exact_tolerance * region.area:
        return replace(result, exact=False)
    return result


# ─── Helpers ─────────────────────────────────────────────────────────────────

def approximate(region: Polygon) -> DecompositionResult:
    """Area-only formula for regions with no clean decomposition."""
    width, height = envelope_size(region)
    term = ShapeTerm(TermKind.APPROXIMATE, width, height, region.area)
    return DecompositionResult(terms=(term,), exact=False, strategy="approximate")


def _largest_first(terms: Sequence[ShapeTerm]) -> Tuple[ShapeTerm, ...]:
    return tuple(sorted(terms, key=lambda t: t.area, reverse=True))


def _matches_area(terms: Sequence[ShapeTerm], area: float, config: AuditConfig) -> bool:
    total = sum(t.sign * t.area for t in terms)
    return abs(total - area) <= config.exact_tolerance * area


def _describe(name: str, terms: Sequence[ShapeTerm], exact: bool) -> Dict[str, object]:
    return {
        "strategy": name,
        "term_count": len(terms),
        "largest_term_area": max((t.area for t in terms), default=0.0),
        "exact": bool(exact),
    }


def _trace(
    alternatives: List[Dict[str, object]],
    result: DecompositionResult,
    reasons: List[str],
    loose: bool,
) -> Dict[str, object]:
    return {
        "alternatives": alternatives,
        "selected": result.strategy,
        "formula": result.formula,
        "term_count": result.term_count,
        "exact": result.exact,
        "loose": loose,
        "reason_codes": list(reasons),
    }
