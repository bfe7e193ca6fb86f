"""Snap coordinate ranges to named reference grid lines."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from load_audit.contracts import Axis, AuditConfig, ReferenceGrid, format_number

logger = logging.getLogger(__name__)

UNRESOLVED = "?"


def format_offset(label: str, offset: float, tolerance: float) -> str:
    """``label`` when within *tolerance* of the line, else ``label(+1.2m)``."""
    if abs(offset) <= tolerance:
        return label
    sign = "+" if offset > 0 else "-"
    return f"{label}({sign}{format_number(abs(offset))}m)"


def strip_offset(label: str) -> str:
    return label.split("(", 1)[0]


class GridResolver:
    """Resolves coordinates to grid labels for the X and Y reference axes."""

    def __init__(self, grids: Iterable[ReferenceGrid], config: Optional[AuditConfig] = None):
        self.config = config or AuditConfig()
        by_axis: Dict[Axis, List[ReferenceGrid]] = {Axis.X: [], Axis.Y: []}
        for grid in grids:
            if grid.axis in by_axis:
                by_axis[grid.axis].append(grid)
        # Stable sort keeps provider order for coincident coordinates
        self._grids = {
            axis: sorted(lines, key=lambda g: g.coordinate) for axis, lines in by_axis.items()
        }

    def grids(self, axis: Axis) -> Sequence[ReferenceGrid]:
        return self._grids.get(axis, [])

    def nearest(self, value: float, axis: Axis) -> Optional[ReferenceGrid]:
        lines = self.grids(axis)
        if not lines:
            return None
        # min() keeps the first (lowest coordinate) line on exact ties
        return min(lines, key=lambda g: abs(g.coordinate - value))

    def resolve_point(self, value: float, axis: Axis, tolerance: Optional[float] = None) -> str:
        return self.resolve_range(value, value, axis, tolerance=tolerance, point=True)

    def resolve_range(
        self,
        lo: float,
        hi: float,
        axis: Axis,
        tolerance: Optional[float] = None,
        point: bool = False,
    ) -> str:
        """Label for the span ``[lo, hi]`` along *axis*.

        Narrow spans (or explicit point queries) resolve to a single line;
        wider spans resolve each end independently and render ``start-end``.
        Without reference lines an explicit unresolved marker is returned.
        """
        if lo > hi:
            lo, hi = hi, lo
        tol = self.config.grid_snap_tolerance if tolerance is None else tolerance

        start = self.nearest(lo, axis)
        if start is None:
            logger.debug("No %s grids to resolve %.3f..%.3f", axis.value, lo, hi)
            return UNRESOLVED

        if point or (hi - lo) < tol:
            return format_offset(start.label, lo - start.coordinate, tol)

        end = self.nearest(hi, axis)
        if end.label == start.label:
            return format_offset(start.label, lo - start.coordinate, tol)
        return (
            f"{format_offset(start.label, lo - start.coordinate, tol)}"
            f"-{format_offset(end.label, hi - end.coordinate, tol)}"
        )

    def resolve_location(self, x: float, y: float) -> str:
        """``x/y`` label of a plan point."""
        return f"{self.resolve_point(x, Axis.X)}/{self.resolve_point(y, Axis.Y)}"

    def resolve_envelope(self, minx: float, miny: float, maxx: float, maxy: float) -> str:
        """``x-range x y-range`` label of a plan rectangle."""
        return (
            f"{self.resolve_range(minx, maxx, Axis.X)}"
            f" x {self.resolve_range(miny, maxy, Axis.Y)}"
        )
