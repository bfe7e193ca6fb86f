"""
Core geometry helpers for footprint union and decomposition.

Built on Shapely for 2D polygon operations and numpy for the 3D vector
math. Provides best-plane projection of element boundaries, Newell normals
and areas, and conversions between vertex lists and Shapely geometries.
"""
from typing import List, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry import LineString, MultiPolygon, Polygon, box

from load_audit.contracts import Vec2, Vec3


def project_to_best_plane(vertices: Sequence[Vec3]) -> List[Vec2]:
    """Project a 3D boundary onto the coordinate plane with the most information.

    The axis with the smallest span is dropped, so vertical walls keep their
    full outline instead of collapsing onto a line in plan. Vertex order and
    winding are preserved.
    """
    pts = np.asarray(vertices, dtype=float).reshape(-1, 3)
    if len(pts) == 0:
        return []
    span_x, span_y, span_z = np.ptp(pts, axis=0)

    if span_x <= span_y and span_x <= span_z:
        projected = pts[:, [1, 2]]      # YZ
    elif span_y <= span_x and span_y <= span_z:
        projected = pts[:, [0, 2]]      # XZ
    else:
        projected = pts[:, [0, 1]]      # XY
    return [(float(u), float(v)) for u, v in projected]


def newell_normal(vertices: Sequence[Vec3]) -> np.ndarray:
    """Unnormalised Newell normal of a (possibly non-planar) ring.

    Its length is twice the enclosed area; a zero vector means the ring is
    degenerate.
    """
    pts = np.asarray(vertices, dtype=float).reshape(-1, 3)
    if len(pts) < 3:
        return np.zeros(3)
    nxt = np.roll(pts, -1, axis=0)
    return np.array([
        np.sum((pts[:, 1] - nxt[:, 1]) * (pts[:, 2] + nxt[:, 2])),
        np.sum((pts[:, 2] - nxt[:, 2]) * (pts[:, 0] + nxt[:, 0])),
        np.sum((pts[:, 0] - nxt[:, 0]) * (pts[:, 1] + nxt[:, 1])),
    ])


def surface_area_3d(vertices: Sequence[Vec3]) -> float:
    """True surface area of a planar 3D ring, independent of orientation."""
    return float(np.linalg.norm(newell_normal(vertices)) / 2.0)


def centroid_3d(vertices: Sequence[Vec3]) -> np.ndarray:
    pts = np.asarray(vertices, dtype=float).reshape(-1, 3)
    return pts.mean(axis=0)


def polygon_from_points(points: Sequence[Vec2]) -> Optional[Polygon]:
    """Build a valid Shapely Polygon, or ``None`` for a degenerate ring."""
    if len(points) < 3:
        return None
    poly = Polygon(points)
    if not poly.is_valid:
        poly = poly.buffer(0)
        if isinstance(poly, MultiPolygon):
            poly = max(poly.geoms, key=lambda g: g.area)
    if poly.is_empty or poly.area <= 0.0:
        return None
    return poly


def segment_from_points(start: Vec2, end: Vec2) -> Optional[LineString]:
    if start == end:
        return None
    return LineString([start, end])


def polygon_parts(geom) -> List[Polygon]:
    """Explode *geom* into its non-empty Polygon members."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    parts = []
    for g in getattr(geom, "geoms", []):
        parts.extend(polygon_parts(g))
    return parts


def line_parts(geom) -> List[LineString]:
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, LineString):
        return [geom]
    parts = []
    for g in getattr(geom, "geoms", []):
        parts.extend(line_parts(g))
    return parts


def envelope_of(geom) -> Polygon:
    """Axis-aligned bounding rectangle as a Polygon."""
    minx, miny, maxx, maxy = geom.bounds
    return box(minx, miny, maxx, maxy)


def envelope_size(geom) -> Tuple[float, float]:
    minx, miny, maxx, maxy = geom.bounds
    return (maxx - minx, maxy - miny)


def is_rectangle(geom, rel_tol: float) -> bool:
    """Area matches the bounding envelope within *rel_tol*."""
    if geom.is_empty or geom.area <= 0.0:
        return False
    width, height = envelope_size(geom)
    return abs(geom.area - width * height) <= geom.area * rel_tol


def is_triangle(geom) -> bool:
    """A simple closed ring of three distinct vertices without holes."""
    if not isinstance(geom, Polygon) or geom.is_empty or geom.interiors:
        return False
    cleaned = geom.simplify(0.0)
    return len(cleaned.exterior.coords) == 4


def region_coordinates(geom) -> np.ndarray:
    """All vertex coordinates of *geom*, holes included, as an (N, 2) array."""
    return shapely.get_coordinates(geom)
