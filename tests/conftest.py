"""
Shared test fixtures for the load-audit engine tests.
"""
import sys
from pathlib import Path

import pytest
from shapely.geometry import Polygon

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from load_audit.contracts import (
    AreaGeometry,
    AuditConfig,
    Axis,
    LineGeometry,
    LoadCategory,
    LoadDirection,
    PointGeometry,
    RawLoadRecord,
    ReferenceGrid,
    ReferenceLevel,
)
from load_audit.grid_resolver import GridResolver
from load_audit.providers import InMemoryGeometryProvider, InMemoryLoadProvider


@pytest.fixture
def config():
    return AuditConfig()


@pytest.fixture
def grids():
    """X lines 1-4 at 0/5/10/15 m, Y lines A-C at 0/4/8 m."""
    x_lines = [ReferenceGrid(label, coord, Axis.X)
               for label, coord in zip("1234", (0.0, 5.0, 10.0, 15.0))]
    y_lines = [ReferenceGrid(label, coord, Axis.Y)
               for label, coord in zip("ABC", (0.0, 4.0, 8.0))]
    return x_lines + y_lines


@pytest.fixture
def levels():
    return [
        ReferenceLevel("Base", 0.0),
        ReferenceLevel("L1", 3.1),
        ReferenceLevel("L2", 6.2),
    ]


@pytest.fixture
def resolver(grids, config):
    return GridResolver(grids, config)


@pytest.fixture
def hole_slab():
    """10x10 m slab with a centred 2x2 m opening."""
    return Polygon(
        [(0, 0), (10, 0), (10, 10), (0, 10)],
        holes=[[(4, 4), (6, 4), (6, 6), (4, 6)]],
    )


@pytest.fixture
def l_shape():
    """A 4x3 m rectangle with a 2x3 m rectangle sharing its top-left edge."""
    return Polygon([(0, 0), (4, 0), (4, 3), (2, 3), (2, 6), (0, 6)])


def slab(x0, y0, x1, y1, z=3.1):
    """Horizontal rectangular slab, counter-clockwise seen from above."""
    return AreaGeometry(vertices=((x0, y0, z), (x1, y0, z), (x1, y1, z), (x0, y1, z)))


def area_load(element_id, magnitude=2.0, z=3.1, pattern="DL",
              direction=LoadDirection.GRAVITY, category=LoadCategory.AREA):
    return RawLoadRecord(element_id=element_id, category=category, magnitude=magnitude,
                         direction=direction, elevation=z, pattern=pattern)


def line_load(element_id, magnitude=5.0, z=3.1, pattern="DL",
              direction=LoadDirection.GRAVITY, dist_start=0.0, dist_end=0.0, relative=True):
    return RawLoadRecord(element_id=element_id, category=LoadCategory.LINE, magnitude=magnitude,
                         direction=direction, elevation=z, pattern=pattern,
                         dist_start=dist_start, dist_end=dist_end, relative=relative)


def point_load(element_id, magnitude=10.0, z=3.1, pattern="DL",
               direction=LoadDirection.GRAVITY):
    return RawLoadRecord(element_id=element_id, category=LoadCategory.POINT, magnitude=magnitude,
                         direction=direction, elevation=z, pattern=pattern)


@pytest.fixture
def make_providers(grids, levels):
    """Factory: ``make_providers(records, elements)`` -> (load, geometry) providers."""
    def _make(records, elements):
        return (
            InMemoryLoadProvider(records),
            InMemoryGeometryProvider(elements, grids=grids, levels=levels),
        )
    return _make


@pytest.fixture
def beam():
    return LineGeometry(start=(0.0, 0.0, 3.1), end=(10.0, 0.0, 3.1))


@pytest.fixture
def column():
    return LineGeometry(start=(5.0, 4.0, 0.0), end=(5.0, 4.0, 3.1))


@pytest.fixture
def node():
    return PointGeometry(coord=(10.0, 8.0, 3.1))
