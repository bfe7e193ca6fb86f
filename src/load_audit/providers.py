"""
Abstract data-provider interfaces consumed by the audit engine.

The engine never talks to the host structural model directly: loads come
from a LoadDataProvider and geometry/reference data from a
ModelGeometryProvider. In-memory implementations back the tests and any
embedding application that already holds the data.
"""
import logging
import types
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from load_audit.contracts import (
    Axis,
    ElementGeometry,
    RawLoadRecord,
    ReferenceGrid,
    ReferenceLevel,
)

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class ElementNotFoundError(ProviderError):
    """The model has no geometry for the requested element."""
    pass


class LoadDataProvider(ABC):
    """Source of raw load records for a load pattern."""

    @abstractmethod
    def read_all_loads(self, pattern: str) -> List[RawLoadRecord]:
        """Return every load record assigned under *pattern*.

        An empty pattern returns the records of all patterns.
        """
        ...


class ModelGeometryProvider(ABC):
    """Source of element geometry and reference grids/levels."""

    @abstractmethod
    def element_geometry(self, element_id: str) -> ElementGeometry:
        """Geometry of one element.

        Raises:
            ElementNotFoundError: If the model has no such element.
        """
        ...

    @abstractmethod
    def reference_grids(self) -> List[ReferenceGrid]:
        ...

    @abstractmethod
    def reference_levels(self) -> List[ReferenceLevel]:
        ...


class InMemoryLoadProvider(LoadDataProvider):
    """List-backed load source; patterns match case-insensitively."""

    def __init__(self, records: Iterable[RawLoadRecord] = ()):
        self._records: List[RawLoadRecord] = list(records)

    def add(self, record: RawLoadRecord) -> None:
        self._records.append(record)

    def read_all_loads(self, pattern: str) -> List[RawLoadRecord]:
        if not pattern:
            return list(self._records)
        wanted = pattern.strip().upper()
        return [r for r in self._records if r.pattern.strip().upper() == wanted]


class InMemoryGeometryProvider(ModelGeometryProvider):

    def __init__(
        self,
        elements: Optional[Mapping[str, ElementGeometry]] = None,
        grids: Iterable[ReferenceGrid] = (),
        levels: Iterable[ReferenceLevel] = (),
    ):
        self._elements: Dict[str, ElementGeometry] = dict(elements or {})
        self._grids = list(grids)
        self._levels = list(levels)

    def add_element(self, element_id: str, geometry: ElementGeometry) -> None:
        self._elements[element_id] = geometry

    def element_geometry(self, element_id: str) -> ElementGeometry:
        try:
            return self._elements[element_id]
        except KeyError:
            raise ElementNotFoundError(f"No geometry for element {element_id!r}") from None

    def reference_grids(self) -> List[ReferenceGrid]:
        return list(self._grids)

    def reference_levels(self) -> List[ReferenceLevel]:
        return list(self._levels)


@dataclass(frozen=True)
class GeometrySnapshot:
    """Read-only per-run view of model geometry, built once before processing."""

    elements: Mapping[str, ElementGeometry]
    grids: Tuple[ReferenceGrid, ...]
    levels: Tuple[ReferenceLevel, ...]
    missing: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        provider: ModelGeometryProvider,
        element_ids: Iterable[str],
    ) -> "GeometrySnapshot":
        if provider is None:
            raise ValueError("A ModelGeometryProvider is required")

        elements: Dict[str, ElementGeometry] = {}
        missing: List[str] = []
        for element_id in element_ids:
            if element_id in elements or element_id in missing:
                continue
            try:
                elements[element_id] = provider.element_geometry(element_id)
            except ElementNotFoundError:
                logger.warning("No geometry for element %s; its loads are skipped", element_id)
                missing.append(element_id)

        grids = tuple(g for axis in (Axis.X, Axis.Y) for g in _sorted_grids(provider, axis))
        levels = tuple(sorted(provider.reference_levels(), key=lambda lvl: lvl.elevation))
        logger.info("Geometry snapshot: %d elements, %d grids, %d levels, %d missing",
                    len(elements), len(grids), len(levels), len(missing))
        return cls(
            elements=types.MappingProxyType(elements),
            grids=grids,
            levels=levels,
            missing=tuple(missing),
        )

    def geometry(self, element_id: str) -> Optional[ElementGeometry]:
        return self.elements.get(element_id)

    def grids_for(self, axis: Axis) -> Sequence[ReferenceGrid]:
        return [g for g in self.grids if g.axis is axis]


def _sorted_grids(provider: ModelGeometryProvider, axis: Axis) -> List[ReferenceGrid]:
    return sorted((g for g in provider.reference_grids() if g.axis is axis),
                  key=lambda g: g.coordinate)
