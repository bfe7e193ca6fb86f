"""Public API for the structural load-audit engine."""

from load_audit.audit import AuditTrail
from load_audit.contracts import (
    AreaGeometry,
    AuditConfig,
    AuditEntry,
    AuditReport,
    LineGeometry,
    LoadCategory,
    LoadDirection,
    PointGeometry,
    RawLoadRecord,
    ReferenceGrid,
    ReferenceLevel,
)
from load_audit.pipeline import run_audit, run_audits
from load_audit.providers import (
    InMemoryGeometryProvider,
    InMemoryLoadProvider,
    LoadDataProvider,
    ModelGeometryProvider,
)

__all__ = [
    "AreaGeometry",
    "AuditConfig",
    "AuditEntry",
    "AuditReport",
    "AuditTrail",
    "InMemoryGeometryProvider",
    "InMemoryLoadProvider",
    "LineGeometry",
    "LoadCategory",
    "LoadDataProvider",
    "LoadDirection",
    "ModelGeometryProvider",
    "PointGeometry",
    "RawLoadRecord",
    "ReferenceGrid",
    "ReferenceLevel",
    "run_audit",
    "run_audits",
]
