"""
Cluster raw elevations into physical levels and assign every record.

Buckets come from the data itself, so mezzanines and intermediate levels
missing from the reference level list are still detected. Every record is
assigned to exactly one bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from load_audit.contracts import AuditConfig, RawLoadRecord, ReferenceLevel, format_number

logger = logging.getLogger(__name__)


@dataclass
class ElevationBucket:
    """A cluster of elevations treated as one level, with its records."""

    label: str
    elevation: float
    elevations: List[float]
    records: List[RawLoadRecord] = field(default_factory=list)


def cluster_elevations(values: Iterable[float], config: Optional[AuditConfig] = None) -> List[List[float]]:
    """Group sorted distinct (rounded) elevations by distance to the running cluster mean."""
    if config is None:
        config = AuditConfig()
    distinct = sorted({round(float(v), config.elevation_decimals) for v in values})
    if not distinct:
        return []

    clusters: List[List[float]] = [[distinct[0]]]
    for z in distinct[1:]:
        current = clusters[-1]
        mean = sum(current) / len(current)
        if abs(z - mean) <= config.story_tolerance:
            current.append(z)
        else:
            clusters.append([z])
    return clusters


def label_for_elevation(
    elevation: float,
    levels: Sequence[ReferenceLevel],
    tolerance: float,
) -> str:
    """Nearest reference level within *tolerance*, else a synthesised ``Z=..m`` label."""
    candidates = [lvl for lvl in levels if abs(lvl.elevation - elevation) <= tolerance]
    if candidates:
        return min(candidates, key=lambda lvl: abs(lvl.elevation - elevation)).label
    return f"Z={format_number(elevation)}m"


def bucket_records(
    records: Sequence[RawLoadRecord],
    levels: Sequence[ReferenceLevel] = (),
    config: Optional[AuditConfig] = None,
) -> List[ElevationBucket]:
    """Assign every record to a level bucket.

    Returns non-empty buckets ordered top-down (descending elevation).
    """
    if config is None:
        config = AuditConfig()

    clusters = cluster_elevations((r.elevation for r in records), config)
    sorted_levels = sorted(levels, key=lambda lvl: lvl.elevation)

    buckets: List[ElevationBucket] = []
    for cluster in clusters:
        mean = sum(cluster) / len(cluster)
        buckets.append(ElevationBucket(
            label=label_for_elevation(mean, sorted_levels, config.story_tolerance),
            elevation=mean,
            elevations=list(cluster),
        ))
    _disambiguate_labels(buckets)

    for record in records:
        z = float(record.elevation)
        target = next(
            (b for b in buckets if abs(b.elevation - z) <= config.story_tolerance),
            None,
        )
        if target is None:
            target = min(buckets, key=lambda b: abs(b.elevation - z))
            logger.debug("Record %s at Z=%.3f assigned to nearest bucket %s",
                         record.element_id, z, target.label)
        target.records.append(record)

    result = sorted((b for b in buckets if b.records), key=lambda b: b.elevation, reverse=True)
    logger.info("Story bucketing: %d levels identified from %d records", len(result), len(records))
    for b in result:
        logger.debug("   > %s (Z~%.3f): %d records", b.label, b.elevation, len(b.records))
    return result


def _disambiguate_labels(buckets: List[ElevationBucket]) -> None:
    # Two clusters snapping to the same reference level keep distinct labels
    seen: Dict[str, int] = {}
    for bucket in buckets:
        count = seen.get(bucket.label, 0)
        seen[bucket.label] = count + 1
        if count:
            bucket.label = f"{bucket.label} (Z={format_number(bucket.elevation)}m)"
