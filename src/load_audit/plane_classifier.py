"""Axis/plane classification of area elements.

An element's supporting global axis and outward sign drive both the
footprint grouping key and force-direction resolution for locally
projected loads.
"""
from typing import Optional, Sequence

import numpy as np

from load_audit.contracts import AreaGeometry, Axis, AxisSignature, AuditConfig, Vec3
from load_audit.geometry_primitives import centroid_3d, newell_normal


def classify_normal(
    normal: Sequence[float],
    position: float = 0.0,
    config: Optional[AuditConfig] = None,
) -> AxisSignature:
    """Classify a normal direction as slab (Z), wall (X/Y) or oblique.

    Z wins when its share of the normal exceeds ``axis_dominance``;
    otherwise the larger of X/Y is taken if it is dominant. The sign is that
    of the dominant component (of the largest component for oblique planes).
    """
    if config is None:
        config = AuditConfig()

    n = np.asarray(normal, dtype=float)
    length = float(np.linalg.norm(n))
    if length == 0.0:
        return AxisSignature(axis=Axis.OBLIQUE, sign=1, position=position)
    n = n / length
    ax, ay, az = np.abs(n)
    threshold = config.axis_dominance

    if az > threshold:
        axis, component = Axis.Z, n[2]
    elif ax >= ay and ax > threshold:
        axis, component = Axis.X, n[0]
    elif ay > ax and ay > threshold:
        axis, component = Axis.Y, n[1]
    else:
        axis, component = Axis.OBLIQUE, n[int(np.argmax(np.abs(n)))]
    return AxisSignature(axis=axis, sign=1 if component >= 0 else -1, position=position)


def classify_area(geometry: AreaGeometry, config: Optional[AuditConfig] = None) -> AxisSignature:
    """Axis signature of an area element, positioned at its centroid."""
    normal: Vec3
    if geometry.normal is not None:
        normal = geometry.normal
    else:
        normal = tuple(newell_normal(geometry.vertices))
    signature = classify_normal(normal, config=config)
    centre = centroid_3d(geometry.vertices)

    if signature.axis is Axis.X:
        position = centre[0]
    elif signature.axis is Axis.Y:
        position = centre[1]
    elif signature.axis is Axis.Z:
        position = centre[2]
    else:
        # Signed plane offset along the unit normal
        n = np.asarray(normal, dtype=float)
        norm = np.linalg.norm(n)
        if norm > 0:
            unit = n / norm
            position = float(centre @ unit)
            return AxisSignature(axis=signature.axis, sign=signature.sign, position=position,
                                 normal=(float(unit[0]), float(unit[1]), float(unit[2])))
        position = 0.0
    return AxisSignature(axis=signature.axis, sign=signature.sign, position=float(position))


def structural_type_for(signature: AxisSignature) -> str:
    if signature.axis is Axis.Z:
        return "Slab Elements"
    if signature.axis in (Axis.X, Axis.Y):
        return "Wall Elements"
    return "Oblique Elements"
