"""Conversions between the live (Y-up) and export (Z-up) coordinate frames.

Objects are edited in the live frame: right-handed, Y up, +Z toward the
viewer. Bundles are written in the export frame: right-handed, Z up, +X
forward and +Y to the left. Every mapping here is a pure sign/axis
permutation, so the forward and inverse functions are exact inverses for all
finite inputs. Quaternions are always ``(w, x, y, z)``.

Non-finite values are passed through untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .transform import Transform3D

Vec3 = tuple[float, float, float]
Quat = tuple[float, float, float, float]


def position_to_export(p: Sequence[float]) -> Vec3:
    """Live ``(x, y, z)`` -> export ``(x, -z, y)``."""
    x, y, z = p
    return (x, -z, y)


def position_from_export(p: Sequence[float]) -> Vec3:
    """Export ``(x, y, z)`` -> live ``(x, z, -y)``."""
    x, y, z = p
    return (x, z, -y)


def quaternion_to_export(q: Sequence[float]) -> Quat:
    """Live ``(w, x, y, z)`` -> export ``(w, x, -z, y)``."""
    w, x, y, z = q
    return (w, x, -z, y)


def quaternion_from_export(q: Sequence[float]) -> Quat:
    """Export ``(w, x, y, z)`` -> live ``(w, x, z, -y)``."""
    w, x, y, z = q
    return (w, x, z, -y)


def scale_to_export(s: Sequence[float]) -> Vec3:
    """Swap the Y and Z scale axes. Scale carries no sign, so no flip."""
    sx, sy, sz = s
    return (sx, sz, sy)


# The scale permutation is its own inverse
scale_from_export = scale_to_export


def euler_to_export(angles_deg: Sequence[float]) -> Vec3:
    """Legacy Euler triple in degrees, live -> export ``(rx, -rz, ry)``."""
    rx, ry, rz = angles_deg
    return (rx, -rz, ry)


def euler_from_export(angles_deg: Sequence[float]) -> Vec3:
    """Legacy Euler triple in degrees, export -> live ``(rx, rz, -ry)``."""
    rx, ry, rz = angles_deg
    return (rx, rz, -ry)


def transform_to_export(transform: Transform3D) -> Transform3D:
    """Map a whole live-frame transform into the export frame."""
    from .transform import Transform3D

    return Transform3D(
        position=position_to_export(transform.position),
        orientation=quaternion_to_export(transform.orientation),
        scale=scale_to_export(transform.scale),
    )


def transform_from_export(transform: Transform3D) -> Transform3D:
    """Map a whole export-frame transform back into the live frame."""
    from .transform import Transform3D

    return Transform3D(
        position=position_from_export(transform.position),
        orientation=quaternion_from_export(transform.orientation),
        scale=scale_from_export(transform.scale),
    )


def pose_to_export_tuple(
    position: Sequence[float],
    orientation: Sequence[float],
) -> list[float]:
    """Encode a live-frame pose as ``[x, y, z, qx, qy, qz, qw]`` in the export frame.

    This is the layout used by the multi-episode pose document. Note the
    scalar-last quaternion order.

    Args:
        position: Live-frame position
        orientation: Live-frame quaternion ``(w, x, y, z)``

    Returns:
        Seven floats, export frame
    """
    px, py, pz = position_to_export(position)
    qw, qx, qy, qz = quaternion_to_export(orientation)
    return [px, py, pz, qx, qy, qz, qw]


def pose_from_export_tuple(values: Sequence[float]) -> tuple[Vec3, Quat]:
    """Decode ``[x, y, z, qx, qy, qz, qw]`` (export frame) into a live-frame pose.

    Raises:
        ValueError: If ``values`` does not hold exactly seven numbers
    """
    if len(values) != 7:
        raise ValueError(f"Pose tuple must have 7 values, got {len(values)}")
    x, y, z, qx, qy, qz, qw = (float(v) for v in values)
    return position_from_export((x, y, z)), quaternion_from_export((qw, qx, qy, qz))
