"""3D transformation utilities for scene management.

Provides Transform3D class for representing position, orientation, and
scale, with conversion to 4x4 homogeneous transformation matrices.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field, field_validator
from scipy.spatial.transform import Rotation


def quat_to_scipy(q: tuple[float, float, float, float]) -> Rotation:
    """Build a scipy Rotation from a ``(w, x, y, z)`` quaternion."""
    w, x, y, z = q
    return Rotation.from_quat([x, y, z, w])


def scipy_to_quat(rot: Rotation) -> tuple[float, float, float, float]:
    """Return a scipy Rotation as a ``(w, x, y, z)`` quaternion."""
    x, y, z, w = rot.as_quat().tolist()
    return (w, x, y, z)


class Transform3D(BaseModel):
    """3D transformation: position + orientation + scale.

    All values are in the frame the transform was created in; scene objects
    keep theirs in the live (Y-up) frame.

    Attributes:
        position: XYZ position in meters
        orientation: Unit quaternion as (w, x, y, z)
        scale: Per-axis scale factors
    """

    position: tuple[float, float, float] = Field(
        default=(0.0, 0.0, 0.0),
        description="XYZ position in meters"
    )
    orientation: tuple[float, float, float, float] = Field(
        default=(1.0, 0.0, 0.0, 0.0),
        description="Unit quaternion (w, x, y, z)"
    )
    scale: tuple[float, float, float] = Field(
        default=(1.0, 1.0, 1.0),
        description="Per-axis scale factors"
    )

    model_config = {"frozen": False}

    @field_validator("scale")
    @classmethod
    def _check_scale(cls, value: tuple[float, float, float]) -> tuple[float, float, float]:
        if any(s == 0 for s in value):
            raise ValueError(f"Scale components must be non-zero, got {value}")
        return value

    def is_normalized(self, tolerance: float = 1e-6) -> bool:
        """Check that the orientation quaternion has unit magnitude."""
        norm = math.sqrt(sum(c * c for c in self.orientation))
        return abs(norm - 1.0) <= tolerance

    @property
    def euler(self) -> tuple[float, float, float]:
        """Orientation as intrinsic XYZ Euler angles in radians."""
        angles = quat_to_scipy(self.orientation).as_euler("XYZ")
        return (float(angles[0]), float(angles[1]), float(angles[2]))

    @classmethod
    def from_euler(
        cls,
        position: tuple[float, float, float] = (0.0, 0.0, 0.0),
        rotation: tuple[float, float, float] = (0.0, 0.0, 0.0),
        scale: tuple[float, float, float] = (1.0, 1.0, 1.0),
        degrees: bool = False,
    ) -> Transform3D:
        """Create a transform from intrinsic XYZ Euler angles.

        Args:
            position: XYZ position
            rotation: XYZ Euler angles, applied in XYZ order
            scale: Per-axis scale
            degrees: Interpret ``rotation`` as degrees instead of radians

        Returns:
            Transform3D instance
        """
        rot = Rotation.from_euler("XYZ", rotation, degrees=degrees)
        return cls(position=position, orientation=scipy_to_quat(rot), scale=scale)

    def to_matrix(self) -> NDArray[np.float64]:
        """Convert to 4x4 homogeneous transformation matrix.

        The transformation order is: Scale -> Rotate -> Translate
        This means the matrix is built as: T @ R @ S

        Returns:
            4x4 transformation matrix
        """
        s = np.diag([*self.scale, 1.0]).astype(np.float64)

        r = np.eye(4, dtype=np.float64)
        r[:3, :3] = quat_to_scipy(self.orientation).as_matrix()

        t = np.eye(4, dtype=np.float64)
        t[:3, 3] = self.position

        return t @ r @ s

    def apply_to_points(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """Apply transformation to an Nx3 array of points.

        Args:
            points: Nx3 array of XYZ coordinates

        Returns:
            Transformed Nx3 array of points
        """
        matrix = self.to_matrix()
        ones = np.ones((len(points), 1), dtype=np.float64)
        homogeneous = np.hstack([np.asarray(points, dtype=np.float64), ones])
        return (matrix @ homogeneous.T).T[:, :3]

    def with_pose(
        self,
        position: tuple[float, float, float],
        orientation: tuple[float, float, float, float],
    ) -> Transform3D:
        """Return a copy with a new position and orientation, keeping scale."""
        return Transform3D(position=position, orientation=orientation, scale=self.scale)

    @staticmethod
    def yaw_quaternion(angle: float) -> tuple[float, float, float, float]:
        """Quaternion for a rotation of ``angle`` radians about the live up axis (+Y)."""
        half = angle / 2.0
        return (math.cos(half), 0.0, math.sin(half), 0.0)

    @classmethod
    def identity(cls) -> Transform3D:
        """Return identity transform (no transformation)."""
        return cls()

    def __repr__(self) -> str:
        return (
            f"Transform3D(pos={self.position}, "
            f"quat={self.orientation}, scale={self.scale})"
        )
