"""Randomized, collision-free placement of movable objects.

Objects are placed one at a time in the order given; every accepted box is
recorded so later objects in the same pass avoid it. Only yaw (rotation about
the vertical axis) is randomized, so each object's footprint is measured with
a neutral orientation.

Sampling happens in the export frame, where the spawn volume is defined, and
the chosen pose is mapped back to the live frame before it is applied.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

import numpy as np
from numpy.typing import NDArray

from .frames import position_from_export, position_to_export
from .history import PoseSnapshot
from .scene import bounds_overlap
from .transform import Transform3D

if TYPE_CHECKING:
    from ..core.config import PlacementParams
    from .scene import SceneObject, SpawnVolume

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 100


@dataclass
class Footprint:
    """Axis-aligned extent of an object with neutral orientation, export frame.

    Attributes:
        half_extents: Half size along X, Y and Z
        center_offset: Bounds center minus object origin
    """

    half_extents: tuple[float, float, float]
    center_offset: tuple[float, float, float]


@dataclass
class PlacementOutcome:
    """How one object fared in a placement pass."""

    object_id: str
    fits: bool
    attempts: int
    collision_free: bool
    contained: bool
    bounds: tuple[NDArray[np.float64], NDArray[np.float64]]

    @property
    def succeeded(self) -> bool:
        """Accepted within the retry budget rather than as a last resort."""
        return self.collision_free and (self.contained or not self.fits)


@dataclass
class PlacementResult:
    """Result of a placement pass.

    Attributes:
        saved_poses: Poses of the movable objects before they were moved
        outcomes: One entry per object, in placement order
    """

    saved_poses: PoseSnapshot
    outcomes: list[PlacementOutcome] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)

    def get(self, object_id: str) -> PlacementOutcome | None:
        for outcome in self.outcomes:
            if outcome.object_id == object_id:
                return outcome
        return None


def measure_footprint(obj: SceneObject) -> Footprint:
    """Measure an object's bounds with its orientation reset to identity."""
    neutral = Transform3D(position=obj.transform.position, scale=obj.transform.scale)
    lo, hi = obj.world_bounds(neutral)
    center = (lo + hi) / 2.0
    origin = np.asarray(position_to_export(neutral.position), dtype=np.float64)
    half = (hi - lo) / 2.0
    offset = center - origin
    return Footprint(
        half_extents=(float(half[0]), float(half[1]), float(half[2])),
        center_offset=(float(offset[0]), float(offset[1]), float(offset[2])),
    )


class PlacementEngine:
    """Scatters movable objects inside a spawn volume without overlaps.

    The engine keeps no reference to the objects between calls; only its
    random source persists.
    """

    def __init__(
        self,
        params: PlacementParams | None = None,
        rng: np.random.Generator | None = None,
    ):
        """Initialize the engine.

        Args:
            params: Placement parameters (defaults if None)
            rng: Random source. Built from ``params.seed`` if None.
        """
        self.max_attempts = params.max_attempts if params is not None else DEFAULT_MAX_ATTEMPTS
        seed = params.seed if params is not None else None
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def randomize(
        self,
        objects: Sequence[SceneObject],
        volume: SpawnVolume,
    ) -> PlacementResult:
        """Give each object a new random pose inside ``volume``.

        Objects are modified in place. Callers are expected to pass only
        movable objects; the engine does not filter.

        Args:
            objects: Objects to place, in priority order
            volume: Spawn volume (export frame)

        Returns:
            PlacementResult with the pre-randomization poses and per-object outcomes
        """
        result = PlacementResult(saved_poses=PoseSnapshot.capture(objects))
        placed: list[tuple[NDArray[np.float64], NDArray[np.float64]]] = []

        for obj in objects:
            outcome = self._place_one(obj, volume, placed)
            placed.append(outcome.bounds)
            result.outcomes.append(outcome)

            if not outcome.succeeded:
                logger.warning(
                    f"Could not place '{obj.name}' cleanly after "
                    f"{outcome.attempts} attempts; using last attempt"
                )

        logger.debug(f"Placed {len(result.outcomes)} object(s)")
        return result

    def _place_one(
        self,
        obj: SceneObject,
        volume: SpawnVolume,
        placed: list[tuple[NDArray[np.float64], NDArray[np.float64]]],
    ) -> PlacementOutcome:
        footprint = measure_footprint(obj)
        reduced = volume.shrink(footprint.half_extents)
        fits = all(lo <= hi for lo, hi in reduced)

        transform = obj.transform
        bounds = obj.world_bounds()
        collision_free = contained = False
        attempts = 0

        for attempts in range(1, self.max_attempts + 1):
            center = self._sample_center(reduced, volume, fits)
            origin = tuple(c - o for c, o in zip(center, footprint.center_offset))
            yaw = float(self.rng.uniform(0.0, 2.0 * math.pi))

            transform = obj.transform.with_pose(
                position_from_export(origin),
                Transform3D.yaw_quaternion(yaw),
            )
            bounds = obj.world_bounds(transform)

            collision_free = not any(
                bounds_overlap(bounds[0], bounds[1], other[0], other[1])
                for other in placed
            )
            contained = volume.contains_bounds(bounds[0], bounds[1])

            if collision_free and (contained or not fits):
                break

        obj.transform = transform
        return PlacementOutcome(
            object_id=obj.id,
            fits=fits,
            attempts=attempts,
            collision_free=collision_free,
            contained=contained,
            bounds=bounds,
        )

    def _sample_center(
        self,
        reduced: Sequence[tuple[float, float]],
        volume: SpawnVolume,
        fits: bool,
    ) -> tuple[float, float, float]:
        if not fits:
            return volume.center
        x, y, z = (
            float(self.rng.uniform(lo, hi)) if hi > lo else float(lo)
            for lo, hi in reduced
        )
        return (x, y, z)
