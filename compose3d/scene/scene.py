"""Scene objects, spawn volumes and the editing session.

This module provides the core data models for composing a scene:
SceneObject (one loaded asset and its live-frame transform), SpawnVolume
(the export-frame box movable objects are scattered in) and SceneSession,
the explicitly passed container every engine call works on.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal, Sequence

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field, PrivateAttr, model_validator

from .frames import position_to_export
from .history import ConditionHistory, PoseSnapshot
from .transform import Transform3D

logger = logging.getLogger(__name__)

Bounds = tuple[tuple[float, float, float], tuple[float, float, float]]


def new_object_id() -> str:
    """Generate a stable identifier for a newly loaded object."""
    return f"asset_{uuid.uuid4().hex[:12]}"


def bounds_overlap(
    a_min: Sequence[float],
    a_max: Sequence[float],
    b_min: Sequence[float],
    b_max: Sequence[float],
) -> bool:
    """Axis-aligned overlap test. Boxes that only touch do not overlap."""
    return all(
        a_min[i] < b_max[i] and b_min[i] < a_max[i]
        for i in range(3)
    )


class SpawnVolume(BaseModel):
    """Box that movable objects are scattered in during randomization.

    Expressed in the export frame (Z up), independent of any object's frame.
    Zero-width axes are allowed and behave as fixed coordinates.
    """

    min_x: float = Field(default=-0.5, description="Minimum X in meters")
    max_x: float = Field(default=0.5, description="Maximum X in meters")
    min_y: float = Field(default=-0.5, description="Minimum Y in meters")
    max_y: float = Field(default=0.5, description="Maximum Y in meters")
    min_z: float = Field(default=0.0, description="Minimum Z (height) in meters")
    max_z: float = Field(default=0.5, description="Maximum Z (height) in meters")

    @model_validator(mode="after")
    def _check_order(self) -> SpawnVolume:
        for axis, (lo, hi) in zip("xyz", self.ranges):
            if lo > hi:
                raise ValueError(f"Spawn volume {axis} range is inverted: {lo} > {hi}")
        return self

    @classmethod
    def from_tuple(cls, values: Sequence[float]) -> SpawnVolume:
        """Create from ``(min_x, max_x, min_y, max_y, min_z, max_z)``."""
        min_x, max_x, min_y, max_y, min_z, max_z = values
        return cls(
            min_x=min_x, max_x=max_x,
            min_y=min_y, max_y=max_y,
            min_z=min_z, max_z=max_z,
        )

    @property
    def ranges(self) -> tuple[tuple[float, float], tuple[float, float], tuple[float, float]]:
        """Per-axis ``(min, max)`` pairs."""
        return (
            (self.min_x, self.max_x),
            (self.min_y, self.max_y),
            (self.min_z, self.max_z),
        )

    @property
    def size(self) -> tuple[float, float, float]:
        """Return volume dimensions along X, Y and Z."""
        return (
            self.max_x - self.min_x,
            self.max_y - self.min_y,
            self.max_z - self.min_z,
        )

    @property
    def center(self) -> tuple[float, float, float]:
        """Return volume center point."""
        return (
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2,
            (self.min_z + self.max_z) / 2,
        )

    def shrink(
        self,
        half_extents: Sequence[float],
    ) -> tuple[tuple[float, float], tuple[float, float], tuple[float, float]]:
        """Pull every face in by the matching half extent.

        The result may contain inverted ranges (min > max) when the volume is
        narrower than the extents; callers use that to detect a misfit.
        """
        return tuple(
            (lo + h, hi - h) for (lo, hi), h in zip(self.ranges, half_extents)
        )  # type: ignore[return-value]

    def contains_point(self, x: float, y: float, z: float) -> bool:
        """Check if a point is within the volume."""
        return (
            self.min_x <= x <= self.max_x and
            self.min_y <= y <= self.max_y and
            self.min_z <= z <= self.max_z
        )

    def contains_bounds(
        self,
        min_pt: Sequence[float],
        max_pt: Sequence[float],
        tolerance: float = 1e-9,
    ) -> bool:
        """Check if a bounding box is fully within the volume."""
        return all(
            lo - tolerance <= min_pt[i] and max_pt[i] <= hi + tolerance
            for i, (lo, hi) in enumerate(self.ranges)
        )


class SceneObject(BaseModel):
    """A single loaded asset and its placement in the scene.

    The transform is kept in the live (Y-up) frame. The geometry payload is
    opaque to the engine: it is carried along as named byte streams and only
    its local bounding box is used for placement.
    """

    id: str = Field(
        default_factory=new_object_id,
        description="Unique identifier within the scene"
    )
    name: str = Field(description="Display name (also the payload folder name)")
    transform: Transform3D = Field(
        default_factory=Transform3D,
        description="Position, orientation, and scale (live frame)"
    )
    main_file: str = Field(
        default="",
        description="Path of the main geometry file inside the payload tree"
    )
    file_type: Literal["usd", "usdz", "gltf", "glb"] | None = Field(
        default=None,
        description="Format of the main geometry file"
    )
    source_dir: str | None = Field(
        default=None,
        description="Folder on disk the payload is read from when not cached"
    )
    local_bounds: Bounds = Field(
        default=((-0.05, -0.05, -0.05), (0.05, 0.05, 0.05)),
        description="Mesh-local AABB (min, max) at unit scale and neutral orientation"
    )

    # Flags
    locked: bool = Field(default=False, description="Excluded from selection and placement")
    exclude_from_export: bool = Field(default=False, description="Never serialized")
    disable_gravity: bool = Field(default=False, description="Static/kinematic object")

    # Cached payload: relative path -> bytes (not serialized)
    _files: dict[str, bytes] | None = PrivateAttr(default=None)

    model_config = {"frozen": False}

    @property
    def is_static(self) -> bool:
        return self.disable_gravity

    @property
    def is_exportable(self) -> bool:
        return not self.exclude_from_export

    @property
    def is_movable(self) -> bool:
        """Eligible for randomized placement."""
        return not self.locked and not self.exclude_from_export and not self.disable_gravity

    @property
    def files(self) -> dict[str, bytes]:
        """Payload as relative path -> bytes, read from ``source_dir`` if not cached."""
        if self._files is None:
            self._files = self._read_source_dir()
        return self._files

    def set_files(self, files: dict[str, bytes]) -> None:
        """Replace the cached payload."""
        self._files = dict(files)

    def _read_source_dir(self) -> dict[str, bytes]:
        if self.source_dir is None:
            return {}
        root = Path(self.source_dir)
        if not root.is_dir():
            logger.warning(f"Payload folder for '{self.name}' not found: {root}")
            return {}
        return {
            path.relative_to(root).as_posix(): path.read_bytes()
            for path in sorted(root.rglob("*"))
            if path.is_file()
        }

    def corners(self) -> NDArray[np.float64]:
        """Return the 8 corners of the local bounding box as an 8x3 array."""
        (x0, y0, z0), (x1, y1, z1) = self.local_bounds
        return np.array([
            [x, y, z]
            for x in (x0, x1)
            for y in (y0, y1)
            for z in (z0, z1)
        ], dtype=np.float64)

    def world_bounds(
        self,
        transform: Transform3D | None = None,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Axis-aligned world bounds in the export frame.

        Args:
            transform: Live-frame transform to evaluate (the object's own if None)

        Returns:
            (min, max) corners in the export frame
        """
        transform = transform or self.transform
        live = transform.apply_to_points(self.corners())
        exported = np.array([position_to_export(p) for p in live])
        return exported.min(axis=0), exported.max(axis=0)


@dataclass(frozen=True)
class TransformChanged:
    """Published when an object's transform is edited through the session."""

    object_id: str
    transform: Transform3D


@dataclass(frozen=True)
class ObjectsChanged:
    """Published when objects are added to or removed from the session."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()


class EventChannel:
    """Synchronous event dispatch with one handler per event type.

    Subscribing a second handler for the same type replaces the first.
    Handlers run in the same call that published the event.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Callable[[Any], None]] = {}

    def subscribe(self, event_type: type, handler: Callable[[Any], None]) -> None:
        self._handlers[event_type] = handler

    def unsubscribe(self, event_type: type) -> None:
        self._handlers.pop(event_type, None)

    def publish(self, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is not None:
            handler(event)


class SceneSession(BaseModel):
    """An editing session: the objects being composed and everything about them.

    The session is owned by the caller and passed explicitly to every engine
    call; nothing in Compose3D keeps a global scene.
    """

    name: str = Field(default="Untitled Scene", description="Session name")
    version: int = Field(default=1, description="Session file version")

    objects: list[SceneObject] = Field(
        default_factory=list,
        description="Scene objects in insertion order"
    )
    spawn_volume: SpawnVolume = Field(
        default_factory=SpawnVolume,
        description="Randomization volume (export frame)"
    )
    instruction: str = Field(default="", description="Free-text task instruction")
    history: ConditionHistory = Field(
        default_factory=ConditionHistory,
        description="Accepted pose snapshots, in acceptance order"
    )
    saved_poses: PoseSnapshot | None = Field(
        default=None,
        description="Poses captured before the last placement pass"
    )

    _events: EventChannel = PrivateAttr(default_factory=EventChannel)

    model_config = {"frozen": False}

    @property
    def events(self) -> EventChannel:
        return self._events

    def add_object(self, obj: SceneObject) -> SceneObject:
        """Add an object to the session.

        Raises:
            ValueError: If an object with the same id is already present
        """
        if self.get_object(obj.id) is not None:
            raise ValueError(f"Duplicate object id: {obj.id}")
        self.objects.append(obj)
        self.events.publish(ObjectsChanged(added=(obj.id,)))
        return obj

    def remove_object(self, object_id: str) -> bool:
        """Remove an object by ID.

        Returns:
            True if the object was removed, False if not found
        """
        for i, obj in enumerate(self.objects):
            if obj.id == object_id:
                self.objects.pop(i)
                self.events.publish(ObjectsChanged(removed=(object_id,)))
                return True
        return False

    def get_object(self, object_id: str) -> SceneObject | None:
        for obj in self.objects:
            if obj.id == object_id:
                return obj
        return None

    def find_by_name(self, name: str) -> SceneObject | None:
        """Return the first object with the given display name."""
        for obj in self.objects:
            if obj.name == name:
                return obj
        return None

    def update_transform(self, object_id: str, transform: Transform3D) -> SceneObject:
        """Replace an object's transform and notify the transform listener.

        Raises:
            KeyError: If no object has ``object_id``
        """
        obj = self.get_object(object_id)
        if obj is None:
            raise KeyError(object_id)
        obj.transform = transform
        self.events.publish(TransformChanged(object_id=object_id, transform=transform))
        return obj

    def movable_objects(self) -> list[SceneObject]:
        """Objects eligible for randomized placement, in scene order."""
        return [obj for obj in self.objects if obj.is_movable]

    def exportable_objects(self) -> list[SceneObject]:
        return [obj for obj in self.objects if obj.is_exportable]

    def static_objects(self) -> list[SceneObject]:
        """Exportable, unlocked objects with gravity disabled."""
        return [
            obj for obj in self.objects
            if obj.is_exportable and not obj.locked and obj.is_static
        ]

    def can_randomize(self) -> tuple[bool, str]:
        """Check whether a placement pass makes sense for this scene.

        Returns:
            Tuple of (ok, hint). The hint explains what is missing.
        """
        has_dynamic = bool(self.movable_objects())
        has_static = bool(self.static_objects())
        if not has_dynamic and not has_static:
            return False, "Add assets to get started"
        if not has_static:
            return False, 'Mark at least one asset as "Disable Gravity" (static)'
        if not has_dynamic:
            return False, 'Add assets without "Disable Gravity" to randomize'
        return True, ""

    def save(self, path: str | Path) -> None:
        """Save session to a JSON file.

        Payloads are not embedded; objects refer to them through ``source_dir``.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    @classmethod
    def load(cls, path: str | Path) -> SceneSession:
        """Load session from a JSON file."""
        path = Path(path)
        with open(path) as f:
            data = json.load(f)

        return cls.model_validate(data)

    def __repr__(self) -> str:
        return (
            f"SceneSession('{self.name}', {len(self.objects)} objects, "
            f"{len(self.history)} conditions)"
        )
