"""Pose snapshots and the condition history.

A condition (episode) is one accepted snapshot of every movable object's
pose. Snapshots are immutable; the history only ever grows by appending a
snapshot or is cleared wholesale, so readers never observe a partial state.

ConditionHistoryManager sequences acceptance and the next placement pass
explicitly: ``accept_condition()`` returns once the snapshot is committed,
and ``draw_new_placement()`` is a separate call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..core.config import PlacementParams
    from .placement import PlacementEngine, PlacementResult
    from .scene import SceneObject, SceneSession

logger = logging.getLogger(__name__)


class ObjectPose(BaseModel):
    """Position and orientation of one object, live frame."""

    position: tuple[float, float, float]
    orientation: tuple[float, float, float, float] = Field(
        description="Unit quaternion (w, x, y, z)"
    )

    model_config = {"frozen": True}


class PoseSnapshot(BaseModel):
    """Poses of a set of objects captured at one point in time."""

    poses: dict[str, ObjectPose] = Field(
        default_factory=dict,
        description="Object id -> pose"
    )
    captured_at: str = Field(
        default_factory=lambda: datetime.now().isoformat(),
        description="ISO timestamp of the capture"
    )

    model_config = {"frozen": True}

    @classmethod
    def capture(cls, objects: Iterable[SceneObject]) -> PoseSnapshot:
        """Snapshot the current pose of each object."""
        return cls(poses={
            obj.id: ObjectPose(
                position=obj.transform.position,
                orientation=obj.transform.orientation,
            )
            for obj in objects
        })

    def __len__(self) -> int:
        return len(self.poses)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self.poses

    def get(self, object_id: str) -> ObjectPose | None:
        return self.poses.get(object_id)


class ConditionHistory(BaseModel):
    """Ordered, append-only sequence of accepted pose snapshots."""

    conditions: tuple[PoseSnapshot, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True}

    def append(self, snapshot: PoseSnapshot) -> ConditionHistory:
        """Return a new history with ``snapshot`` added at the end."""
        return ConditionHistory(conditions=(*self.conditions, snapshot))

    def __len__(self) -> int:
        return len(self.conditions)

    def __getitem__(self, index: int) -> PoseSnapshot:
        return self.conditions[index]


@dataclass(frozen=True)
class ConditionAccepted:
    """Published after a snapshot has been committed to the history."""

    index: int
    snapshot: PoseSnapshot


@dataclass(frozen=True)
class HistoryCleared:
    """Published after the history has been emptied."""

    discarded: int


@dataclass(frozen=True)
class PlacementDrawn:
    """Published after a placement pass has moved the movable objects."""

    result: PlacementResult


def restore_poses(objects: Iterable[SceneObject], snapshot: PoseSnapshot) -> int:
    """Put objects back into the poses recorded in ``snapshot``.

    Objects missing from the snapshot are left alone.

    Returns:
        Number of objects restored
    """
    restored = 0
    for obj in objects:
        pose = snapshot.get(obj.id)
        if pose is None:
            continue
        obj.transform = obj.transform.with_pose(pose.position, pose.orientation)
        restored += 1
    return restored


class ConditionHistoryManager:
    """Accepts placement rounds into a session's condition history.

    The manager holds no scene state of its own; every call works on the
    session passed to the constructor.
    """

    def __init__(
        self,
        session: SceneSession,
        params: PlacementParams | None = None,
        engine: PlacementEngine | None = None,
    ):
        """Initialize the manager.

        Args:
            session: Session whose objects and history are managed
            params: Placement parameters (defaults if None)
            engine: Placement engine to use (one is built from ``params`` if None)
        """
        from .placement import PlacementEngine

        self.session = session
        self.engine = engine or PlacementEngine(params)

    @property
    def history(self) -> ConditionHistory:
        return self.session.history

    def accept_condition(self) -> PoseSnapshot:
        """Snapshot every movable object and commit it to the history.

        Returns:
            The committed snapshot
        """
        snapshot = PoseSnapshot.capture(self.session.movable_objects())
        self.session.history = self.session.history.append(snapshot)
        index = len(self.session.history) - 1
        logger.info(f"Accepted condition {index + 1} ({len(snapshot)} objects)")
        self.session.events.publish(ConditionAccepted(index=index, snapshot=snapshot))
        return snapshot

    def draw_new_placement(self) -> PlacementResult:
        """Run a placement pass over the movable objects.

        The pre-randomization poses are kept on the session as
        ``saved_poses`` so the caller can revert.
        """
        result = self.engine.randomize(
            self.session.movable_objects(),
            self.session.spawn_volume,
        )
        self.session.saved_poses = result.saved_poses
        self.session.events.publish(PlacementDrawn(result=result))
        return result

    def accept_and_redraw(self) -> tuple[PoseSnapshot, PlacementResult]:
        """Accept the current poses, then draw a fresh candidate placement."""
        snapshot = self.accept_condition()
        result = self.draw_new_placement()
        return snapshot, result

    def restore_saved_poses(self) -> int:
        """Revert movable objects to the poses saved before the last placement pass.

        Returns:
            Number of objects restored (0 if nothing was saved)
        """
        saved = self.session.saved_poses
        if saved is None:
            return 0
        restored = restore_poses(self.session.objects, saved)
        self.session.saved_poses = None
        return restored

    def clear(self) -> int:
        """Discard all accepted conditions.

        Returns:
            Number of conditions discarded
        """
        discarded = len(self.session.history)
        self.session.history = ConditionHistory()
        logger.info(f"Cleared {discarded} saved condition(s)")
        self.session.events.publish(HistoryCleared(discarded=discarded))
        return discarded
