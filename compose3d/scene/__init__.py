"""Scene management for composing, randomizing and snapshotting objects.

This module provides data structures for the objects in a scene, their
transforms in the live and export frames, randomized placement, and the
history of accepted placements.
"""

from .transform import Transform3D
from .scene import SceneObject, SceneSession, SpawnVolume
from .placement import PlacementEngine, PlacementResult
from .history import ConditionHistory, ConditionHistoryManager, PoseSnapshot

__all__ = [
    "Transform3D",
    "SceneObject",
    "SceneSession",
    "SpawnVolume",
    "PlacementEngine",
    "PlacementResult",
    "ConditionHistory",
    "ConditionHistoryManager",
    "PoseSnapshot",
]
