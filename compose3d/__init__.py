"""Compose3D - Scene composition for robot-learning datasets.

A Python toolkit for arranging 3D assets into scenes, drawing randomized
collision-free initial conditions, and exporting everything as a Z-up USD
bundle that can be imported back losslessly.
"""

__version__ = "0.1.0"

from .core.config import ComposerConfig
from .core.errors import ComposerError
from .io.bundle import export_bundle, import_bundle
from .mesh.loader import AssetLoader
from .scene.history import ConditionHistoryManager
from .scene.placement import PlacementEngine
from .scene.scene import SceneObject, SceneSession, SpawnVolume
from .scene.transform import Transform3D

__all__ = [
    "ComposerConfig",
    "ComposerError",
    "export_bundle",
    "import_bundle",
    "AssetLoader",
    "ConditionHistoryManager",
    "PlacementEngine",
    "SceneObject",
    "SceneSession",
    "SpawnVolume",
    "Transform3D",
]
