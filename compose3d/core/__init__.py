"""Core modules for Compose3D."""

from .config import ComposerConfig, ExportParams, PlacementParams
from .errors import (
    AssetDecodeError,
    ComposerError,
    MalformedArchiveError,
    PreconditionError,
    UnsupportedInputError,
)

__all__ = [
    "ComposerConfig",
    "ExportParams",
    "PlacementParams",
    "AssetDecodeError",
    "ComposerError",
    "MalformedArchiveError",
    "PreconditionError",
    "UnsupportedInputError",
]
