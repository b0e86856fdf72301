"""Error types for Compose3D.

Every failure the engine reports to its caller derives from ComposerError,
so callers can handle the whole family with one except clause.
"""

from __future__ import annotations


class ComposerError(Exception):
    """Base class for all Compose3D errors."""


class UnsupportedInputError(ComposerError):
    """No loadable geometry reference was found among the provided files."""


class AssetDecodeError(ComposerError):
    """A geometry payload was found but could not be decoded."""


class PreconditionError(ComposerError):
    """An operation was attempted on a scene that does not satisfy its requirements.

    Attributes:
        reason: Human-readable explanation suitable for showing to a user
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MalformedArchiveError(ComposerError):
    """A bundle archive is unreadable or its manifest cannot be parsed."""
