"""Configuration management for Compose3D.

This module defines all configuration models using Pydantic for validation.
Configuration can be loaded from JSON files or constructed programmatically.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class PlacementParams(BaseModel):
    """Parameters for randomized object placement."""

    max_attempts: int = Field(
        default=100,
        ge=1,
        le=100000,
        description="Pose attempts per object before accepting the last one",
    )

    # Randomization
    seed: int | None = Field(
        default=None,
        description="Seed for the placement random source. None = non-deterministic."
    )

    # Spawn volume used for new sessions, export frame (Z-up), meters
    default_spawn_volume: tuple[float, float, float, float, float, float] = Field(
        default=(-0.5, 0.5, -0.5, 0.5, 0.0, 0.5),
        description="(min_x, max_x, min_y, max_y, min_z, max_z) in the export frame"
    )

    @field_validator("default_spawn_volume")
    @classmethod
    def _check_volume_order(
        cls, value: tuple[float, float, float, float, float, float]
    ) -> tuple[float, float, float, float, float, float]:
        for axis, (lo, hi) in zip("xyz", (value[0:2], value[2:4], value[4:6])):
            if lo > hi:
                raise ValueError(f"Spawn volume {axis} range is inverted: {lo} > {hi}")
        return value


class ExportParams(BaseModel):
    """Parameters for bundle export and geometry loading."""

    instruction_required: bool = Field(
        default=True,
        description="Refuse to export without a task instruction"
    )
    require_static_object: bool = Field(
        default=True,
        description="Refuse to export unless one exported object has gravity disabled"
    )
    default_half_extent: float = Field(
        default=0.05,
        gt=0,
        description="Half extent in meters used for payloads whose bounds cannot be decoded"
    )


class ComposerConfig(BaseModel):
    """Main configuration container."""

    placement: PlacementParams = Field(default_factory=PlacementParams)
    export: ExportParams = Field(default_factory=ExportParams)

    @classmethod
    def from_file(cls, path: Path | str) -> ComposerConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with open(path) as f:
            data = json.load(f)
        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    @classmethod
    def default(cls) -> ComposerConfig:
        """Create a default configuration."""
        return cls()
