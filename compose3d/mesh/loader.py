"""Asset loading utilities using trimesh.

An asset arrives as a folder of files: one main geometry file plus whatever
it references (buffers, textures). The loader picks the main file, measures
its local bounding box and wraps everything in a SceneObject. The geometry
itself is never kept; placement only needs the box.
"""

from __future__ import annotations

import io
import logging
import tempfile
from pathlib import Path, PurePosixPath
from typing import Mapping

import numpy as np
import trimesh

from ..core.config import ExportParams
from ..core.errors import AssetDecodeError, UnsupportedInputError
from ..scene.scene import Bounds, SceneObject

logger = logging.getLogger(__name__)

# Main-file candidates in priority order: (file type, extensions)
MAIN_FILE_PRIORITY = (
    ("usdz", (".usdz",)),
    ("usd", (".usd", ".usda", ".usdc")),
    ("glb", (".glb",)),
    ("gltf", (".gltf",)),
)


def strip_root_folder(files: Mapping[str, bytes]) -> dict[str, bytes]:
    """Drop the first path segment from every nested path.

    Dropped folders arrive as ``<folder>/<relative path>``; the payload tree
    only keeps the part below the folder. Top-level files are kept as-is.
    """
    stripped = {}
    for path, data in files.items():
        parts = PurePosixPath(path).parts
        key = "/".join(parts[1:]) if len(parts) > 1 else path
        stripped[key] = data
    return stripped


def find_main_file(paths: list[str]) -> tuple[str, str] | None:
    """Pick the main geometry file.

    Returns:
        (path, file type), or None if no supported file is present
    """
    ordered = sorted(paths)
    for file_type, extensions in MAIN_FILE_PRIORITY:
        for path in ordered:
            if path.lower().endswith(extensions):
                return path, file_type
    return None


class AssetLoader:
    """Turn a folder of asset files into a SceneObject."""

    def __init__(self, params: ExportParams | None = None):
        """Initialize the loader.

        Args:
            params: Export parameters; ``default_half_extent`` is the footprint
                used for payloads whose bounds are not measured
        """
        self.params = params or ExportParams()

    @property
    def default_bounds(self) -> Bounds:
        h = self.params.default_half_extent
        return ((-h, -h, -h), (h, h, h))

    def load_from_files(
        self,
        files: Mapping[str, bytes],
        folder_name: str | None = None,
        strip_root: bool = True,
    ) -> SceneObject:
        """Load an asset from in-memory files.

        Args:
            files: Relative path -> file bytes
            folder_name: Display name; falls back to the main file's stem
            strip_root: Paths are prefixed with the dropped folder name,
                which is removed before storing the payload

        Returns:
            New SceneObject with a fresh id, identity transform and the payload cached

        Raises:
            UnsupportedInputError: If no supported geometry file is present
            AssetDecodeError: If the main file cannot be decoded
        """
        payload = strip_root_folder(files) if strip_root else dict(files)

        found = find_main_file(list(payload))
        if found is None:
            raise UnsupportedInputError(
                "No supported 3D file found in folder (USD, USDZ, GLTF, GLB)"
            )
        main_file, file_type = found

        bounds = self._measure(payload, main_file, file_type)
        name = folder_name or PurePosixPath(main_file).stem or "Unnamed"

        obj = SceneObject(
            name=name,
            main_file=main_file,
            file_type=file_type,
            local_bounds=bounds,
        )
        obj.set_files(payload)

        logger.info(f"Loaded '{name}' ({file_type.upper()}, {len(payload)} files)")
        return obj

    def load_from_directory(self, path: str | Path) -> SceneObject:
        """Load an asset from a folder on disk.

        The folder name becomes the display name and the folder is recorded
        as the object's ``source_dir``.
        """
        root = Path(path)
        if not root.is_dir():
            raise FileNotFoundError(f"Asset folder not found: {root}")

        files = {
            p.relative_to(root).as_posix(): p.read_bytes()
            for p in sorted(root.rglob("*"))
            if p.is_file()
        }
        obj = self.load_from_files(files, root.name, strip_root=False)
        obj.source_dir = str(root.resolve())
        return obj

    def _measure(self, payload: Mapping[str, bytes], main_file: str, file_type: str) -> Bounds:
        # USD payloads are carried opaquely
        if file_type in ("usd", "usdz"):
            return self.default_bounds

        try:
            if file_type == "glb":
                loaded = trimesh.load(
                    file_obj=io.BytesIO(payload[main_file]),
                    file_type="glb",
                )
            else:
                loaded = self._load_gltf(payload, main_file)
        except Exception as e:
            raise AssetDecodeError(f"Failed to load {file_type.upper()} '{main_file}': {e}") from e

        bounds = loaded.bounds
        if bounds is None:
            logger.warning(f"'{main_file}' has no geometry; using default footprint")
            return self.default_bounds

        lo, hi = np.asarray(bounds, dtype=np.float64)
        return (
            (float(lo[0]), float(lo[1]), float(lo[2])),
            (float(hi[0]), float(hi[1]), float(hi[2])),
        )

    @staticmethod
    def _load_gltf(payload: Mapping[str, bytes], main_file: str):
        # glTF references sibling files by relative path, so lay the payload out on disk
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            for rel, data in payload.items():
                target = root / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            return trimesh.load(str(root / main_file), file_type="gltf")
