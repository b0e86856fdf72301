"""Scene bundle export and import.

A bundle is a zip archive holding:

- ``scene.usda``: Z-up description document, one block per exported object
- ``scene.json``: manifest with live-frame transforms, the authoritative
  re-import path
- ``initial_conditions.json``: instruction plus one export-frame pose map per
  accepted condition, written only when there are dynamic objects
- ``assets/<name>/...``: each object's payload files

Import prefers the manifest. Without one, objects are recovered from the
description document and matched to payload folders. A session is only
returned once the whole bundle has been read; nothing is mutated in place.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Literal, Mapping

from ..core.config import ExportParams
from ..core.errors import (
    AssetDecodeError,
    MalformedArchiveError,
    PreconditionError,
    UnsupportedInputError,
)
from ..mesh.loader import AssetLoader
from ..scene.frames import pose_from_export_tuple, pose_to_export_tuple
from ..scene.history import ConditionHistory, ObjectPose, PoseSnapshot
from ..scene.scene import SceneObject, SceneSession
from ..scene.transform import Transform3D
from .archive import (
    pack_archive,
    read_archive,
    read_archive_async,
    save_archive,
    unpack_archive,
)
from .usda import UsdPrim, assign_prim_names, parse_usda, sanitize_name, write_usda

logger = logging.getLogger(__name__)

DESCRIPTION_FILE = "scene.usda"
MANIFEST_FILE = "scene.json"
POSES_FILE = "initial_conditions.json"
ASSETS_DIR = "assets"

MANIFEST_VERSION = 1

MISSING_INSTRUCTION = "Please enter an instruction before exporting."
MISSING_STATIC = (
    "At least one asset must have gravity disabled (kinematic) before exporting."
)


@dataclass
class SceneBundle:
    """In-memory contents of a bundle archive."""

    manifest: dict[str, Any]
    description: str
    initial_conditions: dict[str, Any] | None = None
    assets: dict[str, bytes] = field(default_factory=dict)

    def entries(self) -> Iterator[tuple[str, bytes]]:
        """Yield (archive path, data) for every file in the bundle."""
        yield DESCRIPTION_FILE, self.description.encode("utf-8")
        yield MANIFEST_FILE, json.dumps(self.manifest, indent=2).encode("utf-8")
        if self.initial_conditions is not None:
            yield POSES_FILE, json.dumps(self.initial_conditions, indent=2).encode("utf-8")
        yield from self.assets.items()

    def to_bytes(self) -> bytes:
        return pack_archive(self.entries())


@dataclass
class ImportedScene:
    """Result of reading a bundle.

    Attributes:
        session: New session holding the recovered objects, history and instruction
        skipped: Names of assets whose payload could not be loaded
        source: Which document the objects were recovered from
    """

    session: SceneSession
    skipped: list[str] = field(default_factory=list)
    source: Literal["manifest", "description"] = "manifest"


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def check_export_preconditions(
    session: SceneSession,
    params: ExportParams | None = None,
) -> None:
    """Refuse to export scenes that a consumer could not use.

    Raises:
        PreconditionError: With a reason suitable for showing to a user
    """
    params = params or ExportParams()

    if params.instruction_required and not session.instruction.strip():
        raise PreconditionError(MISSING_INSTRUCTION)

    if params.require_static_object and not any(
        obj.is_static for obj in session.exportable_objects()
    ):
        raise PreconditionError(MISSING_STATIC)


def build_manifest(objects: list[SceneObject]) -> dict[str, Any]:
    """Manifest document: live-frame transforms, Euler XYZ in radians."""
    assets = []
    for obj in objects:
        t = obj.transform
        x, y, z = t.position
        rx, ry, rz = t.euler
        sx, sy, sz = t.scale
        assets.append({
            "id": obj.id,
            "name": obj.name,
            "mainFile": obj.main_file,
            "position": {"x": x, "y": y, "z": z},
            "rotation": {"x": rx, "y": ry, "z": rz},
            "scale": {"x": sx, "y": sy, "z": sz},
            "disableGravity": obj.disable_gravity,
        })
    return {"version": MANIFEST_VERSION, "assets": assets}


def build_pose_document(
    objects: list[SceneObject],
    history: ConditionHistory,
    instruction: str,
) -> dict[str, Any] | None:
    """Pose document for the dynamic objects among ``objects``.

    Each accepted condition becomes one pose map keyed by prim name; maps
    that end up empty are dropped. With nothing accepted, the current poses
    are written as the only entry.

    Returns:
        The document, or None if no object is dynamic
    """
    prim_names = dict(zip(
        (obj.id for obj in objects),
        assign_prim_names([obj.name for obj in objects]),
    ))
    dynamic = [obj for obj in objects if not obj.disable_gravity]
    if not dynamic:
        return None

    poses: list[dict[str, list[float]]] = []
    for snapshot in history.conditions:
        entry = {}
        for obj in dynamic:
            pose = snapshot.get(obj.id)
            if pose is not None:
                entry[prim_names[obj.id]] = pose_to_export_tuple(pose.position, pose.orientation)
        if entry:
            poses.append(entry)

    if not poses:
        poses.append({
            prim_names[obj.id]: pose_to_export_tuple(
                obj.transform.position, obj.transform.orientation
            )
            for obj in dynamic
        })

    return {"instruction": instruction.strip(), "poses": poses}


def build_payload_tree(objects: list[SceneObject]) -> dict[str, bytes]:
    """Map every object's payload under ``assets/<name>/``."""
    tree: dict[str, bytes] = {}
    for obj in objects:
        files = obj.files
        if not files:
            logger.warning(f"'{obj.name}' has no payload files")
        for rel, data in files.items():
            tree[f"{ASSETS_DIR}/{obj.name}/{rel}"] = data
    return tree


def build_bundle(
    session: SceneSession,
    params: ExportParams | None = None,
) -> SceneBundle:
    """Assemble the bundle for a session.

    Objects flagged ``exclude_from_export`` are left out of every document.

    Raises:
        PreconditionError: If the session is not ready for export
    """
    check_export_preconditions(session, params)

    objects = session.exportable_objects()
    bundle = SceneBundle(
        manifest=build_manifest(objects),
        description=write_usda(objects),
        initial_conditions=build_pose_document(objects, session.history, session.instruction),
        assets=build_payload_tree(objects),
    )

    n_poses = len(bundle.initial_conditions["poses"]) if bundle.initial_conditions else 0
    logger.info(f"Built bundle: {len(objects)} objects, {n_poses} pose set(s)")
    return bundle


def export_bundle(
    session: SceneSession,
    path: str | Path | None = None,
    params: ExportParams | None = None,
) -> bytes:
    """Build the bundle archive and optionally write it to ``path``.

    Returns:
        Zip archive bytes

    Raises:
        PreconditionError: If the session is not ready for export
    """
    data = build_bundle(session, params).to_bytes()
    if path is not None:
        save_archive(path, data)
    return data


async def export_bundle_async(
    session: SceneSession,
    path: str | Path | None = None,
    params: ExportParams | None = None,
) -> bytes:
    """Like :func:`export_bundle`, with archive packing on a worker thread.

    The bundle is built before the first await, so later edits to the
    session do not leak into the archive.
    """
    bundle = build_bundle(session, params)
    entries = list(bundle.entries())
    data = await asyncio.to_thread(pack_archive, entries)
    if path is not None:
        await asyncio.to_thread(save_archive, path, data)
    return data


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _payload_folders(entries: Mapping[str, bytes]) -> dict[str, dict[str, bytes]]:
    """Group ``assets/<folder>/<rel>`` entries by folder."""
    folders: dict[str, dict[str, bytes]] = {}
    prefix = f"{ASSETS_DIR}/"
    for path, data in entries.items():
        if not path.startswith(prefix):
            continue
        folder, sep, rel = path[len(prefix):].partition("/")
        if not sep or not rel:
            continue
        folders.setdefault(folder, {})[rel] = data
    return folders


def _read_manifest(data: bytes) -> list[dict[str, Any]]:
    try:
        manifest = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedArchiveError(f"Unreadable {MANIFEST_FILE}: {e}") from e

    if not isinstance(manifest, dict) or not isinstance(manifest.get("assets"), list):
        raise MalformedArchiveError(f"{MANIFEST_FILE} has no asset list")
    return manifest["assets"]


def _vec(config: Mapping[str, Any], key: str, default: float) -> tuple[float, float, float]:
    value = config.get(key) or {}
    return (
        float(value.get("x", default)),
        float(value.get("y", default)),
        float(value.get("z", default)),
    )


def _load_payload(
    loader: AssetLoader,
    name: str,
    files: dict[str, bytes] | None,
    skipped: list[str],
) -> SceneObject | None:
    if not files:
        logger.warning(f"No payload for '{name}' in bundle; skipping")
        skipped.append(name)
        return None
    try:
        return loader.load_from_files(files, name, strip_root=False)
    except (UnsupportedInputError, AssetDecodeError) as e:
        logger.warning(f"Skipping '{name}': {e}")
        skipped.append(name)
        return None


def _objects_from_manifest(
    data: bytes,
    folders: dict[str, dict[str, bytes]],
    loader: AssetLoader,
    skipped: list[str],
) -> tuple[list[SceneObject], dict[str, str]]:
    objects: list[SceneObject] = []
    seen_ids: set[str] = set()
    # Prim names are assigned over every entry, skipped ones included
    names: list[str] = []
    loaded_ids: list[str | None] = []

    for config in _read_manifest(data):
        try:
            name = str(config["name"])
            position = _vec(config, "position", 0.0)
            rotation = _vec(config, "rotation", 0.0)
            scale = _vec(config, "scale", 1.0)
            transform = Transform3D.from_euler(position=position, rotation=rotation, scale=scale)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedArchiveError(f"Bad asset entry in {MANIFEST_FILE}: {e}") from e

        names.append(name)
        obj = _load_payload(loader, name, folders.get(name), skipped)
        if obj is None:
            loaded_ids.append(None)
            continue

        asset_id = config.get("id")
        if isinstance(asset_id, str) and asset_id and asset_id not in seen_ids:
            obj.id = asset_id
        seen_ids.add(obj.id)

        main_file = config.get("mainFile")
        if isinstance(main_file, str) and main_file in obj.files:
            obj.main_file = main_file

        obj.transform = transform
        obj.disable_gravity = bool(config.get("disableGravity", False))
        objects.append(obj)
        loaded_ids.append(obj.id)

    ids_by_prim = {
        prim_name: object_id
        for prim_name, object_id in zip(assign_prim_names(names), loaded_ids)
        if object_id is not None
    }
    return objects, ids_by_prim


def _match_folder(prim: UsdPrim, folders: dict[str, dict[str, bytes]]) -> str | None:
    folder = prim.asset_folder
    if folder is not None and folder in folders:
        return folder
    for candidate in folders:
        if sanitize_name(candidate) == prim.name:
            return candidate
    return None


def _objects_from_description(
    data: bytes,
    folders: dict[str, dict[str, bytes]],
    loader: AssetLoader,
    skipped: list[str],
) -> tuple[list[SceneObject], dict[str, str]]:
    try:
        doc = parse_usda(data.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise MalformedArchiveError(f"Unreadable {DESCRIPTION_FILE}: {e}") from e
    if doc.up_axis != "Z":
        logger.warning(
            f"{DESCRIPTION_FILE} declares upAxis '{doc.up_axis}'; reading it as Z-up"
        )

    objects: list[SceneObject] = []
    ids_by_prim: dict[str, str] = {}
    for prim in doc.prims:
        folder = _match_folder(prim, folders)
        if folder is None:
            logger.debug(f"No payload folder matches block '{prim.name}'; ignoring")
            continue

        obj = _load_payload(loader, folder, folders[folder], skipped)
        if obj is None:
            continue

        main_file = prim.main_file
        if main_file is not None and main_file in obj.files:
            obj.main_file = main_file

        obj.transform = prim.to_transform()
        obj.disable_gravity = prim.kinematic
        objects.append(obj)
        ids_by_prim[prim.name] = obj.id

    return objects, ids_by_prim


def _restore_pose_document(
    data: bytes,
    ids_by_prim: Mapping[str, str],
) -> tuple[ConditionHistory, str]:
    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable {POSES_FILE}: {e}")
        return ConditionHistory(), ""
    if not isinstance(doc, dict):
        logger.warning(f"Ignoring {POSES_FILE}: not an object")
        return ConditionHistory(), ""

    instruction = doc.get("instruction")
    instruction = instruction if isinstance(instruction, str) else ""

    history = ConditionHistory()
    for entry in doc.get("poses") or []:
        if not isinstance(entry, dict):
            continue
        poses = {}
        for prim_name, values in entry.items():
            object_id = ids_by_prim.get(prim_name)
            if object_id is None:
                logger.debug(f"Pose for unknown object '{prim_name}' dropped")
                continue
            try:
                position, orientation = pose_from_export_tuple(values)
            except (TypeError, ValueError):
                logger.debug(f"Malformed pose for '{prim_name}' dropped")
                continue
            poses[object_id] = ObjectPose(position=position, orientation=orientation)
        if poses:
            history = history.append(PoseSnapshot(poses=poses))

    return history, instruction


def import_bundle(
    source: str | Path | bytes | Mapping[str, bytes],
    loader: AssetLoader | None = None,
    name: str | None = None,
) -> ImportedScene:
    """Rebuild a session from a bundle.

    Args:
        source: Archive path, archive bytes, or already unpacked entries
        loader: Asset loader for the payloads (default loader if None)
        name: Session name (archive file stem, or a generic name)

    Returns:
        ImportedScene with the new session and any skipped assets

    Raises:
        MalformedArchiveError: If the archive is unreadable, the manifest is
            present but unparsable, or there is neither manifest nor description
    """
    if isinstance(source, Mapping):
        entries = dict(source)
    elif isinstance(source, (bytes, bytearray)):
        entries = unpack_archive(bytes(source))
    else:
        entries = read_archive(source)
        name = name or Path(source).stem

    loader = loader or AssetLoader()
    folders = _payload_folders(entries)
    skipped: list[str] = []

    if MANIFEST_FILE in entries:
        objects, ids_by_prim = _objects_from_manifest(
            entries[MANIFEST_FILE], folders, loader, skipped
        )
        origin: Literal["manifest", "description"] = "manifest"
    elif DESCRIPTION_FILE in entries:
        logger.info(f"No {MANIFEST_FILE} in bundle; reading {DESCRIPTION_FILE}")
        objects, ids_by_prim = _objects_from_description(
            entries[DESCRIPTION_FILE], folders, loader, skipped
        )
        origin = "description"
    else:
        raise MalformedArchiveError(
            f"Invalid scene file: missing {MANIFEST_FILE} and {DESCRIPTION_FILE}"
        )

    history, instruction = ConditionHistory(), ""
    if POSES_FILE in entries:
        history, instruction = _restore_pose_document(entries[POSES_FILE], ids_by_prim)

    session = SceneSession(
        name=name or "Imported Scene",
        objects=objects,
        instruction=instruction,
        history=history,
    )
    logger.info(
        f"Imported {len(objects)} objects and {len(history)} condition(s) "
        f"from {origin}"
    )
    return ImportedScene(session=session, skipped=skipped, source=origin)


async def import_bundle_async(
    source: str | Path | bytes | Mapping[str, bytes],
    loader: AssetLoader | None = None,
    name: str | None = None,
) -> ImportedScene:
    """Like :func:`import_bundle`, run on a worker thread.

    A path is read with :func:`read_archive_async` before the import starts.
    """
    if isinstance(source, Mapping):
        source = dict(source)
    elif not isinstance(source, (bytes, bytearray)):
        name = name or Path(source).stem
        source = await read_archive_async(source)
    return await asyncio.to_thread(import_bundle, source, loader, name)
