"""Tests for bundle export and import."""

import asyncio
import json
import logging
import tempfile
from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from compose3d.core.config import ExportParams, PlacementParams
from compose3d.core.errors import MalformedArchiveError, PreconditionError
from compose3d.io.archive import (
    pack_archive,
    read_archive,
    read_archive_async,
    unpack_archive,
    write_archive_async,
)
from compose3d.io.bundle import (
    DESCRIPTION_FILE,
    MANIFEST_FILE,
    MISSING_INSTRUCTION,
    MISSING_STATIC,
    POSES_FILE,
    build_bundle,
    export_bundle,
    export_bundle_async,
    import_bundle,
    import_bundle_async,
)
from compose3d.scene.history import ConditionHistoryManager, PoseSnapshot
from compose3d.scene.scene import SceneObject, SceneSession
from compose3d.scene.transform import Transform3D


def usd_object(name: str, static: bool = False, **kwargs) -> SceneObject:
    """Object with a small opaque USD payload."""
    obj = SceneObject(
        name=name,
        main_file=f"{name}.usda",
        file_type="usd",
        disable_gravity=static,
        **kwargs,
    )
    obj.set_files({
        f"{name}.usda": b"#usda 1.0\n",
        "textures/albedo.png": b"\x89PNG",
    })
    return obj


def make_session() -> SceneSession:
    session = SceneSession(instruction="  put the cup on the plate  ")
    session.add_object(usd_object(
        "cup",
        transform=Transform3D.from_euler(
            position=(0.1, 0.05, -0.2),
            rotation=(0.0, 0.7, 0.0),
            scale=(1.0, 1.0, 1.5),
        ),
    ))
    session.add_object(usd_object("plate", transform=Transform3D(position=(-0.1, 0.02, 0.1))))
    session.add_object(usd_object("table", static=True))
    return session


def matrices_close(a: Transform3D, b: Transform3D) -> None:
    np.testing.assert_array_almost_equal(a.to_matrix(), b.to_matrix())


class TestExportPreconditions:
    """Test export refusal."""

    def test_missing_instruction(self):
        """Test an empty or whitespace instruction is refused."""
        session = make_session()
        session.instruction = "   "
        with pytest.raises(PreconditionError) as exc_info:
            build_bundle(session)
        assert exc_info.value.reason == MISSING_INSTRUCTION

    def test_missing_static_object(self):
        """Test a scene without a static object is refused."""
        session = make_session()
        session.find_by_name("table").disable_gravity = False
        with pytest.raises(PreconditionError) as exc_info:
            build_bundle(session)
        assert exc_info.value.reason == MISSING_STATIC

    def test_excluded_static_object_does_not_count(self):
        """Test a static object excluded from export does not satisfy the check."""
        session = make_session()
        session.find_by_name("table").exclude_from_export = True
        with pytest.raises(PreconditionError):
            build_bundle(session)

    def test_session_unchanged_on_refusal(self):
        """Test a refused export leaves the session untouched."""
        session = make_session()
        session.instruction = ""
        before = session.model_dump()
        with pytest.raises(PreconditionError):
            export_bundle(session)
        assert session.model_dump() == before

    def test_checks_can_be_disabled(self):
        """Test export parameters can relax both checks."""
        session = SceneSession()
        session.add_object(usd_object("cup"))
        params = ExportParams(instruction_required=False, require_static_object=False)
        assert build_bundle(session, params).manifest["assets"][0]["name"] == "cup"


class TestBuildBundle:
    """Test bundle contents."""

    def test_entry_names(self):
        """Test the fixed file names and payload tree."""
        names = [name for name, _ in build_bundle(make_session()).entries()]

        assert names[:3] == [DESCRIPTION_FILE, MANIFEST_FILE, POSES_FILE]
        assert "assets/cup/cup.usda" in names
        assert "assets/cup/textures/albedo.png" in names
        assert "assets/table/table.usda" in names

    def test_manifest(self):
        """Test the manifest holds live-frame transforms and flags."""
        session = make_session()
        manifest = build_bundle(session).manifest
        cup = session.find_by_name("cup")

        assert manifest["version"] == 1
        entry = manifest["assets"][0]
        assert entry["id"] == cup.id
        assert entry["name"] == "cup"
        assert entry["mainFile"] == "cup.usda"
        assert entry["position"] == {"x": 0.1, "y": 0.05, "z": -0.2}
        assert entry["rotation"]["y"] == pytest.approx(0.7)
        assert entry["scale"] == {"x": 1.0, "y": 1.0, "z": 1.5}
        assert entry["disableGravity"] is False
        assert manifest["assets"][2]["disableGravity"] is True

    def test_excluded_objects_left_out(self):
        """Test export-excluded objects appear in no document."""
        session = make_session()
        session.add_object(usd_object("ghost", exclude_from_export=True))
        bundle = build_bundle(session)

        assert all(a["name"] != "ghost" for a in bundle.manifest["assets"])
        assert "ghost" not in bundle.description
        assert not any(path.startswith("assets/ghost/") for path in bundle.assets)
        assert all("ghost" not in pose for pose in bundle.initial_conditions["poses"])

    def test_pose_document_fallback_to_current(self):
        """Test zero accepted conditions export the current poses once."""
        session = make_session()
        doc = build_bundle(session).initial_conditions

        assert doc["instruction"] == "put the cup on the plate"
        assert len(doc["poses"]) == 1
        assert set(doc["poses"][0]) == {"cup", "plate"}
        plate = doc["poses"][0]["plate"]
        # Live (-0.1, 0.02, 0.1) -> export (-0.1, -0.1, 0.02), identity quaternion
        assert plate == [-0.1, -0.1, 0.02, 0.0, -0.0, 0.0, 1.0]

    def test_pose_document_one_entry_per_condition(self):
        """Test each accepted condition becomes one pose map."""
        session = make_session()
        manager = ConditionHistoryManager(session, PlacementParams(seed=0))
        manager.accept_and_redraw()
        manager.accept_condition()

        doc = build_bundle(session).initial_conditions
        assert len(doc["poses"]) == 2
        assert doc["poses"][0] != doc["poses"][1]

    def test_empty_conditions_dropped(self):
        """Test conditions naming no exported object are dropped."""
        session = make_session()
        session.history = session.history.append(PoseSnapshot(poses={}))
        doc = build_bundle(session).initial_conditions

        # The only condition was empty, so the current poses are used instead
        assert len(doc["poses"]) == 1
        assert set(doc["poses"][0]) == {"cup", "plate"}

    def test_no_pose_document_without_dynamic_objects(self):
        """Test the pose document is omitted when everything is static."""
        session = SceneSession(instruction="look")
        session.add_object(usd_object("table", static=True))
        bundle = build_bundle(session)

        assert bundle.initial_conditions is None
        assert POSES_FILE not in dict(bundle.entries())

    def test_prim_name_collisions(self):
        """Test objects whose names sanitize alike get distinct pose keys."""
        session = SceneSession(instruction="sort")
        session.add_object(usd_object("mug 1"))
        session.add_object(usd_object("mug#1"))
        session.add_object(usd_object("table", static=True))
        bundle = build_bundle(session)

        assert set(bundle.initial_conditions["poses"][0]) == {"mug_1", "mug_1_1"}
        assert 'def Xform "mug_1_1"' in bundle.description


class TestImportBundle:
    """Test bundle import."""

    def test_manifest_round_trip_example(self):
        """Test a single static box survives export and import."""
        session = SceneSession(instruction="pick up the box")
        session.add_object(usd_object(
            "Box", static=True, id="a1",
            transform=Transform3D(position=(1.0, 2.0, 3.0)),
        ))

        result = import_bundle(export_bundle(session))
        objects = result.session.objects

        assert result.source == "manifest"
        assert len(objects) == 1
        assert objects[0].name == "Box"
        assert objects[0].id == "a1"
        np.testing.assert_allclose(objects[0].transform.position, (1.0, 2.0, 3.0), atol=1e-6)
        assert objects[0].disable_gravity is True

    def test_manifest_round_trip(self):
        """Test transforms, payloads, history and instruction are restored."""
        session = make_session()
        manager = ConditionHistoryManager(session, PlacementParams(seed=4))
        manager.accept_and_redraw()
        manager.accept_condition()

        restored = import_bundle(export_bundle(session)).session

        assert restored.instruction == "put the cup on the plate"
        assert [o.name for o in restored.objects] == ["cup", "plate", "table"]
        for original, loaded in zip(session.objects, restored.objects):
            assert loaded.id == original.id
            assert loaded.disable_gravity == original.disable_gravity
            assert loaded.files == original.files
            matrices_close(loaded.transform, original.transform)

        assert len(restored.history) == 2
        for before, after in zip(session.history.conditions, restored.history.conditions):
            assert set(after.poses) == set(before.poses)
            for obj_id, pose in before.poses.items():
                np.testing.assert_allclose(after.poses[obj_id].position, pose.position)
                np.testing.assert_allclose(after.poses[obj_id].orientation, pose.orientation)

    def test_legacy_description_path(self):
        """Test a bundle without a manifest is read from the description."""
        session = make_session()
        entries = unpack_archive(export_bundle(session))
        del entries[MANIFEST_FILE]

        result = import_bundle(entries)

        assert result.source == "description"
        assert [o.name for o in result.session.objects] == ["cup", "plate", "table"]
        for original, loaded in zip(session.objects, result.session.objects):
            matrices_close(loaded.transform, original.transform)
        assert result.session.find_by_name("table").disable_gravity is True
        assert result.session.find_by_name("cup").disable_gravity is False

    def test_legacy_unmatched_block_ignored(self):
        """Test description blocks without a payload folder are skipped."""
        session = make_session()
        entries = unpack_archive(export_bundle(session))
        del entries[MANIFEST_FILE]
        for path in [p for p in entries if p.startswith("assets/plate/")]:
            del entries[path]

        result = import_bundle(entries)

        assert [o.name for o in result.session.objects] == ["cup", "table"]
        assert result.skipped == []

    def test_unknown_pose_names_dropped(self):
        """Test pose entries naming missing objects are silently dropped."""
        session = make_session()
        entries = unpack_archive(export_bundle(session))
        doc = json.loads(entries[POSES_FILE])
        doc["poses"][0]["stranger"] = [0, 0, 0, 0, 0, 0, 1]
        entries[POSES_FILE] = json.dumps(doc).encode()

        history = import_bundle(entries).session.history

        assert len(history) == 1
        assert len(history[0]) == 2

    def test_missing_payload_skipped(self):
        """Test manifest assets without payload files are reported as skipped."""
        entries = unpack_archive(export_bundle(make_session()))
        for path in [p for p in entries if p.startswith("assets/cup/")]:
            del entries[path]

        result = import_bundle(entries)

        assert result.skipped == ["cup"]
        assert [o.name for o in result.session.objects] == ["plate", "table"]

    def test_skipped_asset_keeps_pose_keys(self):
        """Test poses still match when a skipped asset shared a prim name."""
        session = SceneSession(instruction="stack the boxes")
        session.add_object(usd_object("Box#", static=True))
        moving = session.add_object(usd_object(
            "Box?", transform=Transform3D(position=(0.2, 0.1, 0.0)),
        ))
        entries = unpack_archive(export_bundle(session))
        assert set(json.loads(entries[POSES_FILE])["poses"][0]) == {"Box__1"}
        for path in [p for p in entries if p.startswith("assets/Box#/")]:
            del entries[path]

        result = import_bundle(entries)

        assert result.skipped == ["Box#"]
        assert len(result.session.history) == 1
        pose = result.session.history[0].get(moving.id)
        assert pose is not None
        np.testing.assert_allclose(pose.position, (0.2, 0.1, 0.0), atol=1e-9)

    def test_manifest_rotation_is_intrinsic_xyz(self):
        """Test manifest Euler angles rotate about the moving axes."""
        manifest = {
            "version": 1,
            "assets": [{
                "id": "crate-1",
                "name": "Crate",
                "mainFile": "crate.usda",
                "position": {"x": 0.0, "y": 0.0, "z": 0.0},
                "rotation": {"x": 0.5, "y": 0.3, "z": 0.2},
                "scale": {"x": 1.0, "y": 1.0, "z": 1.0},
                "disableGravity": True,
            }],
        }
        entries = {
            MANIFEST_FILE: json.dumps(manifest).encode(),
            "assets/Crate/crate.usda": b"#usda 1.0\n",
        }

        crate = import_bundle(entries).session.objects[0]

        expected = Rotation.from_euler("XYZ", [0.5, 0.3, 0.2]).as_matrix()
        np.testing.assert_array_almost_equal(crate.transform.to_matrix()[:3, :3], expected)

    def test_legacy_up_axis_warning(self, caplog):
        """Test a description that is not Z-up is read with a warning."""
        entries = unpack_archive(export_bundle(make_session()))
        del entries[MANIFEST_FILE]
        entries[DESCRIPTION_FILE] = entries[DESCRIPTION_FILE].replace(
            b'upAxis = "Z"', b'upAxis = "Y"'
        )

        with caplog.at_level(logging.WARNING, logger="compose3d.io.bundle"):
            result = import_bundle(entries)

        assert len(result.session.objects) == 3
        assert "upAxis 'Y'" in caplog.text

    def test_z_up_description_no_warning(self, caplog):
        """Test the usual Z-up description reads without warnings."""
        entries = unpack_archive(export_bundle(make_session()))
        del entries[MANIFEST_FILE]

        with caplog.at_level(logging.WARNING, logger="compose3d.io.bundle"):
            import_bundle(entries)

        assert "upAxis" not in caplog.text

    def test_not_a_zip(self):
        """Test unreadable archives are rejected."""
        with pytest.raises(MalformedArchiveError):
            import_bundle(b"definitely not a zip file")

    def test_unparsable_manifest(self):
        """Test a present but broken manifest is a hard failure."""
        entries = unpack_archive(export_bundle(make_session()))
        entries[MANIFEST_FILE] = b"{not json"
        with pytest.raises(MalformedArchiveError):
            import_bundle(entries)

    def test_manifest_without_assets(self):
        """Test a manifest without an asset list is rejected."""
        with pytest.raises(MalformedArchiveError):
            import_bundle({MANIFEST_FILE: b'{"version": 1}'})

    def test_empty_archive(self):
        """Test an archive with neither manifest nor description is rejected."""
        with pytest.raises(MalformedArchiveError):
            import_bundle(pack_archive({"readme.txt": b"hello"}))

    def test_file_round_trip(self):
        """Test exporting to and importing from a path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "kitchen.zip"
            data = export_bundle(make_session(), path)
            written = path.read_bytes()
            result = import_bundle(path)

        assert written == data
        assert result.session.name == "kitchen"
        assert len(result.session.objects) == 3


class TestAsyncWrappers:
    """Test the awaitable export/import wrappers."""

    def test_export_then_import(self):
        """Test async export and import give the same result as sync."""
        session = make_session()

        async def run():
            data = await export_bundle_async(session)
            return await import_bundle_async(data)

        result = asyncio.run(run())
        assert [o.name for o in result.session.objects] == ["cup", "plate", "table"]

    def test_export_snapshot(self):
        """Test edits after the call starts do not reach the archive."""
        session = make_session()

        async def run():
            task = asyncio.create_task(export_bundle_async(session))
            await asyncio.sleep(0)
            session.find_by_name("cup").name = "renamed"
            return await task

        data = asyncio.run(run())
        manifest = json.loads(unpack_archive(data)[MANIFEST_FILE])
        assert manifest["assets"][0]["name"] == "cup"

    def test_export_precondition_raised(self):
        """Test precondition failures propagate through the wrapper."""
        session = make_session()
        session.instruction = ""
        with pytest.raises(PreconditionError):
            asyncio.run(export_bundle_async(session))

    def test_export_to_path_then_import_path(self):
        """Test async export writes the returned bytes and import reads the path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "pantry.zip"

            async def run():
                data = await export_bundle_async(make_session(), path)
                return data, await import_bundle_async(path)

            data, result = asyncio.run(run())
            written = path.read_bytes()

        assert written == data
        assert result.session.name == "pantry"
        assert [o.name for o in result.session.objects] == ["cup", "plate", "table"]

    def test_archive_round_trip(self):
        """Test the async archive helpers write and read the same entries."""
        entries = {"scene.json": b"{}", "assets/cup/cup.usda": b"#usda 1.0\n"}
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "bundle.zip"

            async def run():
                written = await write_archive_async(path, entries)
                return written, await read_archive_async(written)

            written, loaded = asyncio.run(run())
            assert written == path
            assert read_archive(path) == entries

        assert loaded == entries

    def test_read_archive_async_rejects_garbage(self):
        """Test unreadable files raise MalformedArchiveError through the wrapper."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.zip"
            path.write_bytes(b"not a zip")
            with pytest.raises(MalformedArchiveError):
                asyncio.run(read_archive_async(path))
