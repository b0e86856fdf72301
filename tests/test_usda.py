"""Tests for the USDA description writer and line-oriented reader."""

import math

import numpy as np
import pytest

from compose3d.io.usda import (
    assign_prim_names,
    format_number,
    parse_usda,
    sanitize_name,
    write_usda,
)
from compose3d.scene.scene import SceneObject
from compose3d.scene.transform import Transform3D


class TestNames:
    """Test prim name sanitization."""

    def test_sanitize(self):
        """Test every character outside [A-Za-z0-9_] becomes an underscore."""
        assert sanitize_name("Table #1") == "Table__1"
        assert sanitize_name("mug-2.v3") == "mug_2_v3"
        assert sanitize_name("plain_name") == "plain_name"

    def test_sanitize_deterministic(self):
        """Test sanitization always yields the same identifier."""
        assert sanitize_name("Table #1") == sanitize_name("Table #1")

    def test_collision_suffixes(self):
        """Test names that sanitize alike get numeric suffixes in order."""
        assert assign_prim_names(["a b", "a-b", "a.b"]) == ["a_b", "a_b_1", "a_b_2"]

    def test_suffix_skips_taken_names(self):
        """Test a generated suffix never reuses an existing identifier."""
        assert assign_prim_names(["x_1", "x", "x"]) == ["x_1", "x", "x_2"]


class TestFormatNumber:
    """Test number formatting."""

    def test_integral(self):
        assert format_number(1.0) == "1"
        assert format_number(-2.0) == "-2"
        assert format_number(-0.0) == "0"

    def test_fractional_round_trips(self):
        """Test fractional values are written with full precision."""
        value = 0.1 + 0.2
        assert float(format_number(value)) == value


class TestWriteUsda:
    """Test the description writer."""

    def test_empty_scene(self):
        """Test the document layout with no objects."""
        assert write_usda([]) == (
            "#usda 1.0\n"
            "(\n"
            '    defaultPrim = "World"\n'
            "    metersPerUnit = 1\n"
            '    upAxis = "Z"\n'
            ")\n"
            "\n"
            'def Xform "World"\n'
            "{\n"
            "}\n"
        )

    def test_object_block(self):
        """Test one object block in the export frame."""
        obj = SceneObject(
            name="Table #1",
            main_file="table.usdz",
            transform=Transform3D(position=(1.0, 2.0, 3.0), scale=(1.0, 2.0, 3.0)),
        )
        text = write_usda([obj])

        assert 'def Xform "Table__1" (' in text
        assert "prepend references = @./assets/Table #1/table.usdz@" in text
        assert "double3 xformOp:translate = (1, -3, 2)" in text
        assert "quatd xformOp:orient = (1, 0, 0, 0)" in text
        assert "float3 xformOp:scale = (1, 3, 2)" in text
        assert (
            'uniform token[] xformOpOrder = ["xformOp:translate", '
            '"xformOp:orient", "xformOp:scale"]'
        ) in text
        assert "kinematicEnabled" not in text

    def test_static_object_marked_kinematic(self):
        """Test static objects carry the kinematic flag."""
        obj = SceneObject(name="table", main_file="t.usd", disable_gravity=True)
        assert "bool physics:kinematicEnabled = 1" in write_usda([obj])


class TestParseUsda:
    """Test the line-oriented reader."""

    def test_round_trip(self):
        """Test written blocks parse back to the same live transforms."""
        objects = [
            SceneObject(
                name="cup",
                main_file="cup.glb",
                transform=Transform3D.from_euler(
                    position=(0.1, 0.2, -0.3),
                    rotation=(0.2, 1.1, -0.4),
                    scale=(1.0, 1.5, 2.0),
                ),
            ),
            SceneObject(name="table", main_file="models/table.usda", disable_gravity=True),
        ]
        doc = parse_usda(write_usda(objects))

        assert doc.up_axis == "Z"
        assert doc.default_prim == "World"
        assert [p.name for p in doc.prims] == ["cup", "table"]

        cup = doc.get("cup").to_transform()
        np.testing.assert_array_almost_equal(cup.position, objects[0].transform.position)
        np.testing.assert_array_almost_equal(cup.orientation, objects[0].transform.orientation)
        np.testing.assert_array_almost_equal(cup.scale, objects[0].transform.scale)

        table = doc.get("table")
        assert table.kinematic is True
        assert table.asset_folder == "table"
        assert table.main_file == "models/table.usda"
        assert doc.get("cup").kinematic is False

    def test_missing_fields_default(self):
        """Test a block without ops yields the identity transform."""
        text = (
            '#usda 1.0\n'
            'def Xform "World"\n'
            '{\n'
            '    def Xform "Bare"\n'
            '    {\n'
            '    }\n'
            '}\n'
        )
        prim = parse_usda(text).get("Bare")
        t = prim.to_transform()

        assert prim.reference is None
        assert t.position == (0.0, 0.0, 0.0)
        assert t.orientation == (1.0, 0.0, 0.0, 0.0)
        assert t.scale == (1.0, 1.0, 1.0)
        assert prim.kinematic is False

    def test_legacy_euler(self):
        """Test rotateXYZ is used when no orient quaternion is present."""
        text = (
            'def Xform "World"\n'
            '{\n'
            '    def Xform "Box"\n'
            '    {\n'
            '        float3 xformOp:rotateXYZ = (0, 0, 90)\n'
            '    }\n'
            '}\n'
        )
        t = parse_usda(text).get("Box").to_transform()

        # Export yaw of 90 degrees about Z is a live rotation about +Y
        expected = Transform3D.from_euler(rotation=(0.0, 90.0, 0.0), degrees=True)
        np.testing.assert_array_almost_equal(t.orientation, expected.orientation)

    def test_orient_wins_over_euler(self):
        """Test the quaternion takes precedence over a legacy Euler triple."""
        text = (
            'def Xform "World"\n'
            '{\n'
            '    def Xform "Box"\n'
            '    {\n'
            '        float3 xformOp:rotateXYZ = (0, 0, 90)\n'
            '        quatd xformOp:orient = (1, 0, 0, 0)\n'
            '    }\n'
            '}\n'
        )
        t = parse_usda(text).get("Box").to_transform()
        assert t.orientation == (1.0, 0.0, 0.0, 0.0)

    def test_nested_prims_ignored(self):
        """Test only direct children of the root become object blocks."""
        text = (
            'def Xform "World"\n'
            '{\n'
            '    def Xform "Box"\n'
            '    {\n'
            '        double3 xformOp:translate = (1, 2, 3)\n'
            '        def Mesh "geo"\n'
            '        {\n'
            '            double3 xformOp:translate = (9, 9, 9)\n'
            '        }\n'
            '    }\n'
            '}\n'
        )
        doc = parse_usda(text)

        assert [p.name for p in doc.prims] == ["Box"]
        assert doc.get("Box").translate == (1.0, 2.0, 3.0)

    def test_unparsable_value_falls_back(self):
        """Test a garbled op is treated as missing."""
        text = (
            'def Xform "World"\n'
            '{\n'
            '    def Xform "Box"\n'
            '    {\n'
            '        double3 xformOp:translate = (1, two, 3)\n'
            '    }\n'
            '}\n'
        )
        prim = parse_usda(text).get("Box")
        assert prim.translate is None
        assert prim.to_transform().position == (0.0, 0.0, 0.0)

    def test_yaw_quaternion_round_trip(self):
        """Test a randomized yaw survives writing and parsing."""
        obj = SceneObject(
            name="cup",
            main_file="cup.glb",
            transform=Transform3D(orientation=Transform3D.yaw_quaternion(math.pi / 3)),
        )
        t = parse_usda(write_usda([obj])).get("cup").to_transform()
        assert t.orientation == pytest.approx(obj.transform.orientation)
