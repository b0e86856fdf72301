"""USDA scene description writer and reader.

The description document (``scene.usda``) is a Z-up USD ASCII layer with one
``Xform`` child of ``/World`` per exported object. Each child references the
object's payload and carries translate, orient and scale ops in the export
frame, always in that order.

The reader is a small line-oriented parser for exactly that block grammar.
It is used when a bundle has no ``scene.json`` manifest. Missing fields fall
back to zero translate, identity orientation, unit scale and
``kinematic = False``; an orient quaternion wins over a legacy
``xformOp:rotateXYZ`` Euler triple when both are present.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from ..scene.frames import (
    euler_from_export,
    position_from_export,
    position_to_export,
    quaternion_from_export,
    quaternion_to_export,
    scale_from_export,
    scale_to_export,
)
from ..scene.transform import Transform3D

if TYPE_CHECKING:
    from ..scene.scene import SceneObject

logger = logging.getLogger(__name__)

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")

ROOT_PRIM = "World"
XFORM_OP_ORDER = '["xformOp:translate", "xformOp:orient", "xformOp:scale"]'


def sanitize_name(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_]`` with ``_``.

    >>> sanitize_name("Table #1")
    'Table__1'
    """
    return _INVALID_CHARS.sub("_", name)


def assign_prim_names(names: Sequence[str]) -> list[str]:
    """Sanitize display names into unique prim identifiers.

    The first object to claim an identifier keeps it; later ones get
    ``_1``, ``_2``, ... appended, skipping identifiers already taken.
    The result is deterministic for a given name order.
    """
    taken: set[str] = set()
    result: list[str] = []
    for name in names:
        base = sanitize_name(name)
        candidate = base
        suffix = 1
        while candidate in taken:
            candidate = f"{base}_{suffix}"
            suffix += 1
        taken.add(candidate)
        result.append(candidate)
    return result


def format_number(value: float) -> str:
    """Format a float compactly: integral values without a decimal point."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _format_tuple(values: Sequence[float]) -> str:
    return "(" + ", ".join(format_number(v) for v in values) + ")"


def write_usda(objects: Sequence[SceneObject]) -> str:
    """Render the scene description for a list of exportable objects.

    Objects flagged ``exclude_from_export`` must already be filtered out.

    Args:
        objects: Objects to describe, in scene order

    Returns:
        USDA text
    """
    lines = [
        "#usda 1.0",
        "(",
        f'    defaultPrim = "{ROOT_PRIM}"',
        "    metersPerUnit = 1",
        '    upAxis = "Z"',
        ")",
        "",
        f'def Xform "{ROOT_PRIM}"',
        "{",
    ]

    prim_names = assign_prim_names([obj.name for obj in objects])
    for obj, prim_name in zip(objects, prim_names):
        t = obj.transform
        reference = f"./assets/{obj.name}/{obj.main_file}"
        lines += [
            "",
            f'    def Xform "{prim_name}" (',
            f"        prepend references = @{reference}@",
            "    )",
            "    {",
            f"        double3 xformOp:translate = {_format_tuple(position_to_export(t.position))}",
            f"        quatd xformOp:orient = {_format_tuple(quaternion_to_export(t.orientation))}",
            f"        float3 xformOp:scale = {_format_tuple(scale_to_export(t.scale))}",
            f"        uniform token[] xformOpOrder = {XFORM_OP_ORDER}",
        ]
        if obj.disable_gravity:
            lines.append("        bool physics:kinematicEnabled = 1")
        lines.append("    }")

    lines.append("}")
    return "\n".join(lines) + "\n"


@dataclass
class UsdPrim:
    """One object block recovered from a description document.

    Values are as written, i.e. in the export frame.
    """

    name: str
    reference: str | None = None
    translate: tuple[float, float, float] | None = None
    orient: tuple[float, float, float, float] | None = None
    rotate_xyz: tuple[float, float, float] | None = None
    scale: tuple[float, float, float] | None = None
    kinematic: bool = False

    @property
    def asset_folder(self) -> str | None:
        """Payload folder name taken from an ``./assets/<folder>/...`` reference."""
        if not self.reference:
            return None
        parts = self.reference.removeprefix("./").split("/")
        if len(parts) >= 3 and parts[0] == "assets":
            return parts[1]
        return None

    @property
    def main_file(self) -> str | None:
        """Main file path relative to the payload folder."""
        if self.asset_folder is None:
            return None
        return "/".join(self.reference.removeprefix("./").split("/")[2:])  # type: ignore[union-attr]

    def to_transform(self) -> Transform3D:
        """Convert the block's ops into a live-frame transform."""
        position = position_from_export(self.translate or (0.0, 0.0, 0.0))
        scale = scale_from_export(self.scale or (1.0, 1.0, 1.0))

        if self.orient is not None:
            orientation = quaternion_from_export(self.orient)
        elif self.rotate_xyz is not None:
            euler_live = euler_from_export(self.rotate_xyz)
            orientation = Transform3D.from_euler(rotation=euler_live, degrees=True).orientation
        else:
            orientation = (1.0, 0.0, 0.0, 0.0)

        return Transform3D(position=position, orientation=orientation, scale=scale)


@dataclass
class UsdDocument:
    """Stage metadata and object blocks of a parsed description document."""

    up_axis: str = "Y"
    meters_per_unit: float = 1.0
    default_prim: str | None = None
    prims: list[UsdPrim] = field(default_factory=list)

    def get(self, name: str) -> UsdPrim | None:
        for prim in self.prims:
            if prim.name == name:
                return prim
        return None


def _parse_numbers(text: str, count: int) -> tuple[float, ...] | None:
    inner = text.strip().removeprefix("(").removesuffix(")")
    try:
        values = tuple(float(v) for v in inner.split(","))
    except ValueError:
        return None
    if len(values) != count:
        return None
    return values


def _parse_bool(text: str) -> bool:
    return text.strip().lower() in ("1", "true")


def _quoted(text: str) -> str | None:
    parts = text.split('"')
    return parts[1] if len(parts) >= 3 else None


_OP_FIELDS = {
    "xformOp:translate": "translate",
    "xformOp:orient": "orient",
    "xformOp:rotateXYZ": "rotate_xyz",
    "xformOp:scale": "scale",
}


def _apply_attribute(prim: UsdPrim, line: str, line_no: int) -> None:
    left, sep, value = line.partition("=")
    if not sep:
        return
    tokens = left.split()
    if not tokens:
        return
    attr = tokens[-1]

    if attr == "xformOp:translate":
        prim.translate = _parse_numbers(value, 3)  # type: ignore[assignment]
    elif attr == "xformOp:orient":
        prim.orient = _parse_numbers(value, 4)  # type: ignore[assignment]
    elif attr == "xformOp:rotateXYZ":
        prim.rotate_xyz = _parse_numbers(value, 3)  # type: ignore[assignment]
    elif attr == "xformOp:scale":
        prim.scale = _parse_numbers(value, 3)  # type: ignore[assignment]
    elif attr == "physics:kinematicEnabled":
        prim.kinematic = _parse_bool(value)
    else:
        return

    if attr.startswith("xformOp:") and getattr(prim, _OP_FIELDS[attr]) is None:
        logger.warning(f"Line {line_no}: could not parse {attr} of '{prim.name}'")


def parse_usda(text: str) -> UsdDocument:
    """Parse a description document written by :func:`write_usda`.

    Only direct children of the root prim are returned as object blocks.
    Unknown attributes and nested prims are skipped.

    Args:
        text: USDA text

    Returns:
        UsdDocument with stage metadata and object blocks in file order
    """
    doc = UsdDocument()

    # Stack of open prim names; None marks a brace we did not open a prim for
    stack: list[str | None] = []
    pending: str | None = None       # prim declared, body not yet open
    in_metadata = False              # inside a "( ... )" metadata section
    stage_metadata = True            # metadata before the first def is stage-level
    current: UsdPrim | None = None

    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if in_metadata:
            if line.startswith(")"):
                in_metadata = False
                continue
            key, _, value = line.partition("=")
            key = key.split()[-1] if key.split() else ""
            value = value.strip()
            if stage_metadata:
                if key == "upAxis":
                    doc.up_axis = _quoted(value) or doc.up_axis
                elif key == "metersPerUnit":
                    try:
                        doc.meters_per_unit = float(value)
                    except ValueError:
                        logger.warning(f"Line {line_no}: bad metersPerUnit {value!r}")
                elif key == "defaultPrim":
                    doc.default_prim = _quoted(value)
            elif key == "references" and current is not None and "@" in value:
                current.reference = value.split("@")[1]
            continue

        if line.startswith("def ") or line.startswith("over "):
            stage_metadata = False
            pending = _quoted(line)
            # Direct child of the root prim: depth 1 with root on the stack
            if pending is not None and len(stack) == 1 and stack[0] is not None:
                current = UsdPrim(name=pending)
                doc.prims.append(current)
            if line.endswith("("):
                in_metadata = True
            elif line.endswith("{"):
                stack.append(pending)
                pending = None
            continue

        if line == "(":
            in_metadata = True
            continue

        if line.startswith("{"):
            stack.append(pending)
            pending = None
            continue

        if line.startswith("}"):
            if stack:
                closed = stack.pop()
                if current is not None and closed == current.name and len(stack) == 1:
                    current = None
            continue

        # Attribute lines belong to the object block only at its own depth
        if current is not None and len(stack) == 2 and stack[-1] == current.name:
            _apply_attribute(current, line, line_no)

    return doc
