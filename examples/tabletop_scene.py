#!/usr/bin/env python3
"""Example: Compose a small tabletop scene and export it.

This script demonstrates the basic workflow for Compose3D:
1. Load a static table and a few dynamic boxes
2. Draw and accept several randomized initial conditions
3. Export the bundle and import it back

Run with: python examples/tabletop_scene.py
"""

import trimesh

from compose3d import (
    AssetLoader,
    ComposerConfig,
    ConditionHistoryManager,
    SceneSession,
    SpawnVolume,
    export_bundle,
    import_bundle,
)


def create_box_asset(name: str, extents: list[float]) -> dict[str, bytes]:
    """Create an in-memory asset folder holding one GLB box."""
    mesh = trimesh.creation.box(extents=extents)
    return {f"{name}/{name.lower()}.glb": mesh.export(file_type="glb")}


def main():
    config = ComposerConfig.default()
    config.placement.seed = 42

    print("Compose3D - Tabletop Example")
    print("=" * 40)

    # Build the scene
    print("\n1. Loading assets...")
    loader = AssetLoader(config.export)
    session = SceneSession(
        name="Tabletop",
        spawn_volume=SpawnVolume.from_tuple((-0.4, 0.4, -0.3, 0.3, 0.05, 0.3)),
        instruction="Stack the red box on the blue box",
    )

    table = loader.load_from_files(create_box_asset("Table", [1.0, 0.05, 0.8]), "Table")
    table.disable_gravity = True
    session.add_object(table)

    for name in ("RedBox", "BlueBox", "GreenBox"):
        session.add_object(loader.load_from_files(create_box_asset(name, [0.06, 0.06, 0.06]), name))

    print(f"   {len(session.objects)} objects, {len(session.movable_objects())} movable")

    # Randomize
    print("\n2. Drawing initial conditions...")
    manager = ConditionHistoryManager(session, config.placement)
    for episode in range(5):
        result = manager.draw_new_placement()
        manager.accept_condition()
        status = "ok" if result.all_succeeded else "crowded"
        print(f"   Episode {episode + 1}: {status}")

    # Export and re-import
    print("\n3. Exporting bundle...")
    data = export_bundle(session, "tabletop.zip", config.export)
    print(f"   Wrote tabletop.zip ({len(data):,} bytes)")

    restored = import_bundle("tabletop.zip", loader).session
    print(f"   Re-imported {len(restored.objects)} objects, {len(restored.history)} conditions")
    print(f"   Instruction: {restored.instruction}")


if __name__ == "__main__":
    main()
