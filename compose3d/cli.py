"""Command-line interface for Compose3D.

Usage:
    compose3d scene create table.c3scene
    compose3d scene add table.c3scene assets/Mug --position 0 0.1 0
    compose3d randomize table.c3scene --episodes 10 --seed 1
    compose3d export table.c3scene table.zip
    compose3d import table.zip restored.c3scene
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .core.config import ComposerConfig
from .core.errors import ComposerError
from .scene.scene import SceneObject, SceneSession, SpawnVolume

console = Console()

SESSION_SUFFIX = ".c3scene"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False)],
    )


def _load_config(path: str | None) -> ComposerConfig:
    if path:
        return ComposerConfig.from_file(path)
    return ComposerConfig.default()


def _get_object(session: SceneSession, key: str) -> SceneObject:
    """Look an object up by id, then by display name."""
    obj = session.get_object(key) or session.find_by_name(key)
    if obj is None:
        console.print(f"[red]Object {key} not found in scene[/red]")
        raise click.Abort()
    return obj


def _fmt(values: tuple[float, ...], digits: int = 3) -> str:
    return "(" + ", ".join(f"{v:.{digits}f}" for v in values) + ")"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Compose3D - Scene composition and randomized initial conditions."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@main.command("init-config")
@click.option(
    "--output", "-o",
    type=click.Path(),
    default="compose3d_config.json",
    help="Output path for config file",
)
def init_config(output: str) -> None:
    """Generate a default configuration file."""
    cfg = ComposerConfig.default()
    cfg.to_file(output)
    console.print(f"[green]Created config file: {output}[/green]")


# ---------------------------------------------------------------------------
# Scene editing
# ---------------------------------------------------------------------------

@main.group()
def scene() -> None:
    """Scene editing commands."""
    pass


@scene.command("create")
@click.argument("output", type=click.Path())
@click.option("--name", "-n", default="Untitled Scene", help="Scene name")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
def scene_create(output: str, name: str, config: str | None) -> None:
    """Create a new empty scene session.

    OUTPUT: Path for the new session file (.c3scene)
    """
    cfg = _load_config(config)
    session = SceneSession(
        name=name,
        spawn_volume=SpawnVolume.from_tuple(cfg.placement.default_spawn_volume),
    )

    output_path = Path(output)
    if not output_path.suffix:
        output_path = output_path.with_suffix(SESSION_SUFFIX)

    session.save(output_path)
    sx, sy, sz = session.spawn_volume.size
    console.print(f"[green]Created scene: {output_path}[/green]")
    console.print(f"Name: {name}")
    console.print(f"Spawn volume: {sx:.2f} x {sy:.2f} x {sz:.2f} m")


@scene.command("add")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("folder", type=click.Path(exists=True, file_okay=False))
@click.option("--name", "-n", default=None, help="Display name (default: folder name)")
@click.option(
    "--position", "-p",
    nargs=3, type=float,
    default=(0.0, 0.0, 0.0),
    help="XYZ position in meters (Y up)",
)
@click.option(
    "--rotation", "-r",
    nargs=3, type=float,
    default=(0.0, 0.0, 0.0),
    help="XYZ rotation in degrees",
)
@click.option("--scale", "-s", type=float, default=1.0, help="Uniform scale factor")
@click.option("--static", "static", is_flag=True, help="Disable gravity (kinematic object)")
@click.option("--locked", is_flag=True, help="Exclude from randomization")
@click.option("--exclude", is_flag=True, help="Exclude from export")
def scene_add(
    session_file: str,
    folder: str,
    name: str | None,
    position: tuple[float, float, float],
    rotation: tuple[float, float, float],
    scale: float,
    static: bool,
    locked: bool,
    exclude: bool,
) -> None:
    """Add an asset folder to a scene.

    SESSION_FILE: Path to the session file
    FOLDER: Folder holding a USD, USDZ, GLB or GLTF file
    """
    from .mesh.loader import AssetLoader
    from .scene.transform import Transform3D

    session = SceneSession.load(session_file)

    try:
        obj = AssetLoader().load_from_directory(folder)
    except ComposerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    if name:
        obj.name = name
    obj.transform = Transform3D.from_euler(
        position=position,
        rotation=rotation,
        scale=(scale, scale, scale),
        degrees=True,
    )
    obj.disable_gravity = static
    obj.locked = locked
    obj.exclude_from_export = exclude

    session.add_object(obj)
    session.save(session_file)

    console.print("[green]Added object to scene[/green]")
    console.print(f"  ID: {obj.id}")
    console.print(f"  Name: {obj.name}")
    console.print(f"  Main file: {obj.main_file} ({obj.file_type})")
    console.print(f"\nScene now has {len(session.objects)} object(s)")


@scene.command("remove")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("object_id")
def scene_remove(session_file: str, object_id: str) -> None:
    """Remove an object from a scene.

    SESSION_FILE: Path to the session file
    OBJECT_ID: ID or name of the object to remove
    """
    session = SceneSession.load(session_file)
    obj = _get_object(session, object_id)

    session.remove_object(obj.id)
    session.save(session_file)
    console.print(f"[green]Removed {obj.name} ({obj.id})[/green]")
    console.print(f"Scene now has {len(session.objects)} object(s)")


@scene.command("set")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("object_id")
@click.option("--static/--dynamic", default=None, help="Disable or enable gravity")
@click.option("--locked/--unlocked", default=None, help="Exclude from randomization")
@click.option("--exclude/--include", default=None, help="Exclude from export")
@click.option("--position", "-p", nargs=3, type=float, default=None, help="XYZ position in meters")
@click.option("--rotation", "-r", nargs=3, type=float, default=None, help="XYZ rotation in degrees")
def scene_set(
    session_file: str,
    object_id: str,
    static: bool | None,
    locked: bool | None,
    exclude: bool | None,
    position: tuple[float, float, float] | None,
    rotation: tuple[float, float, float] | None,
) -> None:
    """Change an object's flags or pose.

    SESSION_FILE: Path to the session file
    OBJECT_ID: ID or name of the object
    """
    from .scene.transform import Transform3D

    session = SceneSession.load(session_file)
    obj = _get_object(session, object_id)

    if static is not None:
        obj.disable_gravity = static
    if locked is not None:
        obj.locked = locked
    if exclude is not None:
        obj.exclude_from_export = exclude

    if position or rotation:
        t = obj.transform
        updated = Transform3D.from_euler(
            position=position or t.position,
            rotation=rotation or t.euler,
            scale=t.scale,
            degrees=bool(rotation),
        )
        session.update_transform(obj.id, updated)

    session.save(session_file)
    console.print(f"[green]Updated {obj.name}[/green]")


@scene.command("instruction")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("text")
def scene_instruction(session_file: str, text: str) -> None:
    """Set the task instruction exported with the scene.

    SESSION_FILE: Path to the session file
    TEXT: Free-text instruction
    """
    session = SceneSession.load(session_file)
    session.instruction = text
    session.save(session_file)
    console.print("[green]Instruction set[/green]")


@scene.command("bounds")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("values", nargs=6, type=float)
def scene_bounds(session_file: str, values: tuple[float, ...]) -> None:
    """Set the spawn volume.

    SESSION_FILE: Path to the session file
    VALUES: min_x max_x min_y max_y min_z max_z in meters (Z up)
    """
    session = SceneSession.load(session_file)
    try:
        session.spawn_volume = SpawnVolume.from_tuple(values)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    session.save(session_file)
    console.print(f"[green]Spawn volume set[/green]")


@scene.command("info")
@click.argument("session_file", type=click.Path(exists=True))
def scene_info(session_file: str) -> None:
    """Show information about a scene.

    SESSION_FILE: Path to the session file
    """
    session = SceneSession.load(session_file)

    console.print(f"\n[bold]Scene: {session.name}[/bold]\n")

    vol = session.spawn_volume
    console.print("[cyan]Spawn volume (Z up):[/cyan]")
    console.print(f"  X: {vol.min_x:.3f} to {vol.max_x:.3f} m")
    console.print(f"  Y: {vol.min_y:.3f} to {vol.max_y:.3f} m")
    console.print(f"  Z: {vol.min_z:.3f} to {vol.max_z:.3f} m")

    console.print(f"\n[cyan]Instruction:[/cyan] {session.instruction or '[dim](none)[/dim]'}")
    console.print(f"[cyan]Saved conditions:[/cyan] {len(session.history)}")

    if not session.objects:
        console.print("\n[yellow]No objects in scene[/yellow]")
        return

    console.print(f"\n[cyan]Objects ({len(session.objects)}):[/cyan]")

    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Position", style="green")
    table.add_column("Scale", style="magenta")
    table.add_column("Flags", style="yellow")

    for obj in session.objects:
        flags = []
        if obj.disable_gravity:
            flags.append("static")
        if obj.locked:
            flags.append("locked")
        if obj.exclude_from_export:
            flags.append("excluded")
        table.add_row(
            obj.id,
            obj.name,
            _fmt(obj.transform.position),
            _fmt(obj.transform.scale, 2),
            ", ".join(flags) or "-",
        )

    console.print(table)

    ok, hint = session.can_randomize()
    if not ok:
        console.print(f"\n[yellow]{hint}[/yellow]")


# ---------------------------------------------------------------------------
# Randomization and bundles
# ---------------------------------------------------------------------------

@main.command()
@click.argument("session_file", type=click.Path(exists=True))
@click.option("--episodes", "-e", type=int, default=1, help="Number of conditions to accept")
@click.option("--seed", type=int, default=None, help="Random seed")
@click.option("--clear", is_flag=True, help="Discard previously saved conditions first")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
def randomize(
    session_file: str,
    episodes: int,
    seed: int | None,
    clear: bool,
    config: str | None,
) -> None:
    """Draw random placements and save each as a condition.

    SESSION_FILE: Path to the session file
    """
    from .scene.history import ConditionHistoryManager

    cfg = _load_config(config)
    if seed is not None:
        cfg.placement.seed = seed

    session = SceneSession.load(session_file)

    ok, hint = session.can_randomize()
    if not ok:
        console.print(f"[red]{hint}[/red]")
        raise click.Abort()

    manager = ConditionHistoryManager(session, cfg.placement)
    if clear:
        manager.clear()

    with console.status("Placing objects..."):
        for _ in range(episodes):
            result = manager.draw_new_placement()
            if not result.all_succeeded:
                console.print("[yellow]Some objects could not be placed cleanly[/yellow]")
            manager.accept_condition()

    session.save(session_file)
    console.print(f"[green]Saved {episodes} condition(s)[/green]")
    console.print(f"Scene now has {len(session.history)} condition(s)")


@main.command("export")
@click.argument("session_file", type=click.Path(exists=True))
@click.argument("output", type=click.Path())
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
def export_cmd(session_file: str, output: str, config: str | None) -> None:
    """Export a scene as a zip bundle.

    SESSION_FILE: Path to the session file
    OUTPUT: Path for the bundle (.zip)
    """
    from .io.bundle import export_bundle

    cfg = _load_config(config)
    session = SceneSession.load(session_file)

    output_path = Path(output)
    if not output_path.suffix:
        output_path = output_path.with_suffix(".zip")

    try:
        export_bundle(session, output_path, cfg.export)
    except ComposerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    console.print(f"[green]Exported bundle: {output_path}[/green]")
    console.print(f"Objects: {len(session.exportable_objects())}")
    console.print(f"Conditions: {len(session.history)}")


@main.command("import")
@click.argument("bundle_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", type=click.Path())
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
def import_cmd(bundle_file: str, output: str, config: str | None) -> None:
    """Import a zip bundle into a new session file.

    Payloads are written next to the session, under <session>_assets/.

    BUNDLE_FILE: Path to the bundle (.zip)
    OUTPUT: Path for the new session file (.c3scene)
    """
    from .io.bundle import import_bundle
    from .mesh.loader import AssetLoader

    cfg = _load_config(config)

    try:
        result = import_bundle(bundle_file, AssetLoader(cfg.export))
    except ComposerError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    output_path = Path(output)
    if not output_path.suffix:
        output_path = output_path.with_suffix(SESSION_SUFFIX)

    assets_root = output_path.parent / f"{output_path.stem}_assets"
    for obj in result.session.objects:
        folder = assets_root / obj.name
        for rel, data in obj.files.items():
            target = folder / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        obj.source_dir = str(folder.resolve())

    result.session.save(output_path)

    console.print(f"[green]Imported scene: {output_path}[/green]")
    console.print(f"Objects: {len(result.session.objects)} (from {result.source})")
    console.print(f"Conditions: {len(result.session.history)}")
    if result.session.instruction:
        console.print(f"Instruction: {result.session.instruction}")
    for name in result.skipped:
        console.print(f"  [yellow]Skipped {name}[/yellow]")


if __name__ == "__main__":
    main()
