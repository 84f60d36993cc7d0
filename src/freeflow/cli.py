"""
Command-line interface for freeflow.

Every command works on a JSON scene document (see
:mod:`freeflow.scene.document`) and writes it back when something changed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.table import Table
from watchfiles import awatch

from freeflow.config import CONFIG_PATHS, FreeflowConfig, find_config
from freeflow.logging import setup_logging
from freeflow.models import ConnectorText, Direction, LineStyle
from freeflow.scene import MemoryScene, SceneNode, load_document, read_document, save_document
from freeflow.session import FreeflowSession
from freeflow.store import ConnectorStore

console = Console()


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Live connectors between scene nodes",
        prog="freeflow",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Config file (default: first of freeflow.yaml, .freeflow.yaml, ~/.config/freeflow/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Connect command
    connect_parser = subparsers.add_parser("connect", help="Draw a connector between two nodes")
    connect_parser.add_argument("document", help="Scene document (JSON)")
    connect_parser.add_argument("start", help="Start node id or name")
    connect_parser.add_argument("end", help="End node id or name")
    connect_parser.add_argument("-t", "--text", help="Label text")
    connect_parser.add_argument(
        "-s",
        "--line-style",
        choices=[s.value for s in LineStyle],
        help="Line style (also saved as the default for new connectors)",
    )
    connect_parser.add_argument(
        "-d",
        "--direction",
        choices=[Direction.HORIZONTAL.value, Direction.VERTICAL.value],
        help="Preferred direction, kept while the layout allows it",
    )

    # List command
    list_parser = subparsers.add_parser("list", help="List connectors on the current page")
    list_parser.add_argument("document", help="Scene document (JSON)")
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )

    # Flip command
    flip_parser = subparsers.add_parser("flip", help="Reverse a connector")
    flip_parser.add_argument("document", help="Scene document (JSON)")
    flip_parser.add_argument("id", help="Connector id")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Delete a connector")
    remove_parser.add_argument("document", help="Scene document (JSON)")
    remove_parser.add_argument("id", help="Connector id")

    # Reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Redraw every connector and drop stale ones"
    )
    reconcile_parser.add_argument("document", help="Scene document (JSON)")

    # Watch command
    watch_parser = subparsers.add_parser(
        "watch", help="Reconcile connectors whenever the document changes"
    )
    watch_parser.add_argument("document", help="Scene document (JSON)")

    # Config command with subcommands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")

    # config show
    config_subparsers.add_parser("show", help="Show current configuration")

    # config init
    config_init_parser = config_subparsers.add_parser("init", help="Initialize a new config file")
    config_init_parser.add_argument(
        "-o",
        "--output",
        default="freeflow.yaml",
        help="Output file path",
    )

    # config path
    config_subparsers.add_parser("path", help="Show config file paths")

    args = parser.parse_args(argv)

    if args.command == "config":
        setup_logging("DEBUG" if args.verbose else "WARNING")
        cmd_config(args)
        return

    config = _load_config(args.config)

    # Setup logging based on verbosity
    if getattr(args, "verbose", False):
        setup_logging("DEBUG")
    else:
        setup_logging(config.log_level)

    if args.command == "connect":
        asyncio.run(cmd_connect(args, config))
    elif args.command == "list":
        cmd_list(args, config)
    elif args.command == "flip":
        asyncio.run(cmd_flip(args, config))
    elif args.command == "remove":
        asyncio.run(cmd_remove(args, config))
    elif args.command == "reconcile":
        asyncio.run(cmd_reconcile(args, config))
    elif args.command == "watch":
        try:
            asyncio.run(cmd_watch(args, config))
        except KeyboardInterrupt:
            console.print("[dim]Stopped watching[/dim]")
    else:
        parser.print_help()


def _load_config(path: str | None = None) -> FreeflowConfig:
    """Load the config file given on the command line, or the first one found."""
    config_path = Path(path) if path else find_config()
    if config_path is None:
        return FreeflowConfig()
    try:
        return FreeflowConfig.from_yaml(config_path)
    except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
        console.print(f"[red]Failed to load {config_path}: {e}[/red]")
        sys.exit(1)


def _open_scene(document: str) -> MemoryScene:
    """Load a scene document; notifications are delivered by :func:`_drain`."""
    path = Path(document)
    try:
        return load_document(path, auto_dispatch=False)
    except FileNotFoundError:
        console.print(f"[red]Document not found: {path}[/red]")
        sys.exit(1)
    except (ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Invalid scene document {path}: {e}[/red]")
        sys.exit(1)


def _resolve_node(scene: MemoryScene, ref: str) -> SceneNode:
    """Find a node on the current page by id, or by its unique name."""
    node = scene.node(ref)
    if node is not None:
        return node

    matches = scene.find_by_name(ref)
    if len(matches) == 1:
        return matches[0]
    if matches:
        console.print(f"[red]Ambiguous node name: {ref} ({len(matches)} matches)[/red]")
    else:
        console.print(f"[red]Node not found: {ref}[/red]")
    sys.exit(1)


async def _drain(scene: MemoryScene, session: FreeflowSession) -> None:
    """Deliver queued notifications and reconcile until the scene is quiet."""
    while True:
        await scene.flush()
        await session.pipeline.settle()
        if not scene.pending_notifications:
            return


def _print_notices(scene: MemoryScene) -> None:
    for notice in scene.notices:
        console.print(f"[yellow]{notice}[/yellow]")


async def cmd_connect(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """Draw a connector between two nodes."""
    scene = _open_scene(args.document)
    start = _resolve_node(scene, args.start)
    end = _resolve_node(scene, args.end)

    session = FreeflowSession(scene, config)
    session.start()

    if args.line_style:
        await session.controller.handle_settings_change({"line_style": args.line_style})

    scene.selection = [start, end]
    await scene.flush()
    node = await session.controller.handle_draw()
    if node is None:
        _print_notices(scene)
        sys.exit(1)

    if args.text or args.direction:
        await session.store.update(
            node.id,
            text=ConnectorText(args.text) if args.text else None,
            direction=Direction(args.direction) if args.direction else None,
        )

    await _drain(scene, session)
    await session.close()
    save_document(scene, Path(args.document))

    connector = session.store.get(node.id)
    direction = connector.direction.value if connector else "?"
    console.print(
        f"[green]Created connector {node.id}[/green]: {start.name or start.id} -> "
        f"{end.name or end.id} [dim]({direction})[/dim]"
    )


def cmd_list(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """List connectors on the current page."""
    scene = _open_scene(args.document)
    store = ConnectorStore(scene, config)
    store.load(scene.current_page)
    connectors = store.connectors

    if args.json:
        data = [c.to_dict() for c in connectors]
        console.print_json(json.dumps(data, indent=2))
        return

    table = Table(title=f"Connectors on {scene.current_page.name}")
    table.add_column("ID", style="cyan")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Direction", style="dim")
    table.add_column("Style", style="dim")
    table.add_column("Label")

    for c in connectors:
        table.add_row(
            c.id,
            c.name.start_name or c.start_node_id,
            c.name.end_name or c.end_node_id,
            c.direction.value,
            f"{c.geometry.line_style.value} #{c.style.color}",
            c.text.text if c.text else "",
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(connectors)} connectors[/dim]")


async def _run_on_connector(args: argparse.Namespace, config: FreeflowConfig, action: str) -> None:
    scene = _open_scene(args.document)
    session = FreeflowSession(scene, config)
    session.start()

    if args.id not in session.store:
        console.print(f"[red]Connector not found: {args.id}[/red]")
        sys.exit(1)

    if action == "flip":
        node = await session.store.flip(args.id)
        if node is None:
            _print_notices(scene)
            sys.exit(1)
    else:
        await session.store.remove(args.id)

    await _drain(scene, session)
    await session.close()
    save_document(scene, Path(args.document))


async def cmd_flip(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """Reverse a connector."""
    await _run_on_connector(args, config, "flip")
    console.print(f"[green]Flipped connector {args.id}[/green]")


async def cmd_remove(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """Delete a connector."""
    await _run_on_connector(args, config, "remove")
    console.print(f"[green]Removed connector {args.id}[/green]")


async def cmd_reconcile(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """Redraw every connector on the current page."""
    scene = _open_scene(args.document)
    session = FreeflowSession(scene, config)
    session.start()

    removed = await session.store.sweep()
    session.pipeline.pending.update(session.store.ids())
    await _drain(scene, session)
    count = len(session.store)

    await session.close()
    save_document(scene, Path(args.document))

    console.print(f"[green]Reconciled {count} connectors[/green]")
    if removed:
        console.print(f"[dim]Removed {len(removed)} stale: {', '.join(removed)}[/dim]")
    _print_notices(scene)


async def cmd_watch(args: argparse.Namespace, config: FreeflowConfig) -> None:
    """Reconcile connectors whenever the document changes on disk."""
    path = Path(args.document)
    scene = _open_scene(args.document)
    session = FreeflowSession(scene, config)
    session.start()
    saved_revision = scene.revision

    def save_if_changed() -> None:
        nonlocal saved_revision
        if scene.revision == saved_revision:
            return
        session.store.save(scene.current_page)
        save_document(scene, path)
        saved_revision = scene.revision
        console.print(f"[green]Updated {path}[/green] [dim]({len(session.store)} connectors)[/dim]")

    await session.store.sweep()
    await _drain(scene, session)
    save_if_changed()

    console.print(f"[dim]Watching {path} (Ctrl+C to stop)[/dim]")
    try:
        async for _ in awatch(str(path), debounce=config.watch_debounce_ms):
            try:
                data = read_document(path)
            except (OSError, ValueError) as e:
                console.print(f"[yellow]Skipping unreadable document: {e}[/yellow]")
                continue

            if scene.sync_from(data) == 0:
                continue
            await _drain(scene, session)
            save_if_changed()
    finally:
        await session.close()
        save_if_changed()


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        _config_show(args.config)
    elif args.config_command == "init":
        _config_init(args.output)
    elif args.config_command == "path":
        _config_path()
    else:
        console.print("[yellow]Usage: freeflow config <show|init|path>[/yellow]")


def _config_show(path: str | None = None) -> None:
    """Show current configuration."""
    config_path = Path(path) if path else find_config()

    config = None
    if config_path is not None:
        try:
            config = FreeflowConfig.from_yaml(config_path)
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            console.print(f"[yellow]Failed to load {config_path}: {e}[/yellow]")

    if config is None:
        console.print("[dim]No config file found. Using defaults.[/dim]")
        config = FreeflowConfig()
    else:
        console.print(f"[dim]Loaded from: {config_path}[/dim]\n")

    # Display configuration
    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))


def _config_init(output: str) -> None:
    """Initialize a new config file."""
    output_path = Path(output)

    if output_path.exists():
        console.print(f"[red]File already exists: {output_path}[/red]")
        sys.exit(1)

    with open(output_path, "w") as f:
        yaml.dump(FreeflowConfig().to_dict(), f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Created config file: {output_path}[/green]")


def _config_path() -> None:
    """Show config file search paths."""
    console.print("[bold]Config file search paths:[/bold]\n")

    names = ("Current directory", "Current directory (hidden)", "User config")
    for name, path in zip(names, CONFIG_PATHS):
        exists = "[green]✓[/green]" if path.exists() else "[dim]·[/dim]"
        console.print(f"  {exists} {name}: {path}")


if __name__ == "__main__":
    main()
