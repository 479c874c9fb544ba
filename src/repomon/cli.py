"""Repomon CLI — Typer application with status, watch, and registry commands."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from repomon import __version__

app = typer.Typer(
    name="repomon",
    help="Watch git working trees and report what changed.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console(stderr=True)
out = Console()

_FORMATS = ("terminal", "json")


def _load_config(ctx: typer.Context):
    from repomon.config.loader import ConfigError, load_config
    from repomon.logging_setup import configure_logging

    opts = ctx.obj or {}
    try:
        cfg = load_config(opts.get("config"))
    except ConfigError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc

    level = cfg.log.level
    if opts.get("verbose"):
        level = "INFO"
    if opts.get("debug"):
        level = "DEBUG"
    configure_logging(level, console=console)
    return cfg


def _check_format(fmt: str) -> None:
    if fmt not in _FORMATS:
        console.print(f"[bold red]Invalid format:[/bold red] {fmt}")
        raise typer.Exit(code=2)


def _computer(cfg):
    from repomon.git.adapter import GitOracle
    from repomon.status import StatusComputer

    oracle = GitOracle(timeout=cfg.git.timeout_s, diff_algorithm=cfg.git.diff_algorithm)
    return StatusComputer(oracle, max_file_bytes=cfg.git.max_file_kb * 1024)


def _registry(cfg, *, watch: bool):
    from repomon.registry import RepoRegistry
    from repomon.store import JsonStore
    from repomon.watch.session import WatchSession

    computer = _computer(cfg)
    store = JsonStore(Path(cfg.store.path) if cfg.store.path else None)

    def session_factory(path, sink):
        return WatchSession(
            path,
            computer,
            sink,
            content_debounce=cfg.watch.content_debounce,
            metadata_debounce=cfg.watch.metadata_debounce,
            stabilization=cfg.watch.stabilization,
            extra_ignore=cfg.watch.extra_ignore,
        )

    return RepoRegistry(computer, store, session_factory=session_factory, watch=watch)


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    raise typer.Exit(code=2) from exc


# ── status ────────────────────────────────────────────────────────────────────


@app.command()
def status(
    ctx: typer.Context,
    path: Path = typer.Argument(Path("."), help="Repository path"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
    diff: bool = typer.Option(False, "--diff", "-d", help="Print every file's diff"),
) -> None:
    """Compute one snapshot of PATH and print it."""
    from repomon.output import json_report, terminal

    _check_format(format)
    cfg = _load_config(ctx)
    from repomon.errors import OracleCommandFailed

    computer = _computer(cfg)
    target = path.expanduser().resolve()
    try:
        if computer.oracle.is_repository(target):
            target = computer.oracle.repo_root(target).resolve()
    except OracleCommandFailed as exc:
        _fail(exc)
    snapshot = computer.compute(target)

    if format == "json":
        print(json_report.render(snapshot, include_diff=diff))
    else:
        terminal.render_snapshot(snapshot, console=out, show_diff=diff)

    if snapshot.is_error:
        raise typer.Exit(code=2)


# ── watch ─────────────────────────────────────────────────────────────────────


@app.command()
def watch(
    ctx: typer.Context,
    paths: Optional[List[Path]] = typer.Argument(None, help="Repositories to watch (default: registered set)"),
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
    diff: bool = typer.Option(False, "--diff", "-d", help="Print diffs with every snapshot"),
    all_repos: bool = typer.Option(False, "--all", "-a", help="Print snapshots of every repository, not only the current one"),
) -> None:
    """Watch repositories and print a snapshot whenever they settle."""
    from repomon.errors import AlreadyRegistered, RepomonError
    from repomon.output import json_report, terminal
    from repomon.registry import RepositoriesEvent, SnapshotEvent

    _check_format(format)
    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=True)

    def on_event(event) -> None:
        if format == "json":
            print(json.dumps(json_report.event_to_dict(event, include_diff=diff)), flush=True)
            return
        if isinstance(event, SnapshotEvent):
            if event.no_selection:
                terminal.render_no_selection(console=out)
            elif all_repos or event.repository_id == registry.current_id:
                terminal.render_snapshot(event.snapshot, console=out, show_diff=diff)
        elif isinstance(event, RepositoriesEvent) and ctx.obj and ctx.obj.get("verbose"):
            terminal.render_repositories(event.repositories, console=out)

    subscription = registry.subscribe(on_event)
    with registry:
        try:
            registry.restore()
            for p in paths or []:
                try:
                    registry.add_repository(p)
                except AlreadyRegistered:
                    registry.select_current(str(p))
        except RepomonError as exc:
            _fail(exc)

        if not registry.list():
            console.print("[yellow]⚠[/yellow]  No repositories to watch. Pass a path or run 'repomon add'.")
            raise typer.Exit(code=2)

        console.print(f"[dim]Watching {len(registry.list())} repositories — Ctrl-C to stop[/dim]")
        try:
            while True:
                time.sleep(0.5)
        except KeyboardInterrupt:
            console.print("[dim]Stopping…[/dim]")
        finally:
            subscription.unsubscribe()


# ── registry commands ─────────────────────────────────────────────────────────


@app.command()
def add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Repository path"),
    no_select: bool = typer.Option(False, "--no-select", help="Keep the current selection"),
) -> None:
    """Register a repository."""
    from repomon.errors import RepomonError

    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=False)
    try:
        registry.restore()
        repo_id = registry.add_repository(path, select=not no_select)
    except RepomonError as exc:
        _fail(exc)
    console.print(f"[green]✓[/green] Registered {repo_id}")


@app.command()
def remove(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Repository path"),
) -> None:
    """Forget a registered repository."""
    from repomon.errors import RepomonError

    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=False)
    try:
        registry.restore()
        registry.remove_repository(str(path))
    except RepomonError as exc:
        _fail(exc)
    console.print(f"[green]✓[/green] Removed {path}")
    if registry.current_id is None:
        console.print("[dim]No repository selected.[/dim]")
    else:
        console.print(f"[dim]Current repository: {registry.current_id}[/dim]")


@app.command()
def select(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Repository path"),
) -> None:
    """Make a registered repository the current one and print its snapshot."""
    from repomon.errors import RepomonError
    from repomon.output import terminal

    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=False)
    try:
        registry.restore()
        registry.select_current(str(path))
        snapshot = registry.get_snapshot(registry.current_id)
    except RepomonError as exc:
        _fail(exc)
    terminal.render_snapshot(snapshot, console=out)


@app.command(name="list")
def list_repositories(
    ctx: typer.Context,
    format: str = typer.Option("terminal", "--format", "-f", help="Output format: terminal | json"),
) -> None:
    """List registered repositories with their change counts."""
    from repomon.output import json_report, terminal

    _check_format(format)
    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=False)
    registry.restore()
    for summary in registry.list():
        registry.get_snapshot(summary.id)

    if format == "json":
        print(json_report.render_summaries(registry.list()))
    else:
        terminal.render_repositories(registry.list(), console=out)


@app.command()
def recent(ctx: typer.Context) -> None:
    """Show recently added repositories."""
    cfg = _load_config(ctx)
    registry = _registry(cfg, watch=False)
    entries = registry.recent()
    if not entries:
        console.print("[dim]No recent repositories.[/dim]")
        return
    for entry in entries:
        out.print(f"[cyan]{entry.get('name', '?')}[/cyan]  [dim]{entry.get('path', '')}[/dim]")


# ── init ──────────────────────────────────────────────────────────────────────


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
    path: Optional[Path] = typer.Option(None, "--path", help="Where to write the config file"),
) -> None:
    """Write a starter config.toml."""
    from repomon.config.defaults import DEFAULT_TOML
    from repomon.config.loader import default_config_path

    config_path = path or default_config_path()
    if config_path.exists() and not force:
        console.print(f"[yellow]⚠[/yellow]  {config_path} already exists (use --force to overwrite)")
        raise typer.Exit(code=1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_TOML, encoding="utf-8")
    console.print(f"[green]✓[/green] Created {config_path}")


# ── version ───────────────────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        print(f"repomon {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-V", callback=_version_callback,
        is_eager=True, help="Show version and exit",
    ),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    debug: bool = typer.Option(False, "--debug", help="Debug logging"),
) -> None:
    """Repomon — watch git working trees and report what changed."""
    ctx.obj = {"config": config, "verbose": verbose, "debug": debug}
