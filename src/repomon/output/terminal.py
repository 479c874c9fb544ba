"""Rich terminal reporter — snapshot tables, diff panels, repository list."""

from __future__ import annotations

from typing import Iterable, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from repomon.git.diff_parser import parse_diff
from repomon.git.models import FileStatus, Snapshot
from repomon.registry import RepoSummary

_STATUS_STYLE = {
    FileStatus.ADDED: "bold green",
    FileStatus.MODIFIED: "bold yellow",
    FileStatus.DELETED: "bold red",
}

_STATUS_ICON = {
    FileStatus.ADDED: "A",
    FileStatus.MODIFIED: "M",
    FileStatus.DELETED: "D",
}


def _status_pill(status: FileStatus) -> Text:
    return Text(f" {_STATUS_ICON[status]} ", style=_STATUS_STYLE[status])


def _counts(additions: int, deletions: int) -> Text:
    text = Text()
    text.append(f"+{additions}", style="green")
    text.append(" ")
    text.append(f"-{deletions}", style="red")
    return text


def render_snapshot(
    snapshot: Snapshot,
    *,
    console: Optional[Console] = None,
    show_diff: bool = False,
) -> None:
    """Print one snapshot: a file table and optionally every diff."""
    console = console or Console()

    if snapshot.is_error:
        console.print(f"[bold red]✗ {snapshot.repository_id}:[/bold red] {snapshot.error}")
        return

    header = f"[bold]{snapshot.repository_id}[/bold] [dim]on[/dim] [cyan]{snapshot.branch or '?'}[/cyan]"
    if not snapshot.files:
        console.print(f"{header}  [green]✓ working tree clean[/green]")
        return

    table = Table(
        title=None,
        show_lines=False,
        border_style="dim",
    )
    table.add_column("", justify="center", width=3)
    table.add_column("File", style="magenta")
    table.add_column("Changes", justify="right")
    table.add_column("Line", justify="right", style="green")

    total_add = total_del = 0
    for change in snapshot.files:
        parsed = parse_diff(change.diff_text)
        add = parsed.stats.additions if parsed else 0
        dele = parsed.stats.deletions if parsed else 0
        total_add += add
        total_del += dele
        line = parsed.first_changed_line if parsed else None
        name = Text(change.relative_path)
        if change.failure_reason:
            name.append(f"  ({change.failure_reason})", style="dim italic")
        table.add_row(
            _status_pill(change.classification),
            name,
            _counts(add, dele),
            str(line) if line is not None else "-",
        )

    console.print(header)
    console.print(table)
    summary = Text(f"{len(snapshot.files)} file(s) changed  ", style="dim")
    summary.append_text(_counts(total_add, total_del))
    console.print(summary)

    if show_diff:
        for change in snapshot.files:
            console.print()
            console.print(f"[bold]{change.relative_path}[/bold]")
            console.print(Syntax(change.diff_text, "diff", theme="ansi_dark", word_wrap=True))


def render_no_selection(*, console: Optional[Console] = None) -> None:
    (console or Console()).print("[dim]No repository selected.[/dim]")


def render_repositories(
    summaries: Iterable[RepoSummary],
    *,
    console: Optional[Console] = None,
) -> None:
    """Print the registered repositories with their cached stats."""
    console = console or Console()
    summaries = list(summaries)
    if not summaries:
        console.print("[dim]No repositories registered.[/dim]")
        return

    table = Table(title="Repositories", title_style="bold", border_style="dim")
    table.add_column("", width=1)
    table.add_column("Name", style="cyan")
    table.add_column("Branch")
    table.add_column("Files", justify="right")
    table.add_column("Changes", justify="right")
    table.add_column("Watch", justify="center")
    table.add_column("Path", style="dim")

    for s in summaries:
        table.add_row(
            "●" if s.is_current else "",
            s.display_name,
            s.branch or "-",
            str(s.changed_files),
            _counts(s.additions, s.deletions),
            s.watch_state.value,
            s.id,
        )
    console.print(table)
