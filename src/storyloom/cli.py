"""storyloom CLI - typer application entry point."""

from __future__ import annotations

import atexit
import json
import sys
from collections.abc import Callable
from dataclasses import asdict
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from storyloom.config import ConfigError, EngineConfig, load_config
from storyloom.graph.errors import EmptyGraphError, GraphIntegrityError
from storyloom.graph.loader import dump, load
from storyloom.graph.mutations import rename_node as rename_graph_node
from storyloom.graph.sanitize import sanitize as run_sanitize
from storyloom.inspection import inspect_graph
from storyloom.layout import ancestor_path, compute_layout, find_orphans
from storyloom.observability import (
    bind_story,
    close_file_logging,
    configure_logging,
    get_logger,
)
from storyloom.play import PlaySession
from storyloom.visualization import render_dot, render_mermaid

if TYPE_CHECKING:
    from storyloom.graph.loader import LoadResult
    from storyloom.layout import Layout


def _is_interactive_tty() -> bool:
    """Check if stdin/stdout are connected to a TTY."""
    return sys.stdin.isatty() and sys.stdout.isatty()


# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="storyloom",
    help="storyloom: play, lay out and repair branching story graphs.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

LOGS_DIRNAME = "logs"

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False


class RenderFormat(StrEnum):
    """Markup emitted by the render command."""

    DOT = "dot"
    MERMAID = "mermaid"


StoryFile = Annotated[
    Path,
    typer.Argument(help="Story document (JSON).", dir_okay=False),
]
OutputOption = Annotated[
    Path | None,
    typer.Option("--output", "-o", help="Write the result here instead of the input file."),
]


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to logs/debug.jsonl next to the story file.",
        ),
    ] = False,
) -> None:
    """storyloom: play, lay out and repair branching story graphs."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log

    # File logging is configured later, once the story file is known
    configure_logging(verbosity=verbose)


def _configure_file_logging(story_file: Path) -> None:
    """Configure file logging if --log flag was set.

    Args:
        story_file: Story document the command works on.
    """
    if _log_enabled:
        log_dir = story_file.resolve().parent / LOGS_DIRNAME
        log_path = configure_logging(verbosity=_verbose, log_to_file=True, log_dir=log_dir)
        atexit.register(close_file_logging)
        log.debug("file_logging_enabled", path=str(log_path))


def _read_document(path: Path) -> dict[str, Any]:
    """Read a JSON document, exiting with status 1 if it is unreadable."""
    try:
        with path.open(encoding="utf-8") as f:
            document = json.load(f)
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1) from None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Cannot read {path}: {escape(str(e))}")
        raise typer.Exit(1) from None
    if not isinstance(document, dict):
        console.print(f"[red]Error:[/red] {path} does not contain a JSON object")
        raise typer.Exit(1)
    return document


def _load_story(path: Path) -> LoadResult:
    """Load and normalize a story file, exiting with status 1 on hard rejection."""
    bind_story(path.name)
    _configure_file_logging(path)
    document = _read_document(path)
    try:
        return load(document)
    except EmptyGraphError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _load_engine_config(path: Path) -> EngineConfig:
    try:
        return load_config(path.resolve().parent)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _write_document(path: Path, document: dict[str, Any]) -> None:
    """Write a JSON document through a temp file."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
    except OSError as e:
        if tmp_path.exists():
            tmp_path.unlink()
        console.print(f"[red]Error:[/red] Cannot write {path}: {e}")
        raise typer.Exit(1) from None


def _layout_to_dict(layout: Layout) -> dict[str, Any]:
    data = asdict(layout)
    data["reachable"] = sorted(layout.reachable)
    return data


@app.command()
def version() -> None:
    """Show version information."""
    from storyloom import __version__

    console.print(f"storyloom v{__version__}")


@app.command()
def validate(
    file: StoryFile,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit with status 1 if any issue was found."),
    ] = False,
) -> None:
    """Load a story and list the structural defects that were normalized."""
    result = _load_story(file)

    if not result.issues:
        console.print(f"[green]✓[/green] {file.name}: no issues")
        return

    table = Table(title=f"Issues: {file.name}")
    table.add_column("Code", style="cyan")
    table.add_column("Ref", style="bold")
    table.add_column("Message")
    for issue in result.issues:
        table.add_row(issue.code, escape(issue.ref or "-"), escape(issue.message))

    console.print()
    console.print(table)
    console.print()
    console.print(f"[yellow]{result.summary}[/yellow]")
    if strict:
        raise typer.Exit(1)


@app.command()
def inspect(file: StoryFile) -> None:
    """Show summary statistics for a story."""
    result = _load_story(file)
    report = inspect_graph(result.graph, result.issues)
    summary = report.summary
    branching = report.branching

    table = Table(title=f"Story: {escape(summary.title or file.stem)}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("Start node", escape(summary.start_id))
    table.add_row("Nodes", str(summary.nodes))
    table.add_row("Endings", str(summary.endings))
    table.add_row("Characters", str(summary.characters))
    table.add_row("Protagonist", escape(summary.protagonist or "-"))
    table.add_row("Choices", str(branching.choices))
    table.add_row("Terminal nodes", str(branching.terminal_nodes))
    table.add_row("Max depth", str(branching.max_depth))
    table.add_row("Reachable nodes", f"{branching.reachable_nodes}/{summary.nodes}")
    table.add_row("Reachable endings", escape(", ".join(branching.reachable_endings) or "-"))
    table.add_row("Dangling targets", str(branching.dangling_targets))
    table.add_row("Orphans", escape(", ".join(branching.orphans) or "-"))
    table.add_row("Text (chars)", f"{report.text.total_chars:,} (avg {report.text.avg_chars})")
    table.add_row("Load issues", str(len(report.issues)))

    console.print()
    console.print(table)
    console.print()


@app.command()
def layout(
    file: StoryFile,
    start: Annotated[
        str | None,
        typer.Option("--start", "-s", help="Traversal root (default: detected start node)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full layout as JSON."),
    ] = False,
) -> None:
    """Compute the tree layout of a story."""
    result = _load_story(file)
    config = _load_engine_config(file)
    computed = compute_layout(result.graph, start, settings=config.layout)

    if as_json:
        typer.echo(json.dumps(_layout_to_dict(computed), ensure_ascii=False, indent=2))
        return

    table = Table(title=f"Layout from '{escape(computed.start_id)}'")
    table.add_column("Depth", justify="right", style="cyan")
    table.add_column("Nodes")
    for depth in range(computed.max_depth + 1):
        ids = [
            f"[magenta]{escape(node_id)}[/magenta]"
            if node_id in result.graph.endings
            else escape(node_id)
            for node_id in computed.layer(depth)
        ]
        table.add_row(str(depth), ", ".join(ids))

    console.print()
    console.print(table)
    console.print(
        f"  Canvas: {computed.width:g} x {computed.height:g}, "
        f"{len(computed.nodes)} nodes, {len(computed.edges)} edges"
    )


@app.command()
def orphans(
    file: StoryFile,
    start: Annotated[
        str | None,
        typer.Option("--start", "-s", help="Traversal root (default: detected start node)."),
    ] = None,
) -> None:
    """List unreachable nodes and nodes without incoming choices."""
    result = _load_story(file)
    warnings = find_orphans(result.graph, start)

    if not warnings:
        console.print("[green]✓[/green] No orphans")
        return

    table = Table(title="Orphans")
    table.add_column("Node", style="cyan")
    table.add_column("Reason")
    for warning in warnings:
        table.add_row(escape(warning.node_id), warning.reason)
    console.print()
    console.print(table)


@app.command()
def render(
    file: StoryFile,
    fmt: Annotated[
        RenderFormat,
        typer.Option("--format", "-f", help="Markup to emit."),
    ] = RenderFormat.DOT,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write markup to a file instead of stdout."),
    ] = None,
    highlight: Annotated[
        str | None,
        typer.Option("--highlight", help="Draw the path from the start to this node in bold."),
    ] = None,
    no_labels: Annotated[
        bool,
        typer.Option("--no-labels", help="Omit choice labels on edges."),
    ] = False,
) -> None:
    """Render the story tree as DOT or Mermaid markup."""
    result = _load_story(file)
    config = _load_engine_config(file)
    computed = compute_layout(result.graph, settings=config.layout)

    path: list[str] = []
    if highlight:
        if computed.get(highlight) is None:
            console.print(f"[red]Error:[/red] Unknown node '{escape(highlight)}'")
            raise typer.Exit(1)
        path = ancestor_path(
            computed.parents, highlight, max_steps=config.layout.max_ancestor_steps
        )

    renderer = render_mermaid if fmt == RenderFormat.MERMAID else render_dot
    markup = renderer(computed, result.graph, highlight=path, no_labels=no_labels)

    if output is None:
        typer.echo(markup)
        return
    output.write_text(markup + "\n", encoding="utf-8")
    console.print(f"[green]✓[/green] Wrote {fmt.value} to [cyan]{output}[/cyan]")


@app.command()
def sanitize(file: StoryFile, output: OutputOption = None) -> None:
    """Repair a generated story: endings, cycles, dangling targets, affinity."""
    result = _load_story(file)
    report = run_sanitize(result.graph)

    table = Table(title="Repairs")
    table.add_column("Repair", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in report.as_dict().items():
        if count:
            table.add_row(name.replace("_", " "), str(count))

    target = output or file
    _write_document(target, dump(result.graph))

    if report.changed:
        console.print(table)
    else:
        console.print("[green]✓[/green] Nothing to repair")
    console.print(f"  Saved: [cyan]{target}[/cyan]")


@app.command("rename-node")
def rename_node(
    file: StoryFile,
    old_id: Annotated[str, typer.Argument(help="Current node id.")],
    new_id: Annotated[str, typer.Argument(help="New node id.")],
    output: OutputOption = None,
) -> None:
    """Rename a node and rewrite every choice that points at it."""
    result = _load_story(file)
    try:
        rewritten = rename_graph_node(result.graph, old_id, new_id)
    except (GraphIntegrityError, ValueError) as e:
        feedback = e.to_feedback() if isinstance(e, GraphIntegrityError) else str(e)
        console.print(f"[red]Error:[/red] {escape(feedback)}")
        raise typer.Exit(1) from None

    target = output or file
    _write_document(target, dump(result.graph))
    console.print(
        f"[green]✓[/green] Renamed [bold]{escape(old_id)}[/bold] "
        f"→ [bold]{escape(new_id)}[/bold] "
        f"({rewritten} choice(s) rewritten)"
    )
    console.print(f"  Saved: [cyan]{target}[/cyan]")


# ---------------------------------------------------------------------------
# Interactive play
# ---------------------------------------------------------------------------

_PLAY_HELP = (
    "[dim]Enter a choice number, [bold]b[/bold] back, "
    "[bold]r[/bold] restart, [bold]q[/bold] quit.[/dim]"
)


def _make_reader() -> Callable[[], str | None]:
    """Return a function reading one line of player input (None on EOF)."""
    if _is_interactive_tty():
        session: PromptSession[str] = PromptSession()

        def _prompt_toolkit_read() -> str | None:  # pragma: no cover - UI behavior
            try:
                return session.prompt(HTML("<b><ansicyan>&gt;</ansicyan></b> "))
            except (EOFError, KeyboardInterrupt):
                return None

        return _prompt_toolkit_read

    def _console_read() -> str | None:
        try:
            return console.input("> ")
        except EOFError:
            return None

    return _console_read


def _show_position(session: PlaySession) -> None:
    if session.ending is not None:
        ending = session.ending
        colors = {"good": "green", "bad": "red"}
        console.print()
        console.print(
            Panel.fit(
                escape(ending.description or "(no description)"),
                title=f"Ending ({ending.type})",
                border_style=colors.get(ending.type, "yellow"),
            )
        )
        return

    node = session.current_node
    if node is None:
        return
    title = escape(node.id)
    characters = session.scene_characters()
    if characters:
        title += " · " + escape(", ".join(characters))
    console.print()
    body = escape(node.content or "(empty)")
    console.print(Panel.fit(body, title=title, border_style="cyan"))
    for index, choice in enumerate(session.available_choices, start=1):
        console.print(f"  [bold]{index}.[/bold] {escape(choice.text)}")


@app.command()
def play(file: StoryFile) -> None:
    """Play a story in the terminal."""
    result = _load_story(file)
    config = _load_engine_config(file)
    session = PlaySession(result.graph, settings=config.play)
    read = _make_reader()

    console.print(_PLAY_HELP)
    _show_position(session)

    while True:
        line = read()
        if line is None:
            break
        command = line.strip().lower()
        if command in ("q", "quit"):
            break
        if command in ("b", "back"):
            outcome = session.back()
        elif command in ("r", "restart"):
            outcome = session.restart()
        elif command.isdigit():
            outcome = session.choose(int(command) - 1)
        else:
            console.print(_PLAY_HELP)
            continue

        if outcome.error is not None:
            console.print(f"[red]✗[/red] {escape(outcome.error.message)}")
            continue
        _show_position(session)

    if session.affinity:
        table = Table(title="Affinity")
        table.add_column("Character", style="cyan")
        table.add_column("Score", justify="right")
        for name, score in sorted(session.affinity.items()):
            table.add_row(escape(name), str(score))
        console.print()
        console.print(table)
    log.debug("play_finished", node_id=session.current_node_id, ended=session.is_ended)
