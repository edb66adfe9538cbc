"""CLI for inspecting a thoughtline SQLite store.

    thoughtline --db .thoughtline/thoughts.db show 01J...
    thoughtline notes 01J... --json
    thoughtline lineage 01J...
"""

import asyncio
import json
import logging
import os
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .constants import DB_PATH_ENV, DEFAULT_DB_PATH
from .errors import NotFoundError
from .store import SQLiteMemory
from .thought import Thought

console = Console()


def get_db_path() -> Path:
    """Database path from THOUGHTLINE_DB, else the default under cwd."""
    if env_path := os.environ.get(DB_PATH_ENV):
        return Path(env_path)
    return Path.cwd() / DEFAULT_DB_PATH


def _run(ctx, operation):
    """Open the store, await ``operation(memory)``, close the store."""

    async def runner():
        memory = SQLiteMemory(ctx.obj["db_path"])
        try:
            return await operation(memory)
        finally:
            await memory.close()

    try:
        return asyncio.run(runner())
    except NotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)


def _thought_table(thoughts: list[Thought], title: str | None = None) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Intent")
    table.add_column("Notes", justify="right")
    table.add_column("Published", justify="right", style="yellow")
    table.add_column("Created", style="dim")
    for t in thoughts:
        table.add_row(
            t.id,
            t.intent,
            str(len(t.all_notes())),
            str(t.published_count),
            t.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    return table


@click.group()
@click.option(
    "--db",
    "db_path",
    envvar=DB_PATH_ENV,
    type=click.Path(path_type=Path),
    help="Path to the thoughtline database",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Thoughtline - inspect stored thoughts, notes and lineage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path or get_db_path()


@cli.command()
@click.argument("thought_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx, thought_id, as_json):
    """Show a thought's record."""
    thought = _run(ctx, lambda m: m.get_thought(thought_id))
    summary = thought.record().to_summary()
    summary["note_count"] = len(thought.all_notes())

    if as_json:
        click.echo(json.dumps(summary, indent=2))
        return

    console.print(f"[bold]{thought.intent}[/bold]")
    for field in ("id", "trace_id", "parent_id", "task_id", "published_count", "note_count", "created_at"):
        value = summary[field]
        console.print(f"  {field}: {value if value is not None else '[dim]-[/dim]'}")


@cli.command()
@click.argument("thought_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def notes(ctx, thought_id, as_json):
    """List a thought's notes in log order."""
    thought = _run(ctx, lambda m: m.get_thought(thought_id))
    all_notes = thought.all_notes()

    if as_json:
        click.echo(json.dumps(
            [n.model_dump(mode="json", exclude={"embedding"}) for n in all_notes],
            indent=2,
        ))
        return

    if not all_notes:
        console.print("[dim]No notes[/dim]")
        return

    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Key", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Content")
    table.add_column("Published", justify="center")
    for i, note in enumerate(all_notes):
        content = note.content if len(note.content) <= 80 else note.content[:77] + "..."
        table.add_row(
            str(i),
            note.key,
            note.source,
            content,
            "✓" if i < thought.published_count else "",
        )
    console.print(table)


@cli.command()
@click.argument("thought_id")
@click.pass_context
def children(ctx, thought_id):
    """List thoughts branched from a thought."""
    kids = _run(ctx, lambda m: m.get_child_thoughts(thought_id))
    if not kids:
        console.print("[dim]No child thoughts[/dim]")
        return
    console.print(_thought_table(kids, title=f"Children of {thought_id}"))


@cli.command()
@click.argument("task_id")
@click.pass_context
def task(ctx, task_id):
    """List every thought of a task, oldest first."""
    thoughts = _run(ctx, lambda m: m.get_thoughts_by_task_id(task_id))
    if not thoughts:
        console.print("[dim]No thoughts for this task[/dim]")
        return
    console.print(_thought_table(thoughts, title=f"Task {task_id}"))


@cli.command()
@click.argument("thought_id")
@click.pass_context
def lineage(ctx, thought_id):
    """Walk a thought's parents back to the root."""
    chain = _run(ctx, lambda m: m.lineage(thought_id))
    for depth, thought in enumerate(chain):
        prefix = "  " * depth + ("└─ " if depth else "")
        console.print(f"{prefix}[cyan]{thought.id}[/cyan] {thought.intent}")


@cli.command()
@click.argument("thought_id")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def delete(ctx, thought_id, yes):
    """Delete a thought and its notes."""
    if not yes and not click.confirm(f"Delete thought {thought_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        return
    _run(ctx, lambda m: m.delete_thought(thought_id))
    console.print(f"[green]✓[/green] Deleted {thought_id}")


def main():
    cli()


if __name__ == "__main__":
    main()
