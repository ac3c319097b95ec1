"""``artipack resolve ARTIFACT...``: show the tools a request needs."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from artipack.config import settings
from artipack.core.errors import ArtipackError
from artipack.core.pipeline import BuildPipeline

console = Console()


def resolve_cmd(
    artifacts: list[str] = typer.Argument(
        ...,
        help="Artifact names to resolve.",
    ),
    definitions: list[Path] = typer.Option(
        None,
        "--definitions",
        "-d",
        help="Artifact definition file or directory (repeatable).",
    ),
) -> None:
    """Resolve the deduplicated tool set without downloading anything."""
    try:
        resolved = BuildPipeline.load(
            definitions or [settings.definitions_path]
        ).resolve(artifacts)
    except ArtipackError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if not len(resolved):
        console.print("[dim]No tools required.[/dim]")
        return

    table = Table(title=f"Tools for {len(resolved.requested)} artifact(s)")
    table.add_column("Tool", style="cyan")
    table.add_column("SHA-256", style="green")
    table.add_column("Required by")
    table.add_column("URL", overflow="fold")
    for name, ref in resolved.tools.items():
        table.add_row(
            name,
            ref.expected_hash[:16],
            ", ".join(resolved.required_by.get(name, [])),
            ref.url,
        )
    console.print(table)
