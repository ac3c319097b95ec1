"""``artipack cache``: list cached tools with re-verified status."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from artipack.config import settings
from artipack.core.tool_cache import ToolCache
from artipack.models.cache import VerificationStatus

console = Console()

_STATUS_STYLES: dict[VerificationStatus, str] = {
    VerificationStatus.VERIFIED: "[green]verified[/green]",
    VerificationStatus.UNVERIFIED: "[yellow]unverified[/yellow]",
    VerificationStatus.FAILED: "[bold red]FAILED[/bold red]",
}


def cache_cmd(
    cache_dir: Path = typer.Option(
        None, "--cache-dir", "-c", help="Tool cache directory."
    ),
) -> None:
    """List every cached tool, re-hashing each blob."""
    cache = ToolCache(cache_dir or settings.cache_dir)
    entries = cache.entries()
    if not entries:
        console.print("[dim]Tool cache is empty.[/dim]")
        return

    table = Table(title=f"Tool cache: {cache.root}")
    table.add_column("Tool", style="cyan")
    table.add_column("SHA-256", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Fetched")
    table.add_column("Status", justify="center")
    for entry in entries:
        table.add_row(
            entry.name,
            entry.hash[:16],
            str(entry.size),
            entry.fetched_at.strftime("%Y-%m-%d %H:%M:%S"),
            _STATUS_STYLES[entry.status],
        )
    console.print(table)

    if any(e.status == VerificationStatus.FAILED for e in entries):
        raise typer.Exit(code=1)
