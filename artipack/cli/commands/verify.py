"""``artipack verify DIR``: re-check a built package."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from artipack.core.manifest import ManifestGenerator

console = Console()


def verify_cmd(
    package_dir: Path = typer.Argument(
        ...,
        help="Package directory containing manifest.json.",
    ),
) -> None:
    """Recompute the fingerprint and re-hash every packaged tool."""
    problems = ManifestGenerator().verify_package(package_dir)
    if problems:
        console.print(f"[bold red]Package {package_dir} failed verification:[/bold red]")
        for problem in problems:
            console.print(f"  [red]- {problem}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]Package {package_dir} is intact.[/bold green]")
