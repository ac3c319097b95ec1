"""``artipack build ARTIFACT...``: build an offline collection package.

Exit status: 0 on success, 3 on partial success (best-effort mode with some
tools failing), 1 on any hard failure.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from artipack.config import settings
from artipack.core.pipeline import BuildPipeline
from artipack.models.build import BuildRequest, BuildResult, BuildStatus
from artipack.models.fetch import FetchMode

console = Console()


def build_cmd(
    artifacts: list[str] = typer.Argument(
        ...,
        help="Artifact names to include in the package.",
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Package directory to create.",
    ),
    definitions: list[Path] = typer.Option(
        None,
        "--definitions",
        "-d",
        help="Artifact definition file or directory (repeatable).",
    ),
    mode: FetchMode = typer.Option(
        FetchMode.FAIL_FAST,
        "--mode",
        "-m",
        help="Fetch failure policy.",
        case_sensitive=False,
    ),
    archive: bool = typer.Option(
        False, "--archive", help="Also write a deterministic zip archive."
    ),
    overwrite: bool = typer.Option(
        False, "--overwrite", help="Replace an existing package directory."
    ),
    cache_dir: Path = typer.Option(
        None, "--cache-dir", "-c", help="Tool cache directory."
    ),
    workers: int = typer.Option(
        None, "--workers", "-w", min=1, help="Maximum concurrent downloads."
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print the build result as JSON."
    ),
) -> None:
    """Resolve, fetch and package the requested artifacts."""
    overrides = {}
    if cache_dir is not None:
        overrides["cache_dir"] = cache_dir
    if workers is not None:
        overrides["max_workers"] = workers
    run_settings = settings.model_copy(update=overrides)

    request = BuildRequest(
        artifacts=artifacts,
        output=output,
        definitions=definitions or [run_settings.definitions_path],
        mode=mode,
        archive=archive,
        overwrite=overwrite,
    )

    with BuildPipeline(run_settings) as pipeline:
        result = pipeline.build(request)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)
    raise typer.Exit(code=result.exit_code)


def _print_result(result: BuildResult) -> None:
    if result.errors:
        table = Table(title="Errors", title_style="bold red")
        table.add_column("Identifier", style="cyan")
        table.add_column("Error", style="red")
        table.add_column("Detail")
        for error in result.errors:
            table.add_row(error.identifier, error.error_type, error.message)
        console.print(table)

    if result.status == BuildStatus.FAILED:
        console.print("[bold red]Build failed.[/bold red]")
        return

    manifest = result.manifest
    lines = [
        "[bold green]Package built![/bold green]"
        if result.status == BuildStatus.SUCCESS
        else "[bold yellow]Package built with omissions.[/bold yellow]",
        "",
        f"[bold]Manifest:[/bold]    {result.manifest_path}",
        f"[bold]Fingerprint:[/bold] {manifest.fingerprint}",
        f"[bold]Artifacts:[/bold]   {len(manifest.artifacts)}",
        f"[bold]Tools:[/bold]       {len(manifest.tools)}",
        f"[bold]Total size:[/bold]  {manifest.total_size} bytes",
    ]
    if result.archive_path:
        lines.append(f"[bold]Archive:[/bold]     {result.archive_path}")
    if manifest.omitted_artifacts:
        lines += ["", f"[yellow]Omitted:[/yellow] {', '.join(manifest.omitted_artifacts)}"]

    console.print(
        Panel(
            "\n".join(lines),
            title="[bold]artipack[/bold]",
            border_style="green" if result.status == BuildStatus.SUCCESS else "yellow",
            padding=(1, 2),
        )
    )
    # Print the manifest path plainly for scripting
    console.print(str(result.manifest_path))
