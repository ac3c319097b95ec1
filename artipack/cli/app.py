"""Main Typer application: registers all CLI commands.

Entry point: ``artipack`` (configured via pyproject.toml [project.scripts]).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from artipack.cli.commands.build import build_cmd
from artipack.cli.commands.cache_cmd import cache_cmd
from artipack.cli.commands.resolve import resolve_cmd
from artipack.cli.commands.verify import verify_cmd
from artipack.config import settings

app = typer.Typer(
    name="artipack",
    help="artipack: resolve, fetch and package forensic artifact tools for offline collection.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="build", help="Build an offline collection package.")(build_cmd)
app.command(name="resolve", help="Show the tools a set of artifacts needs.")(resolve_cmd)
app.command(name="verify", help="Verify a built package against its manifest.")(verify_cmd)
app.command(name="cache", help="List cached tools and their verification status.")(cache_cmd)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
) -> None:
    """Configure logging once for every subcommand."""
    configure_logging("DEBUG" if verbose else settings.log_level)


def configure_logging(level: str) -> None:
    """Route engine logs through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True), rich_tracebacks=True, show_path=False
            )
        ],
        force=True,
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
