"""artipack CLI: Typer-based command-line interface.

Provides the ``artipack`` command with subcommands for building offline
collection packages, previewing tool resolution, verifying built packages,
and inspecting the tool cache.

All output uses Rich for formatted terminal display.
"""
