"""Extension manager CLI.

Main command-line interface.
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from cli.extmgr.output import console, print_error

app = typer.Typer(
    name="extmgr",
    help="Install and update host extensions",
    no_args_is_help=True,
)

# Register extension sub-apps
from cli.commands.extensions import extensions_app

app.add_typer(extensions_app, name="extensions")


@app.callback()
def setup(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config.toml (default: search cwd and parents)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Load configuration and set up logging."""
    from extensions.config import get_config, reload_config

    if config_file and not config_file.is_file():
        print_error(f"Config file not found: {config_file}")
        raise typer.Exit(1)

    config = reload_config(config_file) if config_file else get_config()

    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@app.command()
def version() -> None:
    """Show version information."""
    from cli.extmgr import __version__

    console.print(f"extmgr v{__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
