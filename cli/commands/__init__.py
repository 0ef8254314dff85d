"""CLI command modules for the extension manager."""

from cli.commands.extensions import extensions_app

__all__ = ["extensions_app"]
