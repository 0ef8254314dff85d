"""Extension manager CLI.

Command-line interface for installing and updating host extensions.
"""

__version__ = "0.1.0"

from cli.extmgr.cli import app, main

__all__ = ["__version__", "app", "main"]
