"""Extensions CLI commands.

Install, update and list extensions.
"""

import asyncio
import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

logger = logging.getLogger(__name__)

console = Console()
error_console = Console(stderr=True)

extensions_app = typer.Typer(
    name="extensions",
    help="Install and update extensions.",
)


def report_progress(message: object) -> None:
    """Progress callback for staged installs."""
    from extensions.errors import DependencyInstallWarning

    if isinstance(message, DependencyInstallWarning):
        console.print(f"[yellow]![/yellow] {message}")
    else:
        logger.info("%s", message)
        console.print(f"[dim]{message}[/dim]")


def report_done(message: str) -> None:
    """Notification callback for finished installs and updates."""
    console.print(f"[green]✓[/green] {message}")


def get_manager():
    """Get an extension manager for the configured root."""
    from extensions import ExtensionManager
    from extensions.config import get_config

    return ExtensionManager(
        config=get_config(),
        notify=report_done,
        on_message=report_progress,
    )


def get_package_manager(package_manager: Optional[str]) -> str:
    from extensions.config import get_config

    return package_manager or get_config().extensions.package_manager


@extensions_app.command("install")
def install(
    refs: List[str] = typer.Argument(
        ...,
        help="Extension names, name@version or repository URLs",
    ),
    package_manager: Optional[str] = typer.Option(
        None,
        "--package-manager",
        "-p",
        help="Package manager executable (default: from config)",
    ),
) -> None:
    """Install one or more extensions.

    Examples:
        extmgr extensions install coc-json
        extmgr extensions install coc-json@1.2.0 https://github.com/owner/coc-tools
    """
    from extensions.errors import ExtensionError

    manager = get_manager()
    npm = get_package_manager(package_manager)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Installing {len(refs)} extension(s)...", total=None)
        results = asyncio.run(manager.install_many(npm, refs))

    failed = 0
    for ref, result in results.items():
        if isinstance(result, ExtensionError):
            error_console.print(f"[red]✗[/red] Failed to install {ref}: {result}")
            failed += 1

    if failed:
        raise typer.Exit(1)


@extensions_app.command("update")
def update(
    name: Optional[str] = typer.Argument(
        None,
        help="Extension name (omit with --all)",
    ),
    uri: Optional[str] = typer.Option(
        None,
        "--uri",
        "-u",
        help="Repository URL to update from",
    ),
    all_exts: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Update all extensions",
    ),
    package_manager: Optional[str] = typer.Option(
        None,
        "--package-manager",
        "-p",
        help="Package manager executable (default: from config)",
    ),
) -> None:
    """Update extension(s) to latest version.

    Examples:
        extmgr extensions update coc-json
        extmgr extensions update --all
    """
    from extensions.errors import ExtensionError

    if not name and not all_exts:
        error_console.print("[red]✗[/red] Specify extension name or use --all")
        raise typer.Exit(1)

    manager = get_manager()
    npm = get_package_manager(package_manager)

    if all_exts:
        try:
            results = asyncio.run(manager.update_all(npm))
        except ExtensionError as e:
            error_console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(1)
        updated = [n for n, r in results.items() if r is True]
        failed = {n: r for n, r in results.items() if isinstance(r, ExtensionError)}

        for ext_name, error in failed.items():
            error_console.print(f"[red]✗[/red] Failed to update {ext_name}: {error}")
        if not updated and not failed:
            console.print("[green]✓[/green] All extensions are up to date")
        if failed:
            raise typer.Exit(1)
        return

    try:
        updated = asyncio.run(manager.update(npm, name, uri))
    except ExtensionError as e:
        error_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if not updated:
        if manager.is_linked(name):
            console.print(f"[blue]→[/blue] {name} is linked, skipped")
        else:
            console.print(f"[green]✓[/green] {name} is already at latest version")


@extensions_app.command("list")
def list_extensions() -> None:
    """List all installed extensions.

    Example:
        extmgr extensions list
    """
    from extensions.errors import ManifestError
    from extensions.manifest import load_manifest

    manager = get_manager()
    try:
        installed = manager.installed_extensions()
        manifest = load_manifest(manager.installer.manifest_path)
    except ManifestError as e:
        error_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if not installed:
        console.print("[yellow]No extensions installed[/yellow]")
        console.print("[dim]Install extensions with: extmgr extensions install <name>[/dim]")
        return

    table = Table(title="Installed Extensions")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Constraint", style="green")
    table.add_column("Host Range", style="yellow")
    table.add_column("Source")

    for ext in sorted(installed, key=lambda x: x.name or ""):
        ext_name = ext.name or "-"
        table.add_row(
            ext_name,
            ext.version or "-",
            manifest.dependencies.get(ext_name, "-"),
            ext.required_host_version or "any",
            "linked" if ext.name and manager.is_linked(ext.name) else "installed",
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(installed)} extensions[/dim]")
