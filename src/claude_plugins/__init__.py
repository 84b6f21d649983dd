#!/usr/bin/env python3
"""
Claude Plugins - install plugins and agent skills for AI coding agents.

Plugins are recorded in Claude Code's own state (~/.claude): a marketplace
manifest lists them and settings.json enables them. Skills are copied into
the skills directory of any supported client.

Usage:
    claude-plugins install @every/compounding-engineering
    claude-plugins disable compounding-engineering
    claude-plugins skills install @anthropics/skills/pdf --client cursor
    claude-plugins skills search testing
"""

import asyncio
import importlib.metadata
import platform
from typing import Coroutine, NoReturn, Optional, TypeVar, Union

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from claude_plugins.config import ConfigStore, DISCOVERY_URL, PluginPaths
from claude_plugins.errors import PluginAlreadyEnabledError, PluginsError
from claude_plugins.installer import PluginInstaller
from claude_plugins.logging import setup_logging
from claude_plugins.marketplace import MarketplaceRegistry
from claude_plugins.prompts import Choice, confirm, is_interactive, select_one
from claude_plugins.registry import RegistryClient
from claude_plugins.skills import (
    CLIENT_CONFIGS,
    DEFAULT_CLIENT,
    SKILLS_DISCOVERY_URL,
    SkillInstaller,
    get_client_config,
    list_installed,
)
from claude_plugins.store import JsonStore

# Package version - keep in sync with pyproject.toml
__version__ = "0.1.0"

T = TypeVar("T")

console = Console()
app = typer.Typer(
    name="claude-plugins",
    help="Install plugins and agent skills for AI coding agents",
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Install plugins and agent skills for AI coding agents.
    """
    setup_logging("DEBUG" if verbose else "WARNING")
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


skills_app = typer.Typer(
    help="Install, search and list agent skills",
    no_args_is_help=True,
)
app.add_typer(skills_app, name="skills")

marketplace_app = typer.Typer(
    help="Inspect and update plugin marketplaces",
    no_args_is_help=True,
)
app.add_typer(marketplace_app, name="marketplace")

config_app = typer.Typer(
    help="Show and change claude-plugins configuration",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# =============================================================================
# Utility Functions
# =============================================================================

def get_paths() -> PluginPaths:
    return PluginPaths.default()


def _describe(error: Exception) -> str:
    if isinstance(error, OSError) and error.strerror:
        return f"{error.strerror}: {error.filename}" if error.filename else error.strerror
    return str(error)


def fail(error: Union[PluginsError, OSError]) -> NoReturn:
    """Print an error (and its hint) and exit with status 1."""
    console.print(f"[red]Error:[/red] {escape(_describe(error))}")
    hint = getattr(error, "hint", None)
    if hint:
        console.print(f"[dim]{escape(hint)}[/dim]")
    raise typer.Exit(1)


def run(coro: Coroutine[None, None, T]) -> T:
    """Run a coroutine to completion, turning PluginsError and OSError into exit 1."""
    try:
        return asyncio.run(coro)
    except (PluginsError, OSError) as e:
        fail(e)


def cancelled() -> NoReturn:
    console.print("[yellow]Operation cancelled[/yellow]")
    raise typer.Exit(0)


# =============================================================================
# Plugin Commands
# =============================================================================

@app.command()
def install(
    identifier: str = typer.Argument(
        ..., help="Plugin identifier (@namespace/name, namespace/name, name) or git URL"
    ),
):
    """
    Install a plugin or marketplace and enable it.

    Examples:
        claude-plugins install @every/compounding-engineering
        claude-plugins install https://github.com/owner/plugin.git
    """
    installer = PluginInstaller(get_paths())

    with console.status(f"[cyan]Installing {escape(identifier)}...[/cyan]"):
        result = run(installer.install(identifier))

    what = "marketplace" if result.kind == "marketplace" else "plugin"
    console.print(
        f"[green]✓[/green] Installed {what} [bold]{escape(result.name)}[/bold]"
        f" [dim](marketplace: {escape(result.marketplace)})[/dim]"
    )
    console.print(f"[dim]  {result.location}[/dim]")
    console.print(
        f"\nStart Claude Code to use the new plugin [bold]{escape(result.name)}[/bold]."
    )


@app.command()
def enable(plugin: str = typer.Argument(..., help="Plugin name to enable")):
    """Enable a disabled plugin."""
    installer = PluginInstaller(get_paths())

    try:
        entry = asyncio.run(installer.enable(plugin))
    except PluginAlreadyEnabledError as e:
        console.print(f"[yellow]{escape(str(e))}[/yellow]")
        return
    except (PluginsError, OSError) as e:
        fail(e)

    console.print(
        f"[green]✓[/green] Enabled {escape(entry.name)}"
        f" [dim](marketplace: {escape(entry.marketplace)})[/dim]"
    )


@app.command()
def disable(
    plugin: str = typer.Argument(..., help="Plugin name to disable"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Disable a plugin without forgetting it."""
    if not confirm(f'Disable "{plugin}"?', assume_yes=yes):
        cancelled()

    result = run(PluginInstaller(get_paths()).disable(plugin))

    console.print(
        f"[green]✓[/green] Disabled {escape(result.name)}"
        f" [dim](marketplace: {escape(result.marketplace)})[/dim]"
    )
    if result.removed_marketplace:
        console.print(f"[dim]  Local marketplace {escape(result.marketplace)} is empty and was removed[/dim]")
    elif result.removed_path:
        console.print(f"[dim]  Removed {result.removed_path}[/dim]")


@app.command()
def remove(
    plugin: str = typer.Argument(..., help="Plugin name to remove"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Remove a plugin from settings, its marketplace and the cache."""
    if not confirm(f'Remove "{plugin}"?', assume_yes=yes):
        cancelled()

    result = run(PluginInstaller(get_paths()).remove(plugin))

    console.print(f"[green]✓[/green] Removed {escape(result.name)}")
    for path in result.removed_paths:
        console.print(f"[dim]  Deleted {path}[/dim]")
    if result.removed_marketplace:
        console.print(f"[dim]  Local marketplace {escape(result.marketplace)} is empty and was removed[/dim]")


@app.command(name="list")
def list_plugins():
    """List installed plugins grouped by marketplace."""
    grouped = run(PluginInstaller(get_paths()).list_plugins())

    if not grouped:
        console.print("[dim]No plugins installed.[/dim]")
        console.print(f"[dim]Visit {DISCOVERY_URL} to discover plugins.[/dim]")
        return

    tree = Tree("[bold]Installed plugins[/bold]")
    for marketplace, entries in grouped.items():
        branch = tree.add(f"[cyan]{escape(marketplace)}[/cyan]")
        for entry in entries:
            if entry.enabled:
                branch.add(f"[green]✓[/green] {escape(entry.name)}")
            else:
                branch.add(f"[dim]○ {escape(entry.name)} (disabled)[/dim]")
    console.print(tree)


# =============================================================================
# Skill Commands
# =============================================================================

async def _with_registry(paths: PluginPaths, action):
    config = await ConfigStore(paths, JsonStore()).get_config()
    async with RegistryClient(config.effective_registry_url()) as registry:
        return await action(SkillInstaller(registry))


def _print_skill_results(results) -> None:
    for result in results:
        action = "updated" if result.updated else "installed"
        console.print(
            f'[green]✓[/green] Skill "[bold]{escape(result.name)}[/bold]" {action}'
        )
        console.print(f"[dim]  {result.path}[/dim]")

    if results:
        client = get_client_config(results[0].client)
        if results[0].scope == "global":
            console.print(f"\nAvailable for all {client.name} projects.")
        else:
            console.print("\nAvailable for this project only.")


@skills_app.command("install")
def skills_install(
    identifier: str = typer.Argument(
        ..., help="@owner/repo/skill, owner/repo, or a GitHub URL"
    ),
    local: bool = typer.Option(
        False, "--local", "--project", "-l", help="Install into the current project"
    ),
    client: str = typer.Option(DEFAULT_CLIENT, "--client", "-c", help="Target client"),
):
    """
    Install an agent skill.

    Examples:
        claude-plugins skills install @anthropics/skills/pdf
        claude-plugins skills install https://github.com/owner/repo/tree/main/skills/x
        claude-plugins skills install owner/repo --client codex --local
    """
    with console.status(f"[cyan]Installing {escape(identifier)}...[/cyan]"):
        results = run(
            _with_registry(
                get_paths(),
                lambda installer: installer.install(identifier, client=client, local=local),
            )
        )
    _print_skill_results(results)


def _pick_client(client: Optional[str]) -> Optional[str]:
    if client:
        try:
            get_client_config(client)
        except PluginsError as e:
            fail(e)
        return client

    choices = [
        Choice(key, config.name, "supports global" if config.global_dir else "local only")
        for key, config in CLIENT_CONFIGS.items()
    ]
    return select_one(choices, "Select target client", initial=DEFAULT_CLIENT, console=console)


def _pick_scope(client: str, local: bool) -> Optional[bool]:
    config = get_client_config(client)
    if local:
        return True
    if not config.global_dir:
        console.print(f"[dim]{config.name} only supports local installation.[/dim]")
        return True

    scope = select_one(
        [
            Choice("global", "Global", "available for all projects"),
            Choice("local", "Local", "current project only"),
        ],
        "Installation scope",
        initial="global",
        console=console,
    )
    return None if scope is None else scope == "local"


@skills_app.command("search")
def skills_search(
    query: Optional[str] = typer.Argument(None, help="Search terms"),
    client: Optional[str] = typer.Option(None, "--client", "-c", help="Target client"),
    local: bool = typer.Option(False, "--local", "-l", help="Install into the current project"),
    limit: int = typer.Option(5, "--limit", "-n", min=1, max=100, help="Results per page"),
):
    """Search the registry and optionally install a result."""
    if not query:
        if not is_interactive():
            console.print("[red]Error:[/red] A search query is required")
            raise typer.Exit(1)
        query = typer.prompt("Search for skills")
    query = query.strip()
    if len(query) < 2:
        console.print("[red]Error:[/red] Query must be at least 2 characters")
        raise typer.Exit(1)

    paths = get_paths()
    skills = []
    offset = 0

    while True:
        response = run(
            _with_registry(
                paths, lambda installer: installer.search(query, limit=limit, offset=offset)
            )
        )
        skills.extend(response.skills)

        if not skills:
            console.print(f'[yellow]No skills found for "{escape(query)}"[/yellow]')
            console.print(f"[dim]Try a different search term or browse {SKILLS_DISCOVERY_URL}[/dim]")
            return

        table = Table(title=f'{response.total} skill(s) for "{escape(query)}"')
        table.add_column("Skill", style="bold")
        table.add_column("Namespace", style="cyan")
        table.add_column("Author")
        table.add_column("★", justify="right", style="yellow")
        table.add_column("Installs", justify="right", style="green")
        table.add_column("Description", style="dim")
        for skill in skills:
            description = skill.description or ""
            if len(description) > 70:
                description = description[:70] + "..."
            table.add_row(
                escape(skill.name),
                escape(skill.namespace),
                escape(skill.author),
                str(skill.stars),
                str(skill.installs),
                escape(description),
            )
        console.print(table)

        if not is_interactive():
            console.print("\n[dim]Install with: claude-plugins skills install <namespace>[/dim]")
            return

        choices = [Choice(s.namespace, s.name, f"by {s.author}") for s in skills]
        has_more = len(skills) < response.total
        if has_more:
            choices.append(Choice("__more__", "→ Load more results..."))

        selection = select_one(choices, f"Select a skill to install ({len(skills)} of {response.total})", console=console)
        if selection is None:
            cancelled()
        if selection == "__more__":
            offset += limit
            continue
        break

    target_client = _pick_client(client)
    if target_client is None:
        cancelled()
    is_local = _pick_scope(target_client, local)
    if is_local is None:
        cancelled()

    with console.status(f"[cyan]Installing {escape(selection)}...[/cyan]"):
        results = run(
            _with_registry(
                paths,
                lambda installer: installer.install(selection, client=target_client, local=is_local),
            )
        )
    _print_skill_results(results)


@skills_app.command("list")
def skills_list(
    client: Optional[str] = typer.Option(None, "--client", "-c", help="Only this client"),
):
    """List installed agent skills."""
    try:
        installed = list_installed(client)
    except (PluginsError, OSError) as e:
        fail(e)

    if not installed:
        console.print("[dim]No skills installed.[/dim]")
        console.print(f"[dim]Visit {SKILLS_DISCOVERY_URL} to discover agent skills.[/dim]")
        return

    console.print("\n[bold]Installed agent skills:[/bold]\n")
    for skill in installed:
        console.print(
            f"  [green]●[/green] [bold]{escape(skill.name)}[/bold]"
            f" [dim]({escape(skill.client)}, {skill.scope})[/dim]"
        )
        if skill.description:
            console.print(f"    {escape(skill.description[:80])}")
        console.print(f"    [dim]{skill.path}[/dim]")
    console.print()


# =============================================================================
# Marketplace Commands
# =============================================================================

@marketplace_app.command(name="list")
def marketplace_list():
    """List known marketplaces."""
    paths = get_paths()
    store = JsonStore()
    registry = MarketplaceRegistry(paths, store, ConfigStore(paths, store))

    async def collect():
        rows = []
        for name, entry in sorted((await registry.get_known_marketplaces()).items()):
            manifest = await registry.get_marketplace_manifest(name)
            rows.append((name, entry, len(manifest.plugins) if manifest else None))
        return rows

    rows = run(collect())
    if not rows:
        console.print("[dim]No marketplaces registered.[/dim]")
        return

    console.print("\n[bold]Known marketplaces:[/bold]\n")
    for name, entry, plugin_count in rows:
        source = entry.source
        if source.source == "directory":
            source_info = "Local"
        elif source.repo:
            source_info = f"GitHub ({source.repo})"
        else:
            source_info = f"Git ({source.url})"
        count = "manifest missing" if plugin_count is None else f"{plugin_count} plugin(s)"

        console.print(f"  [cyan]❯[/cyan] [bold]{escape(name)}[/bold] [dim]({count})[/dim]")
        console.print(f"    [dim]Source: {escape(source_info)}[/dim]")
        console.print(f"    [dim]Location: {entry.install_location}[/dim]")
        console.print(f"    [dim]Updated: {entry.last_updated}[/dim]")
        console.print()


@marketplace_app.command("update")
def marketplace_update(
    name: Optional[str] = typer.Argument(None, help="Marketplace name (or all if not specified)"),
):
    """Update marketplace(s) from their git source."""
    with console.status("[cyan]Updating marketplaces...[/cyan]"):
        results = run(PluginInstaller(get_paths()).update_marketplaces(name))

    if not results:
        console.print("[dim]No git marketplaces to update.[/dim]")
        return

    failed = False
    for result in results:
        if result.updated:
            console.print(f"[green]✓[/green] Updated {escape(result.marketplace)}")
        else:
            failed = True
            console.print(f"[red]Error updating {escape(result.marketplace)}:[/red] {escape(result.error or '')}")
    if failed:
        raise typer.Exit(1)


# =============================================================================
# Config Commands
# =============================================================================

def _config_store() -> ConfigStore:
    return ConfigStore(get_paths(), JsonStore())


def _print_config(config) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Value", style="white")
    table.add_row("defaultMarketplace", config.default_marketplace)
    table.add_row("registryUrl", config.registry_url or "")
    table.add_row("effective registry", config.effective_registry_url())
    table.add_row("file", str(get_paths().config_file))
    console.print(table)


@config_app.command("show")
def config_show():
    """Show the current configuration."""
    _print_config(run(_config_store().get_config()))


@config_app.command("set-default-marketplace")
def config_set_default_marketplace(
    name: str = typer.Argument(..., help="Marketplace that receives installed plugins"),
):
    """Change the local marketplace plugins are installed into."""
    config = run(_config_store().set_default_marketplace(name))
    console.print(f"[green]✓[/green] Default marketplace set to {escape(config.default_marketplace)}")


@config_app.command("set-registry-url")
def config_set_registry_url(
    url: str = typer.Argument(..., help="Base URL of the plugin and skill registry"),
):
    """Point claude-plugins at a different registry."""
    if not url.startswith(("http://", "https://")):
        console.print("[red]Error:[/red] Registry URL must start with http:// or https://")
        raise typer.Exit(1)
    config = run(_config_store().set_registry_url(url.rstrip("/")))
    console.print(f"[green]✓[/green] Registry URL set to {escape(config.registry_url or '')}")


# =============================================================================
# Version
# =============================================================================

def get_installed_version() -> str:
    """Get the currently installed version."""
    try:
        return importlib.metadata.version("claude-plugins")
    except importlib.metadata.PackageNotFoundError:
        return __version__


@app.command()
def version():
    """Display version information."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Value", style="white")

    table.add_row("Version", get_installed_version())
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.system())
    table.add_row("Claude home", str(get_paths().root))

    console.print(
        Panel(
            table,
            title="[bold cyan]Claude Plugins[/bold cyan]",
            border_style="cyan",
            padding=(1, 2),
        )
    )


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
