"""
Command-line interface for issync.

This module provides the Typer-based CLI for syncing GitHub issues with
local markdown files.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .credentials import get_current_repo, get_github_token
from .exceptions import IssyncError
from .github_client import GitHubClient
from .models import ConflictInfo, Issue, PullResult, PushResult, SyncAction, SyncResult
from .projects import ProjectsClient
from .storage import DEFAULT_ROOT, IssueStore
from .sync import IssueSync

T = TypeVar("T")

# Create Typer app
app = typer.Typer(
    name="issync",
    help="Sync GitHub issues with local markdown files",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
error_console = Console(stderr=True)

ACTION_STYLES = {
    SyncAction.PULLED: "green",
    SyncAction.CREATED: "green",
    SyncAction.UPDATED: "yellow",
    SyncAction.WOULD_UPDATE: "yellow",
    SyncAction.FIELD_UPDATED: "cyan",
    SyncAction.WOULD_UPDATE_FIELD: "cyan",
    SyncAction.CONFLICT: "red",
    SyncAction.SKIPPED: "dim",
    SyncAction.FAILED: "red",
}


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Settings(BaseModel):
    """Global options shared by all commands."""

    repo: str | None = None
    root: Path = Path(DEFAULT_ROOT)
    timeout: int = GitHubClient.DEFAULT_TIMEOUT


def setup_logging(level: LogLevel, verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    log_level = getattr(logging, level.value.upper())

    if verbose:
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_time=False, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"issync version {__version__}")
        raise typer.Exit


@asynccontextmanager
async def open_sync(settings: Settings, with_projects: bool = False) -> AsyncIterator[IssueSync]:
    """
    Build a sync engine with live GitHub clients.

    The clients are closed when the context exits.
    """
    token = await get_github_token()
    repo = settings.repo or await get_current_repo()

    client = GitHubClient(token, timeout=settings.timeout)
    projects = ProjectsClient(token, timeout=settings.timeout) if with_projects else None
    try:
        yield IssueSync(
            provider=client,
            store=IssueStore(settings.root),
            repo=repo,
            fields_provider=projects,
        )
    finally:
        await client.close()
        if projects is not None:
            await projects.close()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine, turning issync errors into exit codes."""
    try:
        return asyncio.run(coro)
    except IssyncError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        if e.hint:
            error_console.print(f"[dim]Hint: {e.hint}[/dim]")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        error_console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(130) from None


@app.callback()
def main_callback(
    ctx: typer.Context,
    repo: Annotated[
        str | None,
        typer.Option(
            "-R",
            "--repo",
            help="Repository in owner/repo format (default: git origin remote)",
            envvar="ISSYNC_REPO",
            show_default=False,
        ),
    ] = None,
    root: Annotated[
        Path,
        typer.Option(
            "--dir",
            help="Directory holding issue files and sync state",
            envvar="ISSYNC_DIR",
        ),
    ] = Path(DEFAULT_ROOT),
    timeout: Annotated[
        int,
        typer.Option(
            "--timeout",
            help="API timeout in seconds",
            min=10,
            max=300,
        ),
    ] = GitHubClient.DEFAULT_TIMEOUT,
    verbose: Annotated[
        bool,
        typer.Option(
            "-v",
            "--verbose",
            help="Enable verbose output",
        ),
    ] = False,
    log_level: Annotated[
        LogLevel,
        typer.Option(
            "--log-level",
            help="Set log level",
        ),
    ] = LogLevel.INFO,
    _version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """
    Sync GitHub issues with local markdown files.

    Issues live in .issync/issues/<number>.md; edit them and push the
    changes back with 'issync up'.
    """
    setup_logging(log_level, verbose)
    ctx.obj = Settings(repo=repo, root=root, timeout=timeout)


@app.command()
def down(
    ctx: typer.Context,
    closed: Annotated[
        bool,
        typer.Option("--closed", help="Include closed issues"),
    ] = False,
    full: Annotated[
        bool,
        typer.Option("--full", help="Ignore the last sync time and fetch everything"),
    ] = False,
    projects: Annotated[
        bool,
        typer.Option("--projects", help="Include GitHub Projects custom fields"),
    ] = False,
) -> None:
    """
    Pull issues from GitHub into local files.

    Examples:

        issync down

        issync down --closed --full

        issync -R octocat/Hello-World down --projects
    """
    settings: Settings = ctx.obj

    async def run() -> PullResult:
        async with open_sync(settings, with_projects=projects) as syncer:
            return await syncer.pull(
                include_closed=closed,
                full_sync=full,
                with_project_fields=projects,
            )

    result = _run(run())
    _display_pull(result)
    if result.errors:
        raise typer.Exit(1)


@app.command()
def up(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Push even when GitHub changed since the last sync"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            "-n",
            help="Show what would happen without making changes",
        ),
    ] = False,
    projects: Annotated[
        bool,
        typer.Option("--projects", help="Include GitHub Projects custom fields"),
    ] = False,
) -> None:
    """
    Push locally modified issues to GitHub.

    Issues changed on both sides are reported as conflicts and left
    untouched unless --force is given.
    """
    settings: Settings = ctx.obj

    if dry_run:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    async def run() -> PushResult:
        async with open_sync(settings, with_projects=projects) as syncer:
            return await syncer.push(
                force=force,
                dry_run=dry_run,
                with_project_fields=projects,
            )

    result = _run(run())
    _display_push(result)
    if result.errors:
        raise typer.Exit(1)


@app.command()
def sync(
    ctx: typer.Context,
    closed: Annotated[
        bool,
        typer.Option("--closed", help="Include closed issues when pulling"),
    ] = False,
    full: Annotated[
        bool,
        typer.Option("--full", help="Ignore the last sync time and fetch everything"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Push even when GitHub changed since the last sync"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            "-n",
            help="Show what would be pushed without making changes",
        ),
    ] = False,
    projects: Annotated[
        bool,
        typer.Option("--projects", help="Include GitHub Projects custom fields"),
    ] = False,
) -> None:
    """Pull from GitHub, then push local changes."""
    settings: Settings = ctx.obj

    async def run() -> tuple[PullResult, PushResult]:
        async with open_sync(settings, with_projects=projects) as syncer:
            return await syncer.sync(
                include_closed=closed,
                full_sync=full,
                force=force,
                dry_run=dry_run,
                with_project_fields=projects,
            )

    pulled, pushed = _run(run())
    _display_pull(pulled)
    _display_push(pushed)
    if pulled.errors or pushed.errors:
        raise typer.Exit(1)


@app.command()
def conflicts(ctx: typer.Context) -> None:
    """List issues changed both locally and on GitHub since the last sync."""
    settings: Settings = ctx.obj

    async def run() -> list[ConflictInfo]:
        async with open_sync(settings) as syncer:
            return await syncer.detect_conflicts()

    found = _run(run())
    if not found:
        console.print("[green]No conflicts[/green]")
        return

    table = Table(title="Conflicts")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("GitHub updated")
    table.add_column("Local updated")
    table.add_column("Last synced", style="dim")

    for conflict in found:
        table.add_row(
            str(conflict.number),
            _truncate(conflict.title),
            conflict.github_updated,
            conflict.local_updated,
            conflict.last_synced,
        )

    console.print(table)
    console.print(
        f"\n{len(found)} conflict(s). Pull to take GitHub's version, "
        "or push with --force to keep yours."
    )


@app.command()
def new(
    ctx: typer.Context,
    title: Annotated[
        str,
        typer.Argument(help="Issue title", show_default=False),
    ],
    body: Annotated[
        str,
        typer.Option("-b", "--body", help="Issue body (markdown)"),
    ] = "",
    label: Annotated[
        list[str] | None,
        typer.Option("-l", "--label", help="Label to add (repeatable)"),
    ] = None,
    assignee: Annotated[
        list[str] | None,
        typer.Option("-a", "--assignee", help="User to assign (repeatable)"),
    ] = None,
    milestone: Annotated[
        str | None,
        typer.Option("-m", "--milestone", help="Milestone title"),
    ] = None,
) -> None:
    """Create an issue on GitHub and track it locally."""
    settings: Settings = ctx.obj

    async def run() -> tuple[Issue, Path]:
        async with open_sync(settings) as syncer:
            issue = await syncer.create_issue(
                title,
                body=body,
                labels=label or [],
                assignees=assignee or [],
                milestone=milestone,
            )
            return issue, syncer.store.issue_path(issue.number)

    issue, path = _run(run())
    console.print(f"[green]✓[/green] Created issue #{issue.number}: {issue.title}")
    if issue.url:
        console.print(f"  {issue.url}")
    console.print(f"  [dim]{path}[/dim]")


@app.command()
def check(ctx: typer.Context) -> None:
    """
    Check authentication and repository detection.

    Verifies that a GitHub token is available and accepted, and that the
    target repository can be determined.
    """
    settings: Settings = ctx.obj

    async def run() -> None:
        token = await get_github_token()
        console.print("[green]✓[/green] GitHub token found")

        async with GitHubClient(token, timeout=settings.timeout) as client:
            login = await client.check_connection()
        console.print(f"[green]✓[/green] Authenticated as [bold]{login}[/bold]")

        repo = settings.repo or await get_current_repo()
        console.print(f"[green]✓[/green] Repository: [bold]{repo}[/bold]")

        store = IssueStore(settings.root)
        tracked = len(store.load_state().issues)
        console.print(f"[green]✓[/green] {tracked} issue(s) tracked in {settings.root}")

    with console.status("Checking GitHub connection..."):
        _run(run())

    console.print("\n[green]All checks passed![/green]")


def _truncate(title: str, width: int = 50) -> str:
    if len(title) > width:
        return title[: width - 3] + "..."
    return title


def _entries_table(result: SyncResult, title: str, skip: set[SyncAction]) -> Table | None:
    """Per-issue table, or None when there is nothing worth listing."""
    entries = [entry for entry in result.entries if entry.action not in skip]
    if not entries:
        return None

    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Action")
    table.add_column("Title")
    table.add_column("Details", style="dim")

    for entry in entries:
        style = ACTION_STYLES.get(entry.action, "")
        table.add_row(
            str(entry.issue_number),
            f"[{style}]{entry.action.value}[/{style}]" if style else entry.action.value,
            _truncate(entry.title),
            entry.details or "",
        )
    return table


def _display_errors(result: SyncResult) -> None:
    for warning in result.warnings:
        error_console.print(f"[yellow]Warning:[/yellow] {warning}")

    if result.errors:
        error_console.print("\n[red]Errors:[/red]")
        for error in result.errors[:10]:
            error_console.print(f"  - {error}")
        if len(result.errors) > 10:
            error_console.print(f"  ... and {len(result.errors) - 10} more")


def _display_pull(result: PullResult) -> None:
    """Display pull result as a summary panel."""
    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()

    summary.add_row("Repository:", result.repo)
    if result.since:
        summary.add_row("Since:", result.since)
    summary.add_row("Fetched:", str(result.fetched))
    summary.add_row("Written:", f"[green]{result.pulled}[/green]")
    if result.project_items:
        summary.add_row("Project items:", f"[cyan]{result.project_items}[/cyan]")
    if result.errors:
        summary.add_row("Errors:", f"[red]{len(result.errors)}[/red]")

    panel = Panel(
        summary,
        title="Pull Results",
        border_style="green" if not result.errors else "yellow",
    )
    console.print(panel)

    failures = _entries_table(result, "Failed Issues", skip={SyncAction.PULLED})
    if failures is not None:
        console.print(failures)
    _display_errors(result)


def _display_push(result: PushResult) -> None:
    """Display push result as a table of changes and a summary panel."""
    table = _entries_table(
        result,
        "Planned Changes" if result.dry_run else "Changes",
        skip={SyncAction.SKIPPED},
    )
    if table is not None:
        console.print(table)

    summary = Table.grid(padding=(0, 2))
    summary.add_column(style="bold")
    summary.add_column()

    label = "Would update:" if result.dry_run else "Updated:"
    summary.add_row(label, f"[yellow]{result.updated}[/yellow]")
    summary.add_row("Field updates:", f"[cyan]{result.field_updates}[/cyan]")
    summary.add_row("Conflicts:", f"[red]{result.conflicts}[/red]" if result.conflicts else "0")
    summary.add_row("Skipped:", str(result.count(SyncAction.SKIPPED)))
    if result.errors:
        summary.add_row("Errors:", f"[red]{len(result.errors)}[/red]")

    border = "green"
    if result.conflicts or result.errors:
        border = "yellow"

    panel = Panel(
        summary,
        title="Dry Run Results" if result.dry_run else "Push Results",
        border_style=border,
    )
    console.print(panel)

    if result.conflicts:
        console.print("[yellow]Use --force to overwrite GitHub changes for conflicted issues[/yellow]")
    _display_errors(result)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
