"""Command-line interface for ghfacts."""

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ghfacts.auth import get_token
from ghfacts.config import Settings, get_settings
from ghfacts.errors import GhFactsError
from ghfacts.github_client import GitHubClient
from ghfacts.models import RateLimitUsage
from ghfacts.ratelimit import check_limits, estimate_cost
from ghfacts.summary import run_collect, run_summary

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    # Logs go to stderr so stdout carries only the report.
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(error: GhFactsError) -> None:
    err_console.print(f"[red]{error.message}[/red]")
    for instruction in error.recovery_instructions:
        err_console.print(f"  - {instruction}")
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Factual GitHub activity summaries for LLM consumption."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


@main.command()
@click.argument("target", required=False)
@click.option("--repo", "-r", multiple=True, help="Repository OWNER/NAME (repeatable)")
@click.option("--days", "-d", type=int, default=None, help="Analysis window in days")
@click.option("--save", is_flag=True, help="Write the compressed result file")
@click.pass_context
def summary(
    ctx: click.Context, target: str | None, repo: tuple[str, ...], days: int | None, save: bool
) -> None:
    """Collect activity and print numeric facts.

    TARGET is a project URL, OWNER/NAME or an owner login. Without one,
    configured repositories or the current checkout's remote are used.

    Examples:
        ghfacts summary                                   # Auto-detect
        ghfacts summary octo-org/widgets -d 7             # Single repo
        ghfacts summary https://github.com/orgs/octo-org/projects/5
        ghfacts summary -r octo-org/a -r octo-org/b --save
    """
    settings = get_settings()
    report = asyncio.run(
        run_summary(settings, target=target, repositories=list(repo), days=days, save=save)
    )
    click.echo(report.render())
    ctx.exit(report.exit_code)


@main.command()
@click.argument("target", required=False)
@click.option("--repo", "-r", multiple=True, help="Repository OWNER/NAME (repeatable)")
@click.option("--days", "-d", type=int, default=None, help="Collection window in days")
@click.pass_context
def collect(ctx: click.Context, target: str | None, repo: tuple[str, ...], days: int | None) -> None:
    """Collect raw data into a result file.

    Examples:
        ghfacts collect octo-org/widgets                  # Single repo
        ghfacts collect -r octo-org/a -r octo-org/b -d 90
    """
    settings = get_settings()
    report = asyncio.run(run_collect(settings, target=target, repositories=list(repo), days=days))
    click.echo(report.render())
    ctx.exit(report.exit_code)


async def _fetch_usage(settings: Settings) -> RateLimitUsage:
    async with GitHubClient(
        get_token(settings), timeout=settings.request_timeout, backoff=settings.backoff_policy()
    ) as client:
        return await check_limits(client)


@main.command("rate-limit")
def rate_limit() -> None:
    """Show remaining REST and GraphQL quota."""
    settings = get_settings()
    try:
        usage = asyncio.run(_fetch_usage(settings))
    except GhFactsError as e:
        _fail(e)
        return

    table = Table(title="GitHub Rate Limits")
    table.add_column("Pool", style="cyan")
    table.add_column("Remaining", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Resets (UTC)")

    for name, pool in (("REST", usage.rest), ("GraphQL", usage.graphql)):
        style = "red" if pool.remaining < settings.rate_limit_warning_threshold else "green"
        table.add_row(
            name,
            f"[{style}]{pool.remaining}[/{style}]",
            str(pool.used),
            str(pool.limit),
            pool.reset_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@main.command()
@click.option("--repos", "repo_count", type=int, default=1, help="Number of repositories")
@click.option("--items", type=int, default=None, help="Expected items of each kind per repo")
def estimate(repo_count: int, items: int | None) -> None:
    """Estimate the API calls a collection would use.

    Examples:
        ghfacts estimate --repos 10               # Default item estimate
        ghfacts estimate --repos 3 --items 200
    """
    settings = get_settings()
    if items is None:
        items = settings.estimate_items_per_repo
    try:
        usage = asyncio.run(_fetch_usage(settings))
    except GhFactsError as e:
        _fail(e)
        return

    result = estimate_cost(repo_count, items, settings.collection_options(), usage)

    table = Table(title="API Call Estimate")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Repositories", str(repo_count))
    table.add_row("Items per repository", str(items))
    table.add_row("Estimated calls", str(result.estimated_calls))
    table.add_row("Estimated minutes", str(result.estimated_duration_minutes))
    table.add_row("REST calls remaining", str(result.remaining))
    table.add_row("Feasible", "[green]yes[/green]" if result.feasible else "[red]no[/red]")
    console.print(table)


@main.command("list")
@click.pass_context
def list_repos(ctx: click.Context) -> None:
    """List configured repositories."""
    settings = get_settings()
    try:
        repos = settings.load_repos()
    except GhFactsError as e:
        _fail(e)
        return

    if not repos:
        console.print(
            f"[yellow]No repositories configured in {settings.config_dir / 'repos.yaml'}[/yellow]"
        )
        return

    table = Table(title="Configured Repositories")
    table.add_column("Owner", style="cyan")
    table.add_column("Repository", style="green")

    for repo in repos:
        table.add_row(repo.owner, repo.name)

    console.print(table)


if __name__ == "__main__":
    main()
