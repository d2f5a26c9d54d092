"""End-to-end summary and collection runs."""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from ghfacts import facts
from ghfacts.auth import check_scopes, current_user, get_token
from ghfacts.collector import collect_project_data, split_full_name
from ghfacts.config import Settings
from ghfacts.errors import ConfigurationError, GhFactsError, ProjectNotFoundError
from ghfacts.git_remote import detect_repository
from ghfacts.github_client import GitHubClient
from ghfacts.models import CollectionResult, ProjectV2, ProjectV2Item
from ghfacts.projects import (
    find_projects,
    get_project,
    get_project_by_id,
    get_project_items,
    parse_project_url,
    project_repositories,
)
from ghfacts.ratelimit import RateLimitBudget, check_limits, ensure_feasible, estimate_cost
from ghfacts.report import FactReport
from ghfacts.results import clean_old_result_files, write_result_file

logger = logging.getLogger(__name__)

MAX_DAYS = 365
PROJECT_ID_PREFIX = "PVT_"


@dataclass
class Target:
    """What a run analyzes and how it was found."""

    mode: str
    repositories: list[str]
    project: ProjectV2 | None = None
    items: list[ProjectV2Item] = field(default_factory=list)


class _Timer:
    def __init__(self):
        self.started = time.perf_counter()

    @property
    def ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


async def detect_target(
    client: GitHubClient,
    settings: Settings,
    target: str | None = None,
    repositories: list[str] | None = None,
) -> Target:
    """Work out which repositories to analyze.

    In order: explicit repositories, a project node id (``PVT_...``), a
    project URL, ``owner/name``, an owner login (its most recently updated
    project), configured repositories, then the current checkout's git
    remote.

    Raises:
        ProjectNotFoundError: If a project target can't be found.
        ConfigurationError: If nothing can be detected.
    """
    if repositories:
        for name in repositories:
            split_full_name(name)
        return Target("repositories", list(repositories))

    if target:
        if target.startswith(PROJECT_ID_PREFIX):
            project = await get_project_by_id(client, target)
            return await _project_target("project_id", client, project)
        parsed = parse_project_url(target)
        if parsed is not None:
            _, owner, number = parsed
            project = await get_project(client, owner, number)
            return await _project_target("project_url", client, project)
        if "/" in target:
            owner, name = split_full_name(target)
            return Target("repository", [f"{owner}/{name}"])
        projects = await find_projects(client, target)
        if not projects:
            raise ProjectNotFoundError(target, {"owner": target})
        return await _project_target("owner", client, projects[0])

    configured = settings.load_repos()
    if configured:
        return Target("configured", [repo.full_name for repo in configured])

    return Target("auto", [detect_repository()])


def required_scopes(target: str | None, repositories: list[str] | None = None) -> list[str]:
    """OAuth scopes a run over ``target`` needs.

    Project targets (node id, URL or owner login) also read Projects v2.
    """
    if repositories or not target:
        return ["repo"]
    if target.startswith(PROJECT_ID_PREFIX) or parse_project_url(target) or "/" not in target:
        return ["repo", "read:project"]
    return ["repo"]


async def _authenticate(
    report: FactReport,
    settings: Settings,
    token: str,
    target: str | None,
    repositories: list[str] | None,
) -> None:
    timer = _Timer()
    login = await current_user(token, timeout=settings.request_timeout)
    await check_scopes(
        token, required_scopes(target, repositories), timeout=settings.request_timeout
    )
    report.add_data("AUTHENTICATED_USER", login)
    report.add_action("Validate authentication", "success", None, timer.ms)


async def _project_target(mode: str, client: GitHubClient, project: ProjectV2) -> Target:
    items = await get_project_items(client, project.id)
    return Target(mode, project_repositories(items), project=project, items=items)


def _window(days: int, now: datetime | None) -> tuple[datetime, datetime]:
    if days < 1 or days > MAX_DAYS:
        raise ConfigurationError(
            f"Invalid time window: {days} days",
            [f"Use --days between 1 and {MAX_DAYS}", "Common values: 7, 30, 90"],
        )
    until = now or datetime.now(UTC)
    return until - timedelta(days=days), until


async def _collect(
    client: GitHubClient,
    settings: Settings,
    report: FactReport,
    target: Target,
    since: datetime,
    until: datetime,
) -> CollectionResult:
    timer = _Timer()
    usage = await check_limits(client)
    threshold = settings.rate_limit_warning_threshold
    client.rest_budget = RateLimitBudget.from_pool("core", usage.rest, threshold)
    client.graphql_budget = RateLimitBudget.from_pool("graphql", usage.graphql, threshold)
    report.add_action("Check rate limits", "success", None, timer.ms)

    options = settings.collection_options(since=since, until=until)
    estimate = estimate_cost(
        len(target.repositories), settings.estimate_items_per_repo, options, usage
    )
    report.add_data_bulk(
        {
            "ESTIMATED_API_CALLS": estimate.estimated_calls,
            "ESTIMATED_DURATION_MINUTES": estimate.estimated_duration_minutes,
            "RATE_LIMIT_REST_REMAINING_BEFORE": usage.rest.remaining,
            "RATE_LIMIT_GRAPHQL_REMAINING_BEFORE": usage.graphql.remaining,
        }
    )
    ensure_feasible(estimate)
    report.add_action("Estimate API cost", "success", f"{estimate.estimated_calls} calls")

    timer = _Timer()
    result = await collect_project_data(
        client,
        target.repositories,
        options,
        max_concurrency=settings.max_concurrency,
        timeout=settings.collection_timeout,
    )
    result.usage_before = usage
    result.usage_after = await check_limits(client)
    report.add_action(
        "Collect repository data",
        "failed" if result.incomplete else "success",
        f"{len(result.datasets)} collected, {len(result.failures)} failed",
        timer.ms,
    )
    return result


def _collection_facts(result: CollectionResult) -> dict[str, str]:
    data: dict[str, object] = {
        "REPOSITORIES_COLLECTED": len(result.datasets),
        "REPOSITORIES_FAILED": len(result.failures),
        "INCOMPLETE": result.incomplete,
        "COLLECTION_DURATION_MS": result.duration_ms,
    }
    for kind, count in result.flat.counts().items():
        data[facts.fact_key("COLLECTED", kind, "COUNT")] = count
    for position, failure in enumerate(result.failures, start=1):
        prefix = f"FAILED_REPOSITORY_{position}"
        data[f"{prefix}_NAME"] = failure.repository
        data[f"{prefix}_ERROR_TYPE"] = failure.error_type
        data[f"{prefix}_MESSAGE"] = failure.message
        data[f"{prefix}_STATUS_CODE"] = failure.status_code
    if result.usage_before and result.usage_after:
        data["RATE_LIMIT_REST_REMAINING_AFTER"] = result.usage_after.rest.remaining
        data["API_CALLS_USED"] = max(
            0, result.usage_before.rest.remaining - result.usage_after.rest.remaining
        )
    return {key: facts.fact_value(value) for key, value in data.items()}


def calculate_facts(
    result: CollectionResult,
    since: datetime,
    until: datetime,
    target: Target | None = None,
) -> dict[str, str]:
    """Compute every fact group for a collection result.

    A single repository's facts are reported unprefixed; with several
    repositories each gets a ``REPO_<n>_`` namespace.
    """
    calculated: dict[str, str] = {}
    if target is not None and target.project is not None:
        calculated.update(facts.collect_project_board_facts(target.project, target.items))

    repo_facts = [facts.collect_repository_facts(ds, since, until) for ds in result.datasets]
    if len(repo_facts) == 1 and (target is None or target.project is None):
        calculated.update(repo_facts[0])
    else:
        for position, single in enumerate(repo_facts, start=1):
            calculated.update(facts.prefixed(single, position))

    calculated.update(facts.aggregate_repository_facts(repo_facts))
    calculated.update(facts.calculate_cross_repo_metrics(repo_facts))

    if result.datasets:
        metrics = facts.combine_activity_metrics(
            [facts.activity_metrics_for(ds, since, until) for ds in result.datasets]
        )
        calculated.update(facts.activity_facts(metrics))

    flat = result.flat
    calculated.update(
        facts.calculate_distribution_metrics(
            facts.contributors_from(flat.commits, flat.issues, flat.pull_requests)
        )
    )

    midpoint = since + (until - since) / 2
    calculated.update(
        facts.calculate_growth_trends(
            facts.period_totals(flat, midpoint, until),
            facts.period_totals(flat, since, midpoint),
        )
    )
    calculated.update(
        facts.calculate_velocity_metrics(facts.time_series_from(flat, since, until, "week"))
    )
    return calculated


def _save(
    report: FactReport,
    settings: Settings,
    result: CollectionResult,
    command: str,
    calculated: dict[str, str],
    target: Target,
) -> None:
    path = write_result_file(
        result,
        settings.results_dir,
        command=command,
        calculated=calculated,
        metadata={"detection_mode": target.mode},
    )
    report.add_file(str(path), "created", path.stat().st_size)
    report.add_data("RESULT_FILE", str(path))
    clean_old_result_files(settings.results_dir)


async def run_summary(
    settings: Settings,
    target: str | None = None,
    repositories: list[str] | None = None,
    days: int | None = None,
    save: bool = False,
    token: str | None = None,
    now: datetime | None = None,
) -> FactReport:
    """Authenticate, detect, collect and compute facts in one run.

    Errors never escape as exceptions: a GhFactsError becomes the report's
    error section, with any facts gathered before it.

    Args:
        settings: Application settings.
        target: Project URL, ``owner/name`` or owner login.
        repositories: Explicit ``owner/name`` list; overrides ``target``.
        days: Analysis window (default: ``settings.default_days``).
        save: Write the xz result file.
        token: Token to use instead of discovery.
        now: End of the analysis window (default: now).

    Returns:
        FactReport ready to render.
    """
    report = FactReport()
    days = days or settings.default_days
    report.add_data("PROJECT_INPUT", target or ",".join(repositories or []) or "auto")
    report.add_data("TIME_WINDOW_DAYS", days)

    try:
        since, until = _window(days, now)
        report.add_data("ANALYSIS_START_DATE", since)
        report.add_data("ANALYSIS_END_DATE", until)

        token = token or get_token(settings)
        await _authenticate(report, settings, token, target, repositories)
        async with GitHubClient(
            token, timeout=settings.request_timeout, backoff=settings.backoff_policy()
        ) as client:
            timer = _Timer()
            detected = await detect_target(client, settings, target, repositories)
            report.add_data("DETECTION_MODE", detected.mode)
            report.add_data("REPOSITORIES_LIST", ", ".join(detected.repositories))
            report.add_action(
                "Detect target", "success", f"{len(detected.repositories)} repositories", timer.ms
            )
            if not detected.repositories:
                raise ConfigurationError(
                    "No repositories found for the target",
                    [
                        "Ensure the project links issues or pull requests from repositories",
                        "Or pass repositories directly with --repo OWNER/NAME",
                    ],
                    {"mode": detected.mode},
                )

            result = await _collect(client, settings, report, detected, since, until)

        calculated = calculate_facts(result, since, until, detected)
        report.add_data_bulk(calculated)
        report.add_data_bulk(_collection_facts(result))
        report.add_action("Calculate facts", "success", f"{len(calculated)} facts")

        if save:
            _save(report, settings, result, "summary", calculated, detected)

        _add_instructions(report, result)
    except GhFactsError as e:
        logger.debug("Summary failed", exc_info=True)
        report.set_error(e)

    return report


async def run_collect(
    settings: Settings,
    target: str | None = None,
    repositories: list[str] | None = None,
    days: int | None = None,
    token: str | None = None,
    now: datetime | None = None,
) -> FactReport:
    """Collect raw data and write it to a result file without computing facts."""
    report = FactReport()
    days = days or settings.default_days

    try:
        since, until = _window(days, now)
        token = token or get_token(settings)
        await _authenticate(report, settings, token, target, repositories)
        async with GitHubClient(
            token, timeout=settings.request_timeout, backoff=settings.backoff_policy()
        ) as client:
            detected = await detect_target(client, settings, target, repositories)
            report.add_data("DETECTION_MODE", detected.mode)
            report.add_data("REPOSITORIES_LIST", ", ".join(detected.repositories))
            report.add_action("Detect target", "success")
            result = await _collect(client, settings, report, detected, since, until)

        report.add_data_bulk(_collection_facts(result))
        _save(report, settings, result, "collect", {}, detected)
        report.add_instruction("Query the result file's raw namespace for authoritative API data")
        report.add_instruction(
            "Use the indexes namespace to look up items by repository, author or label"
        )
    except GhFactsError as e:
        logger.debug("Collection failed", exc_info=True)
        report.set_error(e)

    return report


def _add_instructions(report: FactReport, result: CollectionResult) -> None:
    report.add_instruction("Summarize the project using only the numeric facts in the DATA section")
    report.add_instruction(
        "Support every statement with the specific fact keys and values it is based on"
    )
    report.add_instruction(
        "Use *_STATUS keys to judge data availability; treat missing groups as unknown"
    )
    if result.failures:
        report.add_instruction(
            "Mention the repositories listed under FAILED_REPOSITORY_* as not analyzed"
        )
    if result.incomplete:
        report.add_instruction("State that collection timed out and the facts are partial")
