"""Data collection orchestration."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from ghfacts.errors import (
    ConfigurationError,
    DataShapeError,
    EmptyRepositoryError,
    GhFactsError,
    RepositoryError,
    TransientNetworkError,
)
from ghfacts.github_client import GitHubClient
from ghfacts.indexes import build_indexes
from ghfacts.models import (
    CollectionOptions,
    CollectionResult,
    FlatCollections,
    ItemKind,
    RepositoryDataSet,
    RepositoryFailure,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4


@dataclass(frozen=True)
class _Endpoint:
    path: str
    timestamp: Callable[[dict], str | None]
    newest_first: bool = False
    server_since: bool = False
    params: tuple[tuple[str, str], ...] = ()


def _commit_date(item: dict) -> str | None:
    commit = item.get("commit") or {}
    for role in ("committer", "author"):
        value = (commit.get(role) or {}).get("date")
        if value:
            return value
    return None


_ENDPOINTS: dict[ItemKind, _Endpoint] = {
    ItemKind.COMMITS: _Endpoint(
        "/repos/{owner}/{repo}/commits", _commit_date, server_since=True
    ),
    ItemKind.ISSUES: _Endpoint(
        "/repos/{owner}/{repo}/issues",
        lambda item: item.get("updated_at"),
        newest_first=True,
        server_since=True,
        params=(("state", "all"), ("sort", "updated"), ("direction", "desc")),
    ),
    ItemKind.PULL_REQUESTS: _Endpoint(
        "/repos/{owner}/{repo}/pulls",
        lambda item: item.get("updated_at"),
        newest_first=True,
        params=(("state", "all"), ("sort", "updated"), ("direction", "desc")),
    ),
    ItemKind.COMMENTS: _Endpoint(
        "/repos/{owner}/{repo}/issues/{number}/comments",
        lambda item: item.get("updated_at"),
        server_since=True,
    ),
    ItemKind.REVIEWS: _Endpoint(
        "/repos/{owner}/{repo}/pulls/{number}/reviews",
        lambda item: item.get("submitted_at"),
    ),
    ItemKind.REVIEW_COMMENTS: _Endpoint(
        "/repos/{owner}/{repo}/pulls/{number}/comments",
        lambda item: item.get("updated_at"),
        server_since=True,
    ),
    ItemKind.RELEASES: _Endpoint(
        "/repos/{owner}/{repo}/releases",
        lambda item: item.get("published_at") or item.get("created_at"),
        newest_first=True,
    ),
}


async def collect_items(
    client: GitHubClient,
    owner: str,
    repo: str,
    kind: ItemKind | str,
    since: datetime | None = None,
    limit: int | None = None,
    number: int | None = None,
    until: datetime | None = None,
) -> list[dict]:
    """Collect one kind of item for a repository, page by page.

    Args:
        client: Initialized GitHub client.
        owner: Repository owner/organization.
        repo: Repository name.
        kind: What to collect.
        since: Drop items older than this.
        limit: Maximum items to return.
        number: Issue or pull request number for comments and reviews.
        until: Upper bound for commits.

    Returns:
        Raw items in upstream order. Empty for an empty repository.

    Raises:
        ConfigurationError: If ``number`` is missing for a per-item kind.
        DataShapeError: If an item is not an object or has a bad timestamp.
    """
    kind = ItemKind(kind)
    endpoint = _ENDPOINTS[kind]
    if "{number}" in endpoint.path and number is None:
        raise ConfigurationError(
            f"Collecting {kind} requires an issue or pull request number",
            [f"Pass number= when collecting {kind}"],
        )
    if limit is not None and limit <= 0:
        return []

    path = endpoint.path.format(owner=owner, repo=repo, number=number)
    params = dict(endpoint.params)
    if since is not None and endpoint.server_since:
        params["since"] = _iso(since)
    if until is not None and kind is ItemKind.COMMITS:
        params["until"] = _iso(until)

    items: list[dict] = []
    try:
        async for page in client.paginate(path, params):
            crossed = False
            for item in page:
                if not isinstance(item, dict):
                    raise DataShapeError(path, "a list of objects")
                if kind is ItemKind.ISSUES and "pull_request" in item:
                    continue
                if since is not None and _older_than(item, endpoint, since, path):
                    # Sorted newest-first: nothing later on can qualify
                    crossed = endpoint.newest_first
                    if crossed:
                        break
                    continue
                items.append(item)
                if limit is not None and len(items) >= limit:
                    return items
            if crossed:
                break
    except EmptyRepositoryError:
        if kind is not ItemKind.COMMITS:
            raise
        logger.debug("%s/%s has no commits", owner, repo)
        return []

    return items


def _older_than(item: dict, endpoint: _Endpoint, since: datetime, path: str) -> bool:
    value = endpoint.timestamp(item)
    if not value:
        return False
    try:
        return parse_timestamp(value) < since
    except ValueError as e:
        raise DataShapeError(path, "ISO 8601 timestamps", context={"value": value}) from e


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _linked(items: list[dict], **links) -> list[dict]:
    return [{**item, **links} for item in items]


def _require(item: dict, key: str, source: str):
    if item.get(key) is None:
        raise DataShapeError(source, f"items with '{key}'")
    return item[key]


def _check_authored(items: list[dict], source: str) -> None:
    # Indexing needs these on every issue and pull request.
    for position, item in enumerate(items):
        for key in ("id", "number"):
            if item.get(key) is None:
                raise DataShapeError(source, f"items with '{key}'", {"index": position})
        if not (item.get("user") or {}).get("login"):
            raise DataShapeError(source, "items with 'user.login'", {"index": position})


async def collect_repository_data(
    client: GitHubClient,
    owner: str,
    repo: str,
    options: CollectionOptions,
) -> RepositoryDataSet:
    """Collect everything enabled in ``options`` for one repository.

    Args:
        client: Initialized GitHub client.
        owner: Repository owner/organization.
        repo: Repository name.
        options: Enabled kinds, caps and time window.

    Returns:
        RepositoryDataSet whose items carry ``repository_name`` and, for
        comments and reviews, the parent's ``issue_id``/``pull_request_id``.

    Raises:
        DataShapeError: If an issue or pull request lacks ``id``, ``number``
            or ``user.login``.
    """
    repository = await client.get_repository(owner, repo)
    full_name = repository.get("full_name") or f"{owner}/{repo}"
    dataset = RepositoryDataSet(repository=repository)
    since, until = options.since, options.until

    if options.include_issues:
        issues = await collect_items(
            client, owner, repo, ItemKind.ISSUES, since=since, limit=options.max_issues_per_repo
        )
        _check_authored(issues, "issues")
        dataset.issues = _linked(issues, repository_name=full_name)
        if options.include_comments:
            for issue in dataset.issues:
                if not issue.get("comments"):
                    continue
                comments = await collect_items(
                    client,
                    owner,
                    repo,
                    ItemKind.COMMENTS,
                    since=since,
                    limit=options.max_comments_per_issue,
                    number=_require(issue, "number", "issues"),
                )
                dataset.issue_comments.extend(
                    _linked(
                        comments,
                        issue_id=_require(issue, "id", "issues"),
                        repository_name=full_name,
                    )
                )

    if options.include_pull_requests:
        prs = await collect_items(
            client,
            owner,
            repo,
            ItemKind.PULL_REQUESTS,
            since=since,
            limit=options.max_prs_per_repo,
        )
        _check_authored(prs, "pulls")
        dataset.pull_requests = _linked(prs, repository_name=full_name)
        if options.include_reviews:
            for pr in dataset.pull_requests:
                links = {
                    "pull_request_id": _require(pr, "id", "pulls"),
                    "repository_name": full_name,
                }
                reviews = await collect_items(
                    client,
                    owner,
                    repo,
                    ItemKind.REVIEWS,
                    since=since,
                    limit=options.max_reviews_per_pr,
                    number=_require(pr, "number", "pulls"),
                )
                dataset.pr_reviews.extend(_linked(reviews, **links))
                review_comments = await collect_items(
                    client, owner, repo, ItemKind.REVIEW_COMMENTS, since=since, number=pr["number"]
                )
                dataset.pr_review_comments.extend(_linked(review_comments, **links))

    if options.include_commits:
        commits = await collect_items(
            client,
            owner,
            repo,
            ItemKind.COMMITS,
            since=since,
            until=until,
            limit=options.max_commits_per_repo,
        )
        dataset.commits = _linked(commits, repository_name=full_name)

    if options.include_releases:
        releases = await collect_items(client, owner, repo, ItemKind.RELEASES, since=since)
        dataset.releases = _linked(releases, repository_name=full_name)

    logger.info(
        "%s: %d issues, %d PRs, %d commits",
        full_name,
        len(dataset.issues),
        len(dataset.pull_requests),
        len(dataset.commits),
    )
    return dataset


def flatten(datasets: list[RepositoryDataSet]) -> FlatCollections:
    """Concatenate per-repository datasets into flat lists, in order."""
    flat = FlatCollections()
    for dataset in datasets:
        flat.repositories.append(dataset.repository)
        flat.commits.extend(dataset.commits)
        flat.issues.extend(dataset.issues)
        flat.pull_requests.extend(dataset.pull_requests)
        flat.issue_comments.extend(dataset.issue_comments)
        flat.pr_reviews.extend(dataset.pr_reviews)
        flat.pr_review_comments.extend(dataset.pr_review_comments)
        flat.releases.extend(dataset.releases)
    return flat


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/name``.

    Raises:
        ConfigurationError: If the name isn't in owner/name form.
    """
    owner, _, name = full_name.strip().partition("/")
    if not owner or not name or "/" in name:
        raise ConfigurationError(
            f"Invalid repository name: {full_name!r}",
            ["Use the OWNER/NAME form, e.g. octocat/hello-world"],
        )
    return owner, name


def _failure(repository: str, error: GhFactsError) -> RepositoryFailure:
    return RepositoryFailure(
        repository=repository,
        error_type=type(error).__name__,
        message=error.message,
        status_code=getattr(error, "status_code", None),
        recovery_instructions=tuple(error.recovery_instructions),
    )


async def collect_project_data(
    client: GitHubClient,
    repositories: list[str],
    options: CollectionOptions,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    timeout: float | None = None,
) -> CollectionResult:
    """Collect many repositories concurrently.

    Per-repository failures are recorded and the run continues.
    Authentication and rate limit errors abort the whole run. When the
    timeout expires, unfinished repositories are cancelled, recorded as
    failures and the result is marked incomplete.

    Args:
        client: Initialized GitHub client.
        repositories: ``owner/name`` strings.
        options: Enabled kinds, caps and time window.
        max_concurrency: Repositories collected at once.
        timeout: Seconds before the run is cut short.

    Returns:
        CollectionResult with datasets in input order.

    Raises:
        ConfigurationError: For malformed repository names.
        AuthenticationError: If the token is rejected.
        RateLimitError: If the quota runs out.
    """
    names = list(dict.fromkeys(name.strip() for name in repositories))
    parsed = {name: split_full_name(name) for name in names}
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    started_at = datetime.now(UTC)

    async def collect_one(full_name: str) -> RepositoryDataSet | RepositoryFailure:
        owner, repo = parsed[full_name]
        async with semaphore:
            try:
                return await collect_repository_data(client, owner, repo, options)
            except (RepositoryError, TransientNetworkError) as e:
                logger.warning("Skipping %s: %s", full_name, e.message)
                return _failure(full_name, e)

    tasks = {asyncio.create_task(collect_one(name)): name for name in names}
    outcomes: dict[str, RepositoryDataSet | RepositoryFailure] = {}
    pending = set(tasks)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None

    try:
        while pending:
            wait_for = None if deadline is None else deadline - loop.time()
            if wait_for is not None and wait_for <= 0:
                break
            done, pending = await asyncio.wait(
                pending, timeout=wait_for, return_when=asyncio.FIRST_EXCEPTION
            )
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error
                outcomes[tasks[task]] = task.result()
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    incomplete = bool(pending)
    for task in pending:
        name = tasks[task]
        logger.warning("Collection timed out before %s finished", name)
        outcomes[name] = RepositoryFailure(
            repository=name,
            error_type="TimeoutError",
            message=f"Collection timed out after {timeout}s",
            recovery_instructions=(
                "Increase GHFACTS_COLLECTION_TIMEOUT or narrow the window with --days",
                "Lower collection limits to reduce per-repository work",
            ),
        )

    datasets = [o for name in names if isinstance(o := outcomes[name], RepositoryDataSet)]
    failures = [o for name in names if isinstance(o := outcomes[name], RepositoryFailure)]
    flat = flatten(datasets)

    return CollectionResult(
        datasets=datasets,
        flat=flat,
        indexes=build_indexes(flat),
        failures=failures,
        options=options,
        started_at=started_at,
        completed_at=datetime.now(UTC),
        incomplete=incomplete,
    )
