"""Fact calculation from collected GitHub data.

Facts are flat ``UPPER_SNAKE_CASE`` string keys mapped to string values.
Only measurable quantities are reported; ``*_STATUS`` keys say whether
enough data was available, never whether a value is good or bad.
"""

import math
import re
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from ghfacts import statistics as stats
from ghfacts.errors import DataShapeError
from ghfacts.models import (
    ActivityMetrics,
    ContributorData,
    FlatCollections,
    ProjectV2,
    ProjectV2Item,
    RepositoryDataSet,
    SingleSelectFieldValue,
    TimeSeriesPoint,
    parse_timestamp,
)
from ghfacts.report import fact_value

WEEKDAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def fact_key(*parts: str) -> str:
    """Join parts into an ``UPPER_SNAKE_CASE`` key."""
    raw = "_".join(str(part) for part in parts if str(part))
    key = re.sub(r"[^A-Z0-9]+", "_", raw.upper()).strip("_")
    if not key or not key[0].isalpha():
        key = f"X_{key}"
    return key


def _facts(**values) -> dict[str, str]:
    return {key: fact_value(value) for key, value in values.items()}


def _timestamp(value: str | None, source: str) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise DataShapeError(source, "ISO 8601 timestamps", {"value": value}) from e


def commit_timestamp(commit: dict) -> datetime | None:
    """Author date of a commit, falling back to the committer date.

    Raises:
        DataShapeError: If the date is not ISO 8601.
    """
    inner = commit.get("commit") or {}
    for role in ("author", "committer"):
        value = (inner.get(role) or {}).get("date")
        if value:
            return _timestamp(value, "commits")
    return None


def commit_author(commit: dict) -> str:
    """GitHub login of a commit's author, falling back to the git author name."""
    login = (commit.get("author") or {}).get("login")
    if login:
        return login
    return ((commit.get("commit") or {}).get("author") or {}).get("name") or "unknown"


def _login(item: dict) -> str | None:
    return (item.get("user") or {}).get("login")


def _in_window(moment: datetime | None, since: datetime, until: datetime) -> bool:
    return moment is None or since <= moment <= until


def _days(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 86_400


# Repository facts


def collect_basic_facts(repository: dict, now: datetime | None = None) -> dict[str, str]:
    """Metadata facts for one repository.

    Args:
        repository: Raw repository object from the REST API.
        now: Reference time for ages (default: current UTC time).

    Returns:
        ``REPO_*`` facts.

    Raises:
        DataShapeError: If ``full_name`` or ``created_at`` is missing.
    """
    now = now or datetime.now(UTC)
    if not repository.get("full_name") or not repository.get("created_at"):
        raise DataShapeError("repository", "'full_name' and 'created_at'")

    created = _timestamp(repository["created_at"], "repository")
    updated = _timestamp(repository.get("updated_at"), "repository")
    pushed = _timestamp(repository.get("pushed_at"), "repository")
    forks = repository.get("forks_count", 0)
    stars = repository.get("stargazers_count", 0)
    watchers = repository.get("watchers_count", 0)

    return _facts(
        REPO_FULL_NAME=repository["full_name"],
        REPO_NAME=repository.get("name", ""),
        REPO_OWNER=(repository.get("owner") or {}).get("login", ""),
        REPO_LANGUAGE=repository.get("language") or "",
        REPO_DEFAULT_BRANCH=repository.get("default_branch", ""),
        REPO_IS_ARCHIVED=bool(repository.get("archived", False)),
        REPO_IS_FORK=bool(repository.get("fork", False)),
        REPO_IS_PRIVATE=bool(repository.get("private", False)),
        REPO_SIZE_KB=repository.get("size", 0),
        REPO_STARS_COUNT=stars,
        REPO_FORKS_COUNT=forks,
        REPO_WATCHERS_COUNT=watchers,
        REPO_OPEN_ISSUES_COUNT=repository.get("open_issues_count", 0),
        REPO_FORKS_TO_STARS_RATIO=stats.ratio(forks, stars),
        REPO_WATCHERS_TO_STARS_RATIO=stats.ratio(watchers, stars),
        REPO_ENGAGEMENT_RATIO=stats.ratio(forks + watchers, stars),
        REPO_CREATED_DATE=created,
        REPO_UPDATED_DATE=updated,
        REPO_PUSHED_DATE=pushed,
        REPO_AGE_DAYS=round(stats.days_between(created, now)),
        REPO_DAYS_SINCE_UPDATED=round(stats.days_between(updated, now)) if updated else None,
        REPO_DAYS_SINCE_PUSHED=round(stats.days_between(pushed, now)) if pushed else None,
    )


def collect_activity_facts(
    dataset: RepositoryDataSet, since: datetime, until: datetime
) -> dict[str, str]:
    """Activity volume and daily rates over the analysis window."""
    total_days = round(stats.days_between(since, until))
    commits = len(dataset.commits)
    issues = len(dataset.issues)
    prs = len(dataset.pull_requests)
    total = commits + issues + prs

    return _facts(
        ANALYSIS_START_DATE=since,
        ANALYSIS_END_DATE=until,
        ANALYSIS_PERIOD_DAYS=total_days,
        ANALYSIS_BUSINESS_DAYS=stats.business_days_between(since, until),
        COMMITS_TOTAL=commits,
        ISSUES_TOTAL=issues,
        PRS_TOTAL=prs,
        RELEASES_TOTAL=len(dataset.releases),
        TOTAL_ACTIVITY=total,
        ACTIVITY_DENSITY=stats.ratio(total, total_days),
        COMMITS_PER_DAY=stats.ratio(commits, total_days),
        ISSUES_PER_DAY=stats.ratio(issues, total_days),
        PRS_PER_DAY=stats.ratio(prs, total_days),
    )


def collect_contributor_facts(dataset: RepositoryDataSet) -> dict[str, str]:
    """Distinct contributor counts by kind of contribution."""
    contributors = contributors_from(dataset.commits, dataset.issues, dataset.pull_requests)
    return _facts(
        COMMITS_ANALYZED=len(dataset.commits),
        ISSUES_ANALYZED=len(dataset.issues),
        PRS_ANALYZED=len(dataset.pull_requests),
        COMMIT_AUTHORS_COUNT=sum(1 for c in contributors if c.commit_count),
        ISSUE_AUTHORS_COUNT=sum(1 for c in contributors if c.issue_count),
        PR_AUTHORS_COUNT=sum(1 for c in contributors if c.pr_count),
        TOTAL_CONTRIBUTORS=len(contributors),
    )


def collect_issue_facts(dataset: RepositoryDataSet) -> dict[str, str]:
    """Issue state counts, resolution times and comment volume."""
    issues = dataset.issues
    open_count = sum(1 for issue in issues if issue.get("state") == "open")
    closed_count = sum(1 for issue in issues if issue.get("state") == "closed")
    resolution_days = [
        days
        for issue in issues
        if (
            days := _days(
                _timestamp(issue.get("created_at"), "issues"),
                _timestamp(issue.get("closed_at"), "issues"),
            )
        )
        is not None
    ]

    return _facts(
        TOTAL_ISSUES_ANALYZED=len(issues),
        ISSUES_OPEN_COUNT=open_count,
        ISSUES_CLOSED_COUNT=closed_count,
        ISSUE_OPEN_CLOSE_RATIO=stats.ratio(open_count, closed_count),
        ISSUE_CLOSE_RATE_PERCENTAGE=stats.percentage(closed_count, len(issues)),
        AVERAGE_RESOLUTION_TIME_DAYS=stats.mean(resolution_days),
        MEDIAN_RESOLUTION_TIME_DAYS=stats.median([stats.round2(d) for d in resolution_days]),
        ISSUE_COMMENTS_COLLECTED=len(dataset.issue_comments),
        AVERAGE_COMMENTS_PER_ISSUE=stats.ratio(
            sum(issue.get("comments", 0) or 0 for issue in issues), len(issues)
        ),
    )


def collect_pull_request_facts(dataset: RepositoryDataSet) -> dict[str, str]:
    """Pull request outcomes, merge times and review volume."""
    prs = dataset.pull_requests
    merged = [pr for pr in prs if pr.get("merged_at")]
    open_count = sum(1 for pr in prs if pr.get("state") == "open")
    closed_unmerged = sum(1 for pr in prs if pr.get("state") == "closed" and not pr.get("merged_at"))
    merge_days = [
        days
        for pr in merged
        if (
            days := _days(
                _timestamp(pr.get("created_at"), "pulls"),
                _timestamp(pr.get("merged_at"), "pulls"),
            )
        )
        is not None
    ]

    return _facts(
        TOTAL_PRS_ANALYZED=len(prs),
        PRS_OPEN_COUNT=open_count,
        PRS_MERGED_COUNT=len(merged),
        PRS_CLOSED_UNMERGED_COUNT=closed_unmerged,
        PR_MERGE_SUCCESS_RATE=stats.percentage(len(merged), len(merged) + closed_unmerged),
        AVERAGE_MERGE_TIME_DAYS=stats.mean(merge_days),
        MEDIAN_MERGE_TIME_DAYS=stats.median([stats.round2(d) for d in merge_days]),
        PR_REVIEWS_COLLECTED=len(dataset.pr_reviews),
        PR_REVIEW_COMMENTS_COLLECTED=len(dataset.pr_review_comments),
        AVERAGE_REVIEWS_PER_PR=stats.ratio(len(dataset.pr_reviews), len(prs)),
    )


def collect_timing_facts(dataset: RepositoryDataSet) -> dict[str, str]:
    """When commits happen: weekday/weekend split, peak hour and weekday."""
    moments = [m for commit in dataset.commits if (m := commit_timestamp(commit)) is not None]
    if not moments:
        return _facts(TIMING_ANALYSIS_STATUS="NO_COMMIT_DATA")

    weekend = sum(1 for m in moments if m.weekday() >= 5)
    hours = stats.count_by(f"{m.hour:02d}" for m in moments)
    weekdays = stats.count_by(WEEKDAYS[m.weekday()] for m in moments)
    daily = stats.bin_by_time([(m, 1) for m in moments], "day")

    return _facts(
        TIMING_ANALYSIS_STATUS="COMPLETED",
        COMMITS_WEEKDAY_COUNT=len(moments) - weekend,
        COMMITS_WEEKEND_COUNT=weekend,
        WEEKEND_COMMIT_PERCENTAGE=stats.percentage(weekend, len(moments)),
        PEAK_COMMIT_HOUR_UTC=int(next(iter(hours))),
        PEAK_COMMIT_WEEKDAY=next(iter(weekdays)),
        ACTIVE_COMMIT_DAYS=len(daily),
        MAX_COMMITS_IN_DAY=int(max(b.count for b in daily)),
    )


def collect_repository_facts(
    dataset: RepositoryDataSet, since: datetime, until: datetime, now: datetime | None = None
) -> dict[str, str]:
    """All per-repository fact groups merged."""
    facts: dict[str, str] = {}
    facts.update(collect_basic_facts(dataset.repository, now=now or until))
    facts.update(collect_activity_facts(dataset, since, until))
    facts.update(collect_contributor_facts(dataset))
    facts.update(collect_issue_facts(dataset))
    facts.update(collect_pull_request_facts(dataset))
    facts.update(collect_timing_facts(dataset))
    return facts


def prefixed(facts: dict[str, str], position: int) -> dict[str, str]:
    """Namespace one repository's facts as ``REPO_<n>_*`` (1-based)."""
    prefix = f"REPO_{position}_"
    return {prefix + key.removeprefix("REPO_"): value for key, value in facts.items()}


# Activity metrics


def activity_metrics_for(
    dataset: RepositoryDataSet, since: datetime, until: datetime
) -> ActivityMetrics:
    """Count a repository's activity inside ``[since, until]``.

    Items without a usable timestamp are counted.

    Args:
        dataset: Collected repository data.
        since: Window start (UTC).
        until: Window end (UTC).

    Returns:
        ActivityMetrics for the one repository.
    """
    metrics = ActivityMetrics(
        repositories=[dataset.full_name],
        period_start=since,
        period_end=until,
        period_days=_period_days(since, until),
    )

    for commit in dataset.commits:
        if not _in_window(commit_timestamp(commit), since, until):
            continue
        metrics.commits_count += 1
        metrics.contributors.add(commit_author(commit))
        commit_stats = commit.get("stats") or {}
        metrics.total_additions += commit_stats.get("additions", 0) or 0
        metrics.total_deletions += commit_stats.get("deletions", 0) or 0
        metrics.total_files_changed += len(commit.get("files") or [])

    for issue in dataset.issues:
        if not _in_window(_timestamp(issue.get("updated_at"), "issues"), since, until):
            continue
        metrics.total_issues_count += 1
        if issue.get("state") == "open":
            metrics.open_issues_count += 1
        elif issue.get("state") == "closed":
            metrics.closed_issues_count += 1
        if login := _login(issue):
            metrics.contributors.add(login)

    for pr in dataset.pull_requests:
        if not _in_window(_timestamp(pr.get("updated_at"), "pulls"), since, until):
            continue
        metrics.total_prs_count += 1
        if pr.get("state") == "open":
            metrics.open_prs_count += 1
        if pr.get("merged_at"):
            metrics.merged_prs_count += 1
        if login := _login(pr):
            metrics.contributors.add(login)

    for release in dataset.releases:
        published = release.get("published_at") or release.get("created_at")
        if _in_window(_timestamp(published, "releases"), since, until):
            metrics.release_count += 1

    return metrics


def _period_days(start: datetime, end: datetime) -> int:
    return max(0, math.ceil((end - start) / timedelta(days=1)))


def combine_activity_metrics(metrics: list[ActivityMetrics]) -> ActivityMetrics:
    """Sum per-repository metrics into one.

    The combined window spans the earliest start to the latest end.

    Raises:
        ValueError: If ``metrics`` is empty.
    """
    if not metrics:
        raise ValueError("No activity metrics to combine")

    start = min(m.period_start for m in metrics)
    end = max(m.period_end for m in metrics)
    combined = ActivityMetrics(
        repositories=[name for m in metrics for name in m.repositories],
        period_start=start,
        period_end=end,
        period_days=_period_days(start, end),
    )
    for m in metrics:
        combined.commits_count += m.commits_count
        combined.total_issues_count += m.total_issues_count
        combined.open_issues_count += m.open_issues_count
        combined.closed_issues_count += m.closed_issues_count
        combined.total_prs_count += m.total_prs_count
        combined.open_prs_count += m.open_prs_count
        combined.merged_prs_count += m.merged_prs_count
        combined.release_count += m.release_count
        combined.total_additions += m.total_additions
        combined.total_deletions += m.total_deletions
        combined.total_files_changed += m.total_files_changed
        combined.contributors |= m.contributors
    return combined


def activity_facts(metrics: ActivityMetrics) -> dict[str, str]:
    """Render activity metrics as ACTIVITY_* facts.

    Args:
        metrics: Metrics for one repository or combined across several.

    Returns:
        Fact mapping with counts, per-day averages and the analysis period.
    """
    return _facts(
        ACTIVITY_REPOSITORIES_COUNT=metrics.repositories_count,
        ACTIVITY_REPOSITORY_LIST=", ".join(metrics.repositories),
        ACTIVITY_ANALYSIS_PERIOD_START=metrics.period_start,
        ACTIVITY_ANALYSIS_PERIOD_END=metrics.period_end,
        ACTIVITY_ANALYSIS_PERIOD_DAYS=metrics.period_days,
        ACTIVITY_COMMITS_COUNT=metrics.commits_count,
        ACTIVITY_TOTAL_ISSUES_COUNT=metrics.total_issues_count,
        ACTIVITY_OPEN_ISSUES_COUNT=metrics.open_issues_count,
        ACTIVITY_CLOSED_ISSUES_COUNT=metrics.closed_issues_count,
        ACTIVITY_TOTAL_PRS_COUNT=metrics.total_prs_count,
        ACTIVITY_OPEN_PRS_COUNT=metrics.open_prs_count,
        ACTIVITY_MERGED_PRS_COUNT=metrics.merged_prs_count,
        ACTIVITY_CONTRIBUTORS_COUNT=metrics.contributors_count,
        ACTIVITY_RELEASE_COUNT=metrics.release_count,
        ACTIVITY_TOTAL_ADDITIONS=metrics.total_additions,
        ACTIVITY_TOTAL_DELETIONS=metrics.total_deletions,
        ACTIVITY_TOTAL_FILES_CHANGED=metrics.total_files_changed,
        ACTIVITY_AVG_COMMITS_PER_DAY=metrics.avg_commits_per_day,
        ACTIVITY_AVG_ISSUES_PER_DAY=metrics.avg_issues_per_day,
        ACTIVITY_AVG_PRS_PER_DAY=metrics.avg_prs_per_day,
    )


# Project facts


def _number(facts: dict[str, str], key: str) -> float:
    try:
        return float(facts.get(key) or 0)
    except ValueError:
        return 0.0


def aggregate_repository_facts(repo_facts: list[dict[str, str]]) -> dict[str, str]:
    """Project totals, per-repository averages and cross-kind ratios."""
    if not repo_facts:
        return _facts(PROJECT_ANALYSIS_STATUS="NO_REPOSITORIES", PROJECT_TOTAL_REPOSITORIES=0)

    totals = {
        key: sum(_number(facts, key) for facts in repo_facts)
        for key in (
            "COMMITS_TOTAL",
            "ISSUES_TOTAL",
            "PRS_TOTAL",
            "REPO_STARS_COUNT",
            "REPO_FORKS_COUNT",
            "REPO_WATCHERS_COUNT",
        )
    }
    commits, issues, prs = totals["COMMITS_TOTAL"], totals["ISSUES_TOTAL"], totals["PRS_TOTAL"]
    count = len(repo_facts)

    return _facts(
        PROJECT_ANALYSIS_STATUS="COMPLETED",
        PROJECT_TOTAL_REPOSITORIES=count,
        PROJECT_TOTAL_COMMITS=commits,
        PROJECT_TOTAL_ISSUES=issues,
        PROJECT_TOTAL_PRS=prs,
        PROJECT_TOTAL_STARS=totals["REPO_STARS_COUNT"],
        PROJECT_TOTAL_FORKS=totals["REPO_FORKS_COUNT"],
        PROJECT_TOTAL_WATCHERS=totals["REPO_WATCHERS_COUNT"],
        PROJECT_AVERAGE_COMMITS_PER_REPO=stats.ratio(commits, count),
        PROJECT_AVERAGE_ISSUES_PER_REPO=stats.ratio(issues, count),
        PROJECT_AVERAGE_PRS_PER_REPO=stats.ratio(prs, count),
        PROJECT_AVERAGE_STARS_PER_REPO=stats.ratio(totals["REPO_STARS_COUNT"], count),
        PROJECT_COMMITS_TO_ISSUES_RATIO=stats.ratio(commits, issues),
        PROJECT_COMMITS_TO_PRS_RATIO=stats.ratio(commits, prs),
        PROJECT_ISSUES_TO_PRS_RATIO=stats.ratio(issues, prs),
    )


def calculate_cross_repo_metrics(repo_facts: list[dict[str, str]]) -> dict[str, str]:
    """Distribution of activity density across repositories."""
    if not repo_facts:
        return _facts(CROSS_REPO_ANALYSIS_STATUS="NO_REPOSITORIES")

    densities = [d for facts in repo_facts if (d := _number(facts, "ACTIVITY_DENSITY")) > 0]
    if not densities:
        return _facts(CROSS_REPO_ANALYSIS_STATUS="NO_ACTIVITY_DATA")

    points = stats.percentiles(densities, [25, 50, 75, 90])
    return _facts(
        CROSS_REPO_ANALYSIS_STATUS="COMPLETED",
        CROSS_REPO_REPOSITORIES_ANALYZED=len(repo_facts),
        CROSS_REPO_ACTIVE_REPOSITORIES=len(densities),
        MEAN_ACTIVITY_DENSITY=stats.mean(densities),
        MEDIAN_ACTIVITY_DENSITY=stats.median(densities),
        ACTIVITY_DENSITY_VARIANCE=stats.variance(densities),
        ACTIVITY_DISTRIBUTION_GINI=stats.gini(densities),
        ACTIVITY_DENSITY_P25=points.get("P25", 0),
        ACTIVITY_DENSITY_P50=points.get("P50", 0),
        ACTIVITY_DENSITY_P75=points.get("P75", 0),
        ACTIVITY_DENSITY_P90=points.get("P90", 0),
    )


def contributors_from(
    commits: Iterable[dict], issues: Iterable[dict], pull_requests: Iterable[dict]
) -> list[ContributorData]:
    """Per-contributor commit, issue and pull request counts, sorted by login."""
    commit_counts = stats.count_by(commit_author(commit) for commit in commits)
    issue_counts = stats.count_by(login for issue in issues if (login := _login(issue)))
    pr_counts = stats.count_by(login for pr in pull_requests if (login := _login(pr)))

    logins = sorted(set(commit_counts) | set(issue_counts) | set(pr_counts))
    return [
        ContributorData(
            login=login,
            commit_count=commit_counts.get(login, 0),
            issue_count=issue_counts.get(login, 0),
            pr_count=pr_counts.get(login, 0),
        )
        for login in logins
    ]


def calculate_distribution_metrics(contributors: list[ContributorData]) -> dict[str, str]:
    """How concentrated contributions are among contributors."""
    if not contributors:
        return _facts(CONTRIBUTOR_ANALYSIS_STATUS="NO_CONTRIBUTORS")

    commit_counts = [c.commit_count for c in contributors]
    issue_counts = [c.issue_count for c in contributors]
    pr_counts = [c.pr_count for c in contributors]
    top = stats.top_n(contributors, 1, key=lambda c: c.commit_count)[0]

    return _facts(
        CONTRIBUTOR_ANALYSIS_STATUS="COMPLETED",
        TOTAL_CONTRIBUTORS=len(contributors),
        COMMIT_DISTRIBUTION_GINI=stats.gini(commit_counts),
        ISSUE_DISTRIBUTION_GINI=stats.gini(issue_counts),
        PR_DISTRIBUTION_GINI=stats.gini(pr_counts),
        MEAN_COMMITS_PER_CONTRIBUTOR=stats.mean(commit_counts),
        MEDIAN_COMMITS_PER_CONTRIBUTOR=stats.median(commit_counts),
        MEAN_ISSUES_PER_CONTRIBUTOR=stats.mean(issue_counts),
        MEDIAN_ISSUES_PER_CONTRIBUTOR=stats.median(issue_counts),
        MEAN_PRS_PER_CONTRIBUTOR=stats.mean(pr_counts),
        MEDIAN_PRS_PER_CONTRIBUTOR=stats.median(pr_counts),
        TOP_CONTRIBUTOR_LOGIN=top.login if top.commit_count else "",
        TOP_CONTRIBUTOR_COMMIT_COUNT=top.commit_count,
        TOP_CONTRIBUTOR_COMMIT_PERCENTAGE=stats.percentage(top.commit_count, sum(commit_counts)),
    )


def calculate_growth_trends(
    current: dict[str, str], historical: dict[str, str]
) -> dict[str, str]:
    """Growth rates between two periods' ``PROJECT_TOTAL_*`` facts.

    Stars are compared only when either period reports them.
    """
    facts = _facts(GROWTH_ANALYSIS_STATUS="COMPLETED")
    kinds = ["COMMITS", "ISSUES", "PRS"]
    if "PROJECT_TOTAL_STARS" in current or "PROJECT_TOTAL_STARS" in historical:
        kinds.append("STARS")

    for kind in kinds:
        now = _number(current, f"PROJECT_TOTAL_{kind}")
        before = _number(historical, f"PROJECT_TOTAL_{kind}")
        facts.update(
            _facts(
                **{
                    f"CURRENT_PERIOD_{kind}": now,
                    f"HISTORICAL_PERIOD_{kind}": before,
                    f"{kind}_GROWTH_RATE": stats.growth_rate(now, before),
                }
            )
        )
    return facts


def period_totals(
    flat: FlatCollections, since: datetime, until: datetime
) -> dict[str, str]:
    """``PROJECT_TOTAL_*`` counts of items created inside ``[since, until)``."""

    def inside(moment: datetime | None) -> bool:
        return moment is not None and since <= moment < until

    return _facts(
        PROJECT_TOTAL_COMMITS=sum(1 for c in flat.commits if inside(commit_timestamp(c))),
        PROJECT_TOTAL_ISSUES=sum(
            1 for i in flat.issues if inside(_timestamp(i.get("created_at"), "issues"))
        ),
        PROJECT_TOTAL_PRS=sum(
            1 for p in flat.pull_requests if inside(_timestamp(p.get("created_at"), "pulls"))
        ),
    )


def time_series_from(
    flat: FlatCollections,
    since: datetime,
    until: datetime,
    bin_size: stats.BinSize = "week",
) -> list[TimeSeriesPoint]:
    """Commits, issues and pull requests created per bin, including empty bins.

    Bins are aligned like :func:`ghfacts.statistics.bin_by_time`; items
    outside ``[since, until]`` are ignored.
    """
    series = {
        "commits": [commit_timestamp(c) for c in flat.commits],
        "issues": [_timestamp(i.get("created_at"), "issues") for i in flat.issues],
        "pull_requests": [_timestamp(p.get("created_at"), "pulls") for p in flat.pull_requests],
    }
    counts: dict[str, dict[datetime, float]] = {}
    for name, moments in series.items():
        points = [(m, 1) for m in moments if m is not None and since <= m <= until]
        counts[name] = {b.start: b.count for b in stats.bin_by_time(points, bin_size)}

    step = timedelta(days=7) if bin_size == "week" else timedelta(days=1)
    if bin_size == "hour":
        step = timedelta(hours=1)
    start = since.replace(minute=0, second=0, microsecond=0)
    if bin_size != "hour":
        start = start.replace(hour=0)
    if bin_size == "week":
        start -= timedelta(days=start.weekday())

    result = []
    current = start
    while current <= until:
        result.append(
            TimeSeriesPoint(
                period_start=current.date(),
                commits=int(counts["commits"].get(current, 0)),
                issues=int(counts["issues"].get(current, 0)),
                pull_requests=int(counts["pull_requests"].get(current, 0)),
            )
        )
        current += step
    return result


def calculate_velocity_metrics(points: list[TimeSeriesPoint]) -> dict[str, str]:
    """Per-bin velocity statistics and a first-half/second-half commit trend."""
    if not points:
        return _facts(VELOCITY_ANALYSIS_STATUS="NO_TIME_SERIES_DATA")

    commits = [p.commits for p in points]
    issues = [p.issues for p in points]
    prs = [p.pull_requests for p in points]
    midpoint = len(points) // 2

    return _facts(
        VELOCITY_ANALYSIS_STATUS="COMPLETED",
        TIME_SERIES_POINTS=len(points),
        MEAN_COMMIT_VELOCITY=stats.mean(commits),
        MEDIAN_COMMIT_VELOCITY=stats.median(commits),
        COMMIT_VELOCITY_VARIANCE=stats.variance(commits),
        MEAN_ISSUE_VELOCITY=stats.mean(issues),
        MEDIAN_ISSUE_VELOCITY=stats.median(issues),
        MEAN_PR_VELOCITY=stats.mean(prs),
        MEDIAN_PR_VELOCITY=stats.median(prs),
        COMMIT_VELOCITY_TREND=stats.growth_rate(sum(commits[midpoint:]), sum(commits[:midpoint])),
    )


def collect_project_board_facts(
    project: ProjectV2, items: list[ProjectV2Item]
) -> dict[str, str]:
    """Project board metadata plus item counts by type, repository and select option."""
    facts = project.to_facts()
    repositories = sorted({item.repository for item in items if item.repository})
    facts.update(
        _facts(
            PROJECT_ITEMS_COLLECTED=len(items),
            PROJECT_REPOSITORIES_COUNT=len(repositories),
            PROJECT_REPOSITORIES_LIST=", ".join(repositories),
        )
    )

    for item_type, count in stats.count_by(item.type for item in items).items():
        facts[fact_key("PROJECT_ITEMS", item_type, "COUNT")] = fact_value(count)

    for position, (repository, count) in enumerate(
        stats.count_by(item.repository for item in items if item.repository).items(), start=1
    ):
        facts[f"PROJECT_REPOSITORY_{position}_NAME"] = repository
        facts[f"PROJECT_REPOSITORY_{position}_ITEMS_COUNT"] = fact_value(count)

    selections = [
        (value.field_name, value.option)
        for item in items
        for value in item.field_values
        if isinstance(value, SingleSelectFieldValue)
    ]
    for key, count in stats.count_by(
        fact_key("PROJECT_FIELD", field, option, "COUNT") for field, option in selections
    ).items():
        facts[key] = fact_value(count)

    return facts
