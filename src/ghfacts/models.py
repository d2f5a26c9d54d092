"""Data models for ghfacts."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum


class ItemKind(StrEnum):
    """Kinds of items the paginated collector can fetch."""

    COMMITS = "commits"
    ISSUES = "issues"
    PULL_REQUESTS = "pull_requests"
    COMMENTS = "comments"
    REVIEWS = "reviews"
    REVIEW_COMMENTS = "review_comments"
    RELEASES = "releases"


@dataclass(frozen=True)
class RateLimitPool:
    """Quota snapshot for one API pool.

    Attributes:
        remaining: Calls left in the current window.
        limit: Total calls allowed per window.
        reset_at: When the window resets (UTC).
    """

    remaining: int
    limit: int
    reset_at: datetime

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary with an ISO reset time."""
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "used": self.used,
            "reset_at": self.reset_at.isoformat(),
        }


@dataclass(frozen=True)
class RateLimitUsage:
    """REST and GraphQL quota snapshots, which GitHub budgets separately."""

    rest: RateLimitPool
    graphql: RateLimitPool

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary of both pools."""
        return {"rest": self.rest.to_dict(), "graphql": self.graphql.to_dict()}


@dataclass(frozen=True)
class CallEstimate:
    """Estimated API cost of a collection run.

    Attributes:
        estimated_calls: REST calls expected, including a 20% buffer.
        estimated_duration_minutes: Rough wall time at one call per second.
        remaining: REST calls left when the estimate was made.
        feasible: Whether the estimate fits in the remaining quota.
        reset_at: When the REST window resets.
    """

    estimated_calls: int
    estimated_duration_minutes: int
    remaining: int
    feasible: bool
    reset_at: datetime | None = None


@dataclass
class CollectionOptions:
    """What to collect per repository and how much of it."""

    include_issues: bool = True
    include_pull_requests: bool = True
    include_commits: bool = True
    include_comments: bool = True
    include_reviews: bool = True
    include_releases: bool = True
    max_issues_per_repo: int = 500
    max_prs_per_repo: int = 200
    max_commits_per_repo: int = 1000
    max_comments_per_issue: int = 50
    max_reviews_per_pr: int = 20
    since: datetime | None = None
    until: datetime | None = None

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary for result metadata."""
        return {
            "include_issues": self.include_issues,
            "include_pull_requests": self.include_pull_requests,
            "include_commits": self.include_commits,
            "include_comments": self.include_comments,
            "include_reviews": self.include_reviews,
            "include_releases": self.include_releases,
            "max_issues_per_repo": self.max_issues_per_repo,
            "max_prs_per_repo": self.max_prs_per_repo,
            "max_commits_per_repo": self.max_commits_per_repo,
            "max_comments_per_issue": self.max_comments_per_issue,
            "max_reviews_per_pr": self.max_reviews_per_pr,
            "since": self.since.isoformat() if self.since else None,
            "until": self.until.isoformat() if self.until else None,
        }


@dataclass
class RepositoryDataSet:
    """Everything collected for one repository in one run.

    Items are the raw API dicts with linkage keys added
    (``repository_name``, ``issue_id``, ``pull_request_id``).
    """

    repository: dict
    commits: list[dict] = field(default_factory=list)
    issues: list[dict] = field(default_factory=list)
    pull_requests: list[dict] = field(default_factory=list)
    issue_comments: list[dict] = field(default_factory=list)
    pr_reviews: list[dict] = field(default_factory=list)
    pr_review_comments: list[dict] = field(default_factory=list)
    releases: list[dict] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return self.repository.get("full_name", "")


@dataclass
class FlatCollections:
    """Datasets from many repositories concatenated into flat lists."""

    repositories: list[dict] = field(default_factory=list)
    commits: list[dict] = field(default_factory=list)
    issues: list[dict] = field(default_factory=list)
    pull_requests: list[dict] = field(default_factory=list)
    issue_comments: list[dict] = field(default_factory=list)
    pr_reviews: list[dict] = field(default_factory=list)
    pr_review_comments: list[dict] = field(default_factory=list)
    releases: list[dict] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Number of items in each collection."""
        return {
            "repositories": len(self.repositories),
            "commits": len(self.commits),
            "issues": len(self.issues),
            "pull_requests": len(self.pull_requests),
            "issue_comments": len(self.issue_comments),
            "pr_reviews": len(self.pr_reviews),
            "pr_review_comments": len(self.pr_review_comments),
            "releases": len(self.releases),
        }

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary of item lists."""
        return {
            "repositories": self.repositories,
            "commits": self.commits,
            "issues": self.issues,
            "pull_requests": self.pull_requests,
            "issue_comments": self.issue_comments,
            "pr_reviews": self.pr_reviews,
            "pr_review_comments": self.pr_review_comments,
            "releases": self.releases,
        }


@dataclass(frozen=True)
class ItemReference:
    """Position of an item in one of the flat lists."""

    index: int
    repository_name: str
    type: str

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        return {"index": self.index, "repository_name": self.repository_name, "type": self.type}


@dataclass
class OptimalIndexes:
    """Lookup tables over FlatCollections, rebuilt every run."""

    issues_by_repo: dict[str, list[int]] = field(default_factory=dict)
    prs_by_repo: dict[str, list[int]] = field(default_factory=dict)
    commits_by_repo: dict[str, list[int]] = field(default_factory=dict)
    items_by_author: dict[str, list[ItemReference]] = field(default_factory=dict)
    items_by_label: dict[str, list[ItemReference]] = field(default_factory=dict)
    comments_by_issue: dict[int, list[int]] = field(default_factory=dict)
    reviews_by_pr: dict[int, list[int]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary keyed by index name."""
        return {
            "issues_by_repo": self.issues_by_repo,
            "prs_by_repo": self.prs_by_repo,
            "commits_by_repo": self.commits_by_repo,
            "items_by_author": {
                k: [ref.to_dict() for ref in refs] for k, refs in self.items_by_author.items()
            },
            "items_by_label": {
                k: [ref.to_dict() for ref in refs] for k, refs in self.items_by_label.items()
            },
            # JSON object keys must be strings
            "comments_by_issue": {str(k): v for k, v in self.comments_by_issue.items()},
            "reviews_by_pr": {str(k): v for k, v in self.reviews_by_pr.items()},
        }


@dataclass(frozen=True)
class RepositoryFailure:
    """A repository that could not be collected, and why."""

    repository: str
    error_type: str
    message: str
    status_code: int | None = None
    recovery_instructions: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        return {
            "repository": self.repository,
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            "recovery_instructions": list(self.recovery_instructions),
        }


@dataclass
class CollectionResult:
    """Outcome of a multi-repository collection run."""

    datasets: list[RepositoryDataSet]
    flat: FlatCollections
    indexes: OptimalIndexes
    failures: list[RepositoryFailure]
    options: CollectionOptions
    started_at: datetime
    completed_at: datetime
    incomplete: bool = False
    usage_before: RateLimitUsage | None = None
    usage_after: RateLimitUsage | None = None

    @property
    def duration_ms(self) -> int:
        """Wall time between start and completion, in milliseconds."""
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    @property
    def repository_names(self) -> list[str]:
        """Datasets' repository names, in collection order."""
        return [dataset.full_name for dataset in self.datasets]


@dataclass
class ActivityMetrics:
    """Aggregated activity counts over a time window.

    Attributes:
        repositories: Repository full names covered.
        period_start: Window start (UTC).
        period_end: Window end (UTC).
        period_days: Whole days in the window, rounded up.
        commits_count: Commits in the window.
        total_issues_count: Issues updated in the window.
        open_issues_count: Of those, still open.
        closed_issues_count: Of those, closed.
        total_prs_count: Pull requests updated in the window.
        open_prs_count: Of those, still open.
        merged_prs_count: Of those, merged.
        contributors: Distinct logins/author names seen.
        release_count: Releases published in the window.
        total_additions: Lines added (when commit stats are present).
        total_deletions: Lines deleted (when commit stats are present).
        total_files_changed: Files changed (when commit stats are present).
    """

    repositories: list[str]
    period_start: datetime
    period_end: datetime
    period_days: int
    commits_count: int = 0
    total_issues_count: int = 0
    open_issues_count: int = 0
    closed_issues_count: int = 0
    total_prs_count: int = 0
    open_prs_count: int = 0
    merged_prs_count: int = 0
    contributors: set[str] = field(default_factory=set)
    release_count: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    total_files_changed: int = 0

    @property
    def repositories_count(self) -> int:
        return len(self.repositories)

    @property
    def contributors_count(self) -> int:
        return len(self.contributors)

    @property
    def avg_commits_per_day(self) -> float:
        """Commits per day over the analysis period."""
        return _per_day(self.commits_count, self.period_days)

    @property
    def avg_issues_per_day(self) -> float:
        """Issues (open and closed) per day over the analysis period."""
        return _per_day(self.total_issues_count, self.period_days)

    @property
    def avg_prs_per_day(self) -> float:
        """Pull requests per day over the analysis period."""
        return _per_day(self.total_prs_count, self.period_days)


def _per_day(count: int, days: int) -> float:
    if days <= 0:
        return 0.0
    return round(count / days, 2)


@dataclass(frozen=True)
class ContributorData:
    """Per-contributor activity counts."""

    login: str
    commit_count: int = 0
    issue_count: int = 0
    pr_count: int = 0


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Activity counts for one time bin."""

    period_start: date
    commits: int = 0
    issues: int = 0
    pull_requests: int = 0


# Projects v2 field values: one variant per GraphQL __typename.


@dataclass(frozen=True)
class TextFieldValue:
    field_name: str
    text: str


@dataclass(frozen=True)
class SingleSelectFieldValue:
    field_name: str
    option: str


@dataclass(frozen=True)
class DateFieldValue:
    field_name: str
    value: date


@dataclass(frozen=True)
class NumberFieldValue:
    field_name: str
    number: float


@dataclass(frozen=True)
class IterationFieldValue:
    field_name: str
    title: str
    start_date: date | None = None


@dataclass(frozen=True)
class UserFieldValue:
    field_name: str
    logins: tuple[str, ...] = ()


@dataclass(frozen=True)
class RepositoryFieldValue:
    field_name: str
    name_with_owner: str


FieldValue = (
    TextFieldValue
    | SingleSelectFieldValue
    | DateFieldValue
    | NumberFieldValue
    | IterationFieldValue
    | UserFieldValue
    | RepositoryFieldValue
)


@dataclass(frozen=True)
class ProjectV2Item:
    """One card on a Projects v2 board.

    Attributes:
        id: Item node id.
        type: ISSUE, PULL_REQUEST, DRAFT_ISSUE or REDACTED.
        title: Content title (empty for redacted items).
        repository: ``owner/name`` of linked content, if any.
        field_values: Parsed custom field values.
    """

    id: str
    type: str
    title: str = ""
    url: str | None = None
    repository: str | None = None
    field_values: tuple[FieldValue, ...] = ()


@dataclass(frozen=True)
class ProjectV2:
    """Projects v2 board metadata."""

    id: str
    number: int
    title: str
    url: str
    owner: str
    owner_type: str
    closed: bool
    public: bool
    created_at: datetime
    updated_at: datetime
    item_count: int
    description: str | None = None

    @property
    def state(self) -> str:
        return "CLOSED" if self.closed else "OPEN"

    @property
    def visibility(self) -> str:
        return "PUBLIC" if self.public else "PRIVATE"

    def to_facts(self) -> dict[str, str]:
        """Project metadata as PROJECT_* facts."""
        return {
            "PROJECT_NODE_ID": self.id,
            "PROJECT_NUMBER": str(self.number),
            "PROJECT_TITLE": self.title,
            "PROJECT_DESCRIPTION": self.description or "",
            "PROJECT_URL": self.url,
            "PROJECT_OWNER": self.owner,
            "PROJECT_OWNER_TYPE": self.owner_type,
            "PROJECT_STATE": self.state,
            "PROJECT_VISIBILITY": self.visibility,
            "PROJECT_ITEMS_COUNT": str(self.item_count),
            "PROJECT_CREATED_AT": self.created_at.isoformat(),
            "PROJECT_UPDATED_AT": self.updated_at.isoformat(),
        }


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO 8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
