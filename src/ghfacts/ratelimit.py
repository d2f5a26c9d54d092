"""Rate limit tracking, backoff and call estimation."""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ghfacts.errors import DataShapeError, RateLimitError
from ghfacts.models import CallEstimate, CollectionOptions, RateLimitPool, RateLimitUsage

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ghfacts.github_client import GitHubClient

logger = logging.getLogger(__name__)

PER_PAGE = 100
ESTIMATE_BUFFER = 1.2
CALLS_PER_MINUTE = 60


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a cap and a bounded retry count.

    Attributes:
        base: Delay in seconds before the first retry.
        multiplier: Growth factor per attempt.
        max_delay: Upper bound on a single delay.
        max_retries: Retries allowed after the first attempt.
    """

    base: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    max_retries: int = 5

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        return min(self.base * self.multiplier**attempt, self.max_delay)

    def delays(self) -> list[float]:
        """Every delay the policy allows, in retry order."""
        return [self.delay(attempt) for attempt in range(self.max_retries)]


class RateLimitBudget:
    """Shared call budget for one API pool.

    One instance is handed to every concurrent fetch against the pool.
    The server's ``X-RateLimit-*`` headers are authoritative; between
    responses the local count is decremented so concurrent workers stop
    before overdrawing.
    """

    def __init__(
        self,
        resource: str = "core",
        remaining: int | None = None,
        limit: int | None = None,
        reset_at: datetime | None = None,
        warning_threshold: int = 100,
    ):
        self.resource = resource
        self.remaining = remaining
        self.limit = limit
        self.reset_at = reset_at
        self.warning_threshold = warning_threshold
        self.calls_made = 0
        self._warned = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_pool(
        cls, resource: str, pool: RateLimitPool, warning_threshold: int = 100
    ) -> "RateLimitBudget":
        """Start a budget from a ``/rate_limit`` snapshot.

        Args:
            resource: Pool name used in messages.
            pool: Quota snapshot for the pool.
            warning_threshold: Remaining calls below which a warning is logged.

        Returns:
            RateLimitBudget seeded with the snapshot.
        """
        return cls(resource, pool.remaining, pool.limit, pool.reset_at, warning_threshold)

    async def acquire(self, retry: bool = False) -> None:
        """Reserve one call.

        Args:
            retry: The call re-attempts a rate limited request after backoff,
                so an exhausted pool does not refuse it.

        Raises:
            RateLimitError: If the pool is known to be exhausted and has not reset.
        """
        async with self._lock:
            if self.remaining is not None and self.remaining <= 0 and not retry:
                if self.reset_at is None or self.reset_at > datetime.now(UTC):
                    raise RateLimitError(
                        f"GitHub {self.resource} rate limit exhausted",
                        reset_at=self.reset_at,
                        context={"resource": self.resource, "calls_made": self.calls_made},
                    )
                # Window has rolled over; the next response refreshes the count.
                self.remaining = None
            if self.remaining is not None:
                self.remaining = max(self.remaining - 1, 0)
            self.calls_made += 1

    async def update(self, headers: "Mapping[str, str]") -> None:
        """Fold a response's rate limit headers into the budget."""
        remaining = headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return
        async with self._lock:
            try:
                self.remaining = int(remaining)
                if "X-RateLimit-Limit" in headers:
                    self.limit = int(headers["X-RateLimit-Limit"])
                if "X-RateLimit-Reset" in headers:
                    self.reset_at = datetime.fromtimestamp(
                        int(headers["X-RateLimit-Reset"]), tz=UTC
                    )
            except ValueError:
                logger.debug("Ignoring unparseable rate limit headers: %s", dict(headers))
                return

            if self.remaining < self.warning_threshold and not self._warned:
                self._warned = True
                logger.warning(
                    "GitHub %s rate limit low: %d calls remaining (resets %s)",
                    self.resource,
                    self.remaining,
                    self.reset_at.isoformat() if self.reset_at else "unknown",
                )

    def snapshot(self) -> RateLimitPool | None:
        """Current quota, or None until all of remaining, limit and reset are known."""
        if self.remaining is None or self.limit is None or self.reset_at is None:
            return None
        return RateLimitPool(self.remaining, self.limit, self.reset_at)


def parse_rate_limit(payload: dict) -> RateLimitUsage:
    """Parse a ``GET /rate_limit`` body into per-pool snapshots.

    Args:
        payload: Decoded JSON response.

    Returns:
        RateLimitUsage for the REST (core) and GraphQL pools.

    Raises:
        DataShapeError: If either pool is missing or malformed.
    """
    resources = payload.get("resources") if isinstance(payload, dict) else None
    if not isinstance(resources, dict):
        raise DataShapeError("/rate_limit", "a 'resources' object")

    def pool(name: str) -> RateLimitPool:
        data = resources.get(name)
        try:
            return RateLimitPool(
                remaining=int(data["remaining"]),
                limit=int(data["limit"]),
                reset_at=datetime.fromtimestamp(int(data["reset"]), tz=UTC),
            )
        except (TypeError, KeyError, ValueError) as e:
            raise DataShapeError(
                "/rate_limit", f"'{name}' with limit, remaining and reset"
            ) from e

    return RateLimitUsage(rest=pool("core"), graphql=pool("graphql"))


async def check_limits(client: "GitHubClient") -> RateLimitUsage:
    """Fetch the current REST and GraphQL quotas.

    ``/rate_limit`` does not count against the quota.
    """
    usage = parse_rate_limit(await client.get_rate_limit())
    logger.debug(
        "Rate limits: core %d/%d, graphql %d/%d",
        usage.rest.remaining,
        usage.rest.limit,
        usage.graphql.remaining,
        usage.graphql.limit,
    )
    return usage


def _pages(items: int) -> int:
    # An empty list still costs one request.
    return max(1, math.ceil(items / PER_PAGE))


def estimate_cost(
    repo_count: int,
    per_repo_item_estimate: int,
    options: CollectionOptions,
    usage: RateLimitUsage,
) -> CallEstimate:
    """Estimate the REST calls a collection run will make.

    Per repository: one metadata call, one page per 100 items for each
    enabled list, one comments call per issue and two calls per pull
    request (reviews and review comments). Releases cost one page. A 20%
    buffer is added.

    Args:
        repo_count: Repositories to collect.
        per_repo_item_estimate: Expected items of each kind per repository.
        options: Enabled kinds and per-kind caps.
        usage: Current quota snapshot.

    Returns:
        CallEstimate with feasibility against the remaining REST quota.
    """
    issues = min(per_repo_item_estimate, options.max_issues_per_repo)
    prs = min(per_repo_item_estimate, options.max_prs_per_repo)
    commits = min(per_repo_item_estimate, options.max_commits_per_repo)

    per_repo = 1
    if options.include_issues:
        per_repo += _pages(issues)
        if options.include_comments:
            per_repo += issues
    if options.include_pull_requests:
        per_repo += _pages(prs)
        if options.include_reviews:
            per_repo += 2 * prs
    if options.include_commits:
        per_repo += _pages(commits)
    if options.include_releases:
        per_repo += 1

    calls = math.ceil(repo_count * per_repo * ESTIMATE_BUFFER)
    return CallEstimate(
        estimated_calls=calls,
        estimated_duration_minutes=math.ceil(calls / CALLS_PER_MINUTE),
        remaining=usage.rest.remaining,
        feasible=calls <= usage.rest.remaining,
        reset_at=usage.rest.reset_at,
    )


def ensure_feasible(estimate: CallEstimate) -> None:
    """Refuse to start a run the remaining quota can't cover.

    Raises:
        RateLimitError: If the estimate exceeds the remaining calls.
    """
    if estimate.feasible:
        return
    raise RateLimitError(
        f"Collection needs about {estimate.estimated_calls} API calls "
        f"but only {estimate.remaining} remain",
        reset_at=estimate.reset_at,
        context={
            "estimated_calls": estimate.estimated_calls,
            "remaining": estimate.remaining,
        },
    )
