"""Async GitHub REST and GraphQL client."""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any, Self

import httpx

from ghfacts.errors import (
    AuthenticationError,
    DataShapeError,
    EmptyRepositoryError,
    NotFoundError,
    RateLimitError,
    RepositoryAccessError,
    TransientNetworkError,
)
from ghfacts.ratelimit import PER_PAGE, BackoffPolicy, RateLimitBudget

logger = logging.getLogger(__name__)


class GitHubClient:
    """Async client for the GitHub REST and GraphQL APIs.

    Handles authentication, rate limit accounting, retries and mapping
    HTTP failures onto ghfacts errors.

    Attributes:
        BASE_URL: GitHub API base URL.
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str,
        timeout: float = 30.0,
        backoff: BackoffPolicy | None = None,
        rest_budget: RateLimitBudget | None = None,
        graphql_budget: RateLimitBudget | None = None,
    ):
        """Initialize client with authentication token.

        Args:
            token: GitHub token (classic or fine-grained).
            timeout: Request timeout in seconds.
            backoff: Retry policy for rate limits and transient failures.
            rest_budget: Shared budget for the REST (core) pool.
            graphql_budget: Shared budget for the GraphQL pool.
        """
        self.token = token
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy()
        self.rest_budget = rest_budget or RateLimitBudget("core")
        self.graphql_budget = graphql_budget or RateLimitBudget("graphql")
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.token}",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()

    async def send(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: Any = None,
        budget: RateLimitBudget | None = None,
    ) -> httpx.Response:
        """Execute request with retry logic.

        Args:
            method: HTTP method.
            path: API endpoint path.
            params: Query parameters.
            json: JSON request body.
            budget: Pool to charge; None for endpoints that cost nothing.

        Returns:
            The successful response.

        Raises:
            AuthenticationError: For 401 responses. Never retried.
            RateLimitError: When rate limit retries are exhausted.
            RepositoryAccessError: For 403 responses that are not rate limits.
            NotFoundError: For 404 responses.
            EmptyRepositoryError: For 409 responses.
            TransientNetworkError: When server/network retries are exhausted.
            DataShapeError: For other unexpected statuses.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        last_error: Exception | None = None
        rate_limited = False

        for attempt in range(self.backoff.max_retries + 1):
            if budget is not None:
                await budget.acquire(retry=rate_limited)
            rate_limited = False

            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.RequestError as e:
                last_error = TransientNetworkError(
                    f"Request failed: {e}", context={"path": path, "attempts": attempt + 1}
                )
                await self._wait(attempt, f"network error on {path}")
                continue

            if budget is not None:
                await budget.update(response.headers)

            status = response.status_code
            if 200 <= status < 300:
                return response

            if status == 401:
                raise AuthenticationError.token_rejected(_message(response))

            if status in (403, 429) and _is_rate_limited(response):
                reset_at = _reset_at(response)
                last_error = RateLimitError(
                    f"Rate limit exceeded on {path}",
                    reset_at=reset_at,
                    context={"path": path, "status": status, "attempts": attempt + 1},
                )
                rate_limited = True
                await self._wait(attempt, f"rate limited on {path}")
                continue

            if status == 403:
                raise RepositoryAccessError(path, _message(response))

            if status == 404:
                raise NotFoundError(path)

            if status == 409:
                raise EmptyRepositoryError(path)

            # Server errors - retry
            if status >= 500:
                last_error = TransientNetworkError(
                    f"Server error {status}: {_message(response)}",
                    context={"path": path, "status": status, "attempts": attempt + 1},
                )
                await self._wait(attempt, f"server error {status} on {path}")
                continue

            raise DataShapeError(
                path,
                "a successful response",
                context={"status": status, "message": _message(response)},
            )

        raise last_error or TransientNetworkError(f"Request failed after retries: {path}")

    async def _wait(self, attempt: int, reason: str) -> None:
        if attempt >= self.backoff.max_retries:
            return
        delay = self.backoff.delay(attempt)
        logger.warning("%s; retry %d in %.1fs", reason, attempt + 1, delay)
        await asyncio.sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: Any = None,
    ) -> Any:
        """Execute a REST request charged to the core pool.

        Returns:
            Decoded JSON body.

        Raises:
            DataShapeError: If the body is not JSON.
        """
        response = await self.send(method, path, params=params, json=json, budget=self.rest_budget)
        return _decode(response, path)

    async def paginate(
        self, path: str, params: dict | None = None
    ) -> AsyncIterator[list[dict]]:
        """Yield pages of a list endpoint in upstream order.

        Stops after the first short page. Callers may stop early.

        Args:
            path: API endpoint path returning a JSON array.
            params: Extra query parameters.

        Yields:
            Each page's items.

        Raises:
            DataShapeError: If a page is not a JSON array.
        """
        page = 1
        while True:
            query = {**(params or {}), "per_page": PER_PAGE, "page": page}
            items = await self.request("GET", path, params=query)
            if not isinstance(items, list):
                raise DataShapeError(path, "a JSON array", context={"page": page})
            logger.debug("%s page %d: %d items", path, page, len(items))
            yield items
            if len(items) < PER_PAGE:
                return
            page += 1

    async def graphql(self, query: str, variables: dict | None = None) -> dict:
        """Execute a GraphQL query charged to the graphql pool.

        Partial results are returned as-is; GraphQL errors raise only when
        no data came back.

        Args:
            query: GraphQL document.
            variables: Query variables.

        Returns:
            The response's ``data`` object.

        Raises:
            NotFoundError: If the query failed with NOT_FOUND.
            RepositoryAccessError: If the token may not read the target.
            DataShapeError: For other failures without data.
        """
        response = await self.send(
            "POST",
            "/graphql",
            json={"query": query, "variables": variables or {}},
            budget=self.graphql_budget,
        )
        payload = _decode(response, "/graphql")
        if not isinstance(payload, dict):
            raise DataShapeError("/graphql", "a JSON object")

        errors = payload.get("errors") or []
        data = payload.get("data")
        if errors:
            logger.debug("GraphQL errors: %s", errors)
        if isinstance(data, dict):
            return data

        types = {error.get("type") for error in errors if isinstance(error, dict)}
        messages = "; ".join(
            str(error.get("message", "")) for error in errors if isinstance(error, dict)
        )
        if "NOT_FOUND" in types:
            raise NotFoundError(messages or "GraphQL resource")
        if types & {"FORBIDDEN", "INSUFFICIENT_SCOPES"}:
            raise RepositoryAccessError("GraphQL", messages)
        raise DataShapeError("/graphql", "a data object", context={"errors": messages})

    async def get_repository(self, owner: str, repo: str) -> dict:
        """Fetch repository metadata.

        Args:
            owner: Repository owner/organization.
            repo: Repository name.

        Returns:
            Raw repository object.
        """
        data = await self.request("GET", f"/repos/{owner}/{repo}")
        if not isinstance(data, dict) or "full_name" not in data:
            raise DataShapeError(f"/repos/{owner}/{repo}", "a repository object")
        return data

    async def get_authenticated_user(self) -> dict:
        """Fetch the user the token belongs to."""
        return await self.request("GET", "/user")

    async def get_token_scopes(self) -> list[str] | None:
        """Return the token's OAuth scopes.

        Returns:
            Scopes from ``X-OAuth-Scopes``, or None for fine-grained tokens
            that don't report them.
        """
        response = await self.send("GET", "/user", budget=self.rest_budget)
        header = response.headers.get("X-OAuth-Scopes")
        if header is None:
            return None
        return [scope.strip() for scope in header.split(",") if scope.strip()]

    async def get_rate_limit(self) -> dict:
        """Fetch quota status. This endpoint is not charged."""
        response = await self.send("GET", "/rate_limit")
        return _decode(response, "/rate_limit")


def _decode(response: httpx.Response, path: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise DataShapeError(path, "a JSON body") from e


def _message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message", ""))
    return ""


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    if "Retry-After" in response.headers:
        return True
    if response.status_code == 429:
        return True
    # Secondary limits come back as 403 with quota still available
    return "rate limit" in _message(response).lower()


def _reset_at(response: httpx.Response) -> datetime | None:
    reset = response.headers.get("X-RateLimit-Reset")
    if reset is None:
        return None
    try:
        return datetime.fromtimestamp(int(reset), tz=UTC)
    except ValueError:
        return None
