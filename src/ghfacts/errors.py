"""Error types for ghfacts.

Every error carries at least one recovery instruction so the report can
always tell the user what to do next.
"""

from datetime import UTC, datetime
from typing import Any


class GhFactsError(Exception):
    """Base exception for all ghfacts failures.

    Attributes:
        recovery_instructions: Steps the user can take to fix the problem.
        context: Extra key/value details for debugging.
        timestamp: When the error was created (UTC).
    """

    def __init__(
        self,
        message: str,
        recovery_instructions: list[str],
        context: dict[str, Any] | None = None,
    ):
        """Initialize with message and recovery instructions.

        Args:
            message: Error message.
            recovery_instructions: Non-empty list of non-blank instructions.
            context: Optional debugging context.

        Raises:
            ValueError: If no instructions are given or any is blank.
        """
        if not recovery_instructions:
            raise ValueError(f"{type(self).__name__} requires at least one recovery instruction")
        if any(not instruction or not instruction.strip() for instruction in recovery_instructions):
            raise ValueError("Recovery instructions cannot be empty strings")

        super().__init__(message)
        self.message = message
        self.recovery_instructions = list(recovery_instructions)
        self.context = dict(context or {})
        self.timestamp = datetime.now(UTC)

    def add_context(self, key: str, value: Any) -> None:
        """Attach more debugging context, ignoring None values."""
        if value is not None:
            self.context[key] = value


class ConfigurationError(GhFactsError):
    """Raised for invalid arguments or configuration."""


class AuthenticationError(GhFactsError):
    """Raised when no usable token is available or it was rejected."""

    @classmethod
    def not_authenticated(cls, details: str | None = None) -> "AuthenticationError":
        """Build the error for a missing token.

        Args:
            details: Extra reason, e.g. the GitHub CLI's stderr.

        Returns:
            AuthenticationError with login instructions.
        """
        message = "GitHub authentication required but not found"
        if details:
            message = f"{message}: {details}"
        return cls(
            message,
            [
                "Run `gh auth login` to authenticate with GitHub CLI",
                "Or set the GHFACTS_GITHUB_TOKEN (or GITHUB_TOKEN) environment variable",
                "Verify the token is not expired",
            ],
        )

    @classmethod
    def token_rejected(cls, details: str | None = None) -> "AuthenticationError":
        """Build the error for a token GitHub refused with 401.

        Args:
            details: The API's error message, if any.

        Returns:
            AuthenticationError with refresh instructions.
        """
        message = "GitHub rejected the token (invalid or expired)"
        if details:
            message = f"{message}: {details}"
        return cls(
            message,
            [
                "Run `gh auth refresh` or `gh auth login` to obtain a new token",
                "Check that the token has not been revoked at https://github.com/settings/tokens",
            ],
        )

    @classmethod
    def cli_not_installed(cls) -> "AuthenticationError":
        """Build the error for a missing `gh` executable."""
        return cls(
            "GitHub CLI (gh) is required but not installed",
            [
                "Install GitHub CLI from https://cli.github.com/",
                "After installation, run `gh auth login`",
                "Or set GHFACTS_GITHUB_TOKEN to skip the CLI lookup",
            ],
        )


class InsufficientScopeError(AuthenticationError):
    """Raised when the token lacks OAuth scopes needed for the operation."""

    def __init__(self, missing: list[str], current: list[str]):
        """Initialize with the missing and granted scopes.

        Args:
            missing: Required scopes the token lacks.
            current: Scopes the token reports.
        """
        super().__init__(
            f"GitHub token lacks required permissions. Missing: {', '.join(missing)}",
            [
                f'Run `gh auth refresh --scopes "{",".join(missing)}"` to grant the missing scopes',
                "Or create a token with these scopes at https://github.com/settings/tokens",
            ],
            {"missing_scopes": ", ".join(missing), "current_scopes": ", ".join(current)},
        )
        self.missing = missing


class RateLimitError(GhFactsError):
    """Raised when the API quota is exhausted or a collection would exceed it."""

    def __init__(
        self,
        message: str,
        reset_at: datetime | None = None,
        context: dict[str, Any] | None = None,
    ):
        """Initialize with reset time.

        Args:
            message: Error message.
            reset_at: When the rate limit resets (UTC).
            context: Optional debugging context.
        """
        self.reset_at = reset_at
        self.wait_seconds = _seconds_until(reset_at)
        instructions = [
            f"Wait {_format_wait(self.wait_seconds)} for the rate limit to reset before retrying",
            "Reduce collection limits or narrow the time window with --days",
        ]
        super().__init__(message, instructions, context)
        self.add_context("reset_at", reset_at.isoformat() if reset_at else None)
        self.add_context("wait_seconds", self.wait_seconds)


class TransientNetworkError(GhFactsError):
    """Raised when retries for a network or server error are exhausted."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(
            message,
            [
                "Check network connectivity to api.github.com",
                "Retry in a few minutes; see https://www.githubstatus.com for outages",
            ],
            context,
        )


class RepositoryError(GhFactsError):
    """Base for errors scoped to a single repository.

    A multi-repository collection records these and moves on.
    """

    status_code: int | None = None


class NotFoundError(RepositoryError):
    """Raised when a repository or resource doesn't exist or is hidden."""

    status_code = 404

    def __init__(self, resource: str, context: dict[str, Any] | None = None):
        super().__init__(
            f"Not found or no access: {resource}",
            [
                f"Check that {resource} exists and the name is spelled correctly",
                "Verify the token can read private repositories (`repo` scope)",
            ],
            context,
        )


class RepositoryAccessError(RepositoryError):
    """Raised for 403 responses that are not rate limits."""

    status_code = 403

    def __init__(self, resource: str, details: str = "", context: dict[str, Any] | None = None):
        message = f"Access forbidden: {resource}"
        if details:
            message = f"{message} ({details})"
        super().__init__(
            message,
            [
                "Check token permissions for this repository or organization",
                "If the organization enforces SSO, authorize the token at https://github.com/settings/tokens",
            ],
            context,
        )


class EmptyRepositoryError(RepositoryError):
    """Raised for 409 Conflict on repositories with no commits."""

    status_code = 409

    def __init__(self, resource: str, context: dict[str, Any] | None = None):
        super().__init__(
            f"Repository is empty: {resource}",
            ["Push at least one commit, or exclude the repository from collection"],
            context,
        )


class DataShapeError(RepositoryError):
    """Raised when an API response does not have the expected structure."""

    def __init__(self, source: str, expected: str, context: dict[str, Any] | None = None):
        super().__init__(
            f"Malformed data from {source}: expected {expected}",
            [
                "Retry the command; the upstream response may have been truncated",
                "If it persists, the GitHub API format may have changed; report it with the debug output",
            ],
            context,
        )


class ProjectNotFoundError(GhFactsError):
    """Raised when a Projects v2 board can't be located."""

    def __init__(self, target: str, context: dict[str, Any] | None = None):
        super().__init__(
            f"No GitHub project found for: {target}",
            [
                "Use a project URL like https://github.com/orgs/ORG/projects/123",
                "Verify the token has the `read:project` scope (`gh auth refresh --scopes read:project`)",
                "Or pass repositories directly with --repo OWNER/NAME",
            ],
            context,
        )


def _seconds_until(reset_at: datetime | None) -> int | None:
    if reset_at is None:
        return None
    return max(0, int((reset_at - datetime.now(UTC)).total_seconds()))


def _format_wait(seconds: int | None) -> str:
    if seconds is None:
        return "until the next rate limit window (up to 60 minutes)"
    minutes, secs = divmod(seconds, 60)
    if minutes:
        return f"{minutes} minutes {secs} seconds"
    return f"{secs} seconds"
