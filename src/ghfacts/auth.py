"""GitHub token discovery and validation."""

import logging
import os
import subprocess

from ghfacts.config import Settings
from ghfacts.errors import AuthenticationError, InsufficientScopeError
from ghfacts.github_client import GitHubClient
from ghfacts.ratelimit import BackoffPolicy

logger = logging.getLogger(__name__)

GH_TIMEOUT_SECONDS = 10
TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")

# Authentication failures are never retried.
_NO_RETRY = BackoffPolicy(max_retries=0)


def get_token(settings: Settings | None = None) -> str:
    """Find a GitHub token.

    Checks ``GHFACTS_GITHUB_TOKEN`` (via settings), then ``GITHUB_TOKEN``
    and ``GH_TOKEN``, then asks the GitHub CLI.

    Args:
        settings: Application settings.

    Returns:
        A non-empty token.

    Raises:
        AuthenticationError: If no token can be found.
    """
    if settings is not None and settings.github_token.strip():
        return settings.github_token.strip()

    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name, "").strip()
        if value:
            logger.debug("Using token from %s", name)
            return value

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=GH_TIMEOUT_SECONDS,
            check=False,
        )
    except FileNotFoundError as e:
        raise AuthenticationError.cli_not_installed() from e
    except subprocess.TimeoutExpired as e:
        raise AuthenticationError.not_authenticated(
            f"`gh auth token` timed out after {GH_TIMEOUT_SECONDS}s"
        ) from e

    token = result.stdout.strip()
    if result.returncode != 0 or not token:
        raise AuthenticationError.not_authenticated(result.stderr.strip() or None)

    logger.debug("Using token from GitHub CLI")
    return token


async def validate(token: str, timeout: float = 30.0) -> bool:
    """Check whether GitHub accepts the token.

    Returns:
        False if the token was rejected, True otherwise.
    """
    async with GitHubClient(token, timeout=timeout, backoff=_NO_RETRY) as client:
        try:
            await client.get_authenticated_user()
        except AuthenticationError:
            return False
    return True


async def current_user(token: str, timeout: float = 30.0) -> str:
    """Return the login of the token's owner.

    Raises:
        AuthenticationError: If the token is rejected or the user has no login.
    """
    async with GitHubClient(token, timeout=timeout, backoff=_NO_RETRY) as client:
        user = await client.get_authenticated_user()
    login = user.get("login") if isinstance(user, dict) else None
    if not login:
        raise AuthenticationError.not_authenticated("GitHub did not return a user login")
    return login


async def check_scopes(token: str, required: list[str], timeout: float = 30.0) -> None:
    """Ensure a classic token carries the required OAuth scopes.

    Fine-grained tokens don't report scopes and are not checked.

    Args:
        token: GitHub token.
        required: Scopes the operation needs, e.g. ``["repo", "read:project"]``.
        timeout: Request timeout in seconds.

    Raises:
        InsufficientScopeError: If any required scope is missing.
    """
    async with GitHubClient(token, timeout=timeout, backoff=_NO_RETRY) as client:
        scopes = await client.get_token_scopes()
    if scopes is None:
        logger.debug("Token reports no OAuth scopes; skipping scope check")
        return

    missing = [scope for scope in required if not _has_scope(scope, scopes)]
    if missing:
        raise InsufficientScopeError(missing, scopes)


def _has_scope(required: str, granted: list[str]) -> bool:
    if required in granted:
        return True
    # Broader scopes imply their read-only counterparts
    if required.startswith("read:"):
        return required.removeprefix("read:") in granted
    return False
