"""Detect the GitHub repository of a local git checkout."""

import logging
import re
import subprocess
from pathlib import Path

from ghfacts.errors import ConfigurationError

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 10

_REMOTE_PATTERNS = (
    re.compile(r"^https://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
    re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$"),
    re.compile(r"^ssh://git@github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$"),
)


def parse_remote_url(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a GitHub remote URL.

    Handles ``https://github.com/owner/repo(.git)`` and
    ``git@github.com:owner/repo(.git)``.

    Returns:
        Owner and repository name, or None for non-GitHub remotes.
    """
    url = url.strip()
    for pattern in _REMOTE_PATTERNS:
        match = pattern.match(url)
        if match:
            return match.group(1), match.group(2)
    return None


def detect_repository(path: Path | None = None, remote: str = "origin") -> str:
    """Return ``owner/repo`` for the checkout at ``path``.

    Args:
        path: Working directory (default: current directory).
        remote: Remote name to read.

    Raises:
        ConfigurationError: If git is missing, the remote is unset, or it
            doesn't point at GitHub.
    """
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", remote],
            cwd=path,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=False,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        raise ConfigurationError(
            f"Could not run git to detect the repository: {e}",
            [
                "Install git, or pass the repository explicitly with --repo OWNER/NAME",
            ],
        ) from e

    if result.returncode != 0:
        raise ConfigurationError(
            f"No '{remote}' remote found: {result.stderr.strip() or 'not a git repository'}",
            [
                "Run the command inside a git checkout with a GitHub remote",
                "Or pass a project URL, an owner, or --repo OWNER/NAME",
            ],
        )

    parsed = parse_remote_url(result.stdout)
    if parsed is None:
        raise ConfigurationError(
            f"Remote '{remote}' is not a GitHub repository: {result.stdout.strip()}",
            ["Pass the repository explicitly with --repo OWNER/NAME"],
        )

    owner, repo = parsed
    logger.debug("Detected repository %s/%s from git remote", owner, repo)
    return f"{owner}/{repo}"
