"""Shared test fixtures."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
import respx

from ghfacts.config import Settings
from ghfacts.models import CollectionOptions, RepositoryDataSet

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=UTC)
SINCE = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def repository_payload(full_name: str = "octo-org/widgets", **overrides) -> dict:
    owner, name = full_name.split("/")
    payload = {
        "id": abs(hash(full_name)) % 100_000,
        "name": name,
        "full_name": full_name,
        "owner": {"login": owner},
        "language": "Python",
        "default_branch": "main",
        "archived": False,
        "fork": False,
        "private": False,
        "size": 2048,
        "stargazers_count": 100,
        "forks_count": 25,
        "watchers_count": 10,
        "open_issues_count": 3,
        "created_at": "2020-01-01T00:00:00Z",
        "updated_at": "2024-03-30T00:00:00Z",
        "pushed_at": "2024-03-30T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def issue_payload(
    number: int,
    state: str = "open",
    login: str = "alice",
    created_at: str = "2024-03-10T09:00:00Z",
    updated_at: str = "2024-03-20T09:00:00Z",
    closed_at: str | None = None,
    comments: int = 0,
    labels: list | None = None,
) -> dict:
    return {
        "id": 1000 + number,
        "number": number,
        "title": f"Issue {number}",
        "state": state,
        "user": {"login": login},
        "labels": labels if labels is not None else [{"name": "bug"}],
        "comments": comments,
        "created_at": created_at,
        "updated_at": updated_at,
        "closed_at": closed_at,
    }


def pull_payload(
    number: int,
    state: str = "open",
    login: str = "bob",
    created_at: str = "2024-03-05T09:00:00Z",
    updated_at: str = "2024-03-21T09:00:00Z",
    merged_at: str | None = None,
) -> dict:
    return {
        "id": 5000 + number,
        "number": number,
        "title": f"PR {number}",
        "state": state,
        "user": {"login": login},
        "created_at": created_at,
        "updated_at": updated_at,
        "merged_at": merged_at,
        "closed_at": merged_at,
    }


def commit_payload(
    sha: str, date: str = "2024-03-15T14:30:00Z", login: str | None = "alice", name: str = "Alice"
) -> dict:
    return {
        "sha": sha,
        "author": {"login": login} if login else None,
        "commit": {
            "author": {"name": name, "date": date},
            "committer": {"name": name, "date": date},
            "message": f"Commit {sha}",
        },
    }


def rate_limit_payload(core: int = 5000, graphql: int = 5000, reset: int = 1711890000) -> dict:
    return {
        "resources": {
            "core": {"limit": 5000, "remaining": core, "reset": reset, "used": 5000 - core},
            "graphql": {"limit": 5000, "remaining": graphql, "reset": reset, "used": 0},
        }
    }


@pytest.fixture
def mock_github_api():
    """Mock GitHub API responses."""
    with respx.mock(base_url="https://api.github.com", assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    """Skip backoff sleeps and record the requested delays."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("ghfacts.github_client.asyncio.sleep", fake_sleep)
    return delays


@pytest.fixture
def options() -> CollectionOptions:
    """Collection options restricted to issues and commits."""
    return CollectionOptions(
        include_pull_requests=False,
        include_comments=False,
        include_reviews=False,
        include_releases=False,
        since=SINCE,
        until=NOW,
    )


@pytest.fixture
def sample_dataset() -> RepositoryDataSet:
    """A repository with a handful of linked items."""
    name = "octo-org/widgets"
    issues = [
        issue_payload(1, "open", "alice"),
        issue_payload(
            2,
            "closed",
            "carol",
            created_at="2024-03-02T00:00:00Z",
            closed_at="2024-03-04T00:00:00Z",
        ),
        issue_payload(
            3,
            "closed",
            "alice",
            created_at="2024-03-10T00:00:00Z",
            closed_at="2024-03-11T00:00:00Z",
        ),
    ]
    prs = [
        pull_payload(10, "closed", "bob", merged_at="2024-03-07T09:00:00Z"),
        pull_payload(11, "closed", "bob"),
        pull_payload(12, "open", "alice"),
    ]
    commits = [
        commit_payload("a1", "2024-03-11T10:00:00Z", "alice"),
        commit_payload("a2", "2024-03-11T10:30:00Z", "alice"),
        commit_payload("a3", "2024-03-16T22:00:00Z", "bob", "Bob"),
        commit_payload("a4", "2024-03-18T10:15:00Z", None, "Dana"),
    ]
    return RepositoryDataSet(
        repository=repository_payload(name),
        commits=[{**c, "repository_name": name} for c in commits],
        issues=[{**i, "repository_name": name} for i in issues],
        pull_requests=[{**p, "repository_name": name} for p in prs],
        releases=[{"id": 1, "tag_name": "v1.0", "published_at": "2024-03-20T00:00:00Z"}],
    )


@pytest.fixture
def settings(tmp_path: Path, monkeypatch) -> Settings:
    """Settings isolated from the environment, writing under tmp_path."""
    for name in ("GHFACTS_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return Settings(
        github_token="test_token",
        config_dir=tmp_path / "config",
        results_dir=tmp_path / "results",
        max_retries=2,
        backoff_base=0.0,
    )
