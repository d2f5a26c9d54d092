"""Tests for data collection."""

import asyncio

import pytest
from httpx import Response

from ghfacts import collector
from ghfacts.collector import (
    collect_items,
    collect_project_data,
    collect_repository_data,
    flatten,
    split_full_name,
)
from ghfacts.errors import (
    AuthenticationError,
    ConfigurationError,
    DataShapeError,
    NotFoundError,
)
from ghfacts.github_client import GitHubClient
from ghfacts.models import CollectionOptions, ItemKind, RepositoryDataSet

from conftest import NOW, SINCE, commit_payload, issue_payload, pull_payload, repository_payload


def _mock_repository(api, full_name: str, open_issues: int = 3, closed_issues: int = 2) -> None:
    api.get(f"/repos/{full_name}").mock(
        return_value=Response(200, json=repository_payload(full_name))
    )
    issues = [issue_payload(n, "open") for n in range(1, open_issues + 1)] + [
        issue_payload(n, "closed", closed_at="2024-03-22T00:00:00Z")
        for n in range(open_issues + 1, open_issues + closed_issues + 1)
    ]
    api.get(f"/repos/{full_name}/issues").mock(return_value=Response(200, json=issues))
    api.get(f"/repos/{full_name}/commits").mock(
        return_value=Response(200, json=[commit_payload(f"{full_name}-{n}") for n in range(10)])
    )


class TestCollectItems:
    """Tests for collect_items."""

    @pytest.mark.asyncio
    async def test_empty_repository_commits(self, mock_github_api) -> None:
        """Test that a 409 for commits yields an empty list."""
        mock_github_api.get("/repos/octo-org/empty/commits").mock(
            return_value=Response(409, json={"message": "Git Repository is empty."})
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(client, "octo-org", "empty", ItemKind.COMMITS)

        assert items == []

    @pytest.mark.asyncio
    async def test_zero_items(self, mock_github_api) -> None:
        """Test that no items is an empty list, not an error."""
        mock_github_api.get("/repos/octo-org/widgets/releases").mock(
            return_value=Response(200, json=[])
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(client, "octo-org", "widgets", "releases")

        assert items == []

    @pytest.mark.asyncio
    async def test_issues_skip_pull_requests(self, mock_github_api) -> None:
        """Test that pull requests in the issues endpoint are dropped."""
        pr_as_issue = {**issue_payload(2), "pull_request": {"url": "..."}}
        mock_github_api.get("/repos/octo-org/widgets/issues").mock(
            return_value=Response(200, json=[issue_payload(1), pr_as_issue])
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(client, "octo-org", "widgets", ItemKind.ISSUES)

        assert [item["number"] for item in items] == [1]

    @pytest.mark.asyncio
    async def test_since_sent_and_filtered(self, mock_github_api) -> None:
        """Test no returned item is older than since."""
        route = mock_github_api.get("/repos/octo-org/widgets/commits").mock(
            return_value=Response(
                200,
                json=[
                    commit_payload("new", "2024-03-20T00:00:00Z"),
                    commit_payload("old", "2024-02-01T00:00:00Z"),
                ],
            )
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(
                client, "octo-org", "widgets", ItemKind.COMMITS, since=SINCE, until=NOW
            )

        assert [item["sha"] for item in items] == ["new"]
        params = route.calls.last.request.url.params
        assert params["since"] == "2024-03-01T12:00:00Z"
        assert params["until"] == "2024-03-31T12:00:00Z"

    @pytest.mark.asyncio
    async def test_newest_first_stops_at_since(self, mock_github_api) -> None:
        """Test pull request paging stops once items cross since."""
        page = [pull_payload(n, updated_at="2024-03-20T00:00:00Z") for n in range(99)] + [
            pull_payload(99, updated_at="2024-02-01T00:00:00Z")
        ]
        route = mock_github_api.get("/repos/octo-org/widgets/pulls").mock(
            return_value=Response(200, json=page)
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(
                client, "octo-org", "widgets", ItemKind.PULL_REQUESTS, since=SINCE
            )

        assert len(items) == 99
        assert route.call_count == 1
        assert "since" not in route.calls.last.request.url.params

    @pytest.mark.asyncio
    async def test_limit(self, mock_github_api) -> None:
        """Test collection stops at the limit."""
        mock_github_api.get("/repos/octo-org/widgets/issues").mock(
            return_value=Response(200, json=[issue_payload(n) for n in range(1, 11)])
        )

        async with GitHubClient(token="test_token") as client:
            items = await collect_items(client, "octo-org", "widgets", "issues", limit=3)
            none = await collect_items(client, "octo-org", "widgets", "issues", limit=0)

        assert [item["number"] for item in items] == [1, 2, 3]
        assert none == []

    @pytest.mark.asyncio
    async def test_comments_need_number(self) -> None:
        """Test per-item kinds require an issue or pull request number."""
        async with GitHubClient(token="test_token") as client:
            with pytest.raises(ConfigurationError):
                await collect_items(client, "octo-org", "widgets", ItemKind.COMMENTS)

    @pytest.mark.asyncio
    async def test_bad_timestamp(self, mock_github_api) -> None:
        """Test an unparseable timestamp raises DataShapeError."""
        mock_github_api.get("/repos/octo-org/widgets/issues").mock(
            return_value=Response(200, json=[issue_payload(1, updated_at="yesterday")])
        )

        async with GitHubClient(token="test_token") as client:
            with pytest.raises(DataShapeError):
                await collect_items(client, "octo-org", "widgets", "issues", since=SINCE)

    @pytest.mark.asyncio
    async def test_non_object_items(self, mock_github_api) -> None:
        """Test list items that aren't objects."""
        mock_github_api.get("/repos/octo-org/widgets/issues").mock(
            return_value=Response(200, json=["nope"])
        )

        async with GitHubClient(token="test_token") as client:
            with pytest.raises(DataShapeError):
                await collect_items(client, "octo-org", "widgets", "issues")


class TestCollectRepositoryData:
    """Tests for collect_repository_data."""

    @pytest.mark.asyncio
    async def test_links_children(self, mock_github_api) -> None:
        """Test comments and reviews carry their parent's id."""
        base = "/repos/octo-org/widgets"
        mock_github_api.get(base).mock(return_value=Response(200, json=repository_payload()))
        mock_github_api.get(f"{base}/issues").mock(
            return_value=Response(200, json=[issue_payload(1, comments=2), issue_payload(2)])
        )
        comments_route = mock_github_api.get(f"{base}/issues/1/comments").mock(
            return_value=Response(200, json=[{"id": 1, "updated_at": "2024-03-20T00:00:00Z"}])
        )
        mock_github_api.get(f"{base}/pulls").mock(
            return_value=Response(200, json=[pull_payload(7)])
        )
        mock_github_api.get(f"{base}/pulls/7/reviews").mock(
            return_value=Response(
                200, json=[{"id": 70, "state": "APPROVED", "submitted_at": "2024-03-21T00:00:00Z"}]
            )
        )
        mock_github_api.get(f"{base}/pulls/7/comments").mock(return_value=Response(200, json=[]))
        mock_github_api.get(f"{base}/commits").mock(
            return_value=Response(200, json=[commit_payload("abc")])
        )
        mock_github_api.get(f"{base}/releases").mock(
            return_value=Response(
                200, json=[{"id": 9, "tag_name": "v1", "published_at": "2024-03-25T00:00:00Z"}]
            )
        )

        async with GitHubClient(token="test_token") as client:
            dataset = await collect_repository_data(
                client, "octo-org", "widgets", CollectionOptions(since=SINCE, until=NOW)
            )

        assert comments_route.call_count == 1
        assert dataset.issue_comments[0]["issue_id"] == 1001
        assert dataset.pr_reviews[0]["pull_request_id"] == 5007
        assert dataset.pr_review_comments == []
        assert {item["repository_name"] for item in dataset.issues} == {"octo-org/widgets"}
        assert dataset.commits[0]["repository_name"] == "octo-org/widgets"
        assert dataset.releases[0]["tag_name"] == "v1"


class TestCollectProjectData:
    """Tests for multi-repository collection."""

    @pytest.mark.asyncio
    async def test_partial_failure(self, mock_github_api, options) -> None:
        """Test one missing repository doesn't stop the others."""
        _mock_repository(mock_github_api, "octo-org/alpha")
        _mock_repository(mock_github_api, "octo-org/beta")
        mock_github_api.get("/repos/octo-org/missing").mock(
            return_value=Response(404, json={"message": "Not Found"})
        )

        async with GitHubClient(token="test_token") as client:
            result = await collect_project_data(
                client, ["octo-org/alpha", "octo-org/missing", "octo-org/beta"], options
            )

        issues = result.flat.issues
        assert len(issues) == 10
        assert sum(1 for issue in issues if issue["state"] == "open") == 6
        assert sum(1 for issue in issues if issue["state"] == "closed") == 4
        assert len(result.flat.commits) == 20
        assert result.repository_names == ["octo-org/alpha", "octo-org/beta"]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.repository == "octo-org/missing"
        assert failure.error_type == NotFoundError.__name__
        assert failure.status_code == 404
        assert failure.recovery_instructions
        assert result.incomplete is False
        assert result.indexes.issues_by_repo["octo-org/beta"] == [5, 6, 7, 8, 9]

    @pytest.mark.asyncio
    async def test_malformed_item_fails_only_its_repository(
        self, mock_github_api, options
    ) -> None:
        """Test an issue without an author is recorded against its repository."""
        _mock_repository(mock_github_api, "octo-org/beta")
        mock_github_api.get("/repos/octo-org/alpha").mock(
            return_value=Response(200, json=repository_payload("octo-org/alpha"))
        )
        mock_github_api.get("/repos/octo-org/alpha/issues").mock(
            return_value=Response(200, json=[{**issue_payload(1), "user": None}])
        )

        async with GitHubClient(token="test_token") as client:
            result = await collect_project_data(
                client, ["octo-org/alpha", "octo-org/beta"], options
            )

        assert result.repository_names == ["octo-org/beta"]
        assert len(result.flat.issues) == 5
        assert result.indexes.issues_by_repo == {"octo-org/beta": [0, 1, 2, 3, 4]}
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.repository == "octo-org/alpha"
        assert failure.error_type == DataShapeError.__name__
        assert "user.login" in failure.message

    @pytest.mark.asyncio
    async def test_idempotent(self, mock_github_api, options) -> None:
        """Test the same inputs give identical counts and indexes."""
        _mock_repository(mock_github_api, "octo-org/alpha")
        _mock_repository(mock_github_api, "octo-org/beta")
        names = ["octo-org/alpha", "octo-org/beta", "octo-org/alpha"]

        async with GitHubClient(token="test_token") as client:
            first = await collect_project_data(client, names, options, max_concurrency=2)
            second = await collect_project_data(client, names, options, max_concurrency=1)

        assert first.flat.counts() == second.flat.counts()
        assert first.indexes.to_dict() == second.indexes.to_dict()
        assert first.repository_names == ["octo-org/alpha", "octo-org/beta"]

    @pytest.mark.asyncio
    async def test_authentication_aborts(self, mock_github_api, options) -> None:
        """Test a rejected token aborts the whole run."""
        mock_github_api.get("/repos/octo-org/alpha").mock(
            return_value=Response(401, json={"message": "Bad credentials"})
        )

        async with GitHubClient(token="test_token") as client:
            with pytest.raises(AuthenticationError):
                await collect_project_data(client, ["octo-org/alpha"], options)

    @pytest.mark.asyncio
    async def test_invalid_name(self, options) -> None:
        """Test malformed repository names are rejected up front."""
        async with GitHubClient(token="test_token") as client:
            with pytest.raises(ConfigurationError):
                await collect_project_data(client, ["not-a-repo"], options)

    @pytest.mark.asyncio
    async def test_timeout_marks_incomplete(self, monkeypatch, options) -> None:
        """Test unfinished repositories are recorded when time runs out."""

        async def fake_collect(client, owner, repo, options):
            if repo == "slow":
                await asyncio.sleep(10)
            return RepositoryDataSet(repository=repository_payload(f"{owner}/{repo}"))

        monkeypatch.setattr(collector, "collect_repository_data", fake_collect)

        async with GitHubClient(token="test_token") as client:
            result = await collect_project_data(
                client, ["octo-org/fast", "octo-org/slow"], options, timeout=0.2
            )

        assert result.incomplete is True
        assert result.repository_names == ["octo-org/fast"]
        assert result.failures[0].repository == "octo-org/slow"
        assert result.failures[0].error_type == "TimeoutError"


class TestHelpers:
    """Tests for collector helpers."""

    def test_split_full_name(self) -> None:
        """Test owner/name parsing."""
        assert split_full_name(" octo-org/widgets ") == ("octo-org", "widgets")
        for bad in ("widgets", "/widgets", "octo-org/", "a/b/c"):
            with pytest.raises(ConfigurationError):
                split_full_name(bad)

    def test_flatten_preserves_order(self, sample_dataset) -> None:
        """Test flattening concatenates in dataset order."""
        other = RepositoryDataSet(
            repository=repository_payload("octo-org/gadgets"),
            issues=[{**issue_payload(99), "repository_name": "octo-org/gadgets"}],
        )

        flat = flatten([sample_dataset, other])

        assert len(flat.repositories) == 2
        assert [issue["number"] for issue in flat.issues] == [1, 2, 3, 99]
        assert flat.counts()["commits"] == 4
