"""Tests for token discovery and validation."""

import subprocess

import pytest
from httpx import Response

from ghfacts import auth
from ghfacts.config import Settings
from ghfacts.errors import AuthenticationError, InsufficientScopeError


@pytest.fixture
def clean_env(monkeypatch) -> None:
    for name in ("GHFACTS_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def _fake_run(returncode: int = 0, stdout: str = "", stderr: str = ""):
    def run(*args, **kwargs):
        return subprocess.CompletedProcess(args[0], returncode, stdout=stdout, stderr=stderr)

    return run


class TestGetToken:
    """Tests for get_token."""

    def test_settings_token_first(self, clean_env, monkeypatch) -> None:
        """Test the configured token wins over the environment."""
        monkeypatch.setenv("GITHUB_TOKEN", "env_token")

        assert auth.get_token(Settings(github_token=" configured ")) == "configured"

    def test_environment_token(self, clean_env, monkeypatch) -> None:
        """Test GITHUB_TOKEN and GH_TOKEN fallbacks."""
        monkeypatch.setenv("GH_TOKEN", "gh_env_token")

        assert auth.get_token(Settings(github_token="")) == "gh_env_token"

    def test_github_cli_token(self, clean_env, monkeypatch) -> None:
        """Test asking the GitHub CLI."""
        monkeypatch.setattr(auth.subprocess, "run", _fake_run(stdout="gho_cli_token\n"))

        assert auth.get_token(Settings(github_token="")) == "gho_cli_token"

    def test_cli_not_logged_in(self, clean_env, monkeypatch) -> None:
        """Test a failing `gh auth token`."""
        monkeypatch.setattr(
            auth.subprocess, "run", _fake_run(returncode=1, stderr="not logged in")
        )

        with pytest.raises(AuthenticationError, match="not logged in"):
            auth.get_token(Settings(github_token=""))

    def test_cli_not_installed(self, clean_env, monkeypatch) -> None:
        """Test a missing gh binary."""

        def missing(*args, **kwargs):
            raise FileNotFoundError("gh")

        monkeypatch.setattr(auth.subprocess, "run", missing)

        with pytest.raises(AuthenticationError, match="not installed"):
            auth.get_token(Settings(github_token=""))

    def test_cli_timeout(self, clean_env, monkeypatch) -> None:
        """Test a hanging gh binary."""

        def hang(*args, **kwargs):
            raise subprocess.TimeoutExpired(args[0], 10)

        monkeypatch.setattr(auth.subprocess, "run", hang)

        with pytest.raises(AuthenticationError, match="timed out"):
            auth.get_token(Settings(github_token=""))


class TestValidation:
    """Tests for token validation against the API."""

    @pytest.mark.asyncio
    async def test_validate_accepts(self, mock_github_api) -> None:
        """Test a valid token."""
        mock_github_api.get("/user").mock(return_value=Response(200, json={"login": "alice"}))

        assert await auth.validate("good") is True
        assert await auth.current_user("good") == "alice"

    @pytest.mark.asyncio
    async def test_validate_rejects(self, mock_github_api) -> None:
        """Test a rejected token."""
        route = mock_github_api.get("/user").mock(
            return_value=Response(401, json={"message": "Bad credentials"})
        )

        assert await auth.validate("bad") is False
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_check_scopes_missing(self, mock_github_api) -> None:
        """Test a classic token without the project scope."""
        mock_github_api.get("/user").mock(
            return_value=Response(200, json={"login": "alice"}, headers={"X-OAuth-Scopes": "repo"})
        )

        with pytest.raises(InsufficientScopeError) as exc_info:
            await auth.check_scopes("token", ["repo", "read:project"])

        assert exc_info.value.missing == ["read:project"]

    @pytest.mark.asyncio
    async def test_broader_scope_satisfies_read(self, mock_github_api) -> None:
        """Test that `project` implies `read:project`."""
        mock_github_api.get("/user").mock(
            return_value=Response(
                200, json={"login": "alice"}, headers={"X-OAuth-Scopes": "repo, project"}
            )
        )

        await auth.check_scopes("token", ["repo", "read:project"])

    @pytest.mark.asyncio
    async def test_fine_grained_token_skips_check(self, mock_github_api) -> None:
        """Test tokens without X-OAuth-Scopes are not checked."""
        mock_github_api.get("/user").mock(return_value=Response(200, json={"login": "alice"}))

        await auth.check_scopes("token", ["read:project"])
