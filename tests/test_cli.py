"""Tests for CLI commands."""

from datetime import UTC, datetime

from click.testing import CliRunner

from ghfacts import cli
from ghfacts.cli import main
from ghfacts.errors import AuthenticationError
from ghfacts.models import RateLimitPool, RateLimitUsage
from ghfacts.report import FactReport


def _usage(remaining: int = 4000) -> RateLimitUsage:
    reset_at = datetime(2024, 3, 31, 13, 0, tzinfo=UTC)
    return RateLimitUsage(
        rest=RateLimitPool(remaining, 5000, reset_at),
        graphql=RateLimitPool(4990, 5000, reset_at),
    )


class TestCLI:
    """Tests for CLI commands."""

    def test_main_help(self) -> None:
        """Test main help output."""
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Factual GitHub activity summaries" in result.output
        for command in ("summary", "collect", "rate-limit", "estimate", "list"):
            assert command in result.output

    def test_summary_help(self) -> None:
        """Test summary command help."""
        runner = CliRunner()
        result = runner.invoke(main, ["summary", "--help"])

        assert result.exit_code == 0
        assert "--repo" in result.output
        assert "--days" in result.output
        assert "--save" in result.output

    def test_summary_prints_report(self, monkeypatch, settings) -> None:
        """Test the rendered report goes to stdout with exit code 0."""
        calls = {}

        async def fake_run_summary(settings, **kwargs):
            calls.update(kwargs)
            return FactReport().add_data("COMMITS_TOTAL", 4)

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "run_summary", fake_run_summary)

        runner = CliRunner()
        result = runner.invoke(main, ["summary", "-r", "octo-org/a", "-r", "octo-org/b", "-d", "7"])

        assert result.exit_code == 0
        assert "EXECUTION_STATUS=SUCCESS" in result.output
        assert "COMMITS_TOTAL=4" in result.output
        assert calls["repositories"] == ["octo-org/a", "octo-org/b"]
        assert calls["days"] == 7
        assert calls["save"] is False

    def test_summary_error_exit_code(self, monkeypatch, settings) -> None:
        """Test a failed run exits with code 1."""

        async def fake_run_summary(settings, **kwargs):
            return FactReport().set_error(AuthenticationError.not_authenticated())

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "run_summary", fake_run_summary)

        runner = CliRunner()
        result = runner.invoke(main, ["summary", "octo-org/widgets"])

        assert result.exit_code == 1
        assert "COMMAND EXECUTION FAILED" in result.output
        assert "gh auth login" in result.output

    def test_collect(self, monkeypatch, settings) -> None:
        """Test collect passes the target through."""
        calls = {}

        async def fake_run_collect(settings, **kwargs):
            calls.update(kwargs)
            return FactReport().add_data("RESULT_FILE", "var/results/collect.json.xz")

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "run_collect", fake_run_collect)

        runner = CliRunner()
        result = runner.invoke(main, ["collect", "octo-org/widgets"])

        assert result.exit_code == 0
        assert calls["target"] == "octo-org/widgets"
        assert "RESULT_FILE=" in result.output

    def test_rate_limit(self, monkeypatch, settings) -> None:
        """Test the quota table."""

        async def fake_usage(settings):
            return _usage()

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "_fetch_usage", fake_usage)

        runner = CliRunner()
        result = runner.invoke(main, ["rate-limit"])

        assert result.exit_code == 0
        assert "REST" in result.output
        assert "GraphQL" in result.output
        assert "4000" in result.output

    def test_rate_limit_auth_failure(self, monkeypatch, settings) -> None:
        """Test errors exit with code 1."""

        async def fake_usage(settings):
            raise AuthenticationError.token_rejected()

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "_fetch_usage", fake_usage)

        runner = CliRunner()
        result = runner.invoke(main, ["rate-limit"])

        assert result.exit_code == 1

    def test_estimate(self, monkeypatch, settings) -> None:
        """Test the estimate table."""

        async def fake_usage(settings):
            return _usage(remaining=100)

        monkeypatch.setattr(cli, "get_settings", lambda: settings)
        monkeypatch.setattr(cli, "_fetch_usage", fake_usage)

        runner = CliRunner()
        result = runner.invoke(main, ["estimate", "--repos", "10", "--items", "50"])

        assert result.exit_code == 0
        assert "Estimated calls" in result.output
        assert "1860" in result.output
        assert "no" in result.output

    def test_list_repos_no_config(self, settings, monkeypatch) -> None:
        """Test list command with no config."""
        monkeypatch.setattr(cli, "get_settings", lambda: settings)

        runner = CliRunner()
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "No repositories configured" in result.output

    def test_list_repos(self, settings, monkeypatch) -> None:
        """Test listing configured repositories."""
        settings.config_dir.mkdir()
        (settings.config_dir / "repos.yaml").write_text(
            "defaults:\n  owner: octo-org\nrepos:\n  - name: widgets\n"
        )
        monkeypatch.setattr(cli, "get_settings", lambda: settings)

        runner = CliRunner()
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "octo-org" in result.output
        assert "widgets" in result.output
