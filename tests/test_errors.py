"""Tests for error types."""

from datetime import UTC, datetime, timedelta

import pytest

from ghfacts.errors import (
    AuthenticationError,
    ConfigurationError,
    DataShapeError,
    EmptyRepositoryError,
    GhFactsError,
    InsufficientScopeError,
    NotFoundError,
    ProjectNotFoundError,
    RateLimitError,
    RepositoryAccessError,
    RepositoryError,
    TransientNetworkError,
)


class TestGhFactsError:
    """Tests for the base error."""

    def test_requires_recovery_instructions(self) -> None:
        """Test that an empty instruction list is rejected."""
        with pytest.raises(ValueError, match="at least one recovery instruction"):
            ConfigurationError("bad", [])

    def test_rejects_blank_instruction(self) -> None:
        """Test that blank instructions are rejected."""
        with pytest.raises(ValueError, match="cannot be empty"):
            ConfigurationError("bad", ["Do something", "   "])

    def test_add_context_ignores_none(self) -> None:
        """Test context accumulation."""
        error = ConfigurationError("bad", ["Fix it"], {"a": 1})
        error.add_context("b", 2)
        error.add_context("c", None)

        assert error.context == {"a": 1, "b": 2}
        assert str(error) == "bad"
        assert error.timestamp.tzinfo is not None

    @pytest.mark.parametrize(
        "error",
        [
            AuthenticationError.not_authenticated(),
            AuthenticationError.token_rejected("Bad credentials"),
            AuthenticationError.cli_not_installed(),
            InsufficientScopeError(["read:project"], ["repo"]),
            RateLimitError("limited"),
            TransientNetworkError("down"),
            NotFoundError("/repos/a/b"),
            RepositoryAccessError("/repos/a/b", "SSO"),
            EmptyRepositoryError("/repos/a/b/commits"),
            DataShapeError("/repos/a/b", "an object"),
            ProjectNotFoundError("octo-org"),
        ],
    )
    def test_every_error_has_recovery_instructions(self, error: GhFactsError) -> None:
        """Test that every concrete error tells the user what to do."""
        assert error.recovery_instructions
        assert all(instruction.strip() for instruction in error.recovery_instructions)


class TestRepositoryErrors:
    """Tests for repository-scoped errors."""

    def test_status_codes(self) -> None:
        """Test status codes on repository errors."""
        assert NotFoundError("x").status_code == 404
        assert RepositoryAccessError("x").status_code == 403
        assert EmptyRepositoryError("x").status_code == 409
        assert DataShapeError("x", "y").status_code is None

    def test_hierarchy(self) -> None:
        """Test that repository errors share a base."""
        for error in (NotFoundError("x"), RepositoryAccessError("x"), DataShapeError("x", "y")):
            assert isinstance(error, RepositoryError)
        assert not isinstance(TransientNetworkError("x"), RepositoryError)


class TestRateLimitError:
    """Tests for RateLimitError."""

    def test_wait_seconds_from_reset(self) -> None:
        """Test wait time derived from the reset time."""
        reset_at = datetime.now(UTC) + timedelta(minutes=5)
        error = RateLimitError("limited", reset_at=reset_at)

        assert 290 <= error.wait_seconds <= 300
        assert error.context["reset_at"] == reset_at.isoformat()
        assert "minutes" in error.recovery_instructions[0]

    def test_unknown_reset(self) -> None:
        """Test instructions without a reset time."""
        error = RateLimitError("limited")

        assert error.wait_seconds is None
        assert "reset_at" not in error.context
        assert "60 minutes" in error.recovery_instructions[0]


class TestInsufficientScopeError:
    """Tests for InsufficientScopeError."""

    def test_names_missing_scopes(self) -> None:
        """Test that missing scopes appear in the message and fix command."""
        error = InsufficientScopeError(["read:project", "repo"], ["gist"])

        assert "read:project, repo" in error.message
        assert 'gh auth refresh --scopes "read:project,repo"' in error.recovery_instructions[0]
        assert error.context["current_scopes"] == "gist"
        assert isinstance(error, AuthenticationError)
