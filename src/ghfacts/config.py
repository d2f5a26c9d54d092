"""Configuration management for ghfacts."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ghfacts.errors import ConfigurationError
from ghfacts.models import CollectionOptions
from ghfacts.ratelimit import BackoffPolicy


class RepoConfig(BaseModel):
    """Configuration for a single repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class ReposConfig(BaseModel):
    """Repository list configuration loaded from repos.yaml."""

    defaults: dict[str, str] = Field(default_factory=dict)
    repos: list[dict]

    def get_repos(self) -> list[RepoConfig]:
        """Resolve repos with defaults applied.

        Returns:
            List of RepoConfig with owner defaulted if not specified.
        """
        default_owner = self.defaults.get("owner", "")
        return [RepoConfig(owner=r.get("owner", default_owner), name=r["name"]) for r in self.repos]


class CollectionLimits(BaseModel):
    """Per-repository caps on how many items are collected."""

    max_issues_per_repo: int = Field(default=500, ge=0)
    max_prs_per_repo: int = Field(default=200, ge=0)
    max_commits_per_repo: int = Field(default=1000, ge=0)
    max_comments_per_issue: int = Field(default=50, ge=0)
    max_reviews_per_pr: int = Field(default=20, ge=0)


class Settings(BaseSettings):
    """Application settings from environment variables and config files.

    Nested limits use a double underscore, e.g.
    ``GHFACTS_LIMITS__MAX_ISSUES_PER_REPO=100``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GHFACTS_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    github_token: str = ""
    config_dir: Path = Path("config")
    results_dir: Path = Path("var/results")
    request_timeout: float = Field(default=30.0, gt=0)
    collection_timeout: float = Field(default=600.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1)
    max_retries: int = Field(default=5, ge=0)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=1)
    backoff_max: float = Field(default=60.0, gt=0)
    rate_limit_warning_threshold: int = Field(default=100, ge=0)
    default_days: int = Field(default=30, ge=1, le=365)
    estimate_items_per_repo: int = Field(default=50, ge=0)
    limits: CollectionLimits = Field(default_factory=CollectionLimits)

    def backoff_policy(self) -> BackoffPolicy:
        """Build the retry policy from the backoff settings."""
        return BackoffPolicy(
            base=self.backoff_base,
            multiplier=self.backoff_multiplier,
            max_delay=self.backoff_max,
            max_retries=self.max_retries,
        )

    def collection_options(self, **overrides) -> CollectionOptions:
        """Build collection options from the configured limits.

        Args:
            **overrides: CollectionOptions fields to set explicitly.

        Returns:
            CollectionOptions with limits applied.
        """
        return CollectionOptions(**{**self.limits.model_dump(), **overrides})

    def load_repos(self) -> list[RepoConfig]:
        """Load repository configuration from repos.yaml.

        Returns:
            List of configured repositories.

        Raises:
            ConfigurationError: If the file exists but is malformed.
        """
        repos_file = self.config_dir / "repos.yaml"
        if not repos_file.exists():
            return []

        with open(repos_file) as f:
            data = yaml.safe_load(f)

        try:
            config = ReposConfig(**(data or {"repos": []}))
            return config.get_repos()
        except (ValidationError, KeyError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid repository configuration in {repos_file}: {e}",
                [
                    f"Fix {repos_file}; expected a 'repos' list of entries with a 'name'",
                    "Set 'defaults: {owner: ...}' or an 'owner' on every entry",
                ],
            ) from e


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings loaded from environment and config files.
    """
    return Settings()
