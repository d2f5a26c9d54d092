"""GitHub activity facts for repositories and project boards."""

__version__ = "0.1.0"
