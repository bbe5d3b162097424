"""Local mirror of GitHub issues kept current by polling and webhooks."""

__version__ = "1.0.0"
