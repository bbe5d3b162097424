"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuemirror.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # GitHub API
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    # Items per page for every paginated endpoint (GitHub maximum is 100).
    github_api_page_size: int = 100

    # Repositories to sync.
    # Comma-separated "Owner/Repo" list. If empty, repositories are discovered
    # from `github_owner` instead.
    #
    # Example: "acme/widgets,acme/gadgets"
    github_repositories: str | None = None
    github_owner: str | None = None
    github_owner_type: str = "user"  # "user" or "org"
    github_include_archived: bool = False
    github_include_forks: bool = False

    # Webhooks
    # When unset, signature validation is skipped (development only).
    webhook_secret: str | None = None

    # Embeddings
    embedding_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    max_embedding_text_length: int = 8000

    # Scheduled smart sync
    scheduled_sync_enabled: bool = False
    sync_interval_minutes: int = 10

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def repository_list(self) -> list[str]:
        """Configured repositories as a list of "Owner/Repo" strings."""
        if not self.github_repositories:
            return []
        return [r.strip() for r in self.github_repositories.split(",") if r.strip()]


settings = Settings()
