"""Services"""

from issuemirror.services.github_client import GitHubClient, GitHubClientError
from issuemirror.services.store import IssueStore
from issuemirror.services.sync_service import SyncService, SyncStatistics

__all__ = ["GitHubClient", "GitHubClientError", "IssueStore", "SyncService", "SyncStatistics"]
