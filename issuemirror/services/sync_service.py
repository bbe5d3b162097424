"""Issue synchronization service"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from issuemirror.config import settings
from issuemirror.models import Issue, Repository
from issuemirror.models.issue import utcnow
from issuemirror.services.cancellation import SyncCancelled, raise_if_cancelled
from issuemirror.services.differ import diff_issues
from issuemirror.services.embeddings import (
    IssueEmbeddingGenerator,
    OllamaEmbeddingService,
    compute_content_hash,
)
from issuemirror.services.event_sync import EventSyncService
from issuemirror.services.github_client import GitHubClient, RemoteIssue, normalize_utc_naive
from issuemirror.services.notifier import (
    IssueUpdate,
    IssueUpdateNotifier,
    NullIssueUpdateNotifier,
    notify_safely,
)
from issuemirror.services.store import (
    UPSERT_CREATED,
    UPSERT_STALE,
    IssueFields,
    IssueStore,
)

logger = logging.getLogger(__name__)

_REPOSITORY_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_PARENT_URL_RE = re.compile(r"/repos/(?P<owner>[^/]+)/(?P<name>[^/]+)/issues/(?P<number>\d+)/?$")


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    SMART = "smart"


@dataclass
class SyncStatistics:
    """Counters for one repository pass, or accumulated over a run."""

    api_calls: int = 0
    total_found: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    stale: int = 0
    embeddings_failed: int = 0
    events_created: int = 0
    since_timestamp: Optional[datetime] = None
    failed_repositories: List[str] = field(default_factory=list)

    _COUNTERS = (
        "api_calls",
        "total_found",
        "created",
        "updated",
        "unchanged",
        "deleted",
        "stale",
        "embeddings_failed",
        "events_created",
    )

    @property
    def success(self) -> bool:
        return not self.failed_repositories

    def add(self, other: "SyncStatistics") -> None:
        for name in self._COUNTERS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        if other.since_timestamp is not None and (
            self.since_timestamp is None or other.since_timestamp < self.since_timestamp
        ):
            self.since_timestamp = other.since_timestamp
        self.failed_repositories.extend(other.failed_repositories)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {name: getattr(self, name) for name in self._COUNTERS}
        data["since_timestamp"] = (
            self.since_timestamp.isoformat() if self.since_timestamp else None
        )
        data["failed_repositories"] = list(self.failed_repositories)
        return data


def parse_repository_name(full_name: str) -> Tuple[str, str]:
    """Split "Owner/Repo"; raises ValueError on anything else."""
    value = (full_name or "").strip()
    if not _REPOSITORY_NAME_RE.match(value):
        raise ValueError(f"Invalid repository '{full_name}': expected format Owner/Repo")
    owner, name = value.split("/", 1)
    return owner, name


def resolve_mode(since: Optional[datetime] = None, smart: bool = False) -> SyncMode:
    if smart and since is not None:
        raise ValueError("Smart sync and an explicit since timestamp are mutually exclusive")
    if smart:
        return SyncMode.SMART
    if since is not None:
        return SyncMode.INCREMENTAL
    return SyncMode.FULL


def resolve_since(
    repository: Optional[Repository], mode: SyncMode, since: Optional[datetime] = None
) -> Optional[datetime]:
    """Effective cutoff for a pass; None means a full listing."""
    if mode == SyncMode.FULL:
        return None
    if mode == SyncMode.INCREMENTAL:
        if since is None:
            raise ValueError("Incremental sync requires a since timestamp")
        return normalize_utc_naive(since)
    # Smart: fall back to a full listing until the repository has a watermark.
    if repository is None or repository.last_synced_at is None:
        return None
    return repository.last_synced_at


class SyncService:
    """Poll-based synchronization of GitHub repositories into the local mirror"""

    def __init__(
        self,
        db: Session,
        client: Optional[GitHubClient] = None,
        embedding_generator: Optional[IssueEmbeddingGenerator] = None,
        notifier: Optional[IssueUpdateNotifier] = None,
    ):
        self.db = db
        self.client = client or GitHubClient.from_settings()
        self.store = IssueStore(db)
        # Provider created here is owned by the service and released in close().
        self._owned_embedding_service = None
        if embedding_generator is None:
            self._owned_embedding_service = OllamaEmbeddingService()
            embedding_generator = IssueEmbeddingGenerator(self._owned_embedding_service, self.client)
        self.embedding_generator = embedding_generator
        self.notifier = notifier or NullIssueUpdateNotifier()
        self.event_sync = EventSyncService(db, self.client, self.store)

    def close(self) -> None:
        """Release the embedding provider created by this service, if any."""
        if self._owned_embedding_service is not None:
            self._owned_embedding_service.close()
            self._owned_embedding_service = None

    def _ensure_repository(self, owner: str, name: str) -> Repository:
        repository = self.store.get_repository(f"{owner}/{name}")
        if repository is not None:
            return repository
        remote = self.client.get_repository(owner, name)
        return self.store.ensure_repository(remote.github_id, remote.full_name, remote.html_url)

    def _sync_labels(
        self,
        repository: Repository,
        owner: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        labels = self.client.fetch_labels(owner, name, cancel_event=cancel_event)
        for label in labels:
            self.store.upsert_label(repository.id, label.name, label.color)
        logger.debug(f"Synced {len(labels)} labels for {owner}/{name}")

    def _save_issue(
        self,
        repository: Repository,
        owner: str,
        name: str,
        remote: RemoteIssue,
        stats: SyncStatistics,
    ) -> Optional[Issue]:
        """Write one new or changed issue; returns None when the write was stale."""
        existing = self.store.get_issue(repository.id, remote.number)
        previous_hash = existing.content_hash if existing is not None else None
        had_embedding = existing is not None and existing.embedding is not None

        result = self.store.upsert_issue(
            repository.id,
            IssueFields(
                number=remote.number,
                title=remote.title,
                body=remote.body,
                is_open=remote.is_open,
                url=remote.html_url,
                github_updated_at=remote.updated_at,
                comment_count=remote.comments,
            ),
        )
        if result == UPSERT_STALE:
            stats.stale += 1
            return None
        if result == UPSERT_CREATED:
            stats.created += 1
        else:
            stats.updated += 1

        issue = self.store.get_issue(repository.id, remote.number)
        label_names = self.store.replace_labels(issue, remote.labels)

        content_hash = compute_content_hash(remote.title, remote.body)
        if content_hash != previous_hash or not had_embedding:
            embedding = self.embedding_generator.generate(
                owner, name, remote.number, remote.title, remote.body, label_names
            )
            if embedding is None:
                stats.embeddings_failed += 1
                self.store.set_embedding(issue, None, None)
            else:
                self.store.set_embedding(issue, embedding, content_hash)
        else:
            logger.debug(f"Reusing embedding for {owner}/{name}#{remote.number}")

        notify_safely(
            self.notifier,
            IssueUpdate(
                repository_full_name=repository.full_name,
                number=remote.number,
                title=remote.title,
                is_open=remote.is_open,
                label_names=label_names,
                change=result,
            ),
        )
        return issue

    def _resolve_parent(self, repository: Repository, parent_issue_url: Optional[str]) -> Optional[Issue]:
        if not parent_issue_url:
            return None
        match = _PARENT_URL_RE.search(parent_issue_url)
        if not match:
            logger.warning(f"Unrecognized parent issue URL: {parent_issue_url}")
            return None

        full_name = f"{match.group('owner')}/{match.group('name')}"
        parent_repository = (
            repository
            if full_name.lower() == repository.full_name.lower()
            else self.store.get_repository(full_name)
        )
        if parent_repository is None:
            logger.debug(f"Parent repository {full_name} is not mirrored")
            return None
        return self.store.get_issue(parent_repository.id, int(match.group("number")))

    def _apply_parent_links(self, repository: Repository, written: List[Tuple[Issue, RemoteIssue]]) -> int:
        """Link written issues to their parents once every issue of the pass exists."""
        linked = 0
        for issue, remote in written:
            parent = self._resolve_parent(repository, remote.parent_issue_url)
            if remote.parent_issue_url and parent is None:
                logger.debug(f"Parent of #{remote.number} not found locally")
            if self.store.set_parent(issue, parent):
                linked += 1
        return linked

    def sync_repository(
        self,
        owner: str,
        name: str,
        since: Optional[datetime] = None,
        smart: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncStatistics:
        """Sync one repository.

        Any exception aborts the pass with the watermark untouched; the caller
        decides whether other repositories continue.
        """
        mode = resolve_mode(since, smart)
        run_started = utcnow()
        calls_before = self.client.request_count
        stats = SyncStatistics()

        try:
            repository = self._ensure_repository(owner, name)
            effective_since = resolve_since(repository, mode, since)
            stats.since_timestamp = effective_since
            full_listing = effective_since is None

            if mode == SyncMode.SMART:
                how = f"since watermark {effective_since}" if effective_since else "full (no watermark)"
            else:
                how = mode.value if full_listing else f"since {effective_since}"
            logger.info(f"Starting sync for {owner}/{name}: {how}")

            self._sync_labels(repository, owner, name, cancel_event)

            remote_issues = self.client.fetch_issues(
                owner, name, since=effective_since, cancel_event=cancel_event
            )
            diff = diff_issues(
                remote_issues, self.store.issues_by_number(repository.id), full_listing
            )
            stats.total_found = len(diff.new) + len(diff.changed) + len(diff.unchanged)
            stats.unchanged = len(diff.unchanged)
            logger.info(
                f"{owner}/{name}: {len(diff.new)} new, {len(diff.changed)} changed, "
                f"{len(diff.unchanged)} unchanged, {len(diff.deleted)} deleted, "
                f"{diff.pull_requests_skipped} pull requests skipped"
            )

            written: List[Tuple[Issue, RemoteIssue]] = []
            for remote in diff.to_write:
                raise_if_cancelled(cancel_event)
                issue = self._save_issue(repository, owner, name, remote, stats)
                if issue is not None:
                    written.append((issue, remote))

            self._apply_parent_links(repository, written)

            for issue in diff.deleted:
                raise_if_cancelled(cancel_event)
                if self.store.soft_delete(issue):
                    stats.deleted += 1
                    logger.info(f"Soft-deleted {owner}/{name}#{issue.number} (missing remotely)")
                    notify_safely(
                        self.notifier,
                        IssueUpdate(
                            repository_full_name=repository.full_name,
                            number=issue.number,
                            title=issue.title,
                            is_open=issue.is_open,
                            label_names=issue.label_names,
                            change="deleted",
                        ),
                    )

            stats.events_created = self.event_sync.sync_events(
                repository, owner, name, since=effective_since, cancel_event=cancel_event
            )

            self.store.set_watermark(repository, run_started)
        except Exception:
            self.db.rollback()
            raise
        finally:
            stats.api_calls = self.client.request_count - calls_before

        logger.info(f"Sync completed for {owner}/{name}: {stats.to_dict()}")
        return stats

    def sync_repositories(
        self,
        full_names: Sequence[str],
        since: Optional[datetime] = None,
        smart: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncStatistics:
        """Sync repositories one after another.

        All names are validated before any network call. A failing repository
        is recorded in `failed_repositories` and the rest continue; cancellation
        stops the whole run.
        """
        resolve_mode(since, smart)
        targets = [parse_repository_name(full_name) for full_name in full_names]

        total = SyncStatistics()
        for owner, name in targets:
            raise_if_cancelled(cancel_event)
            try:
                stats = self.sync_repository(
                    owner, name, since=since, smart=smart, cancel_event=cancel_event
                )
            except SyncCancelled:
                logger.warning(f"Sync cancelled while processing {owner}/{name}")
                raise
            except Exception as e:
                logger.error(f"Sync failed for {owner}/{name}: {e}")
                stats = SyncStatistics(failed_repositories=[f"{owner}/{name}"])
            total.add(stats)

        logger.info(f"Sync run finished for {len(targets)} repositories: {total.to_dict()}")
        return total

    def configured_repositories(self, cancel_event: Optional[threading.Event] = None) -> List[str]:
        """Repositories from settings, or discovered from the configured owner."""
        repositories = settings.repository_list()
        if repositories:
            return repositories
        if settings.github_owner:
            return self.client.fetch_repositories_for_owner(
                settings.github_owner,
                owner_type=settings.github_owner_type,
                include_archived=settings.github_include_archived,
                include_forks=settings.github_include_forks,
                cancel_event=cancel_event,
            )
        raise ValueError("No repositories configured: set GITHUB_REPOSITORIES or GITHUB_OWNER")

    def sync_all_repositories(
        self,
        since: Optional[datetime] = None,
        smart: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncStatistics:
        resolve_mode(since, smart)
        return self.sync_repositories(
            self.configured_repositories(cancel_event),
            since=since,
            smart=smart,
            cancel_event=cancel_event,
        )

    def analyze_repository(
        self,
        owner: str,
        name: str,
        since: Optional[datetime] = None,
        smart: bool = False,
    ) -> Dict[str, Any]:
        """Classify a repository's remote issues against the mirror without writing anything."""
        mode = resolve_mode(since, smart)
        repository = self.store.get_repository(f"{owner}/{name}")
        effective_since = resolve_since(repository, mode, since)
        remote_issues = self.client.fetch_issues(owner, name, since=effective_since)
        local = self.store.issues_by_number(repository.id) if repository is not None else {}
        diff = diff_issues(remote_issues, local, full_listing=effective_since is None)

        missing_embeddings = sum(
            1
            for remote in diff.unchanged
            if local[remote.number].embedding is None
        )
        return {
            "repository": f"{owner}/{name}",
            "mode": mode.value,
            "since": effective_since.isoformat() if effective_since else None,
            "total": len(diff.new) + len(diff.changed) + len(diff.unchanged),
            "new": len(diff.new),
            "changed": len(diff.changed),
            "unchanged": len(diff.unchanged),
            "missing_embeddings": missing_embeddings,
            "would_delete": len(diff.deleted),
        }
