"""Webhook event handlers, one per GitHub event category"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel
from sqlalchemy.orm import Session

from issuemirror.models import Issue, Repository
from issuemirror.services.embeddings import IssueEmbeddingGenerator, compute_content_hash
from issuemirror.services.github_client import normalize_utc_naive
from issuemirror.services.notifier import (
    IssueUpdate,
    IssueUpdateNotifier,
    NullIssueUpdateNotifier,
    notify_safely,
)
from issuemirror.services.store import UPSERT_CREATED, UPSERT_STALE, IssueFields, IssueStore
from issuemirror.webhooks.payloads import (
    IssueCommentEventPayload,
    IssuesEventPayload,
    LabelEventPayload,
    RepositoryEventPayload,
    WebhookIssue,
    WebhookResult,
)

logger = logging.getLogger(__name__)

MSG_PULL_REQUEST = "Skipped (pull request)"
MSG_EMBEDDING_FAILED = "Embedding generation failed - will retry"
MSG_REPOSITORY_NOT_SYNCED = "Repository not synced"
MSG_ISSUE_NOT_SYNCED = "Issue not synced"
MSG_STALE = "Stale update ignored"


class WebhookEventHandler:
    """Base class: validates the payload, then runs the handler inside an error boundary.

    Payload validation errors propagate (the endpoint answers 400). Any other
    exception rolls the session back and becomes a failed result.
    """

    payload_model: Type[BaseModel]

    def __init__(
        self,
        db: Session,
        embedding_generator: Optional[IssueEmbeddingGenerator] = None,
        notifier: Optional[IssueUpdateNotifier] = None,
    ):
        self.db = db
        self.store = IssueStore(db)
        self.embedding_generator = embedding_generator
        self.notifier = notifier or NullIssueUpdateNotifier()

    def handle(self, payload: Dict[str, Any]) -> WebhookResult:
        event = self.payload_model.model_validate(payload)
        try:
            return self._handle(event)
        except Exception as e:
            self.db.rollback()
            logger.error(f"{type(self).__name__} failed: {e}")
            return WebhookResult.fail(
                f"Error: {e}", repository_full_name=event.repository.full_name
            )

    def _handle(self, event) -> WebhookResult:
        raise NotImplementedError

    def _generate_embedding(self, full_name: str, issue: WebhookIssue, include_comments: bool):
        if self.embedding_generator is None:
            logger.warning("No embedding generator configured")
            return None
        owner, _, name = full_name.partition("/")
        return self.embedding_generator.generate(
            owner,
            name,
            issue.number,
            issue.title,
            issue.body,
            issue.label_names,
            include_comments=include_comments,
        )

    def _notify(self, full_name: str, issue: WebhookIssue, change: str) -> None:
        notify_safely(
            self.notifier,
            IssueUpdate(
                repository_full_name=full_name,
                number=issue.number,
                title=issue.title,
                is_open=issue.is_open,
                label_names=sorted(issue.label_names),
                change=change,
            ),
        )


class IssueEventHandler(WebhookEventHandler):
    """Handles `issues` deliveries"""

    payload_model = IssuesEventPayload

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._actions: Dict[str, Callable[[IssuesEventPayload], WebhookResult]] = {
            "opened": self._opened,
            "edited": self._edited,
            "closed": self._state_changed,
            "reopened": self._state_changed,
            "labeled": self._labels_changed,
            "unlabeled": self._labels_changed,
            "deleted": self._deleted,
        }

    def _result(self, event: IssuesEventPayload, message: str, success: bool = True, **kwargs):
        return WebhookResult(
            success=success,
            message=message,
            issue_number=event.issue.number,
            issue_title=event.issue.title,
            repository_full_name=event.repository.full_name,
            **kwargs,
        )

    def _handle(self, event: IssuesEventPayload) -> WebhookResult:
        if event.issue.is_pull_request:
            return self._result(event, MSG_PULL_REQUEST)

        action = self._actions.get(event.action)
        if action is None:
            logger.info(f"Ignoring issues action '{event.action}' for #{event.issue.number}")
            return self._result(event, f"Ignored action: {event.action}")
        return action(event)

    def _lookup(self, event: IssuesEventPayload) -> Optional[Issue]:
        repository = self.store.get_repository(event.repository.full_name)
        if repository is None:
            return None
        return self.store.get_issue(repository.id, event.issue.number)

    @staticmethod
    def _is_stale(issue: Optional[Issue], updated_at: datetime) -> bool:
        return issue is not None and issue.github_updated_at > updated_at

    def _save(self, event: IssuesEventPayload, repository: Repository, updated_at: datetime) -> WebhookResult:
        """Generate the embedding, then write issue, labels and vector."""
        embedding = self._generate_embedding(
            event.repository.full_name, event.issue, include_comments=event.action != "opened"
        )
        if embedding is None:
            return self._result(event, MSG_EMBEDDING_FAILED, success=False)

        result = self.store.upsert_issue(
            repository.id,
            IssueFields(
                number=event.issue.number,
                title=event.issue.title,
                body=event.issue.body,
                is_open=event.issue.is_open,
                url=event.issue.html_url,
                github_updated_at=updated_at,
                comment_count=event.issue.comments,
            ),
        )
        if result == UPSERT_STALE:
            return self._result(event, MSG_STALE)

        issue = self.store.get_issue(repository.id, event.issue.number)
        self.store.replace_labels(issue, event.issue.labels)
        self.store.set_embedding(
            issue, embedding, compute_content_hash(event.issue.title, event.issue.body)
        )
        self._notify(event.repository.full_name, event.issue, result)

        message = "Issue created" if result == UPSERT_CREATED else "Issue updated"
        logger.info(f"{message}: {event.repository.full_name}#{event.issue.number}")
        return self._result(event, message, embedding_generated=True)

    def _opened(self, event: IssuesEventPayload) -> WebhookResult:
        repository = self.store.ensure_repository(
            event.repository.id, event.repository.full_name, event.repository.html_url
        )
        updated_at = normalize_utc_naive(event.issue.updated_at)
        if self._is_stale(self.store.get_issue(repository.id, event.issue.number), updated_at):
            return self._result(event, MSG_STALE)
        return self._save(event, repository, updated_at)

    def _edited(self, event: IssuesEventPayload) -> WebhookResult:
        issue = self._lookup(event)
        if issue is None:
            return self._result(event, MSG_ISSUE_NOT_SYNCED)
        updated_at = normalize_utc_naive(event.issue.updated_at)
        if self._is_stale(issue, updated_at):
            return self._result(event, MSG_STALE)
        return self._save(event, issue.repository, updated_at)

    def _state_changed(self, event: IssuesEventPayload) -> WebhookResult:
        issue = self._lookup(event)
        if issue is None:
            return self._result(event, MSG_ISSUE_NOT_SYNCED)

        updated_at = normalize_utc_naive(event.issue.updated_at)
        if not self.store.set_state(issue, event.issue.is_open, updated_at):
            return self._result(event, MSG_STALE)

        self._notify(event.repository.full_name, event.issue, "updated")
        return self._result(event, f"Issue {event.action}")

    def _labels_changed(self, event: IssuesEventPayload) -> WebhookResult:
        issue = self._lookup(event)
        if issue is None:
            return self._result(event, MSG_ISSUE_NOT_SYNCED)

        updated_at = normalize_utc_naive(event.issue.updated_at)
        names = self.store.replace_labels_if_current(issue, event.issue.labels, updated_at)
        if names is None:
            return self._result(event, MSG_STALE)

        self._notify(event.repository.full_name, event.issue, "updated")
        return self._result(event, f"Labels updated: {', '.join(names) or '(none)'}")

    def _deleted(self, event: IssuesEventPayload) -> WebhookResult:
        issue = self._lookup(event)
        if issue is None:
            return self._result(event, "Issue not found")
        if not self.store.soft_delete(issue):
            return self._result(event, "Issue already deleted")

        self._notify(event.repository.full_name, event.issue, "deleted")
        logger.info(f"Issue deleted: {event.repository.full_name}#{event.issue.number}")
        return self._result(event, "Issue deleted")


class IssueCommentEventHandler(WebhookEventHandler):
    """Handles `issue_comment` deliveries by rebuilding the issue's embedding"""

    payload_model = IssueCommentEventPayload
    actions = ("created", "edited", "deleted")

    def _handle(self, event: IssueCommentEventPayload) -> WebhookResult:
        common = {
            "issue_number": event.issue.number,
            "issue_title": event.issue.title,
            "repository_full_name": event.repository.full_name,
        }
        if event.issue.is_pull_request:
            return WebhookResult.ok(MSG_PULL_REQUEST, **common)
        if event.action not in self.actions:
            return WebhookResult.ok(f"Ignored action: {event.action}", **common)

        repository = self.store.get_repository(event.repository.full_name)
        if repository is None:
            return WebhookResult.ok(MSG_REPOSITORY_NOT_SYNCED, **common)
        issue = self.store.get_issue(repository.id, event.issue.number)
        if issue is None:
            return WebhookResult.ok(MSG_ISSUE_NOT_SYNCED, **common)

        embedding = self._generate_embedding(
            event.repository.full_name, event.issue, include_comments=True
        )
        if embedding is None:
            return WebhookResult.fail(MSG_EMBEDDING_FAILED, **common)

        self.store.set_embedding(
            issue, embedding, compute_content_hash(issue.title, issue.body)
        )
        self.store.set_comment_count(issue, event.issue.comments)
        comment_ref = f"comment {event.comment.id}" if event.comment else "comment"
        logger.info(
            f"Embedding regenerated for {event.repository.full_name}#{event.issue.number} "
            f"({comment_ref} {event.action})"
        )
        return WebhookResult.ok(
            f"Embedding regenerated (comment {event.action})", embedding_generated=True, **common
        )


class LabelEventHandler(WebhookEventHandler):
    """Handles `label` deliveries"""

    payload_model = LabelEventPayload

    def _handle(self, event: LabelEventPayload) -> WebhookResult:
        full_name = event.repository.full_name
        repository = self.store.get_repository(full_name)
        if repository is None:
            return WebhookResult.ok(MSG_REPOSITORY_NOT_SYNCED, repository_full_name=full_name)

        name = event.label.name
        if event.action == "created":
            self.store.upsert_label(repository.id, name, event.label.color)
            message = f"Label '{name}' created"
        elif event.action == "edited":
            previous = event.previous_name
            if previous and previous != name:
                self.store.delete_label(repository.id, previous)
            self.store.upsert_label(repository.id, name, event.label.color)
            message = f"Label '{name}' updated"
        elif event.action == "deleted":
            self.store.delete_label(repository.id, name)
            message = f"Label '{name}' deleted"
        else:
            return WebhookResult.ok(f"Ignored action: {event.action}", repository_full_name=full_name)

        logger.info(f"{message} in {full_name}")
        return WebhookResult.ok(message, repository_full_name=full_name)


class RepositoryEventHandler(WebhookEventHandler):
    """Handles `repository` deliveries (auto-discovery of new repositories)"""

    payload_model = RepositoryEventPayload

    def _handle(self, event: RepositoryEventPayload) -> WebhookResult:
        full_name = event.repository.full_name
        if event.action != "created":
            return WebhookResult.ok(f"Ignored action: {event.action}", repository_full_name=full_name)

        if self.store.get_repository(full_name) is not None:
            return WebhookResult.ok("Repository already exists", repository_full_name=full_name)

        self.store.ensure_repository(event.repository.id, full_name, event.repository.html_url)
        return WebhookResult.ok(
            "Repository auto-discovered and added", repository_full_name=full_name
        )
