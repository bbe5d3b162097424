"""Persistence operations shared by the poll sync and the webhook handlers"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuemirror.models import EventType, Issue, IssueEvent, Label, Repository
from issuemirror.models.issue import issue_labels, utcnow

logger = logging.getLogger(__name__)

UPSERT_CREATED = "created"
UPSERT_UPDATED = "updated"
UPSERT_STALE = "stale"


@dataclass
class IssueFields:
    """Remote issue state as written to the local mirror."""

    number: int
    title: str
    body: Optional[str]
    is_open: bool
    url: str
    github_updated_at: datetime
    comment_count: int = 0


class IssueStore:
    """Upsert-by-key, lookup-by-key, label replacement, soft delete and watermark writes.

    Every write commits immediately. Issue updates are a compare-and-swap on
    `github_updated_at`: a write carrying an older remote timestamp than the
    stored row is refused and reported as stale. GitHub timestamps have
    one-second resolution, so two writes stamped in the same second cannot be
    ordered: the one that arrives last is kept.
    """

    def __init__(self, db: Session):
        self.db = db

    def _safe_commit(self, row) -> bool:
        """Commit a new row, swallowing unique-key races."""
        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            # Another writer created the same key first.
            self.db.rollback()
            return False

    # Repositories

    def get_repository(self, full_name: str) -> Optional[Repository]:
        return self.db.scalars(
            select(Repository).where(Repository.full_name == full_name)
        ).first()

    def ensure_repository(self, github_id: int, full_name: str, html_url: str) -> Repository:
        """Return the repository row, creating it when unseen."""
        repository = self.get_repository(full_name)
        if repository is not None:
            return repository

        repository = Repository(github_id=github_id, full_name=full_name, html_url=html_url or "")
        if self._safe_commit(repository):
            logger.info(f"Created repository {full_name}")
            return repository
        return self.get_repository(full_name)

    def set_watermark(self, repository: Repository, synced_at: datetime) -> None:
        repository.last_synced_at = synced_at
        self.db.commit()

    # Issues

    def get_issue(self, repository_id: int, number: int) -> Optional[Issue]:
        """Look up an issue by key, soft-deleted rows included."""
        return self.db.scalars(
            select(Issue).where(Issue.repository_id == repository_id, Issue.number == number)
        ).first()

    def issues_by_number(self, repository_id: int) -> Dict[int, Issue]:
        rows = self.db.scalars(select(Issue).where(Issue.repository_id == repository_id)).all()
        return {row.number: row for row in rows}

    def upsert_issue(self, repository_id: int, fields: IssueFields) -> str:
        """Insert or update the issue identified by (repository_id, number).

        Returns one of "created", "updated" or "stale". An upsert always clears
        the soft-delete flag, since the remote side reported the issue as live.
        """
        values = {
            "title": fields.title,
            "body": fields.body,
            "is_open": fields.is_open,
            "url": fields.url,
            "comment_count": fields.comment_count,
            "github_updated_at": fields.github_updated_at,
            "synced_at": utcnow(),
            "is_deleted": False,
        }

        if self.get_issue(repository_id, fields.number) is None:
            row = Issue(repository_id=repository_id, number=fields.number, **values)
            if self._safe_commit(row):
                return UPSERT_CREATED
            logger.debug(f"Issue #{fields.number} was created concurrently, updating instead")

        result = self.db.execute(
            update(Issue)
            .where(
                Issue.repository_id == repository_id,
                Issue.number == fields.number,
                Issue.github_updated_at <= fields.github_updated_at,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            logger.info(
                f"Refused stale write for issue #{fields.number} "
                f"(remote updated_at {fields.github_updated_at})"
            )
            return UPSERT_STALE
        return UPSERT_UPDATED

    def set_state(self, issue: Issue, is_open: bool, github_updated_at: datetime) -> bool:
        """Update only the open/closed state, guarded by the same timestamp check."""
        result = self.db.execute(
            update(Issue)
            .where(Issue.id == issue.id, Issue.github_updated_at <= github_updated_at)
            .values(is_open=is_open, github_updated_at=github_updated_at, synced_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def set_embedding(
        self, issue: Issue, embedding: Optional[List[float]], content_hash: Optional[str]
    ) -> None:
        issue.embedding = embedding
        issue.content_hash = content_hash
        self.db.commit()

    def set_comment_count(self, issue: Issue, comment_count: int) -> None:
        issue.comment_count = comment_count
        self.db.commit()

    def set_parent(self, issue: Issue, parent: Optional[Issue]) -> bool:
        """Link an issue to its parent; True when the link changed."""
        parent_id = parent.id if parent is not None else None
        if issue.parent_issue_id == parent_id:
            return False
        issue.parent_issue_id = parent_id
        self.db.commit()
        return True

    def soft_delete(self, issue: Issue) -> bool:
        """Flag an issue as deleted; False when it already was."""
        if issue.is_deleted:
            return False
        issue.is_deleted = True
        issue.synced_at = utcnow()
        self.db.commit()
        return True

    # Labels

    def upsert_label(self, repository_id: int, name: str, color: Optional[str] = None) -> Label:
        label = self.db.scalars(
            select(Label).where(Label.repository_id == repository_id, Label.name == name)
        ).first()
        if label is None:
            label = Label(repository_id=repository_id, name=name, color=color or "ededed")
            if self._safe_commit(label):
                return label
            return self.upsert_label(repository_id, name, color)

        if color and label.color != color:
            label.color = color
            self.db.commit()
        return label

    def delete_label(self, repository_id: int, name: str) -> bool:
        label = self.db.scalars(
            select(Label).where(Label.repository_id == repository_id, Label.name == name)
        ).first()
        if label is None:
            return False
        self.db.execute(delete(issue_labels).where(issue_labels.c.label_id == label.id))
        self.db.delete(label)
        self.db.commit()
        return True

    def _resolve_labels(self, repository_id: int, labels: Iterable) -> Dict[str, Label]:
        """Accepts label names or objects with `name`/`color` attributes."""
        resolved: Dict[str, Label] = {}
        for item in labels:
            name = item if isinstance(item, str) else item.name
            color = None if isinstance(item, str) else getattr(item, "color", None)
            if name and name not in resolved:
                resolved[name] = self.upsert_label(repository_id, name, color)
        return resolved

    def replace_labels(self, issue: Issue, labels: Iterable) -> List[str]:
        """Replace the issue's label associations with exactly `labels`.

        Missing labels are created for the issue's repository.
        """
        resolved = self._resolve_labels(issue.repository_id, labels)
        issue.labels = list(resolved.values())
        self.db.commit()
        return sorted(resolved)

    def replace_labels_if_current(
        self, issue: Issue, labels: Iterable, github_updated_at: datetime
    ) -> Optional[List[str]]:
        """Replace label associations unless the stored row is newer.

        The timestamp guard and the association change commit together.
        Returns the new label names, or None for a stale write.
        """
        resolved = self._resolve_labels(issue.repository_id, labels)
        result = self.db.execute(
            update(Issue)
            .where(Issue.id == issue.id, Issue.github_updated_at <= github_updated_at)
            .values(github_updated_at=github_updated_at, synced_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            return None
        issue.labels = list(resolved.values())
        self.db.commit()
        return sorted(resolved)

    # Events

    def event_type_ids(self) -> Dict[str, int]:
        return {row.name: row.id for row in self.db.scalars(select(EventType)).all()}

    def existing_event_ids(self, repository_id: int) -> Set[int]:
        """github_event_id values already stored for the repository's issues."""
        stmt = (
            select(IssueEvent.github_event_id)
            .join(Issue, Issue.id == IssueEvent.issue_id)
            .where(Issue.repository_id == repository_id)
        )
        return set(self.db.scalars(stmt).all())

    def add_events(self, rows: List[IssueEvent]) -> int:
        """Insert event rows in one batch, falling back to row-by-row on duplicates."""
        if not rows:
            return 0
        try:
            self.db.add_all(rows)
            self.db.commit()
            return len(rows)
        except IntegrityError:
            self.db.rollback()
            logger.warning("Duplicate event ids in batch insert, retrying one by one")

        inserted = 0
        for row in rows:
            copy = IssueEvent(
                issue_id=row.issue_id,
                event_type_id=row.event_type_id,
                github_event_id=row.github_event_id,
                created_at=row.created_at,
            )
            if self._safe_commit(copy):
                inserted += 1
        return inserted
