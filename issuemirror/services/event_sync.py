"""Issue event timeline synchronization"""

import logging
import threading
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from issuemirror.models import IssueEvent, Repository
from issuemirror.services.github_client import GitHubClient
from issuemirror.services.store import IssueStore

logger = logging.getLogger(__name__)


class EventSyncService:
    """Fetches a repository's issue events and stores the ones not seen yet."""

    def __init__(self, db: Session, client: GitHubClient, store: Optional[IssueStore] = None):
        self.db = db
        self.client = client
        self.store = store or IssueStore(db)

    def sync_events(
        self,
        repository: Repository,
        owner: str,
        name: str,
        since: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Returns the number of events inserted."""
        events = self.client.fetch_events(owner, name, since=since, cancel_event=cancel_event)
        if not events:
            return 0

        existing_ids = self.store.existing_event_ids(repository.id)
        type_ids = self.store.event_type_ids()
        issue_ids = {
            number: issue.id for number, issue in self.store.issues_by_number(repository.id).items()
        }

        rows = []
        seen = set(existing_ids)
        skipped_unknown_type = 0
        skipped_no_issue = 0
        for event in events:
            if event.github_event_id in seen:
                continue
            issue_id = issue_ids.get(event.issue_number)
            if issue_id is None:
                skipped_no_issue += 1
                continue
            type_id = type_ids.get(event.event_type)
            if type_id is None:
                logger.debug(f"Skipping event {event.github_event_id}: unknown type '{event.event_type}'")
                skipped_unknown_type += 1
                continue

            seen.add(event.github_event_id)
            rows.append(
                IssueEvent(
                    issue_id=issue_id,
                    event_type_id=type_id,
                    github_event_id=event.github_event_id,
                    created_at=event.created_at,
                )
            )

        inserted = self.store.add_events(rows)
        logger.info(
            f"Stored {inserted} new events for {owner}/{name} "
            f"(skipped: {len(events) - len(rows)}, unknown type: {skipped_unknown_type}, "
            f"issue not mirrored: {skipped_no_issue})"
        )
        return inserted
