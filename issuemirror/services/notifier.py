"""Issue change notifications"""

import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueUpdate:
    repository_full_name: str
    number: int
    title: str
    is_open: bool
    label_names: List[str] = field(default_factory=list)
    change: str = "updated"  # "created", "updated" or "deleted"


class IssueUpdateNotifier:
    """Fire-and-forget sink for issue changes (e.g. a live-update push channel)."""

    def notify(self, update: IssueUpdate) -> None:
        raise NotImplementedError


class NullIssueUpdateNotifier(IssueUpdateNotifier):
    def notify(self, update: IssueUpdate) -> None:
        logger.debug(
            f"Issue {update.repository_full_name}#{update.number} {update.change}"
        )


def notify_safely(notifier: IssueUpdateNotifier, update: IssueUpdate) -> None:
    """Deliver a notification; delivery failures never fail the caller."""
    try:
        notifier.notify(update)
    except Exception as e:
        logger.warning(
            f"Failed to notify update for {update.repository_full_name}#{update.number}: {e}"
        )
