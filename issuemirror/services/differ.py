"""Reconciliation between a remote issue listing and the local mirror"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from issuemirror.models import Issue
from issuemirror.services.github_client import RemoteIssue


@dataclass
class IssueDiff:
    new: List[RemoteIssue] = field(default_factory=list)
    changed: List[RemoteIssue] = field(default_factory=list)
    unchanged: List[RemoteIssue] = field(default_factory=list)
    deleted: List[Issue] = field(default_factory=list)
    pull_requests_skipped: int = 0

    @property
    def to_write(self) -> List[RemoteIssue]:
        return self.new + self.changed


def diff_issues(
    remote_issues: Iterable[RemoteIssue],
    local_by_number: Dict[int, Issue],
    full_listing: bool,
) -> IssueDiff:
    """Classify remote issues against local rows keyed by number.

    Pull requests are skipped. A remote issue is new when its number is not
    stored locally, changed when its `updated_at` differs from the stored
    remote timestamp (or the stored row is soft-deleted) and unchanged
    otherwise. Deletions are only inferred from
    a full listing: stored, not yet deleted, and absent remotely.
    """
    diff = IssueDiff()
    seen = set()

    for remote in remote_issues:
        if remote.is_pull_request:
            diff.pull_requests_skipped += 1
            continue
        seen.add(remote.number)

        local = local_by_number.get(remote.number)
        if local is None:
            diff.new.append(remote)
        elif local.github_updated_at != remote.updated_at or local.is_deleted:
            # A soft-deleted row reported live again is rewritten as well.
            diff.changed.append(remote)
        else:
            diff.unchanged.append(remote)

    if full_listing:
        diff.deleted = [
            local
            for number, local in sorted(local_by_number.items())
            if number not in seen and not local.is_deleted
        ]

    return diff
