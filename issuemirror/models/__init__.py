"""Database models"""

from issuemirror.models.base import Base
from issuemirror.models.event import EventType, IssueEvent
from issuemirror.models.issue import Issue, issue_labels
from issuemirror.models.label import Label
from issuemirror.models.repository import Repository

__all__ = [
    "Base",
    "Repository",
    "Issue",
    "Label",
    "EventType",
    "IssueEvent",
    "issue_labels",
]
