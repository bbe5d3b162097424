"""Issue event timeline models"""
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from issuemirror.models.base import Base

# Issue event names documented by the GitHub REST API; seeded by init_db().
KNOWN_EVENT_TYPES = (
    "added_to_project",
    "assigned",
    "automatic_base_change_failed",
    "automatic_base_change_succeeded",
    "base_ref_changed",
    "closed",
    "commented",
    "committed",
    "connected",
    "convert_to_draft",
    "converted_note_to_issue",
    "converted_to_discussion",
    "cross-referenced",
    "demilestoned",
    "deployed",
    "deployment_environment_changed",
    "disconnected",
    "head_ref_deleted",
    "head_ref_force_pushed",
    "head_ref_restored",
    "labeled",
    "locked",
    "marked_as_duplicate",
    "mentioned",
    "merged",
    "milestoned",
    "moved_columns_in_project",
    "pinned",
    "ready_for_review",
    "referenced",
    "removed_from_project",
    "renamed",
    "reopened",
    "review_dismissed",
    "review_request_removed",
    "review_requested",
    "reviewed",
    "subscribed",
    "transferred",
    "unassigned",
    "unlabeled",
    "unlocked",
    "unmarked_as_duplicate",
    "unpinned",
    "unsubscribed",
    "user_blocked",
)


class EventType(Base):
    """Kind of issue timeline event"""

    __tablename__ = "event_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False, index=True)

    def __repr__(self):
        return f"<EventType(name='{self.name}')>"


class IssueEvent(Base):
    """One entry of an issue's event timeline"""

    __tablename__ = "issue_events"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type_id = Column(Integer, ForeignKey("event_types.id"), nullable=False)

    # Idempotency key: an event with a known id is never inserted again.
    github_event_id = Column(BigInteger, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)

    # Relationships
    issue = relationship("Issue")
    event_type = relationship("EventType")

    def __repr__(self):
        return f"<IssueEvent(github_event_id={self.github_event_id})>"
