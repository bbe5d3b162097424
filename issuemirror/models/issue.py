"""Issue model"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from issuemirror.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (consistent with GitHub parsing)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


issue_labels = Table(
    "issue_labels",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True),
    Column("label_id", Integer, ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True),
)


class Issue(Base):
    """Local copy of a GitHub issue"""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_issues_repository_number"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identity: (repository_id, number) is the upsert key for both sync paths.
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)
    number = Column(Integer, nullable=False)

    # Content
    title = Column(String, nullable=False, default="")
    body = Column(Text, nullable=True)
    is_open = Column(Boolean, nullable=False, default=True)
    url = Column(String, nullable=False, default="")
    comment_count = Column(Integer, nullable=False, default=0)

    # Sync metadata
    github_updated_at = Column(DateTime, nullable=False)  # authoritative for change detection
    synced_at = Column(DateTime, default=utcnow)
    content_hash = Column(String, nullable=True)  # hash of title+body the embedding was built from
    embedding = Column(JSON, nullable=True)  # list[float]; NULL until generated
    is_deleted = Column(Boolean, nullable=False, default=False)

    # Sub-issue hierarchy
    parent_issue_id = Column(Integer, ForeignKey("issues.id"), nullable=True)

    # Relationships
    repository = relationship("Repository")
    labels = relationship("Label", secondary=issue_labels, lazy="selectin")
    parent_issue = relationship("Issue", remote_side=[id])

    @property
    def label_names(self) -> list[str]:
        return sorted(label.name for label in self.labels)

    def __repr__(self):
        return f"<Issue(repository_id={self.repository_id}, number={self.number}, deleted={self.is_deleted})>"
