"""Label model"""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint

from issuemirror.models.base import Base


class Label(Base):
    """Repository-scoped issue label"""

    __tablename__ = "labels"
    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="uq_labels_repository_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="ededed")

    def __repr__(self):
        return f"<Label(name='{self.name}', color='{self.color}')>"
