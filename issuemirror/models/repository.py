"""Repository model"""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String

from issuemirror.models.base import Base


class Repository(Base):
    """GitHub repository mirrored locally"""

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, index=True)
    github_id = Column(BigInteger, nullable=False)
    full_name = Column(String, unique=True, nullable=False, index=True)  # "Owner/Repo"
    html_url = Column(String, nullable=False, default="")

    # Watermark of the last fully successful sync; NULL means never synced.
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Repository(full_name='{self.full_name}', last_synced_at={self.last_synced_at})>"
