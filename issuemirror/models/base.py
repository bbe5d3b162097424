"""Database base configuration"""
from sqlalchemy import create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from issuemirror.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _seed_event_types(bind):
    """Insert known GitHub issue event types that are not stored yet."""
    from issuemirror.models.event import KNOWN_EVENT_TYPES, EventType

    session = sessionmaker(bind=bind)()
    try:
        existing = set(session.scalars(select(EventType.name)).all())
        missing = [name for name in KNOWN_EVENT_TYPES if name not in existing]
        for name in missing:
            session.add(EventType(name=name))
        if missing:
            session.commit()
    finally:
        session.close()


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    # (Without this, create_all() may create no tables in some import orders.)
    import issuemirror.models  # noqa: F401  (import for side-effects)

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _seed_event_types(bind)
