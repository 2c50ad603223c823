"""SQLAlchemy database models for the search index."""
from typing import Optional

from sqlalchemy import BigInteger, Column, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from canvasnote.config import config
from canvasnote.models.schema import EntityType, IndexRecord

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBIndexRecord(Base):
    """Database model for one indexed entity.

    The table is a derived view: every row can be regenerated from the
    primary entity tables, which is what a rebuild does.
    """
    __tablename__ = "search_records"
    entity_type = Column(String(32), primary_key=True)
    entity_id = Column(String(255), primary_key=True)
    title = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    tags = Column(Text, nullable=False, default="")
    updated_at = Column(BigInteger, nullable=False, index=True)

    @classmethod
    def from_record(cls, record: IndexRecord) -> "DBIndexRecord":
        return cls(
            entity_type=record.entity_type.value,
            entity_id=record.entity_id,
            title=record.title,
            content=record.content,
            tags=record.tags,
            updated_at=record.updated_at,
        )

    def to_record(self) -> IndexRecord:
        return IndexRecord(
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            title=self.title or "",
            content=self.content or "",
            tags=self.tags or "",
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        """Return string representation of the record."""
        return f"<IndexRecord(type='{self.entity_type}', id='{self.entity_id}')>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Initialize the index database with hardened configuration.

    Applies SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode (good balance of safety vs speed)
    - QueuePool for connection reuse with size limits
    - Pool pre-ping to detect stale connections
    """
    url = db_url or config.get_db_url()
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = create_engine(config.get_db_url())
    return sessionmaker(bind=engine)
