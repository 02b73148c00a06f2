from contextlib import contextmanager

from sqlalchemy import create_engine, event, Column, String, Integer, Text, DateTime
from sqlalchemy.orm import sessionmaker, declarative_base

from cmdqueue.utils import utcnow

Base = declarative_base()


# --- Command Job Model ---

class CommandJobRow(Base):
    __tablename__ = 'bot_commands'
    # AUTOINCREMENT keeps ids strictly increasing even after retention deletes rows.
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)

    command_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False)
    parameters = Column(Text, nullable=True)  # JSON
    status = Column(String, default="pending", nullable=False, index=True)  # pending, in_progress, completed, failed, cancelled

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)
    result = Column(Text, nullable=True)
    # Set by claim(). Stale claims are expired against it.
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    # Reserved. Nothing reads or writes these.
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    def __repr__(self):
        return f"<CommandJobRow(id={self.id}, status='{self.status}', type='{self.command_type}')>"


# --- Engine / Session Handling ---

def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")  # readers don't block the writer process
    cursor.close()


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: str):
        self.url = url
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        self.engine = create_engine(url, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _set_sqlite_pragma)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def initialize(self):
        """Create the tables if they don't exist."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self):
        """Transactional scope: commit on success, rollback and re-raise on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()
