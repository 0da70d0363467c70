"""Database connection and session management."""

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base
from ..utils.logging import get_logger


logger = get_logger("storage.database")


class DatabaseManager:
    """Database connection and session manager."""

    def __init__(self, database_url: str):
        """Initialize database manager.

        Args:
            database_url: SQLAlchemy URL of the metadata database
        """
        self.database_url = database_url

        if self.database_url.startswith("sqlite"):
            self.engine = create_engine(
                self.database_url,
                poolclass=StaticPool,
                connect_args={
                    "check_same_thread": False,
                    "timeout": 20
                },
                echo=False
            )
        else:
            self.engine = create_engine(
                self.database_url,
                pool_pre_ping=True,
                pool_recycle=300,
                echo=False
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        logger.debug("Database manager initialized", database_url=self.database_url)

    def create_tables(self):
        """Create all database tables."""
        if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
            db_path = self.database_url.replace("sqlite:///", "", 1)
            db_dir = os.path.dirname(db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        Base.metadata.create_all(bind=self.engine)
        logger.debug("Database tables created")

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("Database transaction rolled back", error=str(e))
            raise
        finally:
            session.close()

    def close(self):
        """Dispose of pooled connections."""
        self.engine.dispose()
        logger.debug("Database connections closed")


def init_database(database_url: str, create_tables: bool = True) -> DatabaseManager:
    """Initialize the metadata database."""
    manager = DatabaseManager(database_url)

    if create_tables:
        manager.create_tables()

    return manager
