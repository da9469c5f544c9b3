"""
SQL database connection for the `sql` record backend (SQLAlchemy + psycopg2).
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config.settings import settings
from app.models.database import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """SQLAlchemy engine and session factory with a transactional scope helper."""

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or settings.database_url
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._initialize_engine(echo)

    def _initialize_engine(self, echo: bool) -> None:
        if not self.database_url:
            logger.debug("DATABASE_URL not set; SQL record store disabled")
            return

        try:
            kwargs = {"echo": echo}
            if self.database_url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
            else:
                kwargs.update(pool_size=5, max_overflow=5, pool_pre_ping=True)
            self.engine = create_engine(self.database_url, **kwargs)
            self._session_factory = sessionmaker(
                bind=self.engine, expire_on_commit=False
            )
            logger.info("SQLAlchemy engine created for dialect=%s", self.engine.dialect.name)
        except Exception as exc:
            logger.exception("Failed to create SQLAlchemy engine: %s", exc)
            self.engine = None
            self._session_factory = None

    @property
    def available(self) -> bool:
        return self._session_factory is not None

    def create_tables(self) -> None:
        """Create the food/user tables if they do not exist."""
        if self.engine is None:
            raise RuntimeError("Database engine not initialized")
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError("Database engine not initialized")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        if self.engine is None:
            return False
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return True
        except Exception as exc:
            logger.exception("SQL health_check failed: %s", exc)
            return False
