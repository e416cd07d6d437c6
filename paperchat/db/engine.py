# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# One synchronous SQLAlchemy engine per process, built explicitly by
# `build_container()` (API process) or the Celery worker bootstrap. There is
# no module-level engine: every store receives its session factory through
# its constructor.
#
# SESSION LIFECYCLE (session_scope):
#   create → yield → commit (or rollback on error) → close
#
# Async callers (FastAPI handlers, the status feed) run store methods through
# asyncio.to_thread() so the event loop is never blocked on I/O.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from paperchat.db.models import Base

logger = logging.getLogger(__name__)

SessionFactory = sessionmaker[Session]


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine for `database_url`.

    - pool_size=5 / max_overflow=10 for PostgreSQL.
    - pool_pre_ping=True: Celery workers hold connections across long idle
      periods; stale connections are replaced instead of failing a step.
    - In-memory SQLite (tests) shares one connection across threads.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> SessionFactory:
    """
    Build the session factory.

    expire_on_commit=False: records returned from a store stay readable after
    the session that loaded them has been closed.
    """
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


@contextmanager
def session_scope(factory: SessionFactory) -> Generator[Session, None, None]:
    """
    Provide a transactional session.

    Usage:
        with session_scope(factory) as session:
            session.add(obj)
            # Auto-commits on exit, auto-rollbacks on exception
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_schema(engine: Engine, tables: list | None = None) -> None:
    """
    Create the pgvector extension (PostgreSQL only) and the ORM tables.

    `tables` restricts creation to a subset, e.g. SQLite test databases that
    cannot hold the pgvector/JSONB `chunks` table.
    """
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    Base.metadata.create_all(engine, tables=tables)
    logger.info("Database schema ready (dialect=%s)", engine.dialect.name)
