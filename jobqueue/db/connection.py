"""
Database connection management.
Handles SQLAlchemy engine and session creation for the relational backend.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jobqueue.config import Settings, get_settings
from jobqueue.db.models import Base
from jobqueue.observability.tracing import instrument_sqlalchemy

logger = logging.getLogger(__name__)

SessionFactory = sessionmaker[Session]


def create_db_engine(settings: Settings | None = None) -> Engine:
    """
    Create the database engine from settings.

    In-memory SQLite URLs share one connection across threads, so every
    session sees the same database.

    Args:
        settings: Settings to use. Defaults to the cached application settings.

    Returns:
        Engine: The SQLAlchemy engine instance.
    """
    settings = settings or get_settings()
    url = make_url(settings.database_url)

    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.database_echo,
        )
    else:
        engine = create_engine(
            url,
            echo=settings.database_echo,
            pool_pre_ping=True,
        )

    if settings.otel_exporter_otlp_endpoint:
        instrument_sqlalchemy(engine)

    return engine


def init_db(engine: Engine) -> None:
    """
    Create the live and dead-letter tables if they do not exist.

    Args:
        engine: The SQLAlchemy engine instance.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables initialized", extra={"url": engine.url.render_as_string()})


def create_session_factory(engine: Engine) -> SessionFactory:
    """
    Create the session factory for an engine.

    Args:
        engine: The SQLAlchemy engine instance.

    Returns:
        A sessionmaker producing sessions bound to the engine.
    """
    return sessionmaker(
        bind=engine,
        class_=Session,
        expire_on_commit=False,
        autoflush=False,
    )


@contextmanager
def session_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """
    Context manager for one unit of work.

    Commits on success and rolls back on error; the error propagates.

    Yields:
        Session: A database session.
    """
    with session_factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
