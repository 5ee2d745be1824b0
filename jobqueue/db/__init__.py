"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from jobqueue.db.models import Base, DeadJob, Job
from jobqueue.db.repository import JobRepository

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
    "SessionFactory",
    "Base",
    "Job",
    "DeadJob",
    "JobRepository",
]
