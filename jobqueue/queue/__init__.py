"""
Job queue backends.

All backends share the ``JobQueue`` contract; ``create_queue`` builds the
one selected by configuration.
"""

import logging

from redis import Redis

from jobqueue.config import Settings, get_settings
from jobqueue.constants import QueueBackend
from jobqueue.db.connection import create_db_engine
from jobqueue.queue.base import JobQueue
from jobqueue.queue.database import DatabaseJobQueue
from jobqueue.queue.memory import MemoryJobQueue
from jobqueue.queue.redis import RedisJobQueue

logger = logging.getLogger(__name__)


def create_queue(settings: Settings | None = None) -> JobQueue:
    """
    Create the queue backend selected by settings.

    Args:
        settings: Settings to use. Defaults to the cached application settings.

    Returns:
        The configured queue.
    """
    settings = settings or get_settings()

    if settings.queue_backend == QueueBackend.DATABASE:
        queue: JobQueue = DatabaseJobQueue(create_db_engine(settings))
    elif settings.queue_backend == QueueBackend.REDIS:
        queue = RedisJobQueue(
            Redis.from_url(settings.redis_url, decode_responses=True),
            name=settings.queue_name,
            prefix=settings.redis_queue_prefix,
            max_swap_attempts=settings.redis_max_swap_attempts,
        )
    else:
        queue = MemoryJobQueue()

    logger.info("Job queue created", extra={"backend": queue.backend})
    return queue


__all__ = [
    "JobQueue",
    "MemoryJobQueue",
    "DatabaseJobQueue",
    "RedisJobQueue",
    "create_queue",
]
