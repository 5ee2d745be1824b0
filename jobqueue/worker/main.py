"""
Worker process for executing jobs.

The queue never schedules itself: the worker drives ``process`` on a poll
interval until it is told to stop.
"""

import logging
import os
import signal
import threading
from types import FrameType

from jobqueue.config import get_settings
from jobqueue.constants import JobStatus
from jobqueue.observability.logging import bind_context, clear_context, setup_logging
from jobqueue.observability.tracing import setup_tracing
from jobqueue.queue import JobQueue, create_queue

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that repeatedly processes a queue.

    Features:
    - One ``process`` cycle per poll, back to back while work is pending
    - Backend errors are logged and retried after the poll interval
    - Graceful shutdown on SIGTERM/SIGINT, after the current cycle
    """

    def __init__(
        self,
        queue: JobQueue,
        poll_interval: float | None = None,
        worker_id: str | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue: The queue to process.
            poll_interval: Seconds between cycles when no work is pending.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
        """
        settings = get_settings()

        self.queue = queue
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )
        self.worker_id = worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def run_once(self) -> bool:
        """
        Run one processing cycle.

        Returns:
            True if pending jobs remain in the queue afterwards.
        """
        self.queue.process()
        return self.queue.get_queue_length(JobStatus.PENDING) > 0

    def start(self) -> None:
        """Process the queue until ``stop`` is called."""
        bind_context(worker_id=self.worker_id)
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "backend": self.queue.backend}
        )

        while self.running:
            try:
                has_pending = self.run_once()
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                has_pending = False

            # Pending jobs may only be waiting on a delay, so always yield
            # for a moment; wait the full interval when the queue is empty
            if self.queue.is_paused() or not has_pending:
                self._stop_event.wait(self.poll_interval)
            else:
                self._stop_event.wait(min(self.poll_interval, 0.1))

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})
        clear_context()

    def stop(self) -> None:
        """Stop the worker after the current cycle."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._stop_event.set()


def run() -> None:
    """Run the worker against the configured backend."""
    settings = get_settings()
    setup_logging(settings)
    setup_tracing(settings)

    worker = Worker(create_queue(settings))

    def handle_signal(signum: int, frame: FrameType | None) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, handle_signal)

    worker.start()


if __name__ == "__main__":
    run()
