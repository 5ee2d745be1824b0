"""
Type definitions for the job queue.
"""

from jobqueue.types.job import (
    CallablePayload,
    HandlerPayload,
    JobEntry,
    JobProgress,
    ObjectPayload,
    Payload,
    as_payload,
    dump_entry,
    dump_payload,
    dump_result,
    load_entry,
    load_payload,
    load_result,
)

__all__ = [
    "JobEntry",
    "Payload",
    "HandlerPayload",
    "CallablePayload",
    "ObjectPayload",
    "JobProgress",
    "as_payload",
    "dump_entry",
    "load_entry",
    "dump_payload",
    "load_payload",
    "dump_result",
    "load_result",
]
