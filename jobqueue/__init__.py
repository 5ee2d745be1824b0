"""
Job Queue Engine

A storage-agnostic job queue: priority scheduling, dependency gating,
retry and dead-letter semantics behind one contract, with in-memory,
relational (SQLAlchemy) and list-store (Redis) backends.
"""

__version__ = "1.0.0"
