"""
Job handlers registry and implementations.

Handler payloads name a job type; the handler registered for that type is
called with the payload data. A handler signals failure by raising, which
drives the retry and dead-letter transitions of the queue.

Job handlers should be idempotent - a job may be retried, and concurrent
pollers on a shared backend only guarantee at-most-one execution at a time.
"""

import logging
import random
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[dict[str, Any]], Any]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        def handle_send_email(data: dict[str, Any]) -> Any:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def unregister_handler(job_type: str) -> None:
    """Remove the handler for a job type, if any."""
    _handlers.pop(job_type, None)


def get_handler(job_type: str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
def handle_echo(data: dict[str, Any]) -> dict[str, Any]:
    """
    Echo handler for testing.

    Simply returns the input data as output.
    """
    return {"echo": data}


@register_handler("sleep")
def handle_sleep(data: dict[str, Any]) -> dict[str, Any]:
    """
    Sleep handler for testing delays.

    Data should contain:
    - duration_seconds: How long to sleep
    """
    duration = data.get("duration_seconds", 1)
    time.sleep(duration)
    return {"slept_for": duration}


@register_handler("failing_job")
def handle_failing_job(data: dict[str, Any]) -> Any:
    """
    Handler that always fails - for testing retry logic.
    """
    raise RuntimeError(data.get("message", "Intentional failure"))


@register_handler("random_failure")
def handle_random_failure(data: dict[str, Any]) -> dict[str, Any]:
    """
    Handler that randomly fails - for testing retry behavior.

    Data should contain:
    - failure_rate: Probability of failure (0.0 to 1.0)
    """
    failure_rate = data.get("failure_rate", 0.5)

    if random.random() < failure_rate:
        raise RuntimeError("Random failure triggered")

    return {"message": "Succeeded this time!"}


@register_handler("http_request")
def handle_http_request(data: dict[str, Any]) -> dict[str, Any]:
    """
    Make an HTTP request.

    Data should contain:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional request body
    - timeout: Optional timeout in seconds
    """
    url = data.get("url")
    if not url:
        raise ValueError("Missing 'url' in payload")

    method = data.get("method", "GET").upper()
    body = data.get("body")

    with httpx.Client(timeout=data.get("timeout", 30.0)) as client:
        response = client.request(
            method=method,
            url=url,
            headers=data.get("headers", {}),
            json=body if method in ["POST", "PUT", "PATCH"] else None,
        )
        response.raise_for_status()

    return {
        "status_code": response.status_code,
        "headers": dict(response.headers),
        "body": response.text[:1000],  # Truncate response
    }
