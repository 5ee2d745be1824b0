"""
Job-related type definitions.

A payload is a tagged variant: each variant exposes exactly one ``run()``
method and the variant is fixed when the job is dispatched.
"""

import importlib
import time
from collections.abc import Callable
from types import ModuleType
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic_core import (
    PydanticSerializationError,
    from_json,
    to_json,
    to_jsonable_python,
)

from jobqueue.constants import JOB_ID_PREFIX, JobStatus
from jobqueue.exceptions import PayloadError, UnknownJobTypeError
from jobqueue.worker.handlers import get_handler


def callable_path(func: Callable[..., Any]) -> str:
    """
    Get the import path of a module-level callable.

    Args:
        func: The callable to locate.

    Returns:
        The ``module:qualname`` path.

    Raises:
        PayloadError: If the callable cannot be imported back by name.
    """
    owner = getattr(func, "__self__", None)
    if owner is not None and not isinstance(owner, (type, ModuleType)):
        raise PayloadError(
            f"Bound method {func!r} carries instance state and cannot be persisted"
        )

    module = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None)
    if not module or not qualname or "<" in qualname:
        raise PayloadError(
            f"Callable {func!r} is not importable by name and cannot be persisted"
        )
    return f"{module}:{qualname}"


def resolve_callable(path: str) -> Callable[..., Any]:
    """
    Import a callable from a ``module:qualname`` path.

    Raises:
        PayloadError: If the path does not name a callable.
    """
    module_name, _, qualname = path.partition(":")
    if not module_name or not qualname:
        raise PayloadError(f"Invalid callable path: {path!r}")
    try:
        target: Any = importlib.import_module(module_name)
        for attr in qualname.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as e:
        raise PayloadError(f"Cannot resolve callable {path!r}: {e}") from e
    if not callable(target):
        raise PayloadError(f"{path!r} does not name a callable")
    return target


def describe_object(obj: Any) -> dict[str, Any]:
    """
    Capture a run-object as its class path and JSON-compatible state.

    Pydantic models are stored as their JSON dump; any other object as its
    instance ``__dict__``.

    Raises:
        PayloadError: If the class is not importable or the state is not
            JSON-compatible.
    """
    cls = type(obj)
    path = callable_path(cls)
    if isinstance(obj, BaseModel):
        return {"class": path, "state": obj.model_dump(mode="json")}

    try:
        state = to_jsonable_python(vars(obj))
    except (TypeError, PydanticSerializationError) as e:
        raise PayloadError(
            f"State of {cls.__qualname__} is not JSON-serializable: {e}"
        ) from e
    return {"class": path, "state": state}


def restore_object(path: str, state: dict[str, Any]) -> Any:
    """
    Rebuild a run-object captured by ``describe_object``.

    Plain objects are created without calling ``__init__``; their stored
    attributes are set directly.
    """
    cls = resolve_callable(path)
    if not isinstance(cls, type):
        raise PayloadError(f"{path!r} does not name a class")
    if issubclass(cls, BaseModel):
        return cls.model_validate(state)

    obj = cls.__new__(cls)
    obj.__dict__.update(state)
    return obj


class HandlerPayload(BaseModel):
    """
    Payload executed by a handler registered for its job type.
    Fully serializable, usable with every backend.
    """

    kind: Literal["handler"] = "handler"
    job_type: str
    data: dict[str, Any] = Field(default_factory=dict)

    def run(self) -> Any:
        handler = get_handler(self.job_type)
        if handler is None:
            raise UnknownJobTypeError(self.job_type)
        return handler(self.data)


class CallablePayload(BaseModel):
    """
    Payload wrapping a zero-argument callable.

    The in-memory backend holds the callable by reference. Persistent
    backends store its import path, so only module-level functions survive
    a round trip.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["callable"] = "callable"
    func: Callable[[], Any]

    @field_validator("func", mode="before")
    @classmethod
    def _import_func(cls, value: Any) -> Any:
        if isinstance(value, str):
            return resolve_callable(value)
        return value

    @field_serializer("func")
    def _serialize_func(self, func: Callable[[], Any]) -> str:
        return callable_path(func)

    def run(self) -> Any:
        return self.func()


class ObjectPayload(BaseModel):
    """
    Payload wrapping an object with a zero-argument ``run`` method.

    The in-memory backend holds the object by reference. Persistent
    backends store ``{"class": <import path>, "state": <attributes>}`` and
    rebuild an equivalent object when the entry is loaded.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["object"] = "object"
    obj: Any

    @field_validator("obj", mode="before")
    @classmethod
    def _restore_obj(cls, value: Any) -> Any:
        if isinstance(value, dict) and set(value) == {"class", "state"}:
            return restore_object(value["class"], value["state"])
        return value

    @field_validator("obj")
    @classmethod
    def _check_run(cls, value: Any) -> Any:
        if not callable(getattr(value, "run", None)):
            raise ValueError(f"{type(value).__name__} has no run() method")
        return value

    @field_serializer("obj")
    def _serialize_obj(self, obj: Any) -> dict[str, Any]:
        return describe_object(obj)

    def run(self) -> Any:
        return self.obj.run()


PayloadVariant = HandlerPayload | CallablePayload | ObjectPayload

Payload = Annotated[PayloadVariant, Field(discriminator="kind")]

_payload_adapter: TypeAdapter[PayloadVariant] = TypeAdapter(Payload)


def as_payload(value: Any) -> PayloadVariant:
    """
    Normalize a dispatched value into a payload variant.

    Args:
        value: A payload, a zero-argument callable, or an object with a
            zero-argument ``run`` method.

    Returns:
        The payload variant.

    Raises:
        PayloadError: If the value is none of these.
    """
    if isinstance(value, (HandlerPayload, CallablePayload, ObjectPayload)):
        return value
    if callable(value):
        return CallablePayload(func=value)
    if callable(getattr(value, "run", None)):
        return ObjectPayload(obj=value)
    raise PayloadError(f"Unsupported payload type: {type(value).__name__}")


def check_persistable(payload: PayloadVariant) -> None:
    """
    Fail with a clear message before pydantic wraps a serializer error.

    Raises:
        PayloadError: If the payload cannot be stored outside the process.
    """
    if isinstance(payload, CallablePayload):
        callable_path(payload.func)
    elif isinstance(payload, ObjectPayload):
        describe_object(payload.obj)


def dump_payload(payload: PayloadVariant) -> str:
    """Serialize a payload to JSON text."""
    check_persistable(payload)
    return payload.model_dump_json()


def load_payload(raw: str) -> PayloadVariant:
    """Deserialize a payload from JSON text."""
    try:
        return _payload_adapter.validate_json(raw)
    except ValidationError as e:
        raise PayloadError(f"Invalid stored payload: {e}") from e


def dump_result(result: Any) -> str | None:
    """Serialize a job result to JSON text, stringifying unknown types."""
    if result is None:
        return None
    return to_json(result, serialize_unknown=True).decode()


def load_result(raw: str | None) -> Any:
    """Deserialize a job result stored by ``dump_result``."""
    if raw is None:
        return None
    return from_json(raw)


def new_job_id() -> str:
    """Generate a unique job id."""
    return f"{JOB_ID_PREFIX}{uuid4().hex}"


class JobProgress(BaseModel):
    """Progress reported by a job while it runs."""

    percent: float = Field(ge=0, le=100)
    message: str | None = None
    updated: float


class JobEntry(BaseModel):
    """
    One unit of deferred work and its lifecycle state.

    ``attempts`` counts failed executions; ``retries`` is the number of
    additional attempts allowed after the first failure. A ``paused``
    entry keeps its status but is never selected by ``process``.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_job_id)
    payload: Payload
    status: JobStatus = JobStatus.PENDING
    created: float = Field(default_factory=time.time)
    delay: int = Field(default=0, ge=0)
    retries: int = Field(default=0, ge=0)
    attempts: int = Field(default=0, ge=0)
    priority: int = 0
    dependencies: list[str] = Field(default_factory=list)
    result: Any = None
    error: str | None = None
    paused: bool = False
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress | None = None

    @field_serializer("result", when_used="json")
    def _serialize_result(self, result: Any) -> Any:
        return to_jsonable_python(result, serialize_unknown=True)

    @property
    def eligible_at(self) -> float:
        """Timestamp from which the entry may run."""
        return self.created + self.delay

    def copy_entry(self) -> "JobEntry":
        """Copy the entry without sharing its mutable collections."""
        return self.model_copy(
            update={
                "dependencies": list(self.dependencies),
                "tags": list(self.tags),
                "metadata": dict(self.metadata),
            }
        )

    def __repr__(self) -> str:
        return (
            f"JobEntry(id={self.id}, status={self.status}, priority={self.priority}, "
            f"attempts={self.attempts}/{self.retries + 1})"
        )


def dump_entry(entry: JobEntry) -> str:
    """Serialize a whole entry to JSON text."""
    check_persistable(entry.payload)
    return entry.model_dump_json()


def load_entry(raw: str) -> JobEntry:
    """Deserialize an entry stored by ``dump_entry``."""
    try:
        return JobEntry.model_validate_json(raw)
    except ValidationError as e:
        raise PayloadError(f"Invalid stored job entry: {e}") from e
