# File: dalgen/runtime.py
"""
DALGen - Runtime Support
========================
Support code imported by generated modules:

- the request error taxonomy and ``merge_errors`` accumulation,
- strict string parsers used by parameter coercion,
- named string format checks,
- the request accessor protocol plus ``SimpleRequest``,
- the ``Model`` base record and storage errors,
- ``ReadThroughCache``, the TTL cache fronting generated data access
  objects.

Cache writes issued after a storage write run on a background worker and
are never awaited by the caller. Storage and cache may disagree until the
task completes; a failing task is logged and evicts its entry.
"""

from __future__ import annotations

import copy
import dataclasses
import ipaddress
import json
import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Protocol, Set, Tuple
from urllib.parse import urlparse

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dalgen.runtime")


# ---------------------------------------------------------------------------
# Request errors
# ---------------------------------------------------------------------------


class RequestError(Exception):
    """Base class of errors reported while decoding or validating a request."""

    status: int = 400


class ErrorList(RequestError):
    """Several request errors reported together, in detection order."""

    def __init__(self, errors: Iterable[RequestError]) -> None:
        self.errors: List[RequestError] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    def __iter__(self) -> Iterator[RequestError]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


def merge_errors(
    err: Optional[RequestError], new: Optional[RequestError]
) -> Optional[RequestError]:
    """
    Chain *new* onto *err*.

    ``None`` on either side returns the other unchanged; two errors become
    a flat ``ErrorList``.
    """
    if new is None:
        return err
    if err is None:
        return new
    merged: List[RequestError] = list(err.errors) if isinstance(err, ErrorList) else [err]
    merged.extend(new.errors if isinstance(new, ErrorList) else [new])
    return ErrorList(merged)


def error_list(err: Optional[RequestError]) -> List[RequestError]:
    """Flatten *err* into a list (empty for ``None``)."""
    if err is None:
        return []
    if isinstance(err, ErrorList):
        return list(err.errors)
    return [err]


class MissingParamError(RequestError):
    def __init__(self, name: str) -> None:
        self.name: str = name
        super().__init__(f"missing required parameter '{name}'")


class MissingHeaderError(RequestError):
    def __init__(self, name: str) -> None:
        self.name: str = name
        super().__init__(f"missing required HTTP header '{name}'")


class InvalidParamTypeError(RequestError):
    """A raw parameter value that does not parse as the expected kind."""

    def __init__(self, name: str, value: Any, expected: str) -> None:
        self.name: str = name
        self.value: Any = value
        self.expected: str = expected
        super().__init__(
            f"invalid value {value!r} for parameter '{name}', must be a {expected}"
        )


class InvalidAttributeTypeError(RequestError):
    """A decoded value whose JSON type does not match the attribute kind."""

    def __init__(self, context: str, value: Any, expected: str) -> None:
        self.context: str = context
        self.value: Any = value
        self.expected: str = expected
        super().__init__(
            f"type of {context} must be {expected} but got value {value!r}"
        )


class MissingAttributeError(RequestError):
    def __init__(self, context: str, name: str) -> None:
        self.context: str = context
        self.name: str = name
        super().__init__(f"attribute '{name}' of {context} is missing and required")


class ValidationFailedError(RequestError):
    """A value that decoded fine but violates a declared validation."""

    def __init__(self, context: str, message: str) -> None:
        self.context: str = context
        super().__init__(f"{context} {message}")


class InvalidEnumValueError(ValidationFailedError):
    def __init__(self, context: str, value: Any, allowed: List[Any]) -> None:
        self.value: Any = value
        self.allowed: List[Any] = list(allowed)
        super().__init__(context, f"must be one of {self.allowed!r} but got {value!r}")


class InvalidFormatError(ValidationFailedError):
    def __init__(self, context: str, value: Any, fmt: str, reason: str) -> None:
        self.value: Any = value
        self.format: str = fmt
        super().__init__(context, f"must be formatted as {fmt} but got {value!r}: {reason}")


class InvalidPatternError(ValidationFailedError):
    def __init__(self, context: str, value: Any, pattern: str) -> None:
        self.value: Any = value
        self.pattern: str = pattern
        super().__init__(context, f"must match the regexp {pattern!r} but got {value!r}")


class InvalidRangeError(ValidationFailedError):
    def __init__(self, context: str, value: Any, bound: float, is_min: bool) -> None:
        self.value: Any = value
        self.bound: float = bound
        self.is_min: bool = is_min
        comparator: str = "greater or equal" if is_min else "lesser or equal"
        super().__init__(context, f"must be {comparator} than {bound} but got {value!r}")


class InvalidLengthError(ValidationFailedError):
    def __init__(self, context: str, value: Any, length: int, bound: int, is_min: bool) -> None:
        self.value: Any = value
        self.length: int = length
        self.bound: int = bound
        self.is_min: bool = is_min
        comparator: str = "greater or equal" if is_min else "lesser or equal"
        super().__init__(
            context, f"length must be {comparator} than {bound} but got {length}"
        )


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------


class StorageOperationError(Exception):
    """Base class of errors raised by generated data access objects."""


class RecordNotFoundError(StorageOperationError):
    def __init__(self, type_name: str, key: str) -> None:
        self.type_name: str = type_name
        self.key: str = key
        super().__init__(f"{type_name} with key {key!r} not found")


# ---------------------------------------------------------------------------
# Strict parsers
# ---------------------------------------------------------------------------

_BOOL_TRUE: FrozenSet[str] = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_BOOL_FALSE: FrozenSet[str] = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INT_RE: re.Pattern[str] = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE: re.Pattern[str] = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE,
)


def parse_bool(raw: str) -> bool:
    if raw in _BOOL_TRUE:
        return True
    if raw in _BOOL_FALSE:
        return False
    raise ValueError(f"invalid boolean {raw!r}")


def parse_int(raw: str) -> int:
    if not _INT_RE.fullmatch(raw):
        raise ValueError(f"invalid integer {raw!r}")
    return int(raw)


def parse_float(raw: str) -> float:
    if not _FLOAT_RE.fullmatch(raw):
        raise ValueError(f"invalid number {raw!r}")
    return float(raw)


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
_HOSTNAME_RE: re.Pattern[str] = re.compile(
    r"(?=.{1,253}$)([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*"
)
_MAC_RE: re.Pattern[str] = re.compile(
    r"([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}|([0-9A-Fa-f]{4}\.){2}[0-9A-Fa-f]{4}"
)


def _check_date_time(value: str) -> None:
    datetime.fromisoformat(value.replace("Z", "+00:00"))


def _check_email(value: str) -> None:
    if not _EMAIL_RE.fullmatch(value):
        raise ValueError("invalid email address")


def _check_hostname(value: str) -> None:
    if not _HOSTNAME_RE.fullmatch(value):
        raise ValueError("invalid hostname")


def _check_uri(value: str) -> None:
    parsed = urlparse(value)
    if not parsed.scheme:
        raise ValueError("missing URI scheme")


def _check_mac(value: str) -> None:
    if not _MAC_RE.fullmatch(value):
        raise ValueError("invalid MAC address")


def _check_regexp(value: str) -> None:
    try:
        re.compile(value)
    except re.error as exc:
        raise ValueError(str(exc)) from exc


_FORMAT_CHECKS: Dict[str, Callable[[str], Any]] = {
    "date-time": _check_date_time,
    "email": _check_email,
    "hostname": _check_hostname,
    "rfc1123": _check_hostname,
    "ipv4": ipaddress.IPv4Address,
    "ipv6": ipaddress.IPv6Address,
    "ip": ipaddress.ip_address,
    "uri": _check_uri,
    "mac": _check_mac,
    "cidr": lambda v: ipaddress.ip_network(v, strict=False),
    "regexp": _check_regexp,
}

KNOWN_FORMATS: FrozenSet[str] = frozenset(_FORMAT_CHECKS)


def validate_format(fmt: str, value: str) -> Optional[str]:
    """Return why *value* is not a valid *fmt*, or ``None`` when it is."""
    check = _FORMAT_CHECKS.get(fmt)
    if check is None:
        return f"unknown format {fmt!r}"
    try:
        check(value)
    except ValueError as exc:
        return str(exc) or "invalid value"
    return None


# ---------------------------------------------------------------------------
# Request accessor
# ---------------------------------------------------------------------------


class RequestAccessor(Protocol):
    """Capabilities a generated context needs from the incoming request."""

    def get(self, name: str) -> str:
        ...

    def header(self, name: str) -> str:
        ...

    def payload(self) -> Any:
        ...

    def set_header(self, name: str, value: str) -> None:
        ...

    def respond(self, status: int, body: Optional[bytes]) -> Any:
        ...


@dataclass
class SimpleRequest:
    """In-memory request accessor; records what the handler responded."""

    params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_status: Optional[int] = None
    response_body: Optional[bytes] = None

    def get(self, name: str) -> str:
        return self.params.get(name, "")

    def header(self, name: str) -> str:
        wanted: str = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return ""

    def payload(self) -> Any:
        return self.body

    def set_header(self, name: str, value: str) -> None:
        self.response_headers[name] = value

    def respond(self, status: int, body: Optional[bytes]) -> None:
        self.response_status = status
        self.response_body = body


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def encode_json(value: Any) -> bytes:
    return json.dumps(value, default=_json_default).encode("utf-8")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Model:
    """Base record for types keyed by a single integer ``id``."""

    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


MODEL_FIELDS: Tuple[str, ...] = ("id", "created_at", "updated_at")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQL DATETIME columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def cache_key(*keys: Any) -> str:
    """
    String form of a primary key tuple.

    Backslashes and commas inside a part are escaped, so distinct tuples
    never share a key.
    """
    return ",".join(str(k).replace("\\", "\\\\").replace(",", "\\,") for k in keys)


def record_values(obj: Any) -> Dict[str, Any]:
    """Field name to value for a dataclass record, without deep copying."""
    return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}


def is_blank(value: Any) -> bool:
    """``None``, empty strings and containers, zero and ``False`` are blank."""
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def changed_values(obj: Any, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """Non-blank fields of *obj*, the column set a partial update writes."""
    skip: Set[str] = set(exclude)
    return {
        name: value
        for name, value in record_values(obj).items()
        if name not in skip and not is_blank(value)
    }


# ---------------------------------------------------------------------------
# Read-through cache
# ---------------------------------------------------------------------------


class ReadThroughCache:
    """
    Thread-safe TTL cache with background writes.

    Values are copied on the way in and on the way out, so callers never
    share state with cached entries. ``set_async``, ``delete_async`` and
    ``refresh_async`` queue work on one worker thread per cache and so
    apply in submission order. Pending work completes before interpreter
    exit; ``flush`` waits for it explicitly.
    """

    def __init__(
        self,
        expiration: float = 300.0,
        cleanup_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.expiration: float = expiration
        self.cleanup_interval: float = cleanup_interval
        self._clock: Callable[[], float] = clock
        self._items: Dict[str, Tuple[Any, float]] = {}
        self._lock: threading.Lock = threading.Lock()
        self._last_cleanup: float = clock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()

    # -- Synchronous access -------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        now: float = self._clock()
        with self._lock:
            self._cleanup_locked(now)
            item: Optional[Tuple[Any, float]] = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= now:
                del self._items[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        snapshot: Any = copy.deepcopy(value)
        with self._lock:
            self._items[key] = (snapshot, self._clock() + self.expiration)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _cleanup_locked(self, now: float) -> None:
        if now - self._last_cleanup < self.cleanup_interval:
            return
        self._last_cleanup = now
        expired: List[str] = [k for k, (_, exp) in self._items.items() if exp <= now]
        for key in expired:
            del self._items[key]
        if expired:
            logger.debug("Cache cleanup evicted %d expired entries.", len(expired))

    # -- Background access --------------------------------------------------

    def set_async(self, key: str, value: Any) -> Future:
        return self._submit(self.set, key, copy.deepcopy(value))

    def delete_async(self, key: str) -> Future:
        return self._submit(self.delete, key)

    def refresh_async(self, key: str, loader: Callable[[], Any]) -> Future:
        """Reload *key* through *loader*; a failing loader evicts the entry."""

        def _refresh() -> None:
            try:
                value: Any = loader()
            except Exception:
                logger.warning("Cache refresh of %r failed; evicting.", key, exc_info=True)
                self.delete(key)
                return
            self.set(key, value)

        return self._submit(_refresh)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued background task has finished."""
        with self._lock:
            pending: List[Future] = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        self.flush()
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="dalgen-cache"
                )
            future: Future = self._executor.submit(fn, *args)
            self._pending.add(future)
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc: Optional[BaseException] = future.exception()
        if exc is not None:
            logger.error("Background cache task failed: %s", exc, exc_info=exc)

    def __repr__(self) -> str:
        return f"<ReadThroughCache {len(self)} entries, ttl={self.expiration}s>"


# ---------------------------------------------------------------------------
# Module-level exports
# ---------------------------------------------------------------------------

__all__: List[str] = [
    "RequestError",
    "ErrorList",
    "merge_errors",
    "error_list",
    "MissingParamError",
    "MissingHeaderError",
    "InvalidParamTypeError",
    "InvalidAttributeTypeError",
    "MissingAttributeError",
    "ValidationFailedError",
    "InvalidEnumValueError",
    "InvalidFormatError",
    "InvalidPatternError",
    "InvalidRangeError",
    "InvalidLengthError",
    "StorageOperationError",
    "RecordNotFoundError",
    "parse_bool",
    "parse_int",
    "parse_float",
    "KNOWN_FORMATS",
    "validate_format",
    "RequestAccessor",
    "SimpleRequest",
    "encode_json",
    "Model",
    "MODEL_FIELDS",
    "utcnow",
    "cache_key",
    "record_values",
    "is_blank",
    "changed_values",
    "ReadThroughCache",
]

logger.debug("dalgen.runtime loaded — %d public symbols.", len(__all__))
