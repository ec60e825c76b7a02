"""
logging_config.py
------------------

Shared logging configuration and helpers for structured logging
throughout the pharmacy cache.  It uses Python's built-in ``logging``
module so that output can be captured by standard handlers or shipped
to an external collector.  Messages are serialised as JSON objects
with an ``event`` key to make them easy to filter downstream.

Import ``logger`` and call its methods instead of ``logging.info``
directly.  The ``log_call`` decorator can be applied to functions and
coroutines to record entry and exit points at the DEBUG level without
leaking sensitive information such as tokens or passwords.
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from functools import wraps
from typing import Any, Callable, Dict

from pharma_cache.core.config import get_settings

# -----------------------------------------------------------------------------
# Configure global logging
# -----------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("pharma_cache")


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a single JSON log line for ``event``.

    Extra keyword arguments become fields of the JSON object.  Values
    are passed through :func:`_sanitize` first.
    """
    if not logger.isEnabledFor(level):
        return
    payload: Dict[str, Any] = {"event": event}
    payload.update(_sanitize(fields))
    try:
        message = json.dumps(payload, default=str)
    except (TypeError, ValueError):
        message = f"{event} {fields!r}"
    logger.log(level, message)


def _sanitize(obj: Any) -> Any:
    """Recursively sanitise objects for logging.

    Dictionaries have keys containing 'token', 'password' or 'secret'
    removed.  Lists and tuples are processed element-wise.  Pydantic
    models are logged through their ``model_dump`` representation.

    Parameters
    ----------
    obj : Any
        Arbitrary Python object to sanitise.

    Returns
    -------
    Any
        A sanitised representation of the input suitable for JSON serialisation.
    """
    if isinstance(obj, (bytes, bytearray)):
        return f"<binary {len(obj)} bytes>"
    if isinstance(obj, dict):
        clean: Dict[str, Any] = {}
        for k, v in obj.items():
            if any(keyword in str(k).lower() for keyword in ("token", "password", "secret")):
                continue
            clean[str(k)] = _sanitize(v)
        return clean
    if isinstance(obj, (list, tuple)):
        return [_sanitize(i) for i in obj]
    if hasattr(obj, "model_dump"):
        try:
            return _sanitize(obj.model_dump(mode="json"))
        except (TypeError, ValueError):
            return repr(obj)
    try:
        return json.loads(json.dumps(obj))
    except (TypeError, ValueError):
        return str(obj)


def log_call(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to log entry and exit of functions and coroutines.

    A ``call_start`` event is emitted before the wrapped callable runs
    and a ``call_end`` event after it returns.  Arguments and return
    values are only sanitised when DEBUG logging is enabled, so the
    decorator costs almost nothing on the hot path.

    Examples
    --------

    >>> @log_call
    ... def add(a, b):
    ...     return a + b
    """

    def _start(args: Any, kwargs: Any) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            log_event(
                "call_start",
                logging.DEBUG,
                function=func.__qualname__,
                args=args,
                kwargs=kwargs,
            )

    def _end(result: Any) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            log_event("call_end", logging.DEBUG, function=func.__qualname__, result=result)

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            _start(args, kwargs)
            result = await func(*args, **kwargs)
            _end(result)
            return result

        async_wrapper.__signature__ = inspect.signature(func)  # type: ignore[attr-defined]
        return async_wrapper

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _start(args, kwargs)
        result = func(*args, **kwargs)
        _end(result)
        return result

    # Keep the original signature visible to FastAPI and other
    # introspection tools.
    wrapper.__signature__ = inspect.signature(func)  # type: ignore[attr-defined]
    return wrapper


def log_http_request(method: str, url: str, *, headers: Dict[str, Any] | None = None,
                     params: Dict[str, Any] | None = None, json_body: Dict[str, Any] | None = None,
                     status: int | None = None, duration_ms: float | None = None) -> None:
    """Log an outbound HTTP request at DEBUG level.

    Tokens are removed from headers and only high-level information
    (method, URL, status and duration) is recorded.  Invoked by the
    HTTP client wrapper before and after performing requests.

    Parameters
    ----------
    method : str
        The HTTP method (GET, POST, etc.)
    url : str
        The URL being requested.
    headers : dict, optional
        Request headers.  Sensitive keys are removed.
    params : dict, optional
        Query parameters.
    json_body : dict, optional
        JSON payload for non-GET requests.
    status : int, optional
        Response status code (log end only).
    duration_ms : float, optional
        Time taken in milliseconds (log end only).
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    data: Dict[str, Any] = {
        "event": "http_request",
        "method": method,
        "url": url,
    }
    if headers is not None:
        data["headers"] = {k: v for k, v in headers.items() if k.lower() != "authorization"}
    if params:
        data["params"] = params
    if json_body:
        data["json"] = _sanitize(json_body)
    if status is not None:
        data["status"] = status
    if duration_ms is not None:
        data["duration_ms"] = round(duration_ms, 2)
    logger.debug(json.dumps(data, default=str))
