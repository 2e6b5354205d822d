# SPDX-License-Identifier: MIT
"""Structured JSON logging for configpulse.

Records carry keyword fields and a correlation identifier. Every poll cycle of
a retriever runs under its own identifier, so the records of concurrent store
fetches can be grouped together. Field values whose names look like
credentials (Vault tokens, AppRole secret ids, passwords) are replaced with
``[REDACTED]`` before they reach a handler.
"""
from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Mapping, Optional
from uuid import uuid4

REDACTED = "[REDACTED]"
_SENSITIVE_KEYWORDS = ("token", "password", "secret_id", "credential", "client_key")

_CORRELATION_ID_VAR: ContextVar[Optional[str]] = ContextVar(
    "configpulse_correlation_id", default=None
)


def generate_correlation_id() -> str:
    return uuid4().hex


def get_correlation_id() -> Optional[str]:
    """Return the identifier bound by the innermost :func:`correlation_context`."""

    return _CORRELATION_ID_VAR.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation identifier for the duration of the block.

    Tasks created inside the block inherit the identifier because asyncio
    copies the current context when scheduling them.
    """

    resolved = correlation_id or generate_correlation_id()
    token = _CORRELATION_ID_VAR.set(resolved)
    try:
        yield resolved
    finally:
        _CORRELATION_ID_VAR.reset(token)


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS)


def redact_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of *fields* with credential-like values redacted, recursively."""

    def _redact(value: Any, name: Optional[str]) -> Any:
        if isinstance(value, Mapping):
            return {key: _redact(inner, str(key)) for key, inner in value.items()}
        if isinstance(value, (list, tuple)):
            return [_redact(item, name) for item in value]
        if name is not None and _is_sensitive(name) and value is not None:
            return REDACTED
        return value

    return {key: _redact(value, key) for key, value in fields.items()}


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON document per line."""

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id is not None:
            document["correlation_id"] = correlation_id
        document.update(getattr(record, "extra_fields", {}))
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class StructuredLogger:
    """Logger facade taking an event name plus keyword fields.

    >>> logger = get_logger("configpulse.example")
    >>> logger.warning("store_fetch_failed", store_type="vault", error_kind="sealed")
    """

    def __init__(self, name: str, correlation_id: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self._correlation_id = correlation_id

    def _resolve_correlation_id(self, explicit: Optional[str] = None) -> str:
        resolved = explicit or get_correlation_id()
        if resolved:
            return resolved
        if self._correlation_id is None:
            self._correlation_id = generate_correlation_id()
        return self._correlation_id

    def _log(self, level: int, event: str, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        extra: Dict[str, Any] = {
            "correlation_id": self._resolve_correlation_id(fields.pop("correlation_id", None))
        }
        if fields:
            extra["extra_fields"] = redact_fields(fields)
        self.logger.log(level, event, extra=extra, exc_info=exc_info)

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log(logging.ERROR, event, **fields)

    @contextmanager
    def operation(
        self,
        operation_name: str,
        *,
        level: int = logging.INFO,
        correlation_id: Optional[str] = None,
        **context: Any,
    ) -> Iterator[Dict[str, Any]]:
        """Log the start, outcome and duration of a unit of work.

        The block runs under a fresh correlation identifier unless one is
        given. The yielded dict may be enriched with result fields; a
        ``status`` entry overrides the default ``success``/``failure``.
        Exceptions are logged at WARNING and re-raised; cancellation is logged
        at *level*.

        >>> with get_logger("configpulse.example").operation("poll_cycle", stores=2) as op:
        ...     op["changed"] = True
        """
        started = time.perf_counter()
        op_context: Dict[str, Any] = {"operation": operation_name, **context}

        with correlation_context(correlation_id):
            self._log(level, f"Starting operation: {operation_name}", **op_context)
            try:
                yield op_context
            except BaseException as exc:
                op_context.setdefault("status", "failure")
                self._log(
                    logging.WARNING if isinstance(exc, Exception) else level,
                    f"Failed operation: {operation_name}",
                    **op_context,
                    duration_seconds=time.perf_counter() - started,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                )
                raise
            op_context.setdefault("status", "success")
            self._log(
                level,
                f"Completed operation: {operation_name}",
                **op_context,
                duration_seconds=time.perf_counter() - started,
            )


def configure_logging(level: str = "INFO", use_json: bool = True, stream: Any = None) -> None:
    """Install a single root handler writing to *stream* (stderr by default).

    stdout stays reserved for command output such as ``configpulse get``.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root.addHandler(handler)


def get_logger(name: str, correlation_id: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(name, correlation_id)


__all__ = [
    "REDACTED",
    "JSONFormatter",
    "StructuredLogger",
    "configure_logging",
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "get_logger",
    "redact_fields",
]
