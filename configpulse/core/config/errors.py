# SPDX-License-Identifier: MIT
"""Error taxonomy shared by stores and the retriever."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

__all__ = [
    "BackendError",
    "ConfigRetrieverError",
    "ErrorKind",
    "FormatError",
    "RetrieverClosedError",
    "UnknownStoreTypeError",
]


class ErrorKind(str, Enum):
    """Classification attached to every retrieval failure."""

    FORMAT = "format"
    UNAUTHORIZED = "unauthorized"
    SEALED = "sealed"
    UNAVAILABLE = "unavailable"
    CLOSED = "closed"


class ConfigRetrieverError(RuntimeError):
    """Base class for failures surfaced by stores and the retriever."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail if detail is not None else message


class FormatError(ConfigRetrieverError):
    """Raised when a payload cannot be parsed in its declared format."""

    kind = ErrorKind.FORMAT


class BackendError(ConfigRetrieverError):
    """Raised when a backend refuses or fails to serve a request."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        detail: str | None = None,
        status_code: int | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        if kind not in (ErrorKind.UNAUTHORIZED, ErrorKind.SEALED, ErrorKind.UNAVAILABLE):
            raise ValueError(f"{kind.value!r} is not a backend error kind")
        super().__init__(message, detail=detail)
        self.kind = kind
        self.status_code = status_code
        self.payload = dict(payload or {})


class RetrieverClosedError(ConfigRetrieverError):
    """Raised by operations attempted on, or interrupted by, a closed retriever."""

    kind = ErrorKind.CLOSED

    def __init__(self, message: str = "Configuration retriever is closed") -> None:
        super().__init__(message)


class UnknownStoreTypeError(LookupError):
    """Raised when no store factory is registered for a store type."""

    def __init__(self, store_type: str, known: tuple[str, ...] = ()) -> None:
        hint = f" (known types: {', '.join(known)})" if known else ""
        super().__init__(f"Unknown configuration store type '{store_type}'{hint}")
        self.store_type = store_type
