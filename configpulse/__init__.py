# SPDX-License-Identifier: MIT
"""Poll configuration stores, merge their fragments and publish changes."""

from configpulse.core.config import (
    BackendError,
    ConfigChange,
    ConfigRetriever,
    ConfigRetrieverError,
    ErrorKind,
    FormatError,
    RetrieverClosedError,
    RetrieverOptions,
    StoreOptions,
)

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "ConfigChange",
    "ConfigRetriever",
    "ConfigRetrieverError",
    "ErrorKind",
    "FormatError",
    "RetrieverClosedError",
    "RetrieverOptions",
    "StoreOptions",
    "__version__",
]
