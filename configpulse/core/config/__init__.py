# SPDX-License-Identifier: MIT
"""Configuration retrieval: formats, stores, streams and the retriever."""

from configpulse.core.config.errors import (
    BackendError,
    ConfigRetrieverError,
    ErrorKind,
    FormatError,
    RetrieverClosedError,
    UnknownStoreTypeError,
)
from configpulse.core.config.formats import coerce_value, convert, supported_formats
from configpulse.core.config.options import RetrieverOptions, StoreOptions
from configpulse.core.config.retriever import (
    ConfigChange,
    ConfigRetriever,
    RetrieverState,
    merge_configs,
    snapshots_equal,
)
from configpulse.core.config.stores import (
    ConfigStore,
    EnvConfigStore,
    FileConfigStore,
    JsonConfigStore,
    StoreRegistry,
    register_local_stores,
)
from configpulse.core.config.stream import ConfigStream, ConfigSubscription

__all__ = [
    "BackendError",
    "ConfigChange",
    "ConfigRetriever",
    "ConfigRetrieverError",
    "ConfigStore",
    "ConfigStream",
    "ConfigSubscription",
    "EnvConfigStore",
    "ErrorKind",
    "FileConfigStore",
    "FormatError",
    "JsonConfigStore",
    "RetrieverClosedError",
    "RetrieverOptions",
    "RetrieverState",
    "StoreOptions",
    "StoreRegistry",
    "UnknownStoreTypeError",
    "coerce_value",
    "convert",
    "merge_configs",
    "snapshots_equal",
    "register_local_stores",
    "supported_formats",
]
