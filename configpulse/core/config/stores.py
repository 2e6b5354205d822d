# SPDX-License-Identifier: MIT
"""Store contract, store registry and the built-in local stores."""

from __future__ import annotations

import asyncio
import copy
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from configpulse.core.config.errors import BackendError, ErrorKind, UnknownStoreTypeError
from configpulse.core.config.formats import DEFAULT_RAW_KEY, coerce_value, convert
from configpulse.core.config.options import StoreOptions
from configpulse.core.utils.logging import get_logger

__all__ = [
    "ConfigStore",
    "EnvConfigStore",
    "FileConfigStore",
    "JsonConfigStore",
    "StoreFactory",
    "StoreRegistry",
    "register_local_stores",
]

logger = get_logger(__name__)


class ConfigStore(ABC):
    """A source of configuration fragments.

    Fetches of one store instance never overlap: :meth:`fetch` serializes
    calls to :meth:`_fetch` so an implementation can assume exclusive use of
    its backend session.
    """

    def __init__(self, options: StoreOptions) -> None:
        self._options = options
        self._lock = asyncio.Lock()

    @property
    def options(self) -> StoreOptions:
        return self._options

    @property
    def store_type(self) -> str:
        return self._options.type

    async def fetch(self) -> Dict[str, Any]:
        """Return the store's current configuration object."""

        async with self._lock:
            return await self._fetch()

    @abstractmethod
    async def _fetch(self) -> Dict[str, Any]:
        """Produce the configuration object for a single fetch."""

    def _convert(self, payload: bytes | str) -> Dict[str, Any]:
        return convert(
            payload,
            self._options.effective_format,
            raw_key=self._options.setting("raw_key", DEFAULT_RAW_KEY),
            raw_type=self._options.setting("raw_type", "string"),
            hierarchical=bool(self._options.setting("hierarchical", False)),
        )

    async def aclose(self) -> None:
        """Release store resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.store_type!r})"


StoreFactory = Callable[[StoreOptions], ConfigStore]


class StoreRegistry:
    """Map store type names to factories building :class:`ConfigStore` instances."""

    def __init__(self, factories: Mapping[str, StoreFactory] | None = None) -> None:
        self._factories: Dict[str, StoreFactory] = dict(factories or {})

    def register(self, store_type: str, factory: StoreFactory, *, replace: bool = False) -> None:
        if not store_type:
            raise ValueError("store_type must be provided")
        if store_type in self._factories and not replace:
            raise ValueError(f"A factory is already registered for store type '{store_type}'")
        self._factories[store_type] = factory

    def create(self, options: StoreOptions) -> ConfigStore:
        factory = self._factories.get(options.type)
        if factory is None:
            raise UnknownStoreTypeError(options.type, self.types())
        return factory(options)

    def types(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def __contains__(self, store_type: object) -> bool:
        return store_type in self._factories


class JsonConfigStore(ConfigStore):
    """Serve the inline ``config`` mapping of the declaration."""

    async def _fetch(self) -> Dict[str, Any]:
        return copy.deepcopy(self._options.config)


class EnvConfigStore(ConfigStore):
    """Expose environment variables as configuration.

    Settings: ``prefix`` keeps only variables starting with it and strips it
    from the key, ``keys`` restricts the result to the listed names, and
    ``raw_data`` disables value coercion.
    """

    def __init__(self, options: StoreOptions, *, environ: Mapping[str, str] | None = None) -> None:
        super().__init__(options)
        self._environ = environ
        keys = options.setting("keys")
        self._keys: frozenset[str] | None = frozenset(keys) if keys else None
        self._prefix: str = options.setting("prefix", "") or ""
        self._raw = bool(options.setting("raw_data", False))

    async def _fetch(self) -> Dict[str, Any]:
        environ = os.environ if self._environ is None else self._environ
        result: Dict[str, Any] = {}
        for name in sorted(environ):
            if self._prefix and not name.startswith(self._prefix):
                continue
            key = name[len(self._prefix) :] if self._prefix else name
            if not key or (self._keys is not None and key not in self._keys):
                continue
            value = environ[name]
            result[key] = value if self._raw else coerce_value(value)
        return result


class FileConfigStore(ConfigStore):
    """Read a local file and convert it with the declared format."""

    def __init__(self, options: StoreOptions) -> None:
        super().__init__(options)
        path = options.setting("path")
        if not path:
            raise ValueError("The file store requires a 'path' setting")
        self._path = Path(path)

    async def _fetch(self) -> Dict[str, Any]:
        try:
            payload = await asyncio.to_thread(self._path.read_bytes)
        except OSError as exc:
            logger.debug("file_store_read_failed", path=str(self._path), error=str(exc))
            raise BackendError(
                ErrorKind.UNAVAILABLE,
                f"Unable to read configuration file {self._path}: {exc}",
                detail=str(exc),
            ) from exc
        return self._convert(payload)


def register_local_stores(registry: StoreRegistry) -> StoreRegistry:
    """Register the ``json``, ``env`` and ``file`` stores on *registry*."""

    factories: Dict[str, StoreFactory] = {
        "json": JsonConfigStore,
        "env": EnvConfigStore,
        "file": FileConfigStore,
    }
    for name, factory in factories.items():
        registry.register(name, factory)
    return registry
