# SPDX-License-Identifier: MIT
"""Process-wide registry of the store types shipped with configpulse."""

from __future__ import annotations

from configpulse.application.secrets.store import VaultConfigStore
from configpulse.core.config.stores import StoreRegistry, register_local_stores

__all__ = ["build_registry", "default_registry"]

_DEFAULT_REGISTRY: StoreRegistry | None = None


def build_registry() -> StoreRegistry:
    """Return a new registry holding the ``json``, ``env``, ``file`` and ``vault`` stores."""

    registry = register_local_stores(StoreRegistry())
    registry.register("vault", VaultConfigStore)
    return registry


def default_registry() -> StoreRegistry:
    """Return the shared registry, building it on first use.

    Additional store types registered on it become available to every
    retriever created without an explicit registry.
    """

    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = build_registry()
    return _DEFAULT_REGISTRY
