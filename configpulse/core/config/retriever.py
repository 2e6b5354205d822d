# SPDX-License-Identifier: MIT
"""Polling configuration retriever.

The retriever owns one store per declared :class:`StoreOptions`. A poll cycle
fetches every store concurrently, merges the results in declaration order
(later stores override earlier keys), and compares the merge with the current
snapshot. A changed snapshot is published to subscribers and listeners before
it replaces the current one.

A hard failure of any required store fails the whole cycle: nothing is merged
or published and the previous snapshot keeps being served.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from configpulse.core.config.errors import (
    BackendError,
    ConfigRetrieverError,
    ErrorKind,
    RetrieverClosedError,
)
from configpulse.core.config.options import RetrieverOptions
from configpulse.core.config.stores import ConfigStore, StoreRegistry
from configpulse.core.config.stream import ConfigStream, ConfigSubscription
from configpulse.core.utils.logging import get_logger
from configpulse.core.utils.metrics import RetrieverMetricsCollector, get_metrics_collector

__all__ = ["ConfigChange", "ConfigRetriever", "RetrieverState", "merge_configs", "snapshots_equal"]

logger = get_logger(__name__)


class RetrieverState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConfigChange:
    """A published snapshot together with the one it replaced."""

    previous: Dict[str, Any] = field(default_factory=dict)
    current: Dict[str, Any] = field(default_factory=dict)


ChangeListener = Callable[[ConfigChange], None]


def merge_configs(fragments: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow-merge *fragments*; later fragments win key-for-key."""

    merged: Dict[str, Any] = {}
    for fragment in fragments:
        merged.update(fragment)
    return merged


def snapshots_equal(left: Any, right: Any) -> bool:
    """Structural equality that also requires matching value types.

    Plain ``==`` treats ``1``, ``1.0`` and ``True`` as equal, which would hide
    a change such as a properties value going from ``1`` to ``true``.
    """

    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(
            snapshots_equal(value, right[key]) for key, value in left.items()
        )
    if isinstance(left, (list, tuple)):
        return len(left) == len(right) and all(
            snapshots_equal(a, b) for a, b in zip(left, right)
        )
    return left == right


class ConfigRetriever:
    """Poll configuration stores and publish merged snapshots.

    Use as an async context manager, or call :meth:`start` and :meth:`close`
    explicitly. :meth:`get_config` works without :meth:`start`; it polls on
    demand.
    """

    def __init__(
        self,
        options: RetrieverOptions,
        *,
        registry: StoreRegistry | None = None,
        metrics: RetrieverMetricsCollector | None = None,
    ) -> None:
        if registry is None:
            from configpulse.application.registry import default_registry

            registry = default_registry()
        self._options = options
        self._stores: tuple[ConfigStore, ...] = tuple(
            registry.create(store_options) for store_options in options.effective_stores()
        )
        self._metrics = metrics or get_metrics_collector()
        self._stream = ConfigStream()
        self._listeners: list[ChangeListener] = []
        self._snapshot: Optional[Dict[str, Any]] = None
        self._contributions: list[Optional[Dict[str, Any]]] = [None] * len(self._stores)
        self._state = RetrieverState.IDLE
        self._last_error: ConfigRetrieverError | None = None
        self._inflight: asyncio.Task[Dict[str, Any]] | None = None
        self._scanner: asyncio.Task[None] | None = None
        self._poll_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def options(self) -> RetrieverOptions:
        return self._options

    @property
    def stores(self) -> tuple[ConfigStore, ...]:
        return self._stores

    @property
    def state(self) -> RetrieverState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is RetrieverState.CLOSED

    @property
    def last_error(self) -> ConfigRetrieverError | None:
        """The error of the most recent poll cycle, ``None`` after a success."""

        return self._last_error

    @property
    def snapshot(self) -> Optional[Dict[str, Any]]:
        """A copy of the current snapshot without polling, ``None`` before the first success."""

        if self._snapshot is None:
            return None
        return copy.deepcopy(self._snapshot)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start periodic polling; a no-op when the scan period disables it."""

        self._ensure_open()
        if not self._options.periodic or self._scanner is not None:
            return
        self._scanner = asyncio.create_task(self._scan_loop(), name="configpulse-scanner")

    async def close(self) -> None:
        """Stop polling, end subscriptions and release every store."""

        if self._state is RetrieverState.CLOSED:
            return
        self._state = RetrieverState.CLOSED
        pending = [task for task in (self._scanner, self._inflight) if task is not None and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self._options.close_grace_period)
            if still_running:
                logger.warning(
                    "retriever_close_grace_period_exceeded",
                    pending_tasks=len(still_running),
                    grace_period=self._options.close_grace_period,
                )
        self._scanner = None
        self._stream.close()
        results = await asyncio.gather(
            *(store.aclose() for store in self._stores), return_exceptions=True
        )
        for store, result in zip(self._stores, results):
            if isinstance(result, Exception):
                logger.warning(
                    "store_close_failed",
                    store_type=store.store_type,
                    error=str(result),
                )
        logger.debug("retriever_closed", stores=len(self._stores), polls=self._poll_count)

    async def __aenter__(self) -> "ConfigRetriever":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Pull and push interfaces
    # ------------------------------------------------------------------
    async def get_config(self) -> Dict[str, Any]:
        """Poll now (or join the poll in flight) and return the merged snapshot.

        Raises:
            ConfigRetrieverError: the first hard store error of the cycle, in
                declaration order.
            RetrieverClosedError: if the retriever is, or becomes, closed.
        """
        self._ensure_open()
        task = self._current_poll()
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._state is RetrieverState.CLOSED and task.cancelled():
                raise RetrieverClosedError() from None
            raise

    def subscribe(self) -> ConfigSubscription:
        """Return a subscription receiving every snapshot published from now on."""

        return self._stream.subscribe()

    def listen(self, listener: ChangeListener) -> None:
        """Call *listener* with a :class:`ConfigChange` on each published change."""

        self._ensure_open()
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def _ensure_open(self) -> None:
        if self._state is RetrieverState.CLOSED:
            raise RetrieverClosedError()

    def _current_poll(self) -> asyncio.Task[Dict[str, Any]]:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._poll_cycle(), name="configpulse-poll")
            self._inflight.add_done_callback(_consume_poll_result)
        return self._inflight

    async def _scan_loop(self) -> None:
        while True:
            try:
                await asyncio.shield(self._current_poll())
            except ConfigRetrieverError:
                # Already logged and recorded by the poll cycle.
                pass
            await asyncio.sleep(self._options.scan_period)

    async def _poll_cycle(self) -> Dict[str, Any]:
        self._state = RetrieverState.POLLING
        self._poll_count += 1
        try:
            with self._metrics.measure_poll() as poll_ctx, logger.operation(
                "poll_cycle", level=logging.DEBUG, stores=len(self._stores), cycle=self._poll_count
            ) as op:
                fragments = await self._fetch_all()
                merged = merge_configs(fragments)
                changed = not snapshots_equal(merged, self._snapshot)
                op["changed"] = changed
                poll_ctx["status"] = "changed" if changed else "unchanged"
                if changed:
                    self._publish(merged)
        except ConfigRetrieverError as exc:
            if self._state is not RetrieverState.CLOSED:
                self._state = RetrieverState.FAILED
            self._last_error = exc
            raise
        if self._state is not RetrieverState.CLOSED:
            self._state = RetrieverState.IDLE
        self._last_error = None
        return copy.deepcopy(self._snapshot)  # type: ignore[arg-type]

    async def _fetch_all(self) -> list[Dict[str, Any]]:
        results = await asyncio.gather(
            *(self._fetch_store(index, store) for index, store in enumerate(self._stores)),
            return_exceptions=True,
        )
        fragments: list[Dict[str, Any]] = []
        first_error: ConfigRetrieverError | None = None
        for index, (store, result) in enumerate(zip(self._stores, results)):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, ConfigRetrieverError):
                if store.options.optional:
                    previous = self._contributions[index]
                    logger.warning(
                        "optional_store_failed",
                        store_type=store.store_type,
                        store_index=index,
                        error_kind=result.kind.value,
                        error=str(result),
                        kept_previous=previous is not None,
                    )
                    fragments.append(copy.deepcopy(previous) if previous is not None else {})
                    continue
                if first_error is None:
                    first_error = result
                continue
            fragments.append(result)
        if first_error is not None:
            raise first_error
        for index, (store, result) in enumerate(zip(self._stores, results)):
            if not isinstance(result, BaseException):
                self._contributions[index] = result
        return fragments

    async def _fetch_store(self, index: int, store: ConfigStore) -> Dict[str, Any]:
        try:
            fragment = await store.fetch()
        except ConfigRetrieverError as exc:
            self._record_store_error(index, store, exc)
            raise
        except Exception as exc:
            wrapped = BackendError(
                ErrorKind.UNAVAILABLE,
                f"Store '{store.store_type}' failed unexpectedly: {exc}",
                detail=str(exc),
            )
            self._record_store_error(index, store, wrapped)
            raise wrapped from exc
        if not isinstance(fragment, dict):
            wrapped = BackendError(
                ErrorKind.UNAVAILABLE,
                f"Store '{store.store_type}' returned {type(fragment).__name__} instead of a mapping",
            )
            self._record_store_error(index, store, wrapped)
            raise wrapped
        return fragment

    def _record_store_error(self, index: int, store: ConfigStore, error: ConfigRetrieverError) -> None:
        self._metrics.record_store_error(store.store_type, error.kind.value)
        logger.warning(
            "store_fetch_failed",
            store_type=store.store_type,
            store_index=index,
            error_kind=error.kind.value,
            error=str(error),
        )

    def _publish(self, merged: Dict[str, Any]) -> None:
        previous = self._snapshot
        self._stream.publish(merged)
        self._snapshot = merged
        self._metrics.record_publication(len(merged))
        if not self._listeners:
            return
        change = ConfigChange(
            previous=copy.deepcopy(previous) if previous is not None else {},
            current=copy.deepcopy(merged),
        )
        for listener in tuple(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                logger.error(
                    "config_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(exc),
                    exc_info=True,
                )


def _consume_poll_result(task: asyncio.Task[Any]) -> None:
    if not task.cancelled():
        task.exception()
