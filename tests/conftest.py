# SPDX-License-Identifier: MIT
from __future__ import annotations

from typing import Any, Callable

import pytest
from prometheus_client import CollectorRegistry

from configpulse.application.registry import build_registry
from configpulse.application.secrets.store import VaultConfigStore
from configpulse.core.config.options import StoreOptions
from configpulse.core.config.stores import StoreRegistry
from configpulse.core.utils.metrics import RetrieverMetricsCollector, get_metrics_collector
from tests.fixtures.vault import ROOT_TOKEN, SAMPLE_SECRET, FakeVault


@pytest.fixture
def metrics() -> RetrieverMetricsCollector:
    return get_metrics_collector(CollectorRegistry())


@pytest.fixture
def fake_vault() -> FakeVault:
    vault = FakeVault()
    vault.write("secret/app/foo", SAMPLE_SECRET)
    vault.write("secret/app/update", SAMPLE_SECRET)
    return vault


@pytest.fixture
def vault_registry(fake_vault: FakeVault) -> StoreRegistry:
    """Default registry whose ``vault`` stores talk to :func:`fake_vault`."""

    registry = build_registry()
    factory = fake_vault.session_factory()
    registry.register(
        "vault",
        lambda options: VaultConfigStore(options, session_factory=factory),
        replace=True,
    )
    return registry


@pytest.fixture
def vault_store_options() -> Callable[..., StoreOptions]:
    def _build(*, fmt: str | None = None, token: str = ROOT_TOKEN, **config: Any) -> StoreOptions:
        return StoreOptions(
            type="vault",
            format=fmt,
            config={"host": "vault.test", "port": 8200, "token": token, **config},
        )

    return _build
