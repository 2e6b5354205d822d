# SPDX-License-Identifier: MIT
"""End-to-end retrieval from an in-memory Vault through the retriever."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import pytest
from pydantic import ValidationError

from configpulse.application.registry import build_registry
from configpulse.application.secrets.store import VaultConfigStore
from configpulse.core.config.errors import BackendError, ErrorKind, FormatError, UnknownStoreTypeError
from configpulse.core.config.options import RetrieverOptions, StoreOptions
from configpulse.core.config.retriever import ConfigRetriever
from configpulse.core.config.stores import StoreRegistry
from configpulse.core.utils.metrics import RetrieverMetricsCollector
from tests.fixtures.vault import SAMPLE_SECRET, FakeVault

StoreBuilder = Callable[..., StoreOptions]


@pytest.fixture
def make_retriever(
    vault_registry: StoreRegistry, metrics: RetrieverMetricsCollector
) -> Callable[..., ConfigRetriever]:
    def _build(*stores: StoreOptions, **options: Any) -> ConfigRetriever:
        options.setdefault("scan_period", 0)
        return ConfigRetriever(
            RetrieverOptions(stores=stores, **options),
            registry=vault_registry,
            metrics=metrics,
        )

    return _build


@pytest.mark.asyncio
async def test_whole_secret_is_returned_unchanged(make_retriever, vault_store_options: StoreBuilder) -> None:
    retriever = make_retriever(vault_store_options(path="secret/app/foo"))

    assert await retriever.get_config() == SAMPLE_SECRET
    await retriever.close()


@pytest.mark.asyncio
async def test_key_holding_object_is_returned_as_is(make_retriever, vault_store_options: StoreBuilder) -> None:
    retriever = make_retriever(vault_store_options(path="secret/app/foo", key="nested"))

    assert await retriever.get_config() == {"foo": "bar"}
    await retriever.close()


@pytest.mark.asyncio
async def test_key_holding_properties_text_is_converted(
    make_retriever, vault_store_options: StoreBuilder
) -> None:
    retriever = make_retriever(vault_store_options(fmt="properties", path="secret/app/foo", key="props"))

    assert await retriever.get_config() == {"key": "val", "key2": 5}
    await retriever.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "config",
    [
        {"path": "secret/app/missing"},
        {"path": "secret/app/missing", "key": "nested"},
        {"path": "secret/app/foo", "key": "absent"},
    ],
)
async def test_missing_secret_or_key_is_empty(
    make_retriever, vault_store_options: StoreBuilder, config: dict[str, str]
) -> None:
    retriever = make_retriever(vault_store_options(**config))

    assert await retriever.get_config() == {}
    await retriever.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fmt", "key", "expected"),
    [
        (None, "counter", {"counter": 10}),
        ("raw", "message", {"message": "hello"}),
        ("raw", "nested", {"nested": {"foo": "bar"}}),
        ("json", "nested", {"foo": "bar"}),
    ],
)
async def test_key_extraction_by_format(
    make_retriever,
    vault_store_options: StoreBuilder,
    fmt: str | None,
    key: str,
    expected: dict[str, Any],
) -> None:
    retriever = make_retriever(vault_store_options(fmt=fmt, path="secret/app/foo", key=key))

    assert await retriever.get_config() == expected
    await retriever.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(("fmt", "key"), [("json", "counter"), ("json", "props"), ("yaml", "nested")])
async def test_key_unreadable_in_declared_format(
    make_retriever, vault_store_options: StoreBuilder, fmt: str, key: str
) -> None:
    retriever = make_retriever(vault_store_options(fmt=fmt, path="secret/app/foo", key=key))

    with pytest.raises(FormatError) as exc:
        await retriever.get_config()
    assert exc.value.kind is ErrorKind.FORMAT
    await retriever.close()


@pytest.mark.asyncio
async def test_sealed_backend_fails_until_unsealed(
    make_retriever, vault_store_options: StoreBuilder, fake_vault: FakeVault
) -> None:
    retriever = make_retriever(vault_store_options(path="secret/app/foo"))
    assert await retriever.get_config() == SAMPLE_SECRET

    fake_vault.seal()
    with pytest.raises(BackendError) as exc:
        await retriever.get_config()
    assert exc.value.kind is ErrorKind.SEALED
    assert "sealed" in exc.value.detail
    assert retriever.snapshot == SAMPLE_SECRET

    fake_vault.unseal()
    assert await retriever.get_config() == SAMPLE_SECRET
    await retriever.close()


@pytest.mark.asyncio
async def test_revoked_token_is_unauthorized(
    make_retriever, vault_store_options: StoreBuilder, fake_vault: FakeVault
) -> None:
    token = fake_vault.issue_token()
    retriever = make_retriever(vault_store_options(path="secret/app/foo", token=token))
    assert await retriever.get_config() == SAMPLE_SECRET

    fake_vault.revoke(token)

    with pytest.raises(BackendError) as exc:
        await retriever.get_config()
    assert exc.value.kind is ErrorKind.UNAUTHORIZED
    assert "permission denied" in exc.value.detail
    await retriever.close()


@pytest.mark.asyncio
async def test_unreachable_backend_is_unavailable(
    make_retriever, vault_store_options: StoreBuilder, fake_vault: FakeVault
) -> None:
    fake_vault.unreachable = True
    retriever = make_retriever(vault_store_options(path="secret/app/foo"))

    with pytest.raises(BackendError) as exc:
        await retriever.get_config()
    assert exc.value.kind is ErrorKind.UNAVAILABLE
    await retriever.close()


@pytest.mark.asyncio
async def test_optional_vault_store_tolerates_sealing(
    make_retriever, vault_store_options: StoreBuilder, fake_vault: FakeVault
) -> None:
    defaults = StoreOptions(type="json", config={"message": "default", "region": "eu"})
    secret = vault_store_options(path="secret/app/foo").model_copy(update={"optional": True})
    retriever = make_retriever(defaults, secret)

    first = await retriever.get_config()
    fake_vault.seal()
    second = await retriever.get_config()

    assert first == second == {**SAMPLE_SECRET, "region": "eu"}
    await retriever.close()


@pytest.mark.flaky
@pytest.mark.asyncio
async def test_secret_updates_are_streamed(
    make_retriever, vault_store_options: StoreBuilder, fake_vault: FakeVault
) -> None:
    retriever = make_retriever(vault_store_options(path="secret/app/update"), scan_period=0.01)
    subscription = retriever.subscribe()

    async with retriever:
        assert await asyncio.wait_for(subscription.next(), timeout=2) == SAMPLE_SECRET
        fake_vault.write("secret/app/update", {**SAMPLE_SECRET, "counter": 11})
        updated = await asyncio.wait_for(subscription.next(), timeout=2)

    assert updated["counter"] == 11
    assert updated["message"] == "hello"


@pytest.mark.asyncio
async def test_kv_v2_backend(metrics: RetrieverMetricsCollector, vault_store_options: StoreBuilder) -> None:
    vault = FakeVault(kv_version=2)
    vault.write("secret/app/foo", SAMPLE_SECRET)
    registry = build_registry()
    factory = vault.session_factory()
    registry.register("vault", lambda options: VaultConfigStore(options, session_factory=factory), replace=True)
    retriever = ConfigRetriever(
        RetrieverOptions(stores=(vault_store_options(path="secret/app/foo", kv_version=2, key="nested"),)),
        registry=registry,
        metrics=metrics,
    )

    assert await retriever.get_config() == {"foo": "bar"}
    assert ("GET", "/v1/secret/data/app/foo") in vault.calls
    await retriever.close()


def test_store_settings_are_validated(make_retriever, vault_store_options: StoreBuilder) -> None:
    with pytest.raises(ValidationError, match="token"):
        make_retriever(vault_store_options(path="secret/app/foo", token=""))
    with pytest.raises(ValidationError):
        make_retriever(StoreOptions(type="vault", config={"token": "t"}))


def _counting_registry(vault: FakeVault, opened: list[httpx.AsyncClient]) -> StoreRegistry:
    factory = vault.session_factory()

    def _session(**kwargs: Any) -> httpx.AsyncClient:
        session = factory(**kwargs)
        opened.append(session)
        return session

    registry = build_registry()
    registry.register("vault", lambda options: VaultConfigStore(options, session_factory=_session), replace=True)
    return registry


def test_failed_construction_opens_no_vault_session(
    fake_vault: FakeVault, metrics: RetrieverMetricsCollector, vault_store_options: StoreBuilder
) -> None:
    opened: list[httpx.AsyncClient] = []
    stores = (vault_store_options(path="secret/app/foo"), StoreOptions(type="consul"))

    with pytest.raises(UnknownStoreTypeError):
        ConfigRetriever(
            RetrieverOptions(stores=stores, scan_period=0),
            registry=_counting_registry(fake_vault, opened),
            metrics=metrics,
        )

    assert opened == []


@pytest.mark.asyncio
async def test_vault_session_opens_on_first_fetch_and_closes(
    fake_vault: FakeVault, metrics: RetrieverMetricsCollector, vault_store_options: StoreBuilder
) -> None:
    opened: list[httpx.AsyncClient] = []
    retriever = ConfigRetriever(
        RetrieverOptions(stores=(vault_store_options(path="secret/app/foo"),), scan_period=0),
        registry=_counting_registry(fake_vault, opened),
        metrics=metrics,
    )
    assert opened == []

    await retriever.get_config()
    await retriever.get_config()
    await retriever.close()

    assert len(opened) == 1
    assert opened[0].is_closed
