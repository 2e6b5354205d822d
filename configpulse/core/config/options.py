# SPDX-License-Identifier: MIT
"""Validated options describing stores and retrievers."""

from __future__ import annotations

import copy
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from configpulse.core.config.formats import DEFAULT_FORMAT

__all__ = ["RetrieverOptions", "StoreOptions"]


class StoreOptions(BaseModel):
    """Declaration of a single configuration store.

    ``format`` is left unset when the declaration does not name one; the
    effective format is then ``json``. Some stores (the Vault store when
    drilling into a key) treat an unset format differently from an explicit
    ``json``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str = Field(..., min_length=1, description="Registered store type, e.g. 'vault'.")
    format: str | None = Field(
        default=None,
        min_length=1,
        description="Payload format handed to the format converter.",
    )
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Store specific settings, interpreted by the store implementation.",
    )
    optional: bool = Field(
        default=False,
        description=(
            "When set, a failing fetch does not fail the poll cycle; the store keeps "
            "contributing its last successful result."
        ),
    )

    @field_validator("config", mode="before")
    @classmethod
    def _copy_config(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return copy.deepcopy(dict(value))
        return value

    @property
    def effective_format(self) -> str:
        return self.format or DEFAULT_FORMAT

    def setting(self, name: str, default: Any = None) -> Any:
        """Return a store setting from ``config``."""

        return self.config.get(name, default)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "format": self.effective_format}
        if self.config:
            payload["config"] = copy.deepcopy(self.config)
        if self.optional:
            payload["optional"] = True
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "StoreOptions":
        return cls.model_validate(dict(payload))


class RetrieverOptions(BaseModel):
    """Options of a :class:`~configpulse.core.config.retriever.ConfigRetriever`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    stores: tuple[StoreOptions, ...] = Field(default_factory=tuple)
    scan_period: float = Field(
        default=5.0,
        description="Seconds between poll cycles; zero or negative disables periodic polling.",
    )
    close_grace_period: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds granted to an in-flight poll to finish cancelling on close.",
    )
    include_default_stores: bool = Field(
        default=False,
        description="Prepend an environment variable store with the lowest precedence.",
    )

    @property
    def periodic(self) -> bool:
        return self.scan_period > 0

    def effective_stores(self) -> tuple[StoreOptions, ...]:
        if not self.include_default_stores:
            return self.stores
        return (StoreOptions(type="env"), *self.stores)

    def add_store(self, store: StoreOptions) -> "RetrieverOptions":
        """Return a copy with *store* appended (highest precedence)."""

        return self.model_copy(update={"stores": (*self.stores, store)})
