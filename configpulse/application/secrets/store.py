# SPDX-License-Identifier: MIT
"""Configuration store reading secrets from HashiCorp Vault."""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from configpulse.application.secrets.hashicorp import (
    AppRoleAuthenticator,
    StaticTokenAuthenticator,
    UserPassAuthenticator,
    VaultAuthenticator,
    VaultClient,
    VaultClientConfig,
)
from configpulse.core.config.errors import FormatError
from configpulse.core.config.options import StoreOptions
from configpulse.core.config.stores import ConfigStore
from configpulse.core.utils.logging import get_logger

__all__ = ["VaultConfigStore", "VaultStoreConfig"]

logger = get_logger(__name__)


class VaultStoreConfig(BaseModel):
    """Settings accepted in the ``config`` section of a ``vault`` store."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    path: str = Field(..., min_length=1, description="Secret path, e.g. 'secret/app/foo'.")
    key: str | None = Field(default=None, min_length=1, description="Field of the secret to extract.")
    address: str | None = Field(default=None, description="Full Vault URL; overrides host/port/ssl.")
    host: str = "localhost"
    port: int = Field(default=8200, gt=0, lt=65536)
    ssl: bool = False
    namespace: str | None = None
    kv_version: Literal[1, 2] = 1
    timeout: float = Field(default=5.0, gt=0)
    verify: bool = True
    ca_file: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    auth_backend: Literal["token", "approle", "userpass"] = "token"
    auth_mount: str | None = None
    token: str | None = None
    role_id: str | None = None
    secret_id: str | None = None
    username: str | None = None
    password: str | None = None

    @model_validator(mode="after")
    def _validate_credentials(self) -> "VaultStoreConfig":
        if self.auth_backend == "token" and not self.token:
            raise ValueError("'token' is required when auth_backend is 'token'")
        if self.auth_backend == "approle" and not (self.role_id and self.secret_id):
            raise ValueError("'role_id' and 'secret_id' are required when auth_backend is 'approle'")
        if self.auth_backend == "userpass" and not (self.username and self.password):
            raise ValueError("'username' and 'password' are required when auth_backend is 'userpass'")
        return self

    def resolved_address(self) -> str:
        if self.address:
            return self.address
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.host}:{self.port}"

    def client_config(self) -> VaultClientConfig:
        return VaultClientConfig(
            address=self.resolved_address(),
            namespace=self.namespace,
            verify=self.ca_file if self.ca_file else self.verify,
            timeout=self.timeout,
            client_cert=self.client_cert,
            client_key=self.client_key,
            kv_version=self.kv_version,
        )

    def authenticator(self) -> VaultAuthenticator:
        if self.auth_backend == "approle":
            return AppRoleAuthenticator(
                role_id=self.role_id or "",
                secret_id=self.secret_id or "",
                mount_path=self.auth_mount or "approle",
            )
        if self.auth_backend == "userpass":
            return UserPassAuthenticator(
                username=self.username or "",
                password=self.password or "",
                mount_path=self.auth_mount or "userpass",
            )
        return StaticTokenAuthenticator(token=self.token or "")


class VaultConfigStore(ConfigStore):
    """Fetch one Vault secret, optionally narrowed to a single key.

    A missing secret, a missing key, and a key of a missing secret all
    produce an empty configuration object. The HTTP session is opened on the
    first fetch, so a store that is never fetched holds no connection.
    """

    def __init__(
        self,
        options: StoreOptions,
        *,
        client: VaultClient | None = None,
        session_factory: Callable[..., httpx.AsyncClient] | None = None,
    ) -> None:
        super().__init__(options)
        self._settings = VaultStoreConfig.model_validate(options.config)
        self._client = client
        self._session_factory = session_factory

    @property
    def client(self) -> VaultClient:
        if self._client is None:
            self._client = VaultClient(
                config=self._settings.client_config(),
                authenticator=self._settings.authenticator(),
                session_factory=self._session_factory,
            )
        return self._client

    @property
    def settings(self) -> VaultStoreConfig:
        return self._settings

    async def _fetch(self) -> Dict[str, Any]:
        secret = await self.client.read(self._settings.path)
        if secret is None:
            logger.debug("vault_secret_missing", path=self._settings.path)
            return {}
        key = self._settings.key
        if key is None:
            return copy.deepcopy(dict(secret))
        if key not in secret:
            logger.debug("vault_secret_key_missing", path=self._settings.path, key=key)
            return {}
        return self._extract(key, secret[key])

    def _extract(self, key: str, value: Any) -> Dict[str, Any]:
        fmt = self._options.format
        if fmt is None:
            if isinstance(value, dict):
                return copy.deepcopy(value)
            return {key: copy.deepcopy(value)}
        if fmt == "raw":
            return {key: copy.deepcopy(value)}
        if isinstance(value, dict) and fmt == "json":
            return copy.deepcopy(value)
        if isinstance(value, str):
            return self._convert(value)
        raise FormatError(
            f"Secret field '{key}' at {self._settings.path} holds a "
            f"{type(value).__name__}, which cannot be read as '{fmt}'"
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
