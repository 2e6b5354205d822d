# SPDX-License-Identifier: MIT
"""HashiCorp Vault HTTP client used by the Vault configuration store.

The client holds a single session token for its whole lifetime. The token is
either supplied directly or obtained by one login call; it is never renewed,
so a revoked or expired token surfaces as an ``UNAUTHORIZED`` failure on the
next request.

Every error response is classified from its status code and the
``{"errors": [...]}`` body Vault returns:

* any message mentioning ``sealed`` -> :attr:`ErrorKind.SEALED`
* 401/403 or a credential message -> :attr:`ErrorKind.UNAUTHORIZED`
* everything else, including transport failures -> :attr:`ErrorKind.UNAVAILABLE`

A 404 on :meth:`VaultClient.read` means the secret does not exist and is
reported as ``None`` rather than an error.
"""

from __future__ import annotations

import asyncio
import json
import ssl
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, MutableMapping, Protocol

import httpx

from configpulse.core.config.errors import BackendError, ErrorKind
from configpulse.core.utils.logging import get_logger

__all__ = [
    "AppRoleAuthenticator",
    "SealStatus",
    "StaticTokenAuthenticator",
    "UserPassAuthenticator",
    "VaultAuthenticator",
    "VaultClient",
    "VaultClientConfig",
    "classify_error",
]

logger = get_logger(__name__)

_UNAUTHORIZED_MARKERS = ("permission denied", "invalid token", "missing client token", "bad token")


def _safe_json(response: httpx.Response) -> Mapping[str, Any]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"raw": response.text}
    if not isinstance(payload, dict):
        return {"raw": payload}
    return payload


def _error_messages(payload: Mapping[str, Any]) -> list[str]:
    errors = payload.get("errors")
    if isinstance(errors, list):
        return [str(item) for item in errors if item]
    if errors:
        return [str(errors)]
    raw = payload.get("raw")
    return [str(raw)] if raw else []


def classify_error(status_code: int, payload: Mapping[str, Any]) -> tuple[ErrorKind, str]:
    """Return the error kind and detail text for a failed Vault response."""

    messages = _error_messages(payload)
    detail = "; ".join(messages) or f"HTTP {status_code}"
    lowered = detail.lower()
    if "sealed" in lowered:
        return ErrorKind.SEALED, detail
    if status_code in (401, 403) or any(marker in lowered for marker in _UNAUTHORIZED_MARKERS):
        return ErrorKind.UNAUTHORIZED, detail
    return ErrorKind.UNAVAILABLE, detail


@dataclass(slots=True)
class VaultClientConfig:
    """Static configuration parameters for a Vault client."""

    address: str
    namespace: str | None = None
    verify: bool | str = True
    timeout: float = 5.0
    client_cert: str | None = None
    client_key: str | None = None
    kv_version: int = 1

    def ssl_context(self) -> ssl.SSLContext | bool:
        """Return the value handed to httpx as ``verify``."""

        if self.client_cert is None and not isinstance(self.verify, str):
            return self.verify
        if isinstance(self.verify, str):
            context = ssl.create_default_context(cafile=self.verify)
        elif self.verify:
            context = ssl.create_default_context()
        else:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if self.client_cert is not None:
            context.load_cert_chain(self.client_cert, self.client_key)
        return context


@dataclass(frozen=True, slots=True)
class SealStatus:
    """Subset of ``/v1/sys/seal-status``."""

    sealed: bool
    initialized: bool = True
    progress: int = 0
    threshold: int = 0
    version: str | None = None


class VaultAuthenticator(Protocol):
    """Obtain the session token used for every subsequent request."""

    async def authenticate(self, *, session: httpx.AsyncClient, config: VaultClientConfig) -> str:
        """Return a client token."""


@dataclass(slots=True)
class StaticTokenAuthenticator:
    """Authenticator that returns a pre-provisioned Vault token."""

    token: str

    async def authenticate(
        self,
        *,
        session: httpx.AsyncClient,  # noqa: ARG002 - part of the authenticator protocol
        config: VaultClientConfig,  # noqa: ARG002 - part of the authenticator protocol
    ) -> str:
        if not self.token:
            raise BackendError(
                ErrorKind.UNAUTHORIZED,
                "Vault token cannot be empty",
                detail="missing client token",
            )
        return self.token


async def _login(
    session: httpx.AsyncClient,
    path: str,
    body: Mapping[str, Any],
    *,
    method_name: str,
) -> str:
    try:
        response = await session.post(path, json=dict(body))
    except httpx.HTTPError as exc:
        raise BackendError(
            ErrorKind.UNAVAILABLE,
            f"Vault {method_name} login failed: {exc}",
            detail=str(exc),
        ) from exc
    payload = _safe_json(response)
    if response.status_code >= 400:
        kind, detail = classify_error(response.status_code, payload)
        if kind is ErrorKind.UNAVAILABLE and response.status_code == 400:
            kind = ErrorKind.UNAUTHORIZED
        raise BackendError(
            kind,
            f"Vault {method_name} login failed with status {response.status_code}: {detail}",
            detail=detail,
            status_code=response.status_code,
            payload=payload,
        )
    token = (payload.get("auth") or {}).get("client_token")
    if not token:
        raise BackendError(
            ErrorKind.UNAUTHORIZED,
            f"Vault {method_name} login did not return a client token",
            status_code=response.status_code,
            payload=payload,
        )
    return str(token)


@dataclass(slots=True)
class AppRoleAuthenticator:
    """Log in once with the AppRole auth method."""

    role_id: str
    secret_id: str
    mount_path: str = "approle"

    async def authenticate(self, *, session: httpx.AsyncClient, config: VaultClientConfig) -> str:
        path = f"/v1/auth/{self.mount_path.strip('/')}/login"
        return await _login(
            session,
            path,
            {"role_id": self.role_id, "secret_id": self.secret_id},
            method_name="approle",
        )


@dataclass(slots=True)
class UserPassAuthenticator:
    """Log in once with the userpass auth method."""

    username: str
    password: str
    mount_path: str = "userpass"

    async def authenticate(self, *, session: httpx.AsyncClient, config: VaultClientConfig) -> str:
        path = f"/v1/auth/{self.mount_path.strip('/')}/login/{self.username}"
        return await _login(session, path, {"password": self.password}, method_name="userpass")


class VaultClient:
    """Thin async wrapper around the Vault HTTP API."""

    def __init__(
        self,
        *,
        config: VaultClientConfig,
        authenticator: VaultAuthenticator,
        session_factory: Callable[..., httpx.AsyncClient] | None = None,
    ) -> None:
        if not config.address:
            raise ValueError("Vault address must be provided")
        if config.kv_version not in (1, 2):
            raise ValueError("kv_version must be 1 or 2")
        self._config = config
        self._authenticator = authenticator
        factory = session_factory or httpx.AsyncClient
        self._session = factory(
            base_url=config.address,
            timeout=config.timeout,
            verify=config.ssl_context(),
        )
        self._token: str | None = None
        self._sealed: bool | None = None
        self._auth_lock = asyncio.Lock()

    @property
    def config(self) -> VaultClientConfig:
        return self._config

    @property
    def token(self) -> str | None:
        """The session token, ``None`` until the first authenticated call."""

        return self._token

    @property
    def sealed(self) -> bool | None:
        """Last observed seal state, ``None`` before any observation."""

        return self._sealed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def aclose(self) -> None:
        await self._session.aclose()

    async def read(self, path: str) -> Mapping[str, Any] | None:
        """Return the secret map stored at *path*, or ``None`` when absent."""

        response = await self._request("GET", self._secret_path(path), allow_missing=True)
        if response is None:
            return None
        data = response.get("data") or {}
        if self._config.kv_version == 2:
            data = data.get("data") or {}
        if not isinstance(data, dict):
            raise BackendError(
                ErrorKind.UNAVAILABLE,
                f"Vault returned a non-object secret at {path}",
                payload=response,
            )
        return MappingProxyType(dict(data))

    async def write(self, path: str, secret: Mapping[str, Any]) -> None:
        """Create or replace the secret at *path*."""

        body: MutableMapping[str, Any]
        if self._config.kv_version == 2:
            body = {"data": dict(secret)}
        else:
            body = dict(secret)
        await self._request("POST", self._secret_path(path), json=body)
        logger.debug("vault_secret_written", path=path, keys=len(secret))

    async def delete(self, path: str) -> None:
        """Delete the secret at *path*; deleting a missing secret is not an error."""

        await self._request("DELETE", self._secret_path(path), allow_missing=True)

    async def lookup_self(self) -> Mapping[str, Any]:
        payload = await self._request("GET", "/v1/auth/token/lookup-self")
        return MappingProxyType(dict((payload or {}).get("data") or {}))

    async def seal_status(self) -> SealStatus:
        """Query the seal state; this endpoint needs no token."""

        try:
            response = await self._session.get("/v1/sys/seal-status")
        except httpx.HTTPError as exc:
            raise BackendError(
                ErrorKind.UNAVAILABLE,
                f"Vault seal status request failed: {exc}",
                detail=str(exc),
            ) from exc
        payload = _safe_json(response)
        if response.status_code >= 400:
            kind, detail = classify_error(response.status_code, payload)
            raise BackendError(
                kind,
                f"Vault seal status request failed with status {response.status_code}: {detail}",
                detail=detail,
                status_code=response.status_code,
                payload=payload,
            )
        status = SealStatus(
            sealed=bool(payload.get("sealed", False)),
            initialized=bool(payload.get("initialized", True)),
            progress=int(payload.get("progress", 0) or 0),
            threshold=int(payload.get("t", 0) or 0),
            version=payload.get("version"),
        )
        self._sealed = status.sealed
        return status

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _secret_path(self, path: str) -> str:
        path_clean = path.strip("/")
        if not path_clean:
            raise ValueError("Secret path must not be empty")
        if self._config.kv_version == 2:
            mount, _, rest = path_clean.partition("/")
            if not rest:
                raise ValueError("KV v2 secret paths must include a mount and a secret name")
            return f"/v1/{mount}/data/{rest}"
        return f"/v1/{path_clean}"

    async def _ensure_token(self) -> str:
        async with self._auth_lock:
            if self._token is None:
                self._token = await self._authenticator.authenticate(
                    session=self._session, config=self._config
                )
            return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Mapping[str, Any] | None:
        token = await self._ensure_token()
        headers = {"X-Vault-Token": token, **kwargs.pop("headers", {})}
        if self._config.namespace:
            headers.setdefault("X-Vault-Namespace", self._config.namespace)
        try:
            response = await self._session.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(
                ErrorKind.UNAVAILABLE,
                f"Vault request to {path} failed: {exc}",
                detail=str(exc),
            ) from exc
        payload = _safe_json(response)
        if response.status_code == 404 and allow_missing:
            self._sealed = False
            return None
        if response.status_code >= 400:
            kind, detail = classify_error(response.status_code, payload)
            if kind is ErrorKind.SEALED:
                self._sealed = True
            raise BackendError(
                kind,
                f"Vault request to {path} failed with status {response.status_code}: {detail}",
                detail=detail,
                status_code=response.status_code,
                payload=payload,
            )
        self._sealed = False
        if "raw" in payload and len(payload) == 1:
            raise BackendError(
                ErrorKind.UNAVAILABLE,
                f"Vault response from {path} is not a JSON object",
                status_code=response.status_code,
                payload=payload,
            )
        return payload
