# SPDX-License-Identifier: MIT
"""HashiCorp Vault client and configuration store."""

from configpulse.application.secrets.hashicorp import (
    AppRoleAuthenticator,
    SealStatus,
    StaticTokenAuthenticator,
    UserPassAuthenticator,
    VaultClient,
    VaultClientConfig,
)
from configpulse.application.secrets.store import VaultConfigStore, VaultStoreConfig

__all__ = [
    "AppRoleAuthenticator",
    "SealStatus",
    "StaticTokenAuthenticator",
    "UserPassAuthenticator",
    "VaultClient",
    "VaultClientConfig",
    "VaultConfigStore",
    "VaultStoreConfig",
]
