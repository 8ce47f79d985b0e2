"""Configuration storage for agentconfig

Provides:
- ConfigStore: plain (YAML) + secret (keyring / encrypted file) key-value store
- SecretVault backends: KeyringVault, EncryptedFileVault
- ExperimentManager: boolean feature flags
- store_provider_secret / configure_provider: credential hand-off for signup flows
"""

from agentconfig.config.exceptions import (
    ConfigError,
    NotFound,
    Conflict,
    UnknownKey,
    ProtectedExtension,
    PersistenceError,
    InvalidValue,
    DegradedSecretStorage,
)
from agentconfig.config.values import (
    MISSING,
    Namespace,
    PlainValue,
    SecretValue,
    ValueKind,
)
from agentconfig.config.vault import (
    SecretVault,
    KeyringVault,
    EncryptedFileVault,
    keyring_available,
    open_vault,
)
from agentconfig.config.base import ConfigStore
from agentconfig.config.experiments import ExperimentManager, ALL_EXPERIMENTS
from agentconfig.config.signup import (
    configure_provider,
    provider_secret_key,
    store_provider_secret,
)

__all__ = [
    # Exceptions
    "ConfigError",
    "NotFound",
    "Conflict",
    "UnknownKey",
    "ProtectedExtension",
    "PersistenceError",
    "InvalidValue",
    "DegradedSecretStorage",
    # Values
    "MISSING",
    "Namespace",
    "PlainValue",
    "SecretValue",
    "ValueKind",
    # Storage
    "SecretVault",
    "KeyringVault",
    "EncryptedFileVault",
    "keyring_available",
    "open_vault",
    "ConfigStore",
    # Managers
    "ExperimentManager",
    "ALL_EXPERIMENTS",
    "configure_provider",
    "provider_secret_key",
    "store_provider_secret",
]
