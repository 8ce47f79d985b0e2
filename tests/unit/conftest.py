from __future__ import annotations

import warnings
from pathlib import Path
from typing import Dict, Optional, Tuple

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from agentconfig.config import ConfigStore, DegradedSecretStorage, EncryptedFileVault, KeyringVault


class MemoryKeyring(KeyringBackend):
    """In-process keyring; nothing touches the real platform store"""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: Dict[Tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


def make_keyring_store(
    home: Path,
    backend: MemoryKeyring,
    environ: Optional[Dict[str, str]] = None,
) -> ConfigStore:
    vault = KeyringVault("agentconfig-test", home / "secrets.lock", backend=backend)
    return ConfigStore(home / "config.yaml", vault, environ=environ if environ is not None else {})


def make_file_store(home: Path, environ: Optional[Dict[str, str]] = None) -> ConfigStore:
    vault = EncryptedFileVault(home / "secrets.enc", home / "secrets.key")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DegradedSecretStorage)
        return ConfigStore(
            home / "config.yaml", vault, environ=environ if environ is not None else {}
        )


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def store(tmp_path: Path, memory_keyring: MemoryKeyring) -> ConfigStore:
    return make_keyring_store(tmp_path, memory_keyring)


@pytest.fixture
def open_store(tmp_path: Path, memory_keyring: MemoryKeyring):
    """Factory for fresh store instances over the same files (simulates a restart)"""

    def _open(environ: Optional[Dict[str, str]] = None) -> ConfigStore:
        return make_keyring_store(tmp_path, memory_keyring, environ)

    return _open


@pytest.fixture
def open_file_store(tmp_path: Path):
    """Factory for stores whose secrets use the encrypted file fallback"""

    def _open(environ: Optional[Dict[str, str]] = None) -> ConfigStore:
        return make_file_store(tmp_path, environ)

    return _open
