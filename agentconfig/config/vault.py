"""Secret Vault Adapter

Pure storage for the secret namespace. Two backends:

- KeyringVault: the platform credential store via the ``keyring`` library.
- EncryptedFileVault: a local Fernet-encrypted file (AES-128-CBC + HMAC),
  used when no usable keyring exists. This keeps plaintext out of the
  plain config file and logs, but the key sits next to the data, so it is
  reported as degraded.

Both keep all secrets as a single YAML mapping (bytes values round-trip as
``!!binary``). Read-modify-write cycles are serialized with a file lock.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import keyring
import yaml
from cryptography.fernet import Fernet, InvalidToken
from keyring.backend import KeyringBackend
from keyring.backends import fail as fail_backend
from keyring.errors import KeyringError, PasswordDeleteError

from agentconfig.config.exceptions import PersistenceError
from agentconfig.config.values import Namespace, SecretValue
from agentconfig.core.settings import RuntimeSettings, get_settings
from agentconfig.core.storage import paths
from agentconfig.core.utils.fileio import atomic_write_bytes
from agentconfig.core.utils.filelock import FileLockError, file_lock

logger = logging.getLogger(__name__)

KEYRING_USERNAME = "secrets"
PROBE_USERNAME = "__probe__"


def dump_secrets(secrets: Dict[str, SecretValue]) -> str:
    return yaml.safe_dump(secrets, sort_keys=False, allow_unicode=True)


def parse_secrets(blob: str) -> Dict[str, SecretValue]:
    try:
        data = yaml.safe_load(blob) if blob else None
    except yaml.YAMLError as e:
        raise PersistenceError(
            f"Secret store is corrupt: {e}",
            namespace=Namespace.SECRET,
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PersistenceError(
            "Secret store is corrupt: expected a mapping",
            namespace=Namespace.SECRET,
        )
    return data


class SecretVault(ABC):
    """Storage backend for the secret namespace"""

    degraded: bool = False

    def __init__(self, lock_path: Path, lock_timeout: float = 10.0):
        self.lock_path = lock_path
        self.lock_timeout = lock_timeout

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable backend name (never includes secret material)"""

    @abstractmethod
    def _load(self) -> Dict[str, SecretValue]:
        ...

    @abstractmethod
    def _save(self, secrets: Dict[str, SecretValue]) -> None:
        ...

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            with file_lock(self.lock_path, timeout=self.lock_timeout):
                yield
        except FileLockError as e:
            raise PersistenceError(
                f"Could not lock secret store: {e}",
                namespace=Namespace.SECRET,
            ) from e

    def load(self) -> Dict[str, SecretValue]:
        """Read all secrets"""
        return self._load()

    def get(self, key: str) -> Optional[SecretValue]:
        return self._load().get(key)

    def exists(self, key: str) -> bool:
        return key in self._load()

    def keys(self) -> List[str]:
        return list(self._load().keys())

    def set(self, key: str, value: SecretValue) -> None:
        with self._locked():
            secrets = self._load()
            secrets[key] = value
            self._save(secrets)

    def delete(self, key: str) -> bool:
        """Remove key; returns whether it was present"""
        with self._locked():
            secrets = self._load()
            if key not in secrets:
                return False
            del secrets[key]
            self._save(secrets)
            return True


class KeyringVault(SecretVault):
    """Secrets in the platform keyring, stored under (service, "secrets")"""

    def __init__(
        self,
        service: str,
        lock_path: Path,
        backend: Optional[KeyringBackend] = None,
        lock_timeout: float = 10.0,
    ):
        super().__init__(lock_path, lock_timeout)
        self.service = service
        self.backend = backend or keyring.get_keyring()

    @property
    def description(self) -> str:
        return f"keyring ({type(self.backend).__name__}, service={self.service})"

    def _load(self) -> Dict[str, SecretValue]:
        try:
            blob = self.backend.get_password(self.service, KEYRING_USERNAME)
        except KeyringError as e:
            raise PersistenceError(
                f"Keyring read failed: {e}",
                namespace=Namespace.SECRET,
            ) from e
        return parse_secrets(blob)

    def _save(self, secrets: Dict[str, SecretValue]) -> None:
        try:
            if secrets:
                self.backend.set_password(self.service, KEYRING_USERNAME, dump_secrets(secrets))
            else:
                try:
                    self.backend.delete_password(self.service, KEYRING_USERNAME)
                except PasswordDeleteError:
                    pass
        except KeyringError as e:
            raise PersistenceError(
                f"Keyring write failed: {e}",
                namespace=Namespace.SECRET,
            ) from e


class EncryptedFileVault(SecretVault):
    """Fernet-encrypted secrets file with a locally generated key"""

    degraded = True

    def __init__(
        self,
        path: Path,
        key_path: Path,
        key: Optional[str] = None,
        lock_timeout: float = 10.0,
    ):
        super().__init__(paths.lock_path_for(path), lock_timeout)
        self.path = path
        self.key_path = key_path
        self._explicit_key = key
        self._fernet: Optional[Fernet] = None

    @property
    def description(self) -> str:
        return f"encrypted file ({self.path})"

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            try:
                self._fernet = Fernet(self._get_or_create_key())
            except (OSError, ValueError, FileLockError) as e:
                raise PersistenceError(
                    f"Cannot load secret encryption key: {e}",
                    namespace=Namespace.SECRET,
                ) from e
        return self._fernet

    def _get_or_create_key(self) -> bytes:
        if self._explicit_key:
            return self._explicit_key.encode("ascii")

        key = self._read_key()
        if key:
            return key

        # Two processes may race to create the key; the lock makes one win.
        # Separate lock from the data file, which may already be held by set()
        with file_lock(paths.lock_path_for(self.key_path), timeout=self.lock_timeout):
            key = self._read_key()
            if key:
                return key
            key = Fernet.generate_key()
            atomic_write_bytes(self.key_path, key + b"\n", mode=0o600)
            logger.info(f"Generated secret encryption key at {self.key_path}")
            return key

    def _read_key(self) -> Optional[bytes]:
        if not self.key_path.exists():
            return None
        return self.key_path.read_bytes().strip() or None

    def _load(self) -> Dict[str, SecretValue]:
        if not self.path.exists():
            return {}
        try:
            token = self.path.read_bytes()
        except OSError as e:
            raise PersistenceError(
                f"Cannot read secret file {self.path}: {e}",
                namespace=Namespace.SECRET,
            ) from e
        if not token.strip():
            return {}
        try:
            blob = self._get_fernet().decrypt(token.strip())
        except InvalidToken as e:
            raise PersistenceError(
                f"Secret file {self.path} cannot be decrypted with the current key",
                namespace=Namespace.SECRET,
            ) from e
        return parse_secrets(blob.decode("utf-8"))

    def _save(self, secrets: Dict[str, SecretValue]) -> None:
        token = self._get_fernet().encrypt(dump_secrets(secrets).encode("utf-8"))
        try:
            atomic_write_bytes(self.path, token, mode=0o600)
        except OSError as e:
            raise PersistenceError(
                f"Cannot write secret file {self.path}: {e}",
                namespace=Namespace.SECRET,
            ) from e


def keyring_available(
    backend: Optional[KeyringBackend] = None,
    service: str = "agentconfig",
) -> bool:
    """Whether the platform keyring can actually be used"""
    backend = backend or keyring.get_keyring()
    if isinstance(backend, fail_backend.Keyring):
        return False
    try:
        backend.get_password(service, PROBE_USERNAME)
    except Exception as e:
        # Backends surface locked/missing daemons with their own exception types
        logger.debug(f"Keyring backend {type(backend).__name__} unusable: {e}")
        return False
    return True


def open_vault(
    settings: Optional[RuntimeSettings] = None,
    backend: Optional[KeyringBackend] = None,
) -> SecretVault:
    """
    Pick the secret backend according to settings.secrets_backend

    Args:
        settings: Runtime settings (defaults to the process-wide ones)
        backend: Keyring backend override (defaults to keyring.get_keyring())

    Returns:
        KeyringVault or EncryptedFileVault
    """
    settings = settings or get_settings()
    home = paths.app_home(settings)
    choice = settings.secrets_backend

    if choice == "keyring" or (
        choice == "auto" and keyring_available(backend, settings.keyring_service)
    ):
        return KeyringVault(
            service=settings.keyring_service,
            lock_path=home / "secrets.lock",
            backend=backend,
            lock_timeout=settings.lock_timeout,
        )

    if choice == "auto":
        logger.warning(
            "Platform keyring unavailable, falling back to encrypted secrets file"
        )

    return EncryptedFileVault(
        path=paths.secrets_path(settings),
        key_path=paths.secrets_key_path(settings),
        key=settings.secret_key,
        lock_timeout=settings.lock_timeout,
    )
