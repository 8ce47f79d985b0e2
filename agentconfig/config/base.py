"""Config Store

Key-value persistence with two namespaces:

- plain: a human-editable YAML file (``<home>/config.yaml``)
- secret: delegated to a SecretVault (platform keyring or encrypted file)

Resolution order for ``get`` in the plain namespace (high to low):
1. Environment override, ``<env_prefix><KEY>`` (key upper-cased, any
   non-alphanumeric character replaced by ``_``), e.g. ``model`` ->
   ``AGENT_MODEL``
2. Stored value
3. Caller-supplied default

Secrets are never read from the environment.

Every mutating call takes an exclusive lock on ``<file>.lock``, re-reads the
file, applies the change, and atomically replaces the file (temp file +
fsync + rename). The previous good file is kept as ``<file>.bak`` and used
for recovery when the main file cannot be parsed.

Usage:
    from agentconfig.config import ConfigStore, Namespace

    store = ConfigStore.open()
    store.set("model", "gpt-4.1")
    store.set("OPENAI_API_KEY", "sk-...", Namespace.SECRET)
    store.get("model")  # "gpt-4.1", or $AGENT_MODEL when set
"""

import copy
import logging
import os
import re
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from agentconfig.config.exceptions import (
    DegradedSecretStorage,
    InvalidValue,
    NotFound,
    PersistenceError,
)
from agentconfig.config.values import (
    MISSING,
    Namespace,
    PlainValue,
    SecretValue,
    ValueKind,
    coerce_env_value,
    validate_plain,
    validate_secret,
)
from agentconfig.config.vault import SecretVault, open_vault
from agentconfig.core.settings import RuntimeSettings, get_settings
from agentconfig.core.storage import paths
from agentconfig.core.utils.fileio import atomic_write_bytes, backup_file
from agentconfig.core.utils.filelock import FileLockError, file_lock

logger = logging.getLogger(__name__)

NamespaceLike = Union[Namespace, str]

_ENV_UNSAFE = re.compile(r"[^A-Za-z0-9]")


class _CorruptFile(Exception):
    pass


class ConfigStore:
    """Plain + secret configuration storage

    Construct one instance per application (``ConfigStore.open()``) and
    pass it to the registry, permission and experiment managers. Tests
    build isolated instances pointing at a temp directory.
    """

    def __init__(
        self,
        config_path: Path,
        vault: SecretVault,
        env_prefix: str = "AGENT_",
        schema: Optional[Mapping[str, ValueKind]] = None,
        environ: Optional[Mapping[str, str]] = None,
        lock_timeout: float = 10.0,
    ):
        """
        Args:
            config_path: YAML file backing the plain namespace
            vault: Backend for the secret namespace
            env_prefix: Prefix for environment overrides
            schema: Known-typed keys (key -> ValueKind)
            environ: Environment mapping (defaults to os.environ)
            lock_timeout: Seconds to wait for the file lock
        """
        self.config_path = Path(config_path)
        self.lock_path = paths.lock_path_for(self.config_path)
        self.backup_path = self.config_path.with_name(self.config_path.name + ".bak")
        self.vault = vault
        self.env_prefix = env_prefix
        self.schema: Dict[str, ValueKind] = dict(schema or {})
        self._environ = environ
        self.lock_timeout = lock_timeout

        if vault.degraded:
            logger.warning(
                f"Secrets are stored in {vault.description}; platform keyring unavailable"
            )
            self._warn_degraded()

    @classmethod
    def open(
        cls,
        settings: Optional[RuntimeSettings] = None,
        *,
        vault: Optional[SecretVault] = None,
        schema: Optional[Mapping[str, ValueKind]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigStore":
        """
        Locate (and create) the config home and secret backend

        Args:
            settings: Runtime settings (defaults to get_settings())
            vault: Secret backend override (defaults to open_vault(settings))
            schema: Known-typed keys
            environ: Environment mapping override

        Returns:
            ConfigStore ready for use
        """
        settings = settings or get_settings()
        try:
            paths.ensure_home(settings)
        except OSError as e:
            raise PersistenceError(
                f"Cannot create config home {paths.app_home(settings)}: {e}"
            ) from e

        store = cls(
            config_path=paths.config_path(settings),
            vault=vault or open_vault(settings),
            env_prefix=settings.env_prefix,
            schema=schema,
            environ=environ,
            lock_timeout=settings.lock_timeout,
        )
        logger.debug(
            f"Opened config store at {store.config_path} (secrets: {store.vault.description})"
        )
        return store

    # ------------------------------------------------------------------
    # Schema / environment
    # ------------------------------------------------------------------

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    @property
    def secret_storage_degraded(self) -> bool:
        """True when secrets fall back to the encrypted file"""
        return self.vault.degraded

    def declare(self, key: str, kind: ValueKind) -> None:
        """Mark key as known-typed; later sets and env overrides must match kind"""
        self.schema[key] = ValueKind(kind)

    def env_var_name(self, key: str) -> str:
        """Environment variable that overrides a plain key"""
        return self.env_prefix + _ENV_UNSAFE.sub("_", key).upper()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(
        self,
        key: str,
        namespace: NamespaceLike = Namespace.PLAIN,
        default: Any = MISSING,
        *,
        use_env: bool = True,
    ) -> Union[PlainValue, SecretValue]:
        """
        Resolve a key

        Args:
            key: Config key
            namespace: PLAIN or SECRET
            default: Returned when nothing else applies
            use_env: Consult the environment override (plain namespace only)

        Returns:
            The resolved value

        Raises:
            NotFound: No override, no stored value and no default
            PersistenceError: Backing store unreadable
            InvalidValue: Environment override does not match the declared kind
        """
        namespace = Namespace(namespace)

        if namespace is Namespace.SECRET:
            value = self.vault.get(key)
            if value is not None:
                return value
        else:
            if use_env:
                raw = self.environ.get(self.env_var_name(key))
                if raw is not None:
                    return coerce_env_value(key, raw, self.schema.get(key))
            data, _ = self._load_plain()
            if key in data:
                return data[key]

        if default is not MISSING:
            return default
        raise NotFound(key=key, namespace=namespace)

    def set(
        self,
        key: str,
        value: Union[PlainValue, SecretValue],
        namespace: NamespaceLike = Namespace.PLAIN,
    ) -> None:
        """
        Store a value, durably, before returning

        Raises:
            InvalidValue: Unsupported type or mismatch with the declared kind
            PersistenceError: Write failed; previous state is intact
        """
        namespace = Namespace(namespace)

        if namespace is Namespace.SECRET:
            validate_secret(key, value)
            if self.vault.degraded:
                self._warn_degraded()
            self.vault.set(key, value)
            logger.debug(f"Stored secret '{key}' in {self.vault.description}")
            return

        validate_plain(key, value, self.schema.get(key))

        def _apply(data: Dict[str, Any]) -> bool:
            data[key] = value
            return True

        self._mutate_plain(_apply)
        logger.debug(f"Stored '{key}' in {self.config_path}")

    def delete(self, key: str, namespace: NamespaceLike = Namespace.PLAIN) -> None:
        """Remove a key; no error when it is absent"""
        namespace = Namespace(namespace)

        if namespace is Namespace.SECRET:
            if self.vault.delete(key):
                logger.debug(f"Deleted secret '{key}'")
            return

        def _apply(data: Dict[str, Any]) -> bool:
            if key not in data:
                return False
            del data[key]
            return True

        if self._mutate_plain(_apply):
            logger.debug(f"Deleted '{key}' from {self.config_path}")

    def update(
        self,
        key: str,
        fn: Callable[[Any], PlainValue],
        default: Any = MISSING,
    ) -> PlainValue:
        """
        Atomically replace a plain value with fn(current value)

        The file lock is held from the read through the write, so a
        concurrent writer can never slip in between. fn receives a private
        copy it may mutate and must return the new value. Environment
        overrides are not consulted. fn must not write to this store.

        Args:
            key: Config key
            fn: Computes the new value from the stored one
            default: Passed to fn when key is not stored

        Returns:
            The value now stored

        Raises:
            NotFound: Key not stored and no default
            InvalidValue: fn returned an unsupported value
            PersistenceError: Write failed; previous state is intact
        """
        outcome: Dict[str, Any] = {}

        def _apply(data: Dict[str, Any]) -> bool:
            if key in data:
                current = data[key]
            elif default is not MISSING:
                current = copy.deepcopy(default)
            else:
                raise NotFound(key=key, namespace=Namespace.PLAIN)

            before = copy.deepcopy(current)
            value = fn(current)
            validate_plain(key, value, self.schema.get(key))
            outcome["value"] = value
            if key in data and value == before:
                return False
            data[key] = value
            return True

        if self._mutate_plain(_apply):
            logger.debug(f"Updated '{key}' in {self.config_path}")
        return outcome["value"]

    def exists(
        self,
        key: str,
        namespace: NamespaceLike = Namespace.PLAIN,
        *,
        use_env: bool = True,
    ) -> bool:
        """Whether key resolves without a default"""
        namespace = Namespace(namespace)
        if namespace is Namespace.SECRET:
            return self.vault.exists(key)
        if use_env and self.env_var_name(key) in self.environ:
            return True
        data, _ = self._load_plain()
        return key in data

    def keys(self, namespace: NamespaceLike = Namespace.PLAIN, prefix: str = "") -> List[str]:
        """Stored keys, in file order, optionally filtered by prefix"""
        namespace = Namespace(namespace)
        if namespace is Namespace.SECRET:
            names = self.vault.keys()
        else:
            data, _ = self._load_plain()
            names = list(data.keys())
        return [k for k in names if k.startswith(prefix)]

    def snapshot(self) -> Dict[str, PlainValue]:
        """Plain values for diagnostics; the secret namespace is never included"""
        data, _ = self._load_plain()
        return dict(data)

    # ------------------------------------------------------------------
    # Plain file persistence
    # ------------------------------------------------------------------

    def _read_document(self, path: Path) -> Dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise PersistenceError(
                f"Cannot read {path}: {e}", namespace=Namespace.PLAIN
            ) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise _CorruptFile(str(e)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise _CorruptFile(f"top level is {type(data).__name__}, expected a mapping")
        return data

    def _load_plain(self) -> Tuple[Dict[str, Any], bool]:
        """Return (data, healthy); healthy is False when data came from the backup"""
        try:
            return self._read_document(self.config_path), True
        except _CorruptFile as e:
            main_error = e

        if not self.backup_path.exists():
            raise PersistenceError(
                f"{self.config_path} is corrupt ({main_error}) and no backup exists",
                namespace=Namespace.PLAIN,
            )

        try:
            data = self._read_document(self.backup_path)
        except _CorruptFile as e:
            raise PersistenceError(
                f"{self.config_path} is corrupt ({main_error}) and backup is unusable ({e})",
                namespace=Namespace.PLAIN,
            ) from e

        logger.warning(
            f"{self.config_path} is corrupt ({main_error}); using backup {self.backup_path}"
        )
        return data, False

    def _mutate_plain(self, apply: Callable[[Dict[str, Any]], bool]) -> bool:
        """Locked read-modify-write; apply returns whether anything changed"""
        try:
            with file_lock(self.lock_path, timeout=self.lock_timeout):
                data, healthy = self._load_plain()
                if not apply(data):
                    return False
                try:
                    payload = yaml.safe_dump(
                        data,
                        sort_keys=False,
                        allow_unicode=True,
                        default_flow_style=False,
                    ).encode("utf-8")
                except yaml.YAMLError as e:
                    raise InvalidValue(
                        f"Value cannot be written to {self.config_path}: {e}",
                        namespace=Namespace.PLAIN,
                    ) from e
                # Never let a corrupt main file overwrite the good backup
                if healthy:
                    backup_file(self.config_path)
                atomic_write_bytes(self.config_path, payload)
                return True
        except FileLockError as e:
            raise PersistenceError(
                f"Could not lock {self.config_path}: {e}",
                namespace=Namespace.PLAIN,
            ) from e
        except OSError as e:
            raise PersistenceError(
                f"Failed to write {self.config_path}: {e}",
                namespace=Namespace.PLAIN,
            ) from e

    def _warn_degraded(self) -> None:
        warnings.warn(
            f"Platform keyring unavailable; secrets are kept in {self.vault.description}",
            DegradedSecretStorage,
            stacklevel=3,
        )
