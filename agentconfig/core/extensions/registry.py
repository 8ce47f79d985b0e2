"""Extension registry backed by the config store

The whole registry is one document under the plain key ``extensions``
(name -> entry dump, install order preserved). Every call reads through
and writes through the store; the registry itself holds no state.
Changes to the document are made under the store's file lock, so two
processes editing the registry at once cannot lose each other's work.
"""

import logging
import shlex
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from agentconfig.config.base import ConfigStore
from agentconfig.config.exceptions import (
    Conflict,
    InvalidValue,
    NotFound,
    PersistenceError,
    ProtectedExtension,
    UnknownKey,
)
from agentconfig.config.experiments import EXPERIMENT_PREFIX
from agentconfig.config.values import Namespace, ValueKind, validate_plain
from agentconfig.core.extensions.models import (
    BuiltinLaunch,
    ExtensionEntry,
    ExtensionHealth,
    ExtensionKind,
    ExtensionStatus,
    InlinePythonLaunch,
    RemoteHttpLaunch,
    StdioLaunch,
    default_extension,
)
from agentconfig.core.permission.manager import PERMISSIONS_KEY, PermissionManager

logger = logging.getLogger(__name__)

EXTENSIONS_KEY = "extensions"


def is_reserved_key(key: str) -> bool:
    """Keys owned by the config layer itself; extensions may not declare them"""
    return key in (EXTENSIONS_KEY, PERMISSIONS_KEY) or key.startswith(EXPERIMENT_PREFIX)


class ExtensionRegistry:
    """Registry for installed extensions and their settings"""

    def __init__(self, store: ConfigStore, permissions: Optional[PermissionManager] = None):
        """
        Initialize registry

        Args:
            store: Config store holding the registry document and extension settings
            permissions: PermissionManager whose records are dropped on remove()
                (defaults to one over the same store)
        """
        self.store = store
        self.permissions = permissions if permissions is not None else PermissionManager(store)
        store.declare(EXTENSIONS_KEY, ValueKind.DOCUMENT)
        self._ensure_default()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, ExtensionEntry]:
        return self._parse(self.store.get(EXTENSIONS_KEY, Namespace.PLAIN, {}, use_env=False))

    @staticmethod
    def _parse(raw: Any) -> Dict[str, ExtensionEntry]:
        if not isinstance(raw, dict):
            raise PersistenceError(
                f"Stored '{EXTENSIONS_KEY}' is a {type(raw).__name__}, expected a mapping",
                key=EXTENSIONS_KEY,
                namespace=Namespace.PLAIN,
            )

        entries: Dict[str, ExtensionEntry] = {}
        for name, data in raw.items():
            if not isinstance(data, dict):
                raise PersistenceError(
                    f"Stored extension '{name}' is not a mapping",
                    key=EXTENSIONS_KEY,
                    extension=name,
                )
            try:
                entries[name] = ExtensionEntry.model_validate({**data, "name": name})
            except ValidationError as e:
                raise PersistenceError(
                    f"Stored extension '{name}' is invalid: {e}",
                    key=EXTENSIONS_KEY,
                    extension=name,
                ) from e
        return entries

    def _mutate(self, apply: Callable[[Dict[str, ExtensionEntry]], Any]) -> Any:
        """Run apply on the entries under the store lock and save the result

        apply edits the mapping in place and must not write to the store.
        """
        outcome: Dict[str, Any] = {}

        def _update(raw: Any) -> Dict[str, Any]:
            entries = self._parse(raw)
            outcome["result"] = apply(entries)
            return {name: entry.model_dump(mode="json") for name, entry in entries.items()}

        self.store.update(EXTENSIONS_KEY, _update, default={})
        return outcome["result"]

    def _ensure_default(self) -> None:
        if self._load():
            return

        def _seed(entries: Dict[str, ExtensionEntry]) -> bool:
            if entries:
                return False
            entry = default_extension()
            entries[entry.name] = entry
            return True

        if self._mutate(_seed):
            logger.info(f"Seeded default extension '{default_extension().name}'")

    def _require(self, entries: Dict[str, ExtensionEntry], name: str) -> ExtensionEntry:
        entry = entries.get(name)
        if entry is None:
            raise NotFound(extension=name)
        return entry

    @staticmethod
    def _is_protected(entry: ExtensionEntry) -> bool:
        return entry.required and entry.kind is ExtensionKind.BUILTIN

    @staticmethod
    def _replace(entry: ExtensionEntry, **changes: Any) -> ExtensionEntry:
        # model_copy skips validation, so rebuild through the model
        try:
            return ExtensionEntry.model_validate({**entry.model_dump(), **changes})
        except ValidationError as e:
            raise InvalidValue(
                f"Invalid update for extension '{entry.name}': {e}",
                extension=entry.name,
            ) from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> List[ExtensionEntry]:
        """All entries in install order"""
        return list(self._load().values())

    def get(self, name: str) -> ExtensionEntry:
        """
        Get extension by name

        Raises:
            NotFound: No such extension
        """
        return self._require(self._load(), name)

    def enabled(self) -> List[ExtensionEntry]:
        """Enabled entries in install order"""
        return [entry for entry in self._load().values() if entry.enabled]

    def missing_keys(self, name: str) -> List[str]:
        """Required env keys that do not currently resolve"""
        return self._missing_keys(self.get(name))

    def _missing_keys(self, entry: ExtensionEntry) -> List[str]:
        missing = []
        for env_key in entry.env_keys:
            if not env_key.required:
                continue
            namespace = Namespace.SECRET if env_key.secret else Namespace.PLAIN
            if not self.store.exists(env_key.name, namespace):
                missing.append(env_key.name)
        return missing

    def check(self, name: str) -> ExtensionHealth:
        """Report whether an extension can run"""
        entry = self.get(name)
        missing = self._missing_keys(entry)
        if not entry.enabled:
            status = ExtensionStatus.DISABLED
        elif missing:
            status = ExtensionStatus.MISSING_SETTINGS
        else:
            status = ExtensionStatus.READY
        return ExtensionHealth(name=name, status=status, missing_keys=missing)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add(self, entry: ExtensionEntry) -> ExtensionEntry:
        """
        Register a new extension

        Plain env keys with a default are seeded into the store unless a
        value is already stored. Secrets are never touched.

        Raises:
            Conflict: An extension with this name already exists
            InvalidValue: A reserved env key, or a plain default that is not a supported value
        """
        for env_key in entry.env_keys:
            if is_reserved_key(env_key.name):
                raise InvalidValue(
                    f"Extension '{entry.name}' cannot declare reserved key '{env_key.name}'",
                    key=env_key.name,
                    extension=entry.name,
                )
            if not env_key.secret and env_key.default is not None:
                validate_plain(env_key.name, env_key.default)

        def _insert(entries: Dict[str, ExtensionEntry]) -> None:
            if entry.name in entries:
                raise Conflict(entry.name)
            entries[entry.name] = entry

        self._mutate(_insert)
        logger.info(f"Added extension '{entry.name}' ({entry.kind.value})")

        for env_key in entry.env_keys:
            if env_key.secret or env_key.default is None:
                continue
            if not self.store.exists(env_key.name, Namespace.PLAIN, use_env=False):
                self.store.set(env_key.name, env_key.default)
                logger.debug(f"Seeded default for '{env_key.name}' ({entry.name})")

        if entry.enabled:
            self._warn_if_missing(entry)
        return entry

    def enable(self, name: str) -> ExtensionEntry:
        def _enable(entries: Dict[str, ExtensionEntry]) -> ExtensionEntry:
            entry = self._require(entries, name)
            if not entry.enabled:
                entry = entry.model_copy(update={"enabled": True})
                entries[name] = entry
                logger.info(f"Enabled extension '{name}'")
            return entry

        entry = self._mutate(_enable)
        self._warn_if_missing(entry)
        return entry

    def disable(self, name: str) -> ExtensionEntry:
        """
        Disable an extension; its settings are kept

        Raises:
            NotFound: No such extension
            ProtectedExtension: It is the last enabled required built-in
        """

        def _disable(entries: Dict[str, ExtensionEntry]) -> ExtensionEntry:
            entry = self._require(entries, name)
            if not entry.enabled:
                return entry

            if self._is_protected(entry) and not any(
                self._is_protected(other) and other.enabled
                for other_name, other in entries.items()
                if other_name != name
            ):
                raise ProtectedExtension(name, "disable")

            entry = entry.model_copy(update={"enabled": False})
            entries[name] = entry
            logger.info(f"Disabled extension '{name}'")
            return entry

        return self._mutate(_disable)

    def remove(self, name: str) -> None:
        """
        Remove an extension, its exclusively owned settings and its permissions

        An env key is deleted (in both namespaces) only when no surviving
        extension still declares it. Reserved keys are never deleted.

        Raises:
            NotFound: No such extension
            ProtectedExtension: It is the last required built-in
        """

        def _remove(entries: Dict[str, ExtensionEntry]) -> Set[str]:
            entry = self._require(entries, name)
            if self._is_protected(entry) and not any(
                self._is_protected(other)
                for other_name, other in entries.items()
                if other_name != name
            ):
                raise ProtectedExtension(name, "remove")

            del entries[name]
            still_referenced = {key for other in entries.values() for key in other.env_key_names}
            return {key for key in entry.env_key_names if key not in still_referenced}

        orphaned = self._mutate(_remove)

        for key in sorted(orphaned):
            if is_reserved_key(key):
                logger.warning(f"Not deleting reserved key '{key}' declared by '{name}'")
                continue
            self.store.delete(key, Namespace.PLAIN)
            self.store.delete(key, Namespace.SECRET)

        self.permissions.remove_extension(name)
        logger.info(f"Removed extension '{name}'")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_settings(self, name: str, key: str, value: Any) -> None:
        """
        Write one of the extension's declared settings

        The value goes to the namespace the key declares (secret or plain).

        Raises:
            NotFound: No such extension
            UnknownKey: The extension does not declare key
            InvalidValue: key is reserved by the config layer
        """
        entry = self.get(name)
        env_key = entry.env_key(key)
        if env_key is None:
            raise UnknownKey(name, key)
        if is_reserved_key(key):
            raise InvalidValue(
                f"Extension '{name}' cannot write reserved key '{key}'",
                key=key,
                extension=name,
            )

        namespace = Namespace.SECRET if env_key.secret else Namespace.PLAIN
        self.store.set(key, value, namespace)
        logger.info(f"Updated setting '{key}' for extension '{name}'")

    def set_timeout(self, name: str, seconds: int) -> ExtensionEntry:
        def _set(entries: Dict[str, ExtensionEntry]) -> ExtensionEntry:
            entry = self._replace(self._require(entries, name), timeout_seconds=seconds)
            entries[name] = entry
            return entry

        entry = self._mutate(_set)
        logger.info(f"Set timeout of extension '{name}' to {seconds}s")
        return entry

    def _warn_if_missing(self, entry: ExtensionEntry) -> None:
        missing = self._missing_keys(entry)
        if missing:
            logger.warning(
                f"Extension '{entry.name}' is enabled but missing settings: {', '.join(missing)}"
            )

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    @staticmethod
    def describe_launch(entry: ExtensionEntry) -> str:
        """One-line summary of how an extension is started"""
        launch = entry.launch
        if isinstance(launch, BuiltinLaunch):
            return f"builtin:{entry.name}"
        if isinstance(launch, StdioLaunch):
            return shlex.join([launch.cmd, *launch.args])
        if isinstance(launch, RemoteHttpLaunch):
            return f"{launch.transport} {launch.uri}"
        if isinstance(launch, InlinePythonLaunch):
            deps = len(launch.dependencies)
            return (
                f"inline python ({len(launch.code)} chars, "
                f"{deps} {'dependency' if deps == 1 else 'dependencies'})"
            )
        raise TypeError(f"Unsupported launch type: {type(launch).__name__}")

