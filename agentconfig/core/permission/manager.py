"""Permission Manager - gate for extension tool calls

Every tool invocation goes through ``decide`` (``authorize`` is the name
the tool-execution engine calls). Levels are persisted in the config
store under the plain key ``permissions``:

    {extension: {"default": level, "tools": {tool: level}}}

Design:
- Fail-closed: any storage or parse error during a decision is logged
  and the call is denied
- Session memo: ASK_ONCE approvals live in this manager instance only
  and are never persisted

Usage:
    from agentconfig.core.permission import PermissionManager, Decision

    permissions = PermissionManager(store)
    if permissions.decide("web", "fetch") is Decision.REQUIRE_CONFIRMATION:
        ...  # ask the user
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from agentconfig.config.base import ConfigStore
from agentconfig.config.exceptions import ConfigError, InvalidValue, PersistenceError
from agentconfig.config.values import Namespace, ValueKind
from agentconfig.core.permission.models import Decision, PermissionLevel, PermissionRecord

logger = logging.getLogger(__name__)

PERMISSIONS_KEY = "permissions"

LevelLike = Union[PermissionLevel, str]


class PermissionManager:
    """Resolves and records permission levels for extension tools."""

    def __init__(self, store: ConfigStore, default_level: LevelLike = PermissionLevel.ASK_ONCE):
        """
        Initialize permission manager.

        Args:
            store: Config store holding the permissions document
            default_level: Level used when neither tool nor extension has a record
        """
        self.store = store
        self.default_level = PermissionLevel(default_level)
        self.last_error: Optional[Exception] = None

        self._session_lock = threading.Lock()
        self._confirmed: Set[Tuple[str, str]] = set()

        store.declare(PERMISSIONS_KEY, ValueKind.DOCUMENT)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, Dict[str, Any]]:
        return self._check(self.store.get(PERMISSIONS_KEY, Namespace.PLAIN, {}, use_env=False))

    @staticmethod
    def _check(raw: Any) -> Dict[str, Dict[str, Any]]:
        if not isinstance(raw, dict):
            raise PersistenceError(
                f"Stored '{PERMISSIONS_KEY}' is a {type(raw).__name__}, expected a mapping",
                key=PERMISSIONS_KEY,
                namespace=Namespace.PLAIN,
            )
        for extension_name, record in raw.items():
            if not isinstance(record, dict) or not isinstance(record.get("tools", {}), dict):
                raise PersistenceError(
                    f"Stored permissions for '{extension_name}' are malformed",
                    key=PERMISSIONS_KEY,
                    extension=extension_name,
                )
        return raw

    def _mutate(
        self, apply: Callable[[Dict[str, Dict[str, Any]]], None]
    ) -> Dict[str, Dict[str, Any]]:
        """Edit the permissions document under the store lock; returns the saved document"""

        def _update(raw: Any) -> Dict[str, Dict[str, Any]]:
            document = self._check(raw)
            apply(document)
            return document

        return self.store.update(PERMISSIONS_KEY, _update, default={})

    @staticmethod
    def _parse_level(value: Any, extension_name: str, tool_name: Optional[str]) -> PermissionLevel:
        try:
            return PermissionLevel(value)
        except ValueError as e:
            target = f"{extension_name}/{tool_name}" if tool_name else extension_name
            raise InvalidValue(
                f"Unknown permission level {value!r} for '{target}'",
                key=PERMISSIONS_KEY,
                extension=extension_name,
            ) from e

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def get_level(self, extension_name: str, tool_name: Optional[str] = None) -> PermissionLevel:
        """
        Effective level for a tool (or the extension when tool_name is None).

        Resolution order:
        1. Tool-specific record
        2. Extension-wide record
        3. Global default

        Raises:
            PersistenceError: Permissions document unreadable
            InvalidValue: A stored level is not a known PermissionLevel
        """
        return self._resolve(self._load(), extension_name, tool_name)

    def _resolve(
        self,
        document: Dict[str, Dict[str, Any]],
        extension_name: str,
        tool_name: Optional[str],
    ) -> PermissionLevel:
        record = document.get(extension_name)
        if record is None:
            return self.default_level

        tools = record.get("tools", {})
        if tool_name is not None and tool_name in tools:
            return self._parse_level(tools[tool_name], extension_name, tool_name)
        if "default" in record:
            return self._parse_level(record["default"], extension_name, None)
        return self.default_level

    def set_level(
        self,
        extension_name: str,
        tool_name: Optional[str],
        level: LevelLike,
    ) -> PermissionRecord:
        """
        Upsert a permission record and persist it immediately.

        tool_name=None sets the extension-wide default. Session approvals
        for the affected tool(s) are forgotten.
        """
        try:
            level = PermissionLevel(level)
        except ValueError as e:
            raise InvalidValue(
                f"Unknown permission level {level!r}",
                key=PERMISSIONS_KEY,
                extension=extension_name,
            ) from e

        def _upsert(document: Dict[str, Dict[str, Any]]) -> None:
            record = document.setdefault(extension_name, {})
            if tool_name is None:
                record["default"] = level.value
            else:
                record.setdefault("tools", {})[tool_name] = level.value

        self._mutate(_upsert)

        with self._session_lock:
            if tool_name is None:
                self._confirmed = {pair for pair in self._confirmed if pair[0] != extension_name}
            else:
                self._confirmed.discard((extension_name, tool_name))

        target = f"{extension_name}/{tool_name}" if tool_name else f"{extension_name} (all tools)"
        logger.info(f"Permission for {target} set to {level.value}")
        return PermissionRecord(extension_name, tool_name, level)

    def records(self, extension_name: Optional[str] = None) -> List[PermissionRecord]:
        """Stored records, optionally for one extension"""
        document = self._load()
        result = []
        for name, record in document.items():
            if extension_name is not None and name != extension_name:
                continue
            if "default" in record:
                result.append(
                    PermissionRecord(name, None, self._parse_level(record["default"], name, None))
                )
            for tool, value in record.get("tools", {}).items():
                result.append(PermissionRecord(name, tool, self._parse_level(value, name, tool)))
        return result

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(self, extension_name: str, tool_name: str) -> Decision:
        """
        Decide whether a tool call may run.

        Never raises: any failure is logged, kept in ``last_error`` and
        turned into Decision.DENY.

        Returns:
            ALLOW, DENY or REQUIRE_CONFIRMATION
        """
        try:
            level = self._level_for_decision(extension_name, tool_name)
        except (ConfigError, ValueError) as e:
            self.last_error = e
            logger.error(
                f"Permission check for {extension_name}/{tool_name} failed, denying: {e}",
                exc_info=True,
            )
            return Decision.DENY

        if level is PermissionLevel.ALWAYS_ALLOW:
            return Decision.ALLOW
        if level is PermissionLevel.DENY:
            return Decision.DENY
        if level is PermissionLevel.ASK_EVERY_TIME:
            return Decision.REQUIRE_CONFIRMATION

        # ASK_ONCE
        pair = (extension_name, tool_name)
        with self._session_lock:
            if pair in self._confirmed:
                return Decision.ALLOW
            self._confirmed.add(pair)
        return Decision.REQUIRE_CONFIRMATION

    def authorize(self, extension_name: str, tool_name: str) -> Decision:
        """Entry point for the tool-execution engine; same as decide()"""
        return self.decide(extension_name, tool_name)

    def _level_for_decision(self, extension_name: str, tool_name: str) -> PermissionLevel:
        document = self._load()
        record = document.get(extension_name)
        if record is None or "default" not in record:
            # First sighting: record the extension-wide default, unless a
            # concurrent writer has stored one since the read above
            def _materialize(latest: Dict[str, Dict[str, Any]]) -> None:
                latest.setdefault(extension_name, {}).setdefault("default", self.default_level.value)

            document = self._mutate(_materialize)
            logger.debug(
                f"Recorded default permission {self.default_level.value} for '{extension_name}'"
            )
        return self._resolve(document, extension_name, tool_name)

    # ------------------------------------------------------------------
    # Cleanup / session
    # ------------------------------------------------------------------

    def remove_extension(self, extension_name: str) -> None:
        """Drop every record and session approval for an extension"""
        removed = []

        def _drop(document: Dict[str, Dict[str, Any]]) -> None:
            if document.pop(extension_name, None) is not None:
                removed.append(extension_name)

        self._mutate(_drop)
        if removed:
            logger.info(f"Removed permissions for '{extension_name}'")

        with self._session_lock:
            self._confirmed = {pair for pair in self._confirmed if pair[0] != extension_name}

    def reset_session(self) -> None:
        """Forget all ASK_ONCE approvals"""
        with self._session_lock:
            self._confirmed.clear()

    def forget(self, extension_name: str, tool_name: str) -> None:
        """Forget the ASK_ONCE approval for one tool"""
        with self._session_lock:
            self._confirmed.discard((extension_name, tool_name))
