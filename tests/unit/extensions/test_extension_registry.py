from __future__ import annotations

import logging
import threading

import pytest

from agentconfig.config import (
    ConfigStore,
    Conflict,
    InvalidValue,
    Namespace,
    NotFound,
    PersistenceError,
    ProtectedExtension,
    UnknownKey,
)
from agentconfig.core.extensions import (
    EXTENSIONS_KEY,
    BuiltinLaunch,
    EnvKey,
    ExtensionEntry,
    ExtensionRegistry,
    ExtensionStatus,
    InlinePythonLaunch,
    RemoteHttpLaunch,
    StdioLaunch,
)
from agentconfig.core.permission import (
    PERMISSIONS_KEY,
    Decision,
    PermissionLevel,
    PermissionManager,
)


def _web(**kwargs) -> ExtensionEntry:
    return ExtensionEntry(name="web", env_keys={"WEB_API_KEY"}, **kwargs)


class TestRegistryLifecycle:
    """Test add / get / list / enable / disable"""

    def test_seeds_default_on_first_run(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        names = [entry.name for entry in registry.list()]
        assert names == ["developer"]
        assert registry.get("developer").required

    def test_does_not_reseed_existing_registry(self, open_store) -> None:
        registry = ExtensionRegistry(open_store())
        registry.add(_web())

        reopened = ExtensionRegistry(open_store())
        assert [entry.name for entry in reopened.list()] == ["developer", "web"]

    def test_add_persists_across_restart(self, open_store) -> None:
        ExtensionRegistry(open_store()).add(
            ExtensionEntry(
                name="git",
                display_name="Git",
                launch=StdioLaunch(cmd="uvx", args=["mcp-server-git"]),
                timeout_seconds=60,
            )
        )

        entry = ExtensionRegistry(open_store()).get("git")
        assert entry.display_name == "Git"
        assert entry.launch == StdioLaunch(cmd="uvx", args=["mcp-server-git"])
        assert entry.timeout_seconds == 60

    def test_add_duplicate_conflicts(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web())
        with pytest.raises(Conflict) as exc_info:
            registry.add(_web())
        assert exc_info.value.extension == "web"

    def test_get_unknown(self, store: ConfigStore) -> None:
        with pytest.raises(NotFound) as exc_info:
            ExtensionRegistry(store).get("nope")
        assert exc_info.value.extension == "nope"

    def test_disable_keeps_settings(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web())
        registry.update_settings("web", "WEB_API_KEY", "wk-1")

        disabled = registry.disable("web")
        assert not disabled.enabled
        assert store.get("WEB_API_KEY", Namespace.SECRET) == "wk-1"
        assert [entry.name for entry in registry.enabled()] == ["developer"]

        enabled = registry.enable("web")
        assert enabled.enabled
        assert registry.check("web").status is ExtensionStatus.READY

    def test_disabling_last_required_builtin_is_protected(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        before = store.get(EXTENSIONS_KEY)

        with pytest.raises(ProtectedExtension) as exc_info:
            registry.disable("developer")
        assert exc_info.value.action == "disable"
        assert store.get(EXTENSIONS_KEY) == before

    def test_required_builtin_can_be_disabled_when_another_remains(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(ExtensionEntry(name="memory", required=True))
        assert not registry.disable("developer").enabled
        with pytest.raises(ProtectedExtension):
            registry.disable("memory")

    def test_set_timeout(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        assert registry.set_timeout("developer", 30).timeout_seconds == 30
        assert registry.get("developer").timeout_seconds == 30
        with pytest.raises(InvalidValue):
            registry.set_timeout("developer", -1)

    def test_corrupt_registry_document(self, store: ConfigStore) -> None:
        ExtensionRegistry(store)
        store.set(EXTENSIONS_KEY, {"web": {"name": "web", "timeout_seconds": "soon"}})
        with pytest.raises(PersistenceError):
            ExtensionRegistry(store).list()

    def test_registry_ignores_environment(self, open_store) -> None:
        ExtensionRegistry(open_store())
        registry = ExtensionRegistry(open_store(environ={"AGENT_EXTENSIONS": "{}"}))
        assert [entry.name for entry in registry.list()] == ["developer"]

    def test_required_non_builtin_does_not_unprotect_builtin(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(
            ExtensionEntry(
                name="git",
                required=True,
                launch=StdioLaunch(cmd="uvx", args=["mcp-server-git"]),
            )
        )

        with pytest.raises(ProtectedExtension):
            registry.disable("developer")
        with pytest.raises(ProtectedExtension):
            registry.remove("developer")

        # only built-ins are protected
        assert not registry.disable("git").enabled
        registry.remove("git")
        assert [entry.name for entry in registry.list()] == ["developer"]

    def test_concurrent_adds_from_separate_stores(self, open_store) -> None:
        ExtensionRegistry(open_store())
        registries = [ExtensionRegistry(open_store()) for _ in range(6)]

        def _add(index: int) -> None:
            registries[index].add(ExtensionEntry(name=f"ext{index}"))

        threads = [threading.Thread(target=_add, args=(i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        names = {entry.name for entry in ExtensionRegistry(open_store()).list()}
        assert names == {"developer"} | {f"ext{i}" for i in range(6)}


class TestRegistrySettings:
    """Test settings keys declared by extensions"""

    def test_update_settings_routes_by_namespace(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(
            ExtensionEntry(
                name="web",
                env_keys=["WEB_API_KEY", EnvKey(name="WEB_REGION", secret=False)],
            )
        )
        registry.update_settings("web", "WEB_API_KEY", "wk-1")
        registry.update_settings("web", "WEB_REGION", "eu")

        assert store.get("WEB_API_KEY", Namespace.SECRET) == "wk-1"
        assert not store.exists("WEB_API_KEY", Namespace.PLAIN)
        assert store.get("WEB_REGION") == "eu"
        assert not store.exists("WEB_REGION", Namespace.SECRET)

    def test_update_undeclared_key(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web())
        with pytest.raises(UnknownKey) as exc_info:
            registry.update_settings("web", "OTHER_KEY", "x")
        assert exc_info.value.key == "OTHER_KEY"
        assert exc_info.value.extension == "web"

    def test_add_seeds_plain_defaults_only_when_absent(self, store: ConfigStore) -> None:
        store.set("WEB_TIMEOUT", 99)
        registry = ExtensionRegistry(store)
        registry.add(
            ExtensionEntry(
                name="web",
                env_keys=[
                    EnvKey(name="WEB_REGION", secret=False, default="us"),
                    EnvKey(name="WEB_TIMEOUT", secret=False, default=10),
                    "WEB_API_KEY",
                ],
            )
        )
        assert store.get("WEB_REGION") == "us"
        assert store.get("WEB_TIMEOUT") == 99
        assert not store.exists("WEB_API_KEY", Namespace.SECRET)

    def test_add_rejects_unsupported_default(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        with pytest.raises(InvalidValue):
            registry.add(
                ExtensionEntry(
                    name="web",
                    env_keys=[EnvKey(name="WEB_WHEN", secret=False, default=object())],
                )
            )
        assert [entry.name for entry in registry.list()] == ["developer"]

    def test_check_reports_missing_settings(
        self, store: ConfigStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        registry = ExtensionRegistry(store)
        with caplog.at_level(logging.WARNING, logger="agentconfig.core.extensions.registry"):
            registry.add(_web())
        assert "WEB_API_KEY" in caplog.text

        health = registry.check("web")
        assert health.status is ExtensionStatus.MISSING_SETTINGS
        assert health.missing_keys == ["WEB_API_KEY"]
        assert not health.ok

        registry.update_settings("web", "WEB_API_KEY", "wk-1")
        assert registry.check("web").ok
        assert registry.missing_keys("web") == []

    def test_check_disabled(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web(enabled=False))
        health = registry.check("web")
        assert health.status is ExtensionStatus.DISABLED
        assert health.missing_keys == ["WEB_API_KEY"]

    def test_optional_keys_are_not_missing(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(ExtensionEntry(name="web", env_keys=[EnvKey(name="WEB_PROXY", required=False)]))
        assert registry.check("web").status is ExtensionStatus.READY

    def test_plain_key_satisfied_by_environment(self, open_store) -> None:
        ExtensionRegistry(open_store()).add(
            ExtensionEntry(name="web", env_keys=[EnvKey(name="web_region", secret=False)])
        )
        registry = ExtensionRegistry(open_store(environ={"AGENT_WEB_REGION": "eu"}))
        assert registry.check("web").ok

    @pytest.mark.parametrize(
        "reserved", [EXTENSIONS_KEY, PERMISSIONS_KEY, "experiments.smart_approve"]
    )
    def test_add_rejects_reserved_keys(self, store: ConfigStore, reserved: str) -> None:
        permissions = PermissionManager(store)
        permissions.set_level("shell", None, PermissionLevel.DENY)
        registry = ExtensionRegistry(store, permissions)

        with pytest.raises(InvalidValue) as exc_info:
            registry.add(ExtensionEntry(name="evil", env_keys=[EnvKey(name=reserved, secret=False)]))
        assert exc_info.value.key == reserved

        assert [entry.name for entry in registry.list()] == ["developer"]
        assert permissions.get_level("shell") is PermissionLevel.DENY

    def test_stored_entry_with_reserved_key_cannot_touch_it(self, store: ConfigStore) -> None:
        permissions = PermissionManager(store)
        permissions.set_level("shell", None, PermissionLevel.DENY)
        registry = ExtensionRegistry(store, permissions)

        # hand-edited registry document
        document = store.get(EXTENSIONS_KEY)
        document["evil"] = ExtensionEntry(
            name="evil", env_keys=[EnvKey(name=PERMISSIONS_KEY, secret=False)]
        ).model_dump(mode="json")
        store.set(EXTENSIONS_KEY, document)

        with pytest.raises(InvalidValue):
            registry.update_settings("evil", PERMISSIONS_KEY, {})
        registry.remove("evil")

        assert [entry.name for entry in registry.list()] == ["developer"]
        assert permissions.get_level("shell") is PermissionLevel.DENY


class TestRegistryRemove:
    """Test cascading removal"""

    def test_remove_deletes_exclusive_keys_in_both_namespaces(self, store: ConfigStore) -> None:
        permissions = PermissionManager(store)
        registry = ExtensionRegistry(store, permissions)
        registry.add(
            ExtensionEntry(
                name="web",
                env_keys=["WEB_API_KEY", "SHARED_TOKEN", EnvKey(name="WEB_REGION", secret=False, default="us")],
            )
        )
        registry.add(ExtensionEntry(name="search", env_keys=["SHARED_TOKEN"]))
        registry.update_settings("web", "WEB_API_KEY", "wk-1")
        registry.update_settings("web", "SHARED_TOKEN", "shared")
        store.set("WEB_API_KEY", "stray plain copy")
        permissions.set_level("web", None, PermissionLevel.ALWAYS_ALLOW)
        permissions.set_level("web", "fetch", PermissionLevel.DENY)
        permissions.set_level("search", None, PermissionLevel.DENY)

        registry.remove("web")

        assert [entry.name for entry in registry.list()] == ["developer", "search"]
        assert not store.exists("WEB_API_KEY", Namespace.SECRET)
        assert not store.exists("WEB_API_KEY", Namespace.PLAIN)
        assert not store.exists("WEB_REGION")
        assert store.get("SHARED_TOKEN", Namespace.SECRET) == "shared"
        assert permissions.records("web") == []
        assert [r.extension_name for r in permissions.records()] == ["search"]

    def test_shared_key_deleted_with_last_owner(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(ExtensionEntry(name="web", env_keys=["SHARED_TOKEN"]))
        registry.add(ExtensionEntry(name="search", env_keys=["SHARED_TOKEN"]))
        store.set("SHARED_TOKEN", "shared", Namespace.SECRET)

        registry.remove("web")
        assert store.exists("SHARED_TOKEN", Namespace.SECRET)
        registry.remove("search")
        assert not store.exists("SHARED_TOKEN", Namespace.SECRET)

    def test_remove_unknown(self, store: ConfigStore) -> None:
        with pytest.raises(NotFound):
            ExtensionRegistry(store).remove("nope")

    def test_removing_last_required_builtin_is_protected(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web())
        before = store.get(EXTENSIONS_KEY)

        with pytest.raises(ProtectedExtension) as exc_info:
            registry.remove("developer")
        assert exc_info.value.action == "remove"
        assert store.get(EXTENSIONS_KEY) == before

    def test_remove_without_permission_manager(self, store: ConfigStore) -> None:
        registry = ExtensionRegistry(store)
        registry.add(_web())
        registry.remove("web")
        assert [entry.name for entry in registry.list()] == ["developer"]

    def test_reinstalled_extension_starts_without_old_permissions(self, store: ConfigStore) -> None:
        permissions = PermissionManager(store)
        permissions.set_level("web", None, PermissionLevel.ALWAYS_ALLOW)
        registry = ExtensionRegistry(store)

        registry.add(_web())
        registry.remove("web")
        registry.add(_web())

        assert permissions.records("web") == []
        assert permissions.decide("web", "fetch") is not Decision.ALLOW


class TestDescribeLaunch:
    """Test per-variant launch summaries"""

    def test_each_variant(self) -> None:
        describe = ExtensionRegistry.describe_launch
        assert describe(ExtensionEntry(name="developer", launch=BuiltinLaunch())) == "builtin:developer"
        assert (
            describe(ExtensionEntry(name="fs", launch=StdioLaunch(cmd="npx", args=["-y", "server fs"])))
            == "npx -y 'server fs'"
        )
        assert (
            describe(
                ExtensionEntry(name="search", launch=RemoteHttpLaunch(uri="https://example.com/mcp"))
            )
            == "streamable_http https://example.com/mcp"
        )
        assert (
            describe(
                ExtensionEntry(
                    name="calc",
                    launch=InlinePythonLaunch(code="x = 1\n", dependencies=["requests>=2.28.0"]),
                )
            )
            == "inline python (6 chars, 1 dependency)"
        )
