"""agentconfig - configuration and policy layer for an extensible agent runtime

Usage:
    from agentconfig import ConfigStore, ExtensionRegistry, PermissionManager

    store = ConfigStore.open()
    permissions = PermissionManager(store)
    registry = ExtensionRegistry(store, permissions)
"""

from agentconfig.config import ConfigStore, ExperimentManager, Namespace
from agentconfig.core.extensions import ExtensionEntry, ExtensionRegistry
from agentconfig.core.permission import Decision, PermissionLevel, PermissionManager

__version__ = "0.1.0"

__all__ = [
    "ConfigStore",
    "ExperimentManager",
    "Namespace",
    "ExtensionEntry",
    "ExtensionRegistry",
    "Decision",
    "PermissionLevel",
    "PermissionManager",
    "__version__",
]
