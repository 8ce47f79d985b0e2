"""Extension registry

Extensions are pluggable tool providers. Each entry records how the
provider is launched, whether it is enabled, and which config keys hold
its settings.

Components:
- models: Pydantic data models (entries, launch variants, env keys)
- registry: ExtensionRegistry, CRUD over the config store
"""

from agentconfig.core.extensions.models import (
    DEFAULT_EXTENSION,
    DEFAULT_EXTENSION_TIMEOUT,
    BuiltinLaunch,
    EnvKey,
    ExtensionEntry,
    ExtensionHealth,
    ExtensionKind,
    ExtensionStatus,
    InlinePythonLaunch,
    LaunchSpec,
    RemoteHttpLaunch,
    StdioLaunch,
    default_extension,
)
from agentconfig.core.extensions.registry import EXTENSIONS_KEY, ExtensionRegistry

__all__ = [
    # Models
    "DEFAULT_EXTENSION",
    "DEFAULT_EXTENSION_TIMEOUT",
    "BuiltinLaunch",
    "EnvKey",
    "ExtensionEntry",
    "ExtensionHealth",
    "ExtensionKind",
    "ExtensionStatus",
    "InlinePythonLaunch",
    "LaunchSpec",
    "RemoteHttpLaunch",
    "StdioLaunch",
    "default_extension",
    # Registry
    "EXTENSIONS_KEY",
    "ExtensionRegistry",
]
