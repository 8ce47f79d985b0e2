"""Data models for the Extension system"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Hardcoded default extension timeout in seconds
DEFAULT_EXTENSION_TIMEOUT = 300

DEFAULT_EXTENSION = "developer"
DEFAULT_DISPLAY_NAME = "Developer"
DEFAULT_EXTENSION_DESCRIPTION = "General development tools useful for software engineering."


class ExtensionKind(str, Enum):
    """How an extension is launched"""
    BUILTIN = "builtin"
    STDIO = "stdio"
    REMOTE_HTTP = "remote_http"
    INLINE_PYTHON = "inline_python"


class ExtensionStatus(str, Enum):
    """Health of a registered extension"""
    READY = "ready"
    DISABLED = "disabled"
    MISSING_SETTINGS = "missing_settings"


class BuiltinLaunch(BaseModel):
    """Toolset shipped with the runtime"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["builtin"] = "builtin"


class StdioLaunch(BaseModel):
    """Subprocess speaking the tool protocol over stdin/stdout"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["stdio"] = "stdio"
    cmd: str = Field(description="Executable to run (e.g. 'npx', 'uvx')")
    args: List[str] = Field(default_factory=list, description="Command-line arguments")

    @field_validator("cmd")
    @classmethod
    def validate_cmd(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Stdio extensions need a command")
        return v


class RemoteHttpLaunch(BaseModel):
    """Remote server reached over HTTP"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["remote_http"] = "remote_http"
    uri: str = Field(description="Server endpoint")
    transport: Literal["sse", "streamable_http"] = Field(
        default="streamable_http",
        description="Server-sent events or streamable HTTP",
    )
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra request headers")

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Remote extension URI must start with http:// or https://")
        return v


class InlinePythonLaunch(BaseModel):
    """Python source executed in-process by the runtime"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["inline_python"] = "inline_python"
    code: str = Field(description="Python source defining the tools")
    dependencies: List[str] = Field(
        default_factory=list,
        description="Python dependencies (e.g. ['requests>=2.28.0'])",
    )


LaunchSpec = Annotated[
    Union[BuiltinLaunch, StdioLaunch, RemoteHttpLaunch, InlinePythonLaunch],
    Field(discriminator="type"),
]


class EnvKey(BaseModel):
    """A config key an extension reads its settings from"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(description="Config / secret key name")
    secret: bool = Field(default=True, description="Lives in the secret namespace")
    required: bool = Field(default=True, description="Extension cannot run without it")
    default: Optional[Any] = Field(
        default=None,
        description="Placeholder value seeded into the plain namespace on install",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Env key name cannot be empty")
        return v

    @model_validator(mode="after")
    def check_default(self) -> "EnvKey":
        if self.secret and self.default is not None:
            raise ValueError(f"Secret key '{self.name}' cannot have a default value")
        return self


def _env_key_sort_name(item: Any) -> str:
    # Sets of names and EnvKey objects are ordered by key name
    return item.name if isinstance(item, EnvKey) else str(item)


class ExtensionEntry(BaseModel):
    """One capability provider

    Entries are immutable; the registry derives updated copies with
    ``model_copy(update=...)``. The name never changes after creation.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(description="Unique identifier (e.g. 'developer', 'web')")
    display_name: str = Field(default="", description="Human-readable name")
    description: str = Field(default="", description="What the extension provides")
    launch: LaunchSpec = Field(default_factory=BuiltinLaunch)
    enabled: bool = True
    timeout_seconds: int = Field(default=DEFAULT_EXTENSION_TIMEOUT, description="Per-call timeout")
    env_keys: List[EnvKey] = Field(default_factory=list)
    required: bool = Field(default=False, description="Protected built-in; cannot be removed")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate extension name format"""
        if not v or not v.strip():
            raise ValueError("Extension name cannot be empty")
        if not all(c.isalnum() or c in "._-" for c in v):
            raise ValueError(
                "Extension name can only contain alphanumeric characters, dots, underscores, and hyphens"
            )
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v

    @field_validator("env_keys", mode="before")
    @classmethod
    def coerce_env_keys(cls, v: Any) -> Any:
        # Bare names are shorthand for required secrets
        if isinstance(v, (set, frozenset)):
            v = sorted(v, key=_env_key_sort_name)
        if isinstance(v, (list, tuple)):
            return [EnvKey(name=item) if isinstance(item, str) else item for item in v]
        return v

    @field_validator("env_keys")
    @classmethod
    def validate_unique_env_keys(cls, v: List[EnvKey]) -> List[EnvKey]:
        seen = set()
        for key in v:
            if key.name in seen:
                raise ValueError(f"Env key '{key.name}' declared twice")
            seen.add(key.name)
        return v

    @model_validator(mode="before")
    @classmethod
    def fill_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("display_name"):
            data = {**data, "display_name": data.get("name", "")}
        return data

    @property
    def kind(self) -> ExtensionKind:
        return ExtensionKind(self.launch.type)

    def env_key(self, name: str) -> Optional[EnvKey]:
        for key in self.env_keys:
            if key.name == name:
                return key
        return None

    @property
    def env_key_names(self) -> List[str]:
        return [key.name for key in self.env_keys]


class ExtensionHealth(BaseModel):
    """Result of checking whether an extension can run"""
    name: str
    status: ExtensionStatus
    missing_keys: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ExtensionStatus.READY


def default_extension() -> ExtensionEntry:
    """The always-present built-in toolset seeded on first run"""
    return ExtensionEntry(
        name=DEFAULT_EXTENSION,
        display_name=DEFAULT_DISPLAY_NAME,
        description=DEFAULT_EXTENSION_DESCRIPTION,
        launch=BuiltinLaunch(),
        enabled=True,
        timeout_seconds=DEFAULT_EXTENSION_TIMEOUT,
        required=True,
    )
