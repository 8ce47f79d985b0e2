"""
Runtime settings for agentconfig

Pydantic-based bootstrap configuration: where the config home lives, which
secret backend to use, and how config keys map to environment overrides.

All settings can be overridden via environment variables with the
AGENTCONFIG_ prefix, e.g. AGENTCONFIG_HOME, AGENTCONFIG_SECRETS_BACKEND.

Usage:
    from agentconfig.core.settings import get_settings

    settings = get_settings()
    print(settings.home)
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SECRET_BACKENDS = ("auto", "keyring", "file")


class RuntimeSettings(BaseSettings):
    """Bootstrap settings, read from the process environment"""

    model_config = SettingsConfigDict(
        env_prefix="AGENTCONFIG_",
        case_sensitive=False,
        extra="ignore",
    )

    home: Path = Field(
        default_factory=lambda: Path.home() / ".agentconfig",
        description="Directory holding config.yaml and the secret fallback files",
    )
    config_file: str = Field(
        default="config.yaml",
        description="Plain settings file name inside home",
    )
    secrets_file: str = Field(
        default="secrets.enc",
        description="Encrypted secret fallback file name inside home",
    )
    secrets_key_file: str = Field(
        default="secrets.key",
        description="Fernet key file for the encrypted fallback",
    )
    secrets_backend: str = Field(
        default="auto",
        description="auto (keyring, else encrypted file), keyring, or file",
    )
    keyring_service: str = Field(
        default="agentconfig",
        description="Service name used in the platform keyring",
    )
    secret_key: Optional[str] = Field(
        default=None,
        description="Fernet key for the encrypted fallback (overrides the key file)",
    )
    env_prefix: str = Field(
        default="AGENT_",
        description="Prefix for per-key environment overrides (model -> AGENT_MODEL)",
    )
    lock_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for a file lock before failing",
    )

    @field_validator("secrets_backend")
    @classmethod
    def validate_secrets_backend(cls, v: str) -> str:
        """Validate secret backend name"""
        v = v.lower()
        if v not in SECRET_BACKENDS:
            raise ValueError(
                f"secrets_backend must be one of: {', '.join(SECRET_BACKENDS)}"
            )
        return v

    @field_validator("lock_timeout")
    @classmethod
    def validate_lock_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("lock_timeout must be positive")
        return v


# Global settings instance
_settings: Optional[RuntimeSettings] = None


def get_settings(force_reload: bool = False) -> RuntimeSettings:
    """
    Get the process-wide settings instance

    Args:
        force_reload: Re-read settings from the environment

    Returns:
        RuntimeSettings instance
    """
    global _settings

    if _settings is None or force_reload:
        _settings = RuntimeSettings()

    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests)"""
    global _settings
    _settings = None
