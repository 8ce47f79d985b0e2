# agentconfig/core/storage/paths.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from agentconfig.core.settings import RuntimeSettings, get_settings


def app_home(settings: Optional[RuntimeSettings] = None) -> Path:
    """Config home directory (~/.agentconfig unless AGENTCONFIG_HOME is set)"""
    return (settings or get_settings()).home.expanduser()


def config_path(settings: Optional[RuntimeSettings] = None) -> Path:
    """Plain settings file"""
    settings = settings or get_settings()
    return app_home(settings) / settings.config_file


def secrets_path(settings: Optional[RuntimeSettings] = None) -> Path:
    """Encrypted secret fallback file"""
    settings = settings or get_settings()
    return app_home(settings) / settings.secrets_file


def secrets_key_path(settings: Optional[RuntimeSettings] = None) -> Path:
    """Fernet key for the encrypted fallback"""
    settings = settings or get_settings()
    return app_home(settings) / settings.secrets_key_file


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file guarding writes to path"""
    return path.with_name(path.name + ".lock")


def ensure_home(settings: Optional[RuntimeSettings] = None) -> Path:
    """Create the config home if missing, returning it"""
    home = app_home(settings)
    home.mkdir(parents=True, exist_ok=True)
    return home
