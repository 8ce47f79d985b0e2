from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from agentconfig.core.settings import RuntimeSettings, get_settings, reset_settings
from agentconfig.core.storage import paths


class TestRuntimeSettings:
    """Test bootstrap settings and derived paths"""

    def setup_method(self) -> None:
        reset_settings()

    def teardown_method(self) -> None:
        reset_settings()

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("AGENTCONFIG_HOME", "AGENTCONFIG_SECRETS_BACKEND", "AGENTCONFIG_ENV_PREFIX"):
            monkeypatch.delenv(name, raising=False)
        settings = RuntimeSettings()
        assert settings.home == Path.home() / ".agentconfig"
        assert settings.secrets_backend == "auto"
        assert settings.env_prefix == "AGENT_"
        assert settings.keyring_service == "agentconfig"

    def test_environment_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENTCONFIG_HOME", str(tmp_path))
        monkeypatch.setenv("AGENTCONFIG_SECRETS_BACKEND", "FILE")
        settings = get_settings(force_reload=True)

        assert settings.home == tmp_path
        assert settings.secrets_backend == "file"
        assert paths.config_path(settings) == tmp_path / "config.yaml"
        assert paths.secrets_path(settings) == tmp_path / "secrets.enc"
        assert paths.secrets_key_path(settings) == tmp_path / "secrets.key"

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_rejects_unknown_backend(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeSettings(secrets_backend="vault")

    def test_rejects_non_positive_lock_timeout(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeSettings(lock_timeout=0)


def test_lock_path_for() -> None:
    assert paths.lock_path_for(Path("/tmp/x/config.yaml")) == Path("/tmp/x/config.yaml.lock")


def test_ensure_home(tmp_path: Path) -> None:
    settings = RuntimeSettings(home=tmp_path / "a" / "b")
    assert paths.ensure_home(settings) == tmp_path / "a" / "b"
    assert (tmp_path / "a" / "b").is_dir()
