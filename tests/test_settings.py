"""Tests for settings loading, startup wiring and the retry policy."""

from __future__ import annotations

import pathlib
from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet

from cloud_sessions.context import build_context, build_key_provider
from cloud_sessions.lifecycle.errors import CredentialAcquisitionError, ProviderUnavailable
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.settings import DEFAULT_AWS_REGIONS, Settings, SettingsError, load_settings
from cloud_sessions.storage.keys import KEY_ENV_VAR, StaticKeyProvider, VaultKeyProvider


class TestLoadSettings:
    def test_values_from_file(self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        monkeypatch.delenv("CLOUD_SESSIONS_HOME", raising=False)
        config = tmp_path / "settings.yaml"
        config.write_text(
            "vault:\n"
            "  address: https://vault.example.com\n"
            "  aws_mount: aws-prod\n"
            "workspace:\n"
            f"  path: {tmp_path / 'ws.enc'}\n"
            "aws:\n"
            "  regions: [eu-west-1, eu-central-1]\n"
            "lifecycle:\n"
            "  max_retries: 5\n"
        )

        settings = load_settings(config)

        assert settings.vault_addr == "https://vault.example.com"
        assert settings.aws_mount == "aws-prod"
        assert settings.azure_mount == "azure"
        assert settings.workspace_path == tmp_path / "ws.enc"
        assert settings.aws_regions == ("eu-west-1", "eu-central-1")
        assert settings.max_retries == 5
        assert settings.base_delay == 1.0

    def test_empty_file_uses_defaults(self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        monkeypatch.delenv("CLOUD_SESSIONS_HOME", raising=False)
        config = tmp_path / "settings.yaml"
        config.write_text("")
        assert load_settings(config) == Settings()
        assert load_settings(config).aws_regions == DEFAULT_AWS_REGIONS

    def test_environment_overrides(self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VAULT_ADDR", "http://other:8200")
        monkeypatch.setenv("CLOUD_SESSIONS_HOME", str(tmp_path / "home"))
        config = tmp_path / "settings.yaml"
        config.write_text("vault:\n  address: http://ignored:8200\n")

        settings = load_settings(config)

        assert settings.vault_addr == "http://other:8200"
        assert settings.workspace_path == tmp_path / "home" / "workspace.enc"

    def test_missing_explicit_file(self, tmp_path: pathlib.Path) -> None:
        with pytest.raises(SettingsError, match="not found"):
            load_settings(tmp_path / "absent.yaml")

    def test_non_mapping(self, tmp_path: pathlib.Path) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(SettingsError, match="mapping"):
            load_settings(config)


class TestBuildContext:
    def test_env_key_takes_precedence(self, monkeypatch: pytest.MonkeyPatch, vault_session) -> None:
        monkeypatch.setenv(KEY_ENV_VAR, Fernet.generate_key().decode())
        assert isinstance(build_key_provider(Settings(), vault_session), StaticKeyProvider)

    def test_vault_key_by_default(self, monkeypatch: pytest.MonkeyPatch, vault_session) -> None:
        monkeypatch.delenv(KEY_ENV_VAR, raising=False)
        assert isinstance(build_key_provider(Settings(), vault_session), VaultKeyProvider)

    def test_builds_working_registry(
        self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch, vault_session
    ) -> None:
        monkeypatch.setenv(KEY_ENV_VAR, Fernet.generate_key().decode())
        settings = Settings(
            workspace_path=tmp_path / "ws.enc",
            aws_credentials_file=tmp_path / "credentials",
            azure_principal_file=tmp_path / "sp.json",
        )

        ctx = build_context(settings, vault_session)

        assert ctx.workspace.sessions() == []
        assert settings.workspace_path.exists()
        assert len(ctx.registry.supported_types()) == 5


class TestRetryPolicy:
    def test_backoff_doubles(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=[ProviderUnavailable("a"), ProviderUnavailable("b"), "ok"])

        result = RetryPolicy(max_retries=3, base_delay=0.5, sleep=sleep).call(func)

        assert result == "ok"
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_other_errors_propagate_immediately(self) -> None:
        sleep = MagicMock()
        func = MagicMock(side_effect=CredentialAcquisitionError("denied"))

        with pytest.raises(CredentialAcquisitionError):
            RetryPolicy(sleep=sleep).call(func)

        sleep.assert_not_called()

    def test_zero_retries(self) -> None:
        func = MagicMock(side_effect=ProviderUnavailable("down"))
        sleep = MagicMock()
        with pytest.raises(ProviderUnavailable):
            RetryPolicy(max_retries=0, sleep=sleep).call(func)
        assert func.call_count == 1
        sleep.assert_not_called()
