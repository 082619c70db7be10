import json
import subprocess
import time
from base64 import b64decode
from unittest.mock import Mock, patch

import pytest

from ado.auth import (
    PAT_REQUIRED_MESSAGE,
    AuthCredential,
    AuthManager,
    AzureCliAuthProvider,
    EnvironmentPatAuthProvider,
    PatAuthProvider,
    create_auth_manager,
)
from ado.config import AuthConfig
from ado.errors import AdoAuthenticationError, AdoConfigurationError


def decoded_basic_token(header: str) -> str:
    assert header.startswith("Basic "), f"Expected Basic auth but got: {header}"
    return b64decode(header.removeprefix("Basic ")).decode("ascii")


class TestPatAuthentication:
    def test_returns_the_pat(self):
        manager = create_auth_manager("pat", pat="test-pat-token-12345")

        credential = manager.get_credential()

        assert credential.token == "test-pat-token-12345"
        assert credential.method == "pat"
        assert decoded_basic_token(credential.authorization_header()) == ":test-pat-token-12345"

    @pytest.mark.parametrize("pat", [None, ""])
    def test_requires_a_pat(self, pat):
        with pytest.raises(AdoAuthenticationError) as exc_info:
            create_auth_manager("pat", pat=pat)

        assert str(exc_info.value) == PAT_REQUIRED_MESSAGE

    def test_accepts_long_tokens(self):
        long_pat = "a" * 500

        assert create_auth_manager("pat", pat=long_pat).get_credential().token == long_pat


class TestEnvironmentAuthentication:
    def test_reads_the_environment_variable(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_EXT_PAT", "env-token")

        credential = create_auth_manager("env").get_credential()

        assert credential.method == "env_pat"
        assert credential.token == "env-token"

    def test_missing_variable_fails(self, monkeypatch):
        monkeypatch.delenv("AZURE_DEVOPS_EXT_PAT", raising=False)

        with pytest.raises(AdoAuthenticationError, match="No authentication method succeeded"):
            create_auth_manager("env").get_credential()


class TestAzureCliAuthentication:
    def test_parses_access_token(self):
        completed = subprocess.CompletedProcess(
            args=[],
            returncode=0,
            stdout=json.dumps({"accessToken": "entra-token", "expires_on": time.time() + 600}),
            stderr="",
        )

        with patch("ado.auth.subprocess.run", return_value=completed) as run:
            credential = AzureCliAuthProvider(timeout=5).get_credential()

        assert credential.scheme == "bearer"
        assert credential.authorization_header() == "Bearer entra-token"
        assert run.call_args.kwargs["timeout"] == 5

    def test_missing_cli_yields_no_credential(self):
        with patch("ado.auth.subprocess.run", side_effect=FileNotFoundError("az")):
            assert AzureCliAuthProvider().get_credential() is None

    def test_failed_login_yields_no_credential(self):
        completed = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="Please run 'az login'"
        )

        with patch("ado.auth.subprocess.run", return_value=completed):
            assert AzureCliAuthProvider().get_credential() is None


class TestChain:
    def test_explicit_pat_wins_over_environment(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_EXT_PAT", "env-token")

        manager = create_auth_manager("chain", AuthConfig(enable_cli_fallback=False), pat="explicit")

        assert manager.method == "pat"

    def test_environment_is_used_without_explicit_pat(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_EXT_PAT", "env-token")

        manager = create_auth_manager("chain", AuthConfig(enable_cli_fallback=False))

        assert manager.method == "env_pat"

    def test_cli_fallback_is_tried_last(self, monkeypatch):
        monkeypatch.delenv("AZURE_DEVOPS_EXT_PAT", raising=False)
        cli_credential = AuthCredential(token="entra", scheme="bearer", method="azure_cli")

        with patch.object(AzureCliAuthProvider, "get_credential", return_value=cli_credential):
            manager = create_auth_manager("chain")
            assert manager.get_auth_headers() == {"Authorization": "Bearer entra"}

    def test_nothing_available_reports_providers_tried(self, monkeypatch):
        monkeypatch.delenv("AZURE_DEVOPS_EXT_PAT", raising=False)
        manager = create_auth_manager("chain", AuthConfig(enable_cli_fallback=False))

        with pytest.raises(AdoAuthenticationError) as exc_info:
            manager.get_credential()

        assert exc_info.value.context["providers_tried"] == ["PAT", "Environment (AZURE_DEVOPS_EXT_PAT)"]
        assert manager.method == "none"

    def test_credential_is_cached_until_invalidated(self):
        provider = Mock(wraps=PatAuthProvider("token"))
        provider.name = "PAT"
        manager = AuthManager([provider])

        manager.get_credential()
        manager.get_credential()
        assert provider.get_credential.call_count == 1

        manager.invalidate_cache()
        manager.get_credential()
        assert provider.get_credential.call_count == 2

    def test_expired_credentials_are_skipped(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_EXT_PAT", "env-token")
        expired = AuthCredential(token="old", scheme="bearer", method="azure_cli", expires_at=time.time() - 1)
        stale_provider = Mock()
        stale_provider.name = "stale"
        stale_provider.get_credential.return_value = expired

        manager = AuthManager([stale_provider, EnvironmentPatAuthProvider()])

        assert manager.get_credential().method == "env_pat"

    def test_failing_provider_does_not_break_the_chain(self, monkeypatch):
        monkeypatch.setenv("AZURE_DEVOPS_EXT_PAT", "env-token")
        broken = Mock()
        broken.name = "broken"
        broken.get_credential.side_effect = RuntimeError("keyring locked")

        manager = AuthManager([broken, EnvironmentPatAuthProvider()])

        assert manager.get_credential().method == "env_pat"


def test_unknown_auth_type_is_a_configuration_error():
    with pytest.raises(AdoConfigurationError, match="Unknown authentication type"):
        create_auth_manager("interactive")
