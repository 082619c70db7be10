"""Credential providers and the chain that picks one for outgoing requests."""

import json
import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from base64 import b64encode
from dataclasses import dataclass

from .config import AuthConfig
from .errors import AdoAuthenticationError, AdoConfigurationError

logger = logging.getLogger(__name__)

# Application ID of Azure DevOps in Microsoft Entra.
AZURE_DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"

PAT_REQUIRED_MESSAGE = "PAT (Personal Access Token) is required when using 'pat' authentication type."


@dataclass
class AuthCredential:
    token: str
    scheme: str  # "basic" or "bearer"
    method: str
    expires_at: float | None = None

    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() >= self.expires_at

    def authorization_header(self) -> str:
        if self.scheme == "basic":
            encoded = b64encode(f":{self.token}".encode("ascii")).decode("ascii")
            return f"Basic {encoded}"
        if self.scheme == "bearer":
            return f"Bearer {self.token}"
        raise ValueError(f"Unknown auth scheme: {self.scheme}")


class AuthProvider(ABC):
    name = "provider"

    @abstractmethod
    def get_credential(self) -> AuthCredential | None:
        """Return a credential, or None when this source has nothing to offer."""


class PatAuthProvider(AuthProvider):
    """A PAT handed in explicitly, e.g. from configuration."""

    name = "PAT"

    def __init__(self, pat: str | None):
        self.pat = pat

    def get_credential(self) -> AuthCredential | None:
        if not self.pat:
            return None
        return AuthCredential(token=self.pat, scheme="basic", method="pat")


class EnvironmentPatAuthProvider(AuthProvider):
    def __init__(self, env_var: str = "AZURE_DEVOPS_EXT_PAT"):
        self.env_var = env_var
        self.name = f"Environment ({env_var})"

    def get_credential(self) -> AuthCredential | None:
        pat = os.environ.get(self.env_var)
        if not pat:
            return None
        return AuthCredential(token=pat, scheme="basic", method="env_pat")


class AzureCliAuthProvider(AuthProvider):
    """
    Microsoft Entra access token from ``az account get-access-token``.

    Requires a prior ``az login``. Any failure to run the CLI or parse its output
    is treated as "no credential" so the chain can move on.
    """

    name = "Azure CLI"

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def get_credential(self) -> AuthCredential | None:
        try:
            result = subprocess.run(
                ["az", "account", "get-access-token", "--resource", AZURE_DEVOPS_RESOURCE_ID],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.debug(f"Azure CLI token not available: {e}")
            return None

        if result.returncode != 0:
            logger.debug(f"Azure CLI token not available: {result.stderr.strip()}")
            return None

        try:
            token_data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse Azure CLI token output: {e}")
            return None

        access_token = token_data.get("accessToken")
        if not access_token:
            logger.warning("Azure CLI returned an empty access token")
            return None

        expires_at = None
        expires_on = token_data.get("expires_on") or token_data.get("expiresOn")
        if expires_on:
            try:
                expires_at = float(expires_on)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring unparseable token expiry: {expires_on}")

        return AuthCredential(
            token=access_token, scheme="bearer", method="azure_cli", expires_at=expires_at
        )


class AuthManager:
    """
    Tries its providers in order and hands out the first live credential.

    The winning credential is reused until it expires or ``cache_ttl_seconds``
    passes, whichever comes first.
    """

    def __init__(self, providers: list[AuthProvider], cache_ttl_seconds: int = 3600):
        self.providers = providers
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cached: AuthCredential | None = None
        self._cached_at = 0.0

    def _cache_is_fresh(self) -> bool:
        if self._cached is None or self._cached.is_expired():
            return False
        return time.time() - self._cached_at <= self.cache_ttl_seconds

    def get_credential(self) -> AuthCredential:
        if self._cache_is_fresh():
            return self._cached

        for provider in self.providers:
            try:
                credential = provider.get_credential()
            except Exception as e:
                logger.warning(f"Authentication provider {provider.name} failed: {e}")
                continue

            if credential is None:
                logger.debug(f"No credential available from {provider.name}")
                continue
            if credential.is_expired():
                logger.debug(f"Credential from {provider.name} is expired")
                continue

            logger.info(f"Authenticated using {provider.name}")
            self._cached = credential
            self._cached_at = time.time()
            return credential

        tried = [provider.name for provider in self.providers]
        raise AdoAuthenticationError(
            f"No authentication method succeeded. Tried: {', '.join(tried)}",
            context={"providers_tried": tried},
        )

    def invalidate_cache(self):
        self._cached = None
        self._cached_at = 0.0

    def get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": self.get_credential().authorization_header()}

    @property
    def method(self) -> str:
        """Name of the method behind the current credential, or "none"."""
        try:
            return self.get_credential().method
        except AdoAuthenticationError:
            return "none"


def create_auth_manager(
    auth_type: str, config: AuthConfig | None = None, pat: str | None = None
) -> AuthManager:
    """
    Build an AuthManager for one of the supported authentication types.

    Args:
        auth_type: ``pat`` (explicit token only), ``env`` (``AZURE_DEVOPS_EXT_PAT``),
            ``azcli`` (Azure CLI token) or ``chain`` (all of them, in that order).
        config: Timeouts and cache settings; defaults are used when omitted.
        pat: The explicit personal access token, if any.

    Raises:
        AdoAuthenticationError: ``pat`` was requested without a token.
        AdoConfigurationError: The authentication type is not recognised.
    """
    config = config or AuthConfig()

    if auth_type == "pat":
        if not pat:
            raise AdoAuthenticationError(PAT_REQUIRED_MESSAGE, context={"auth_type": auth_type})
        providers = [PatAuthProvider(pat)]
    elif auth_type == "env":
        providers = [EnvironmentPatAuthProvider()]
    elif auth_type == "azcli":
        providers = [AzureCliAuthProvider(config.timeout_seconds)]
    elif auth_type == "chain":
        providers = [PatAuthProvider(pat), EnvironmentPatAuthProvider()]
        if config.enable_cli_fallback:
            providers.append(AzureCliAuthProvider(config.timeout_seconds))
    else:
        raise AdoConfigurationError(
            f"Unknown authentication type: {auth_type}", context={"auth_type": auth_type}
        )

    return AuthManager(providers, cache_ttl_seconds=config.cache_ttl_seconds)
