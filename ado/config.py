"""Configuration for the core tools server, read from environment variables."""

import logging
import os
from dataclasses import dataclass, field

from .errors import AdoConfigurationError

logger = logging.getLogger(__name__)

AUTH_TYPES = ("chain", "pat", "env", "azcli")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise AdoConfigurationError(
            f"{name} must be a valid {cast.__name__}",
            context={"variable": name, "value": value},
            original_exception=e,
        ) from e


@dataclass
class AuthConfig:
    """How credentials are obtained and how long they are reused."""

    auth_type: str = "chain"
    timeout_seconds: int = 30
    enable_cli_fallback: bool = True
    cache_ttl_seconds: int = 3600

    def validate(self):
        if self.auth_type not in AUTH_TYPES:
            raise AdoConfigurationError(
                f"auth_type must be one of {', '.join(AUTH_TYPES)}",
                context={"auth_type": self.auth_type},
            )
        if self.timeout_seconds <= 0:
            raise AdoConfigurationError(
                "timeout_seconds must be positive",
                context={"timeout_seconds": self.timeout_seconds},
            )
        if self.cache_ttl_seconds < 0:
            raise AdoConfigurationError(
                "cache_ttl_seconds must be non-negative",
                context={"cache_ttl_seconds": self.cache_ttl_seconds},
            )


@dataclass
class ConnectionPoolConfig:
    """HTTP session pooling for the requests adapter."""

    enabled: bool = True
    max_pool_connections: int = 20
    max_pool_size: int = 100

    def validate(self):
        if self.max_pool_connections <= 0:
            raise AdoConfigurationError(
                "max_pool_connections must be positive",
                context={"max_pool_connections": self.max_pool_connections},
            )
        if self.max_pool_size < self.max_pool_connections:
            raise AdoConfigurationError(
                "max_pool_size must be >= max_pool_connections",
                context={
                    "max_pool_size": self.max_pool_size,
                    "max_pool_connections": self.max_pool_connections,
                },
            )


@dataclass
class TelemetryConfig:
    enabled: bool = True
    service_name: str = "ado-core-mcp"
    service_version: str = "0.1.0"
    trace_sampling_rate: float = 1.0
    metrics_enabled: bool = True

    def validate(self):
        if not 0.0 <= self.trace_sampling_rate <= 1.0:
            raise AdoConfigurationError(
                "trace_sampling_rate must be between 0.0 and 1.0",
                context={"trace_sampling_rate": self.trace_sampling_rate},
            )


@dataclass
class AdoMcpConfig:
    """
    Settings for the server. Explicit constructor arguments win; anything left
    unset is filled from the environment (see ``from_env``).
    """

    organization_url: str | None = None
    pat: str | None = None
    request_timeout_seconds: int = 30

    auth: AuthConfig = field(default_factory=AuthConfig)
    connection_pool: ConnectionPoolConfig = field(default_factory=ConnectionPoolConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    def __post_init__(self):
        if self.organization_url:
            self.organization_url = self.organization_url.rstrip("/")
        self.validate()

    def validate(self):
        if self.request_timeout_seconds <= 0:
            raise AdoConfigurationError(
                "request_timeout_seconds must be positive",
                context={"request_timeout_seconds": self.request_timeout_seconds},
            )
        self.auth.validate()
        self.connection_pool.validate()
        self.telemetry.validate()

    @classmethod
    def from_env(cls, **overrides) -> "AdoMcpConfig":
        """
        Build a configuration from ``ADO_*`` environment variables.

        Args:
            **overrides: Top-level fields that take precedence over the environment.

        Raises:
            AdoConfigurationError: If a variable cannot be parsed or is out of range.
        """
        auth = AuthConfig(
            auth_type=os.getenv("ADO_AUTH_TYPE", "chain").strip().lower(),
            timeout_seconds=_env_number("ADO_AUTH_TIMEOUT", 30, int),
            enable_cli_fallback=_env_bool("ADO_AUTH_CLI_FALLBACK", True),
            cache_ttl_seconds=_env_number("ADO_AUTH_CACHE_TTL", 3600, int),
        )
        connection_pool = ConnectionPoolConfig(
            enabled=_env_bool("ADO_CONNECTION_POOL_ENABLED", True),
            max_pool_connections=_env_number("ADO_CONNECTION_POOL_MAX_CONNECTIONS", 20, int),
            max_pool_size=_env_number("ADO_CONNECTION_POOL_MAX_SIZE", 100, int),
        )
        telemetry = TelemetryConfig(
            enabled=_env_bool("ADO_TELEMETRY_ENABLED", True),
            service_name=os.getenv("ADO_TELEMETRY_SERVICE_NAME", "ado-core-mcp"),
            trace_sampling_rate=_env_number("ADO_TELEMETRY_TRACE_SAMPLING_RATE", 1.0, float),
            metrics_enabled=_env_bool("ADO_TELEMETRY_METRICS_ENABLED", True),
        )

        values = {
            "organization_url": os.getenv("ADO_ORGANIZATION_URL"),
            "pat": os.getenv("AZURE_DEVOPS_EXT_PAT"),
            "request_timeout_seconds": _env_number("ADO_REQUEST_TIMEOUT", 30, int),
            "auth": auth,
            "connection_pool": connection_pool,
            "telemetry": telemetry,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        config = cls(**values)

        logger.info(
            f"Configuration loaded: auth_type={config.auth.auth_type}, "
            f"request_timeout={config.request_timeout_seconds}, "
            f"telemetry_enabled={config.telemetry.enabled}, "
            f"connection_pool_enabled={config.connection_pool.enabled}"
        )
        return config
