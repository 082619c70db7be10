import logging
import threading

from .client import AdoClient
from .config import AdoMcpConfig

logger = logging.getLogger(__name__)


class ConnectionProvider:
    """
    Hands out the AdoClient used by the tools.

    The client is built on first use, so the server can start (and list its
    tools) before credentials are available. A failed build is not cached; the
    next call tries again.
    """

    def __init__(self, config: AdoMcpConfig | None = None):
        self._config = config
        self._client: AdoClient | None = None
        self._lock = threading.Lock()

    def __call__(self) -> AdoClient:
        return self.get_client()

    def get_client(self) -> AdoClient:
        with self._lock:
            if self._client is None:
                config = self._config or AdoMcpConfig.from_env()
                self._client = AdoClient(config=config)
                logger.info(f"Connected to Azure DevOps organization {self._client.organization_url}")
            return self._client

    def reset(self):
        """Drop the cached client, closing its session."""
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
