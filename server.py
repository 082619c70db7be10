import logging
import os

from fastmcp import FastMCP

from ado import __version__, tools
from ado.connection import ConnectionProvider
from ado.telemetry import shutdown_telemetry

# Configure basic logging
logging.basicConfig(
    level=os.environ.get("ADO_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

mcp: FastMCP = FastMCP(name="ado-core-mcp", version=__version__)

# The client is created on the first tool call, from ADO_* environment variables.
connection_provider = ConnectionProvider()

tools.register_core_tools(mcp, connection_provider)


def main():
    """Main entry point for the ado-core-mcp server."""
    try:
        mcp.run()
    finally:
        connection_provider.reset()
        shutdown_telemetry()


if __name__ == "__main__":  # pragma: no cover
    main()
