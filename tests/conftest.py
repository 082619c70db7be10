"""Shared fixtures: a stand-in AdoClient and an in-memory MCP server wired to it."""

from unittest.mock import Mock

import pytest
from fastmcp import FastMCP
from fastmcp.client import Client

from ado.client import AdoClient
from ado.models import IdentitySearchResult
from ado.tools import register_core_tools


@pytest.fixture
def fake_client():
    """
    A Mock shaped like AdoClient. Tests set return values on the API methods.
    """
    client = Mock(spec=AdoClient)
    client.telemetry = None
    client.search_identities.return_value = IdentitySearchResult(value=[])
    return client


@pytest.fixture
def core_server(fake_client):
    server = FastMCP(name="ado-core-mcp-test")
    register_core_tools(server, lambda: fake_client)
    return server


@pytest.fixture
async def mcp_client(core_server):
    async with Client(core_server) as client:
        yield client
