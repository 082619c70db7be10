"""Azure DevOps core tools (projects, teams, members, identities) for MCP."""

from dotenv import load_dotenv

__version__ = "0.1.0"

load_dotenv()
