"""
Global pytest configuration.

Loads ``.env`` before collection so the end-to-end tests see the same
credentials as the server would.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

E2E_VARS = ["ADO_ORGANIZATION_URL", "AZURE_DEVOPS_EXT_PAT"]


def pytest_configure():
    env_file = Path(__file__).parent / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=True)

    # The unit tests never talk to OpenTelemetry exporters or the network.
    os.environ.setdefault("ADO_TELEMETRY_ENABLED", "false")


def pytest_report_header(config):
    missing = [var for var in E2E_VARS if not os.getenv(var)]
    if missing:
        return f"end-to-end tests will be skipped, missing: {', '.join(missing)}"
    return "end-to-end tests enabled"
