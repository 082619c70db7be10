"""Success and error envelopes returned by the core tools."""

import json
from typing import Any

from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from pydantic import BaseModel

UNKNOWN_ERROR = "Unknown error occurred"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_unset=True)
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


def json_result(payload: Any) -> ToolResult:
    """A single text block holding ``payload`` as pretty-printed JSON."""
    text = json.dumps(_jsonable(payload), indent=2, ensure_ascii=False)
    return ToolResult(content=[TextContent(type="text", text=text)])


def error_message(prefix: str, error: BaseException) -> str:
    """``"<prefix>: <message>"``, with a generic message when the error has none."""
    message = str(error) or UNKNOWN_ERROR
    return f"{prefix}: {message}"


def error_result(text: str) -> ToolError:
    """
    The error envelope. Raise it from a tool: FastMCP turns it into a single
    text block with the error flag set.
    """
    return ToolError(text)
