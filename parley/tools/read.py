"""read_file tool."""

from typing import Any

from parley.logging import get_logger
from parley.tools.registry import Tool, ToolResult
from parley.tools.write import resolve_in_base

log = get_logger(__name__)

MAX_READ_BYTES = 100_000


class ReadFileTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a text file."
    parameters = {
        "type": "object",
        "properties": {
            "absolute_path": {
                "type": "string",
                "description": "Path of the file to read",
            },
        },
        "required": ["absolute_path"],
    }

    async def execute(self, absolute_path: str, **kwargs: Any) -> ToolResult:
        try:
            file_path = resolve_in_base(absolute_path, kwargs)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))

        if not file_path.is_file():
            return ToolResult(success=False, error=f"File not found: {absolute_path}")

        size = file_path.stat().st_size
        if size > MAX_READ_BYTES:
            return ToolResult(
                success=False,
                error=f"File too large: {size} bytes (max {MAX_READ_BYTES})",
            )

        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Read failed", path=absolute_path, error=str(e))
            return ToolResult(success=False, error=str(e))
        return ToolResult(success=True, content=text)
