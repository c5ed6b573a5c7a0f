"""list_directory tool."""

from typing import Any

from parley.tools.registry import Tool, ToolResult
from parley.tools.write import resolve_in_base

MAX_ENTRIES = 200


class ListDirectoryTool(Tool):
    """List the entries of a directory."""

    name = "list_directory"
    description = "List files and subdirectories of a directory."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory to list, relative to the working directory",
            },
        },
        "required": ["path"],
    }

    async def execute(self, path: str, **kwargs: Any) -> ToolResult:
        try:
            directory = resolve_in_base(path or ".", kwargs)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        if not directory.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {path}")

        entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        lines = [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries[:MAX_ENTRIES]]
        if len(entries) > MAX_ENTRIES:
            lines.append(f"... ({len(entries) - MAX_ENTRIES} more)")
        return ToolResult(success=True, content="\n".join(lines))
