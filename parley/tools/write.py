"""write_file tool."""

from pathlib import Path
from typing import Any

from parley.logging import get_logger
from parley.tools.registry import Tool, ToolResult

log = get_logger(__name__)


def resolve_in_base(path: str, kwargs: dict[str, Any]) -> Path:
    """Resolve ``path`` against the injected runtime base (or cwd).

    Raises:
        ValueError: when the resolved path escapes the base directory
    """
    base_raw = kwargs.get("_runtime_base_path")
    base = Path(base_raw).expanduser().resolve() if base_raw is not None else Path.cwd().resolve()
    requested = Path(path).expanduser()
    candidate = requested if requested.is_absolute() else base / requested
    candidate = candidate.resolve()
    try:
        candidate.relative_to(base)
    except ValueError:
        raise ValueError(f"Path is outside the working directory: {path}") from None
    return candidate


class WriteFileTool(Tool):
    """Create or overwrite a file."""

    name = "write_file"
    description = "Create or overwrite a file with the given content."
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path of the file to write, absolute or relative to the working directory",
            },
            "content": {
                "type": "string",
                "description": "Full content to write",
            },
        },
        "required": ["file_path", "content"],
    }

    async def execute(self, file_path: str, content: str, **kwargs: Any) -> ToolResult:
        try:
            target = resolve_in_base(file_path, kwargs)
            target.parent.mkdir(parents=True, exist_ok=True)
            existed = target.exists()
            target.write_text(content, encoding="utf-8")
        except (OSError, ValueError) as e:
            log.error("Write failed", path=file_path, error=str(e))
            return ToolResult(success=False, error=str(e))

        verb = "Overwrote" if existed else "Created"
        return ToolResult(
            success=True,
            content=f"{verb} {target} ({len(content)} chars)",
        )
