"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from parley.exceptions import ToolExecutionError, ToolNotFoundError
from parley.logging import get_logger

log = get_logger(__name__)

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


class ToolResult(BaseModel):
    """Result from tool execution.

    ``content`` may be a plain string, an ordered list of parts, or a single
    structured part; :func:`parley.tools.executor.normalize_output` flattens it.
    """

    success: bool = True
    content: str | list[Any] | dict[str, Any] = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = self.content.strip() if isinstance(self.content, str) else ""
            self.error = fallback or "Tool execution failed"
        return self


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments plus ``_``-prefixed runtime
                values injected by the registry

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_declaration(self) -> dict[str, Any]:
        """Function declaration advertised to the remote planner."""
        return {
            "name": self.name,
            "description": self.description,
            "schema": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments and declared primitive types.

        Raises:
            ToolExecutionError if invalid
        """
        if not isinstance(arguments, dict):
            raise ToolExecutionError(self.name, "Arguments must be an object")
        for field in self.parameters.get("required", []):
            if field not in arguments:
                raise ToolExecutionError(self.name, f"Missing required argument: {field}")
        properties = self.parameters.get("properties", {}) or {}
        for key, value in arguments.items():
            prop = properties.get(key)
            if not isinstance(prop, dict) or value is None:
                continue
            expected = _JSON_TYPES.get(str(prop.get("type", "")))
            if expected is None:
                continue
            if isinstance(value, bool) and bool not in expected:
                raise ToolExecutionError(self.name, f"Argument '{key}' must be {prop['type']}")
            if not isinstance(value, expected):
                raise ToolExecutionError(self.name, f"Argument '{key}' must be {prop['type']}")


class ToolRegistry:
    """Capability registry mapping tool names to tool instances."""

    def __init__(self, base_path: Path | str | None = None):
        self._tools: dict[str, Tool] = {}
        self._runtime_base_path = Path.cwd()
        self.set_runtime_base_path(base_path or Path.cwd())

    def set_runtime_base_path(self, base_path: Path | str) -> None:
        """Set the working directory tools resolve relative paths against."""
        self._runtime_base_path = Path(base_path).expanduser().resolve()

    @property
    def runtime_base_path(self) -> Path:
        return self._runtime_base_path

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Tool | None:
        """Return the tool registered under ``name``, or None."""
        return self._tools.get(name)

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        tool = self.get_tool(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_function_declarations(self) -> list[dict[str, Any]]:
        """Declarations for every registered tool, in registration order."""
        return [tool.get_declaration() for tool in self._tools.values()]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled task raised", error=str(e))

    @staticmethod
    async def _bridge_abort_event(source: asyncio.Event, target: asyncio.Event) -> None:
        """Mirror external abort event to local tool abort event."""
        await source.wait()
        target.set()

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool by name within a bounded deadline.

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if validation, execution, timeout or abort fails
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        timeout_seconds = float(timeout or getattr(tool, "timeout_seconds", 30.0) or 30.0)
        timeout_seconds = max(1.0, timeout_seconds)

        execute_task: asyncio.Task[ToolResult] | None = None
        abort_wait_task: asyncio.Task[bool] | None = None
        bridge_task: asyncio.Task[None] | None = None
        tool_abort_event = asyncio.Event()
        try:
            log.info("Executing tool", tool=name, args=sorted(arguments.keys()))
            if abort_event is not None:
                bridge_task = asyncio.create_task(
                    self._bridge_abort_event(abort_event, tool_abort_event)
                )

            execute_task = asyncio.create_task(
                tool.execute(
                    **arguments,
                    _runtime_base_path=self.runtime_base_path,
                    _abort_event=tool_abort_event,
                )
            )
            abort_wait_task = asyncio.create_task(tool_abort_event.wait())
            done, _ = await asyncio.wait(
                {execute_task, abort_wait_task},
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                result = await execute_task
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, success=result.success)
                return result

            if abort_wait_task in done:
                await self._cancel_task(execute_task)
                raise ToolExecutionError(name, "Execution aborted")

            tool_abort_event.set()
            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e)) from e
        finally:
            await self._cancel_task(abort_wait_task)
            await self._cancel_task(bridge_task)


def create_default_registry(
    base_path: Path | str | None = None,
    enabled: list[str] | None = None,
    shell_timeout: float | None = None,
    blocked_commands: list[str] | None = None,
) -> ToolRegistry:
    """Build a registry holding the bundled local tools."""
    from parley.tools.list_directory import ListDirectoryTool
    from parley.tools.read import ReadFileTool
    from parley.tools.shell import ShellTool
    from parley.tools.write import WriteFileTool

    registry = ToolRegistry(base_path=base_path)
    candidates: list[Tool] = [
        WriteFileTool(),
        ReadFileTool(),
        ShellTool(timeout=shell_timeout, blocked=blocked_commands),
        ListDirectoryTool(),
    ]
    allowed = set(enabled) if enabled is not None else None
    for tool in candidates:
        if allowed is None or tool.name in allowed:
            registry.register(tool)
    return registry
