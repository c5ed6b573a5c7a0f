"""Sequential execution of a tool-call plan against a registry."""

from dataclasses import dataclass, field
from typing import Any

from parley.cancellation import CancellationToken, is_cancelled
from parley.exceptions import ToolError, ToolExecutionError
from parley.logging import get_logger
from parley.planning import ToolCall
from parley.tools.registry import ToolRegistry

log = get_logger(__name__)

NO_OUTPUT = "(no output)"


def normalize_output(content: Any) -> str:
    """Flatten tool content (string, list of parts, or one part) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        text = content.get("text")
        return text if isinstance(text, str) else ""
    if isinstance(content, (list, tuple)):
        return "".join(normalize_output(part) for part in content)
    text = getattr(content, "text", None)
    return text if isinstance(text, str) else ""


@dataclass
class ToolExecutionReport:
    """Outcome of one plan entry."""

    tool_name: str
    output_text: str
    succeeded: bool


@dataclass
class PlanExecution:
    """All reports of one plan, in call order."""

    reports: list[ToolExecutionReport] = field(default_factory=list)
    cancelled: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(report.output_text for report in self.reports)

    @property
    def all_succeeded(self) -> bool:
        return all(report.succeeded for report in self.reports)


class ToolExecutor:
    """Runs plan entries one at a time; a failing entry never stops the rest."""

    def __init__(self, registry: ToolRegistry | None, timeout: float = 30.0):
        self.registry = registry
        self.timeout = timeout

    async def execute(
        self,
        tool_calls: list[ToolCall],
        cancel: CancellationToken | None = None,
    ) -> PlanExecution:
        execution = PlanExecution()
        for call in tool_calls:
            if is_cancelled(cancel):
                log.info("Plan execution cancelled", completed=len(execution.reports), total=len(tool_calls))
                execution.cancelled = True
                break
            execution.reports.append(await self._execute_one(call, cancel))
        return execution

    async def execute_to_text(
        self,
        tool_calls: list[ToolCall],
        cancel: CancellationToken | None = None,
    ) -> str:
        return (await self.execute(tool_calls, cancel)).text

    async def _execute_one(
        self,
        call: ToolCall,
        cancel: CancellationToken | None,
    ) -> ToolExecutionReport:
        name = (call.name or "").strip()
        if self.registry is None:
            return ToolExecutionReport(
                tool_name=name,
                output_text=f"Tool registry not available for {name or 'unknown'}",
                succeeded=False,
            )
        if not name:
            return ToolExecutionReport(tool_name="", output_text="Tool call missing name", succeeded=False)
        if self.registry.get_tool(name) is None:
            return ToolExecutionReport(
                tool_name=name,
                output_text=f"Tool '{name}' not found",
                succeeded=False,
            )

        try:
            result = await self.registry.execute(
                name,
                dict(call.args or {}),
                timeout=self.timeout,
                abort_event=cancel.event if cancel is not None else None,
            )
        except ToolExecutionError as e:
            return ToolExecutionReport(
                tool_name=name,
                output_text=f"Error executing tool '{name}': {e.message}",
                succeeded=False,
            )
        except ToolError as e:
            return ToolExecutionReport(
                tool_name=name,
                output_text=str(e),
                succeeded=False,
            )

        if not result.success:
            return ToolExecutionReport(
                tool_name=name,
                output_text=f"Error executing tool '{name}': {result.error}",
                succeeded=False,
            )

        output = normalize_output(result.content)
        if output.strip():
            text = f"Tool '{name}' executed successfully:\n{output}"
        else:
            text = f"Tool '{name}' executed successfully {NO_OUTPUT}"
        return ToolExecutionReport(tool_name=name, output_text=text, succeeded=True)
