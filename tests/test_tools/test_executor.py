import asyncio

import pytest

from parley.cancellation import CancellationToken
from parley.planning import ToolCall
from parley.tools.executor import ToolExecutor, normalize_output
from parley.tools.registry import Tool, ToolRegistry, ToolResult


class EchoTool(Tool):
    name = "echo"
    description = "Echo"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self):
        self.calls: list[str] = []

    async def execute(self, text: str, **kwargs) -> ToolResult:
        self.calls.append(text)
        return ToolResult(success=True, content=text)


class PartsTool(Tool):
    name = "parts"
    description = "Returns a list of parts"

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, content=["a", {"text": "b"}, {"inline": 1}])


class SilentTool(Tool):
    name = "silent"
    description = "No output"

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=True, content="   ")


class FailingTool(Tool):
    name = "failing"
    description = "Always fails"

    async def execute(self, **kwargs) -> ToolResult:
        return ToolResult(success=False, error="disk full")


class ExplodingTool(Tool):
    name = "exploding"
    description = "Raises"

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("kaboom")


class SlowTool(Tool):
    name = "slow"
    description = "Slow"

    async def execute(self, **kwargs) -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult(success=True, content="late")


def registry_with(*tools: Tool) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return registry


def test_normalize_output_shapes():
    assert normalize_output("plain") == "plain"
    assert normalize_output(["a", {"text": "b"}, {"other": 1}]) == "ab"
    assert normalize_output({"text": "one part"}) == "one part"
    assert normalize_output(None) == ""


@pytest.mark.asyncio
async def test_report_has_one_section_per_call_in_order():
    echo = EchoTool()
    executor = ToolExecutor(registry_with(echo, FailingTool()))
    calls = [
        ToolCall("echo", {"text": "first"}),
        ToolCall("missing", {}),
        ToolCall("failing", {}),
        ToolCall("echo", {"text": "last"}),
    ]

    execution = await executor.execute(calls)

    assert [report.tool_name for report in execution.reports] == ["echo", "missing", "failing", "echo"]
    sections = execution.text.split("\n\n")
    assert len(sections) == 4
    assert sections[0] == "Tool 'echo' executed successfully:\nfirst"
    assert sections[1] == "Tool 'missing' not found"
    assert sections[2] == "Error executing tool 'failing': disk full"
    assert sections[3] == "Tool 'echo' executed successfully:\nlast"
    assert echo.calls == ["first", "last"]
    assert execution.all_succeeded is False


@pytest.mark.asyncio
async def test_empty_output_is_reported_explicitly():
    execution = await ToolExecutor(registry_with(SilentTool())).execute([ToolCall("silent")])

    assert execution.text == "Tool 'silent' executed successfully (no output)"
    assert execution.reports[0].succeeded is True


@pytest.mark.asyncio
async def test_structured_parts_are_concatenated():
    text = await ToolExecutor(registry_with(PartsTool())).execute_to_text([ToolCall("parts")])

    assert text == "Tool 'parts' executed successfully:\nab"


@pytest.mark.asyncio
async def test_missing_registry_reports_each_call():
    execution = await ToolExecutor(None).execute([ToolCall("echo", {"text": "x"}), ToolCall("other")])

    assert execution.text == (
        "Tool registry not available for echo\n\nTool registry not available for other"
    )


@pytest.mark.asyncio
async def test_missing_name_and_exceptions_do_not_abort_plan():
    echo = EchoTool()
    executor = ToolExecutor(registry_with(echo, ExplodingTool()))

    execution = await executor.execute(
        [ToolCall("", {}), ToolCall("exploding"), ToolCall("echo", {"text": "still runs"})]
    )

    assert execution.reports[0].output_text == "Tool call missing name"
    assert execution.reports[1].output_text == "Error executing tool 'exploding': kaboom"
    assert execution.reports[2].succeeded is True
    assert echo.calls == ["still runs"]


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported_inline():
    execution = await ToolExecutor(registry_with(EchoTool())).execute(
        [ToolCall("echo", {}), ToolCall("echo", {"text": 3})]
    )

    assert execution.reports[0].output_text == "Error executing tool 'echo': Missing required argument: text"
    assert "must be string" in execution.reports[1].output_text


@pytest.mark.asyncio
async def test_tool_timeout_is_bounded():
    executor = ToolExecutor(registry_with(SlowTool()), timeout=1.0)

    execution = await executor.execute([ToolCall("slow")])

    assert execution.text == "Error executing tool 'slow': Execution timed out after 1s"
    assert execution.reports[0].succeeded is False


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_invocation():
    echo = EchoTool()
    cancel = CancellationToken()

    class CancellingTool(Tool):
        name = "cancelling"
        description = "Sets the cancel token"

        async def execute(self, **kwargs) -> ToolResult:
            cancel.cancel()
            return ToolResult(success=True, content="done")

    executor = ToolExecutor(registry_with(CancellingTool(), echo))
    execution = await executor.execute(
        [ToolCall("cancelling"), ToolCall("echo", {"text": "never"})],
        cancel,
    )

    assert execution.cancelled is True
    assert len(execution.reports) == 1
    assert echo.calls == []
