"""run_shell_command tool."""

import asyncio
import os
import re
import shlex
from typing import Any

from parley.logging import get_logger
from parley.tools.registry import Tool, ToolResult

log = get_logger(__name__)

MAX_OUTPUT_CHARS = 10000
DEFAULT_BLOCKED = ["rm -rf /", "mkfs", ":(){:|:&};:"]


def find_blocked_pattern(command: str, blocked: list[str]) -> str | None:
    """Return the first blocked pattern matching ``command``, if any.

    Patterns containing whitespace match anywhere in the command text; single
    words match the executable of any ``;``/``&&``/``|`` separated segment.
    """
    cleaned = command.strip()
    if not cleaned:
        return "empty command"
    try:
        lexer = shlex.shlex(cleaned, posix=True, punctuation_chars=";&|")
        lexer.whitespace_split = True
        tokens = list(lexer)
    except ValueError:
        return "unparseable command"

    executables: list[str] = []
    expect_executable = True
    for token in tokens:
        if set(token) <= set(";&|"):
            expect_executable = True
            continue
        if expect_executable:
            executables.append(os.path.basename(token))
            expect_executable = False

    for pattern in blocked:
        pattern = pattern.strip()
        if not pattern:
            continue
        if re.search(r"\s", pattern) or not pattern.isidentifier():
            if pattern in cleaned:
                return pattern
        elif pattern in executables:
            return pattern
    return None


class ShellTool(Tool):
    """Execute a shell command in the working directory."""

    name = "run_shell_command"
    description = "Execute a shell command in the working directory and return its output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
        },
        "required": ["command"],
    }

    def __init__(self, timeout: float | None = None, blocked: list[str] | None = None):
        self.timeout_seconds = float(timeout or 30.0)
        self.blocked = list(DEFAULT_BLOCKED if blocked is None else blocked)

    async def execute(self, command: str, **kwargs: Any) -> ToolResult:
        matched = find_blocked_pattern(command, self.blocked)
        if matched:
            log.warning("Blocked unsafe command", command=command, reason=matched)
            return ToolResult(success=False, error=f"Command blocked: {matched}")

        abort_event = kwargs.get("_abort_event")
        if isinstance(abort_event, asyncio.Event) and abort_event.is_set():
            return ToolResult(success=False, error="Command aborted")

        cwd = kwargs.get("_runtime_base_path")
        log.info("Executing shell command", command=command, cwd=str(cwd) if cwd else None)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        if stderr_text:
            output = f"{output}\n[stderr] {stderr_text}" if output else f"[stderr] {stderr_text}"
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(output)} total chars]"

        if process.returncode != 0:
            return ToolResult(
                success=False,
                content=output,
                error=f"Command exited with code {process.returncode}" + (f"\n{output}" if output else ""),
            )
        return ToolResult(success=True, content=output)
