"""Intent resolution: remote structured planning with a heuristic fallback."""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from parley.config import ResponseMode
from parley.exceptions import PlanningError, TransportError
from parley.history import MODEL, USER, ConversationTurn, format_transcript
from parley.instructions import InstructionLoader, get_instruction_loader
from parley.logging import get_logger
from parley.transport import ChatResponse

log = get_logger(__name__)

WRITE_FILE = "write_file"
RUN_SHELL_COMMAND = "run_shell_command"
LIST_DIRECTORY = "list_directory"

PLANNER_MODE: ResponseMode = "code"
MODE_SELECTION_MODE: ResponseMode = "general"

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


class ChatSender(Protocol):
    """The part of TransportClient the planners need."""

    async def send_turn(self, message: str, mode: ResponseMode | None = None) -> ChatResponse:
        ...


@dataclass
class ToolCall:
    """One planned tool invocation."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallPlan:
    """Ordered tool calls chosen for one turn."""

    tool_calls: list[ToolCall] = field(default_factory=list)
    source: str = ""

    @property
    def needs_tools(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class PlanningContext:
    """Inputs every planner receives besides the utterance."""

    history: list[ConversationTurn] = field(default_factory=list)
    working_dir: Path = field(default_factory=Path.cwd)
    tool_declarations: list[dict[str, Any]] = field(default_factory=list)


# Language templates -------------------------------------------------------


@dataclass(frozen=True)
class LanguageProfile:
    name: str
    filename: str
    run_prefix: str
    server_source: str

    def run_command(self, filename: str | None = None) -> str:
        return f"{self.run_prefix} {filename or self.filename}"


GO_SERVER = """package main

import (
\t"fmt"
\t"log"
\t"net/http"
)

func main() {
\thttp.HandleFunc("/", func(w http.ResponseWriter, r *http.Request) {
\t\tfmt.Fprintln(w, "Hello World!")
\t})
\tlog.Println("Server running at http://localhost:8080")
\tlog.Fatal(http.ListenAndServe(":8080", nil))
}
"""

PYTHON_SERVER = """from http.server import BaseHTTPRequestHandler, HTTPServer

PORT = 8000


class HelloHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        body = b"<h1>Hello World!</h1>"
        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


if __name__ == "__main__":
    print(f"Server running at http://localhost:{PORT}")
    HTTPServer(("", PORT), HelloHandler).serve_forever()
"""

NODE_SERVER = """const http = require('http');

const server = http.createServer((req, res) => {
  res.writeHead(200, {'Content-Type': 'text/html'});
  res.end('<h1>Hello World!</h1><p>Server is running successfully!</p>');
});

const PORT = 3000;
server.listen(PORT, () => {
  console.log(`Server running at http://localhost:${PORT}`);
});
"""

GO = LanguageProfile("go", "server.go", "go run", GO_SERVER)
PYTHON = LanguageProfile("python", "server.py", "python3", PYTHON_SERVER)
NODE = LanguageProfile("node", "server.js", "node", NODE_SERVER)

PROFILES_BY_EXTENSION = {".go": GO, ".py": PYTHON, ".js": NODE}


def infer_language(lowered: str) -> LanguageProfile:
    """Pick the target language from keywords, defaulting to Node."""
    if "golang" in lowered or re.search(r"\bgo\b", lowered):
        return GO
    if "python" in lowered:
        return PYTHON
    return NODE


# Decision decoding --------------------------------------------------------


def strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def find_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honouring JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:idx + 1]
        start = text.find("{", start + 1)
    return None


def parse_decision(raw: str) -> ToolCallPlan:
    """Decode a ``{needsTools, toolCalls}`` decision from model text.

    Raises:
        PlanningError: when no usable decision object can be decoded
    """
    cleaned = strip_code_fence(raw or "")
    if not cleaned:
        raise PlanningError("Planner returned an empty response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        candidate = find_balanced_object(cleaned)
        if candidate is None:
            raise PlanningError("Planner response contains no JSON object") from None
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise PlanningError(f"Planner JSON decode error: {e}") from e

    if not isinstance(data, dict):
        raise PlanningError("Planner decision is not an object")

    raw_calls = data.get("toolCalls") or []
    if not isinstance(raw_calls, list):
        raise PlanningError("toolCalls must be a list")

    calls: list[ToolCall] = []
    for item in raw_calls:
        if not isinstance(item, dict):
            raise PlanningError("Each tool call must be an object")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise PlanningError("Tool call is missing a name")
        args = item.get("args", item.get("arguments", {}))
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise PlanningError(f"Arguments for '{name}' must be an object")
        calls.append(ToolCall(name=name.strip(), args=dict(args)))

    if not bool(data.get("needsTools", False)):
        calls = []
    return ToolCallPlan(tool_calls=calls, source="remote")


def format_tool_list(declarations: list[dict[str, Any]]) -> str:
    lines = []
    for decl in declarations:
        name = str(decl.get("name", "")).strip()
        if not name:
            continue
        schema = decl.get("schema")
        properties = schema.get("properties") if isinstance(schema, dict) else None
        params = ", ".join(properties.keys()) if isinstance(properties, dict) else ""
        description = str(decl.get("description", "")).strip()
        lines.append(f"- {name}({params}): {description}".rstrip(": "))
    return "\n".join(lines) or "- (none)"


# Planners -----------------------------------------------------------------


class Planner(ABC):
    """Turns an utterance into a tool-call plan."""

    @abstractmethod
    async def plan(self, utterance: str, context: PlanningContext) -> ToolCallPlan:
        pass


class RemotePlanner(Planner):
    """Asks the remote service for a structured decision."""

    def __init__(self, transport: ChatSender, instructions: InstructionLoader | None = None):
        self.transport = transport
        self.instructions = instructions or get_instruction_loader()

    def build_prompt(self, utterance: str, context: PlanningContext) -> str:
        return self.instructions.render(
            "intent_planner_prompt.md",
            conversation_context=format_transcript(context.history),
            message=utterance,
            working_dir=str(context.working_dir),
            tool_list=format_tool_list(context.tool_declarations),
        )

    async def plan(self, utterance: str, context: PlanningContext) -> ToolCallPlan:
        prompt = self.build_prompt(utterance, context)
        try:
            response = await self.transport.send_turn(prompt, PLANNER_MODE)
        except TransportError as e:
            raise PlanningError(f"Planner unreachable: {e}") from e
        return parse_decision(response.text)


_RUN_ONLY_RE = re.compile(r"^(?:please\s+)?(?:run|execute|start)(?:\s+it)?\s*[.!]*$")
_WRITE_RE = re.compile(r"\b(?:write|create|make)\b")
_SUBJECT_RE = re.compile(r"\b(?:server|hello)\b")
_EXECUTE_RE = re.compile(r"\b(?:run|execute|start)\b")
_CONJUNCTION_RE = re.compile(r"\b(?:and|then)\b")
_CREATED_FILE_RE = re.compile(r"Created (?:file )?'([^']+\.(?:go|py|js))'")
_FILENAME_RE = re.compile(r"([\w./-]+\.(?:go|py|js))\b")


def _profile_for_filename(filename: str) -> LanguageProfile | None:
    return PROFILES_BY_EXTENSION.get(Path(filename).suffix.lower())


class HeuristicPlanner(Planner):
    """Deterministic keyword planner; never touches the network."""

    def plan_sync(self, utterance: str, context: PlanningContext) -> ToolCallPlan:
        lowered = utterance.lower().strip()
        calls: list[ToolCall] = []

        if _RUN_ONLY_RE.match(lowered):
            profile, filename = self.resolve_run_target(context.history)
            calls.append(ToolCall(RUN_SHELL_COMMAND, {"command": profile.run_command(filename)}))
            return ToolCallPlan(tool_calls=calls, source="heuristic")

        if _WRITE_RE.search(lowered) and _SUBJECT_RE.search(lowered):
            profile = infer_language(lowered)
            calls.append(
                ToolCall(
                    WRITE_FILE,
                    {"file_path": profile.filename, "content": profile.server_source},
                )
            )
            if _CONJUNCTION_RE.search(lowered) and _EXECUTE_RE.search(lowered):
                calls.append(ToolCall(RUN_SHELL_COMMAND, {"command": profile.run_command()}))
        elif "list" in lowered and "files" in lowered:
            calls.append(ToolCall(LIST_DIRECTORY, {"path": "."}))

        return ToolCallPlan(tool_calls=calls, source="heuristic")

    async def plan(self, utterance: str, context: PlanningContext) -> ToolCallPlan:
        return self.plan_sync(utterance, context)

    @staticmethod
    def resolve_run_target(history: list[ConversationTurn]) -> tuple[LanguageProfile, str]:
        """Find the most recently created file, newest turn first."""
        for turn in reversed(history):
            text = turn.text
            if turn.role == MODEL:
                created = _CREATED_FILE_RE.findall(text)
                if created:
                    filename = Path(created[-1]).name
                    profile = _profile_for_filename(filename)
                    if profile is not None:
                        return profile, filename
            elif turn.role == USER:
                lowered = text.lower()
                if _RUN_ONLY_RE.match(lowered.strip()):
                    continue
                if _WRITE_RE.search(lowered):
                    named = _FILENAME_RE.findall(text)
                    if named:
                        profile = _profile_for_filename(named[-1])
                        if profile is not None:
                            return profile, Path(named[-1]).name
                    profile = infer_language(lowered)
                    return profile, profile.filename
        return NODE, NODE.filename


class IntentResolver:
    """Tries the remote planner, then the heuristic one; never raises."""

    def __init__(self, remote: Planner | None, heuristic: Planner | None = None):
        self.remote = remote
        self.heuristic = heuristic or HeuristicPlanner()

    async def resolve(self, utterance: str, context: PlanningContext) -> ToolCallPlan:
        if self.remote is not None:
            try:
                plan = await self.remote.plan(utterance, context)
                log.debug("Remote plan", calls=[call.name for call in plan.tool_calls])
                return plan
            except Exception as e:
                log.debug(
                    "Remote planning failed, using heuristics",
                    error=str(e),
                    error_type=type(e).__name__,
                )
        plan = await self.heuristic.plan(utterance, context)
        log.debug("Heuristic plan", calls=[call.name for call in plan.tool_calls])
        return plan


class ModeSelector:
    """Asks the remote service how the next conversational reply should be framed."""

    def __init__(
        self,
        transport: ChatSender,
        instructions: InstructionLoader | None = None,
        default: ResponseMode = "general",
    ):
        self.transport = transport
        self.instructions = instructions or get_instruction_loader()
        self.default = default

    async def select(self, utterance: str, history: list[ConversationTurn]) -> ResponseMode:
        try:
            prompt = self.instructions.render(
                "mode_selection_prompt.md",
                conversation_context=format_transcript(history),
                message=utterance,
            )
            response = await self.transport.send_turn(prompt, MODE_SELECTION_MODE)
            answer = str(response.text or "").strip().strip(".").lower()
        except Exception as e:
            log.debug("Mode selection failed", error=str(e), error_type=type(e).__name__)
            return self.default
        return "code" if answer == "code" else self.default
