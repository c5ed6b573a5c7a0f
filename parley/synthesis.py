"""Compose user-facing replies and commit them to the conversation store."""

import re
from dataclasses import dataclass
from pathlib import Path

from parley.cancellation import CancellationToken
from parley.history import MODEL, ConversationStore, ConversationTurn
from parley.logging import get_logger
from parley.planning import RUN_SHELL_COMMAND, WRITE_FILE, ToolCall
from parley.tools.executor import PlanExecution, ToolExecutor

log = get_logger(__name__)

# Fenced block language -> file written when the reply names no file.
DEFAULT_FILENAMES: dict[str, str] = {
    "go": "main.go",
    "golang": "main.go",
    "python": "main.py",
    "py": "main.py",
    "javascript": "index.js",
    "js": "index.js",
    "node": "index.js",
    "typescript": "index.ts",
    "ts": "index.ts",
    "html": "index.html",
    "css": "styles.css",
    "rust": "main.rs",
    "java": "Main.java",
    "c": "main.c",
    "cpp": "main.cpp",
    "ruby": "main.rb",
}

_CODE_BLOCK_RE = re.compile(r"```([\w+#-]*)[^\n]*\n(.*?)```", re.DOTALL)
_SAVE_HINT_RE = re.compile(
    r"\b(?:save|saved|store|write|put)\b[^\n`'\"]{0,40}?\b(?:to|as|in|into)\s+[`'\"]?([\w./-]+\.[A-Za-z0-9]+)",
    re.IGNORECASE,
)
_HINT_WINDOW = 300


@dataclass
class CodeBlock:
    language: str
    code: str
    filename: str | None = None


def extract_code_blocks(text: str) -> list[CodeBlock]:
    """Find fenced code blocks and any filename hint in the prose before each."""
    blocks: list[CodeBlock] = []
    previous_end = 0
    for match in _CODE_BLOCK_RE.finditer(text or ""):
        language = match.group(1).strip().lower()
        code = match.group(2)
        preceding = text[max(previous_end, match.start() - _HINT_WINDOW):match.start()]
        hints = _SAVE_HINT_RE.findall(preceding)
        blocks.append(CodeBlock(language=language, code=code, filename=hints[-1] if hints else None))
        previous_end = match.end()
    return blocks


def plan_implicit_writes(text: str) -> list[ToolCall]:
    """Build write_file calls for code blocks that map to a file name."""
    calls: list[ToolCall] = []
    seen: set[str] = set()
    for block in extract_code_blocks(text):
        if not block.code.strip():
            continue
        filename = block.filename or DEFAULT_FILENAMES.get(block.language)
        if not filename or filename in seen:
            continue
        seen.add(filename)
        calls.append(ToolCall(WRITE_FILE, {"file_path": filename, "content": block.code}))
    return calls


def display_path(raw: object, working_dir: Path | None) -> str:
    """Show paths inside the working directory relative to it."""
    text = str(raw or "").strip()
    if not text or working_dir is None:
        return text
    path = Path(text)
    if not path.is_absolute():
        return text
    try:
        return str(path.relative_to(working_dir))
    except ValueError:
        return text


def _quoted(items: list[str]) -> str:
    return ", ".join(f"'{item}'" for item in items)


def build_acknowledgment(tool_calls: list[ToolCall], working_dir: Path | None = None) -> str:
    """One-line summary of what the executed calls did."""
    files = [
        display_path(call.args.get("file_path") or "file", working_dir)
        for call in tool_calls
        if call.name == WRITE_FILE
    ]
    commands = [
        str(call.args.get("command") or "command")
        for call in tool_calls
        if call.name == RUN_SHELL_COMMAND
    ]
    if files and commands:
        return f"Created {_quoted(files)} and executed {_quoted(commands)}"
    if files:
        noun = "file" if len(files) == 1 else "files"
        return f"Created {noun} {_quoted(files)}"
    if commands:
        return f"Executed {_quoted(commands)}"
    return "Completed operation"


class ResponseSynthesizer:
    """Builds reply text for both paths and commits the model turn."""

    def __init__(
        self,
        store: ConversationStore,
        executor: ToolExecutor,
        working_dir: Path | None = None,
        implicit_file_writes: bool = False,
    ):
        self.store = store
        self.executor = executor
        self.working_dir = working_dir
        self.implicit_file_writes = implicit_file_writes

    def tool_reply(self, tool_calls: list[ToolCall], execution: PlanExecution) -> str:
        executed = tool_calls[:len(execution.reports)]
        acknowledgment = build_acknowledgment(executed, self.working_dir)
        report = execution.text
        return f"{acknowledgment}\n\n{report}" if report else acknowledgment

    async def implicit_actions(self, reply: str, cancel: CancellationToken | None = None) -> str:
        """Write files for code blocks in a conversational reply.

        Returns the supplementary text to append, or an empty string when the
        feature is disabled or nothing was found.
        """
        if not self.implicit_file_writes:
            return ""
        calls = plan_implicit_writes(reply)
        if not calls:
            return ""
        log.info("Writing files found in reply", files=[call.args["file_path"] for call in calls])
        execution = await self.executor.execute(calls, cancel)
        if not execution.reports:
            return ""
        acknowledgment = build_acknowledgment(calls[:len(execution.reports)], self.working_dir)
        return f"\n\n{acknowledgment}\n\n{execution.text}"

    def commit(self, text: str) -> ConversationTurn | None:
        """Append the model turn; empty replies are not recorded."""
        if not text.strip():
            return None
        return self.store.append(ConversationTurn.from_text(MODEL, text))
