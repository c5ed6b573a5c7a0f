"""Turn orchestration: plan, execute or stream, synthesize, commit."""

import asyncio
import json
import sys
from contextlib import aclosing
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator

from parley.cancellation import CancellationToken, is_cancelled
from parley.config import Config, ResponseMode, get_config
from parley.exceptions import TransportError
from parley.history import MODEL, USER, ConversationStore, ConversationTurn, Part, format_transcript
from parley.instructions import InstructionLoader, get_instruction_loader
from parley.logging import get_logger
from parley.planning import (
    HeuristicPlanner,
    IntentResolver,
    ModeSelector,
    Planner,
    PlanningContext,
    RemotePlanner,
    ToolCallPlan,
)
from parley.synthesis import ResponseSynthesizer
from parley.tools.executor import ToolExecutor
from parley.tools.registry import ToolRegistry, create_default_registry
from parley.transport import ChatResponse, TransportClient

log = get_logger(__name__)

CONTEXT_ACKNOWLEDGMENT = "Got it. Thanks for the context!"
FULL_CONTEXT_TOOL = "read_many_files"
MAX_FOLDER_ENTRIES = 50


class TurnState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    STREAMING = "streaming"
    EXTRACTING_IMPLICIT = "extracting_implicit"
    SYNTHESIZING = "synthesizing"
    COMMITTING = "committing"
    ERROR_REPORTING = "error_reporting"


@dataclass
class TurnEvent:
    """One event relayed to the caller during a turn."""

    type: str  # "progress", "content", "error"
    value: str

    @classmethod
    def progress(cls, value: str) -> "TurnEvent":
        return cls("progress", value)

    @classmethod
    def content(cls, value: str) -> "TurnEvent":
        return cls("content", value)

    @classmethod
    def error(cls, value: str) -> "TurnEvent":
        return cls("error", value)


def describe_folder(path: Path, limit: int = MAX_FOLDER_ENTRIES) -> str:
    """Shallow listing of ``path`` for the environment turn."""
    try:
        entries = sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
    except OSError as e:
        return f"(unable to list {path}: {e})"
    visible = [entry for entry in entries if not entry.name.startswith(".")]
    lines = [f"Showing up to {limit} items in {path}:"]
    for entry in visible[:limit]:
        lines.append(f"- {entry.name}/" if entry.is_dir() else f"- {entry.name}")
    if len(visible) > limit:
        lines.append(f"- ... ({len(visible) - limit} more)")
    return "\n".join(lines)


class Agent:
    """Conversational client for one conversation.

    Turns are serialized by an internal lock. History lives in a
    :class:`ConversationStore` that no other component mutates.
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: TransportClient | None = None,
        registry: ToolRegistry | None = None,
        instructions: InstructionLoader | None = None,
        remote_planner: Planner | None = None,
        heuristic_planner: Planner | None = None,
    ):
        self.config = config or get_config()
        self.working_dir = self.config.resolved_working_dir()
        self.transport = transport or TransportClient(
            self.config.transport,
            default_mode=self.config.agent.default_mode,
        )
        self.registry = registry
        self.instructions = instructions or get_instruction_loader()
        self.store = ConversationStore()
        self.executor = ToolExecutor(registry, timeout=self.config.agent.tool_timeout)
        self.resolver = IntentResolver(
            remote=remote_planner or RemotePlanner(self.transport, self.instructions),
            heuristic=heuristic_planner or HeuristicPlanner(),
        )
        self.mode_selector = ModeSelector(self.transport, self.instructions)
        self.synthesizer = ResponseSynthesizer(
            self.store,
            self.executor,
            working_dir=self.working_dir,
            implicit_file_writes=self.config.agent.implicit_file_writes,
        )
        self.state = TurnState.IDLE
        self._turn_lock = asyncio.Lock()
        self._initialized = False

    @property
    def session_id(self) -> str:
        return self.transport.session_id

    def _set_state(self, state: TurnState) -> None:
        log.debug("Turn state", previous=self.state.value, state=state.value)
        self.state = state

    # Session seeding -----------------------------------------------------

    async def _environment_parts(self) -> list[Part]:
        context = self.instructions.render(
            "environment_context.md",
            today=date.today().strftime("%A, %B %d, %Y"),
            platform=sys.platform,
            working_dir=str(self.working_dir),
            folder_structure=describe_folder(self.working_dir),
        )
        parts = [Part(text=context)]
        if not self.config.agent.full_context:
            return parts

        tool = self.registry.get_tool(FULL_CONTEXT_TOOL) if self.registry is not None else None
        if tool is None:
            log.warning("Full context requested, but read_many_files tool not found")
            return parts
        try:
            result = await self.registry.execute(
                FULL_CONTEXT_TOOL,
                {"paths": ["**/*"], "useDefaultExcludes": True},
                timeout=self.config.agent.tool_timeout,
            )
        except Exception as e:
            log.error("Error reading full file context", error=str(e))
            parts.append(Part(text="\n--- Error reading full file context ---"))
            return parts
        content = result.content if isinstance(result.content, str) else ""
        if result.success and content:
            parts.append(Part(text=f"\n--- Full File Context ---\n{content}"))
        else:
            log.warning("Full context requested, but read_many_files returned no content")
        return parts

    async def initialize(self, extra_history: list[ConversationTurn] | None = None) -> None:
        """Seed history with the environment turn and its acknowledgment."""
        seed = [
            ConversationTurn(role=USER, parts=await self._environment_parts()),
            ConversationTurn.from_text(MODEL, CONTEXT_ACKNOWLEDGMENT),
        ]
        self.store.set_history(seed + list(extra_history or []))
        self._initialized = True
        log.info("Session started", session_id=self.session_id, working_dir=str(self.working_dir))

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def reset_chat(self) -> None:
        async with self._turn_lock:
            await self.initialize()

    # History access ------------------------------------------------------

    def get_history(self, curated: bool = False) -> list[ConversationTurn]:
        return self.store.curate() if curated else self.store.snapshot()

    def set_history(self, history: list[ConversationTurn]) -> None:
        self.store.set_history(history)
        self._initialized = True

    def add_history(self, turn: ConversationTurn) -> None:
        self.store.append(turn)

    def clear_history(self) -> None:
        self.store.clear()

    def system_instruction(self) -> str:
        prompt = self.instructions.load("system_prompt.md")
        memory = self.config.agent.user_memory.strip()
        if memory:
            return f"{prompt}\n\n---\n\n{memory}"
        return prompt

    def _flatten_for_request(self) -> str:
        conversation = format_transcript(
            self.store.curate(),
            user_label="Human",
            model_label="Assistant",
            separator="\n\n",
        )
        return "\n\n".join(part for part in (self.system_instruction(), conversation) if part)

    def _planning_context(self) -> PlanningContext:
        declarations = self.registry.get_function_declarations() if self.registry is not None else []
        return PlanningContext(
            history=self.store.recent(self.config.agent.planner_history_turns),
            working_dir=self.working_dir,
            tool_declarations=declarations,
        )

    # Plain chat paths ----------------------------------------------------

    async def send_message(self, message: str) -> ChatResponse:
        """Synchronous turn over the whole curated conversation.

        Raises:
            TransportError: after the speculative user turn was rolled back
        """
        async with self._turn_lock:
            await self._ensure_initialized()
            user_turn = self.store.append_text(USER, message)
            try:
                response = await self.transport.send_turn(
                    self._flatten_for_request(),
                    self.config.agent.default_mode,
                )
            except TransportError:
                self.store.discard(user_turn)
                raise
            self.synthesizer.commit(response.text)
            return response

    async def stream_message(
        self,
        message: str,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Stream a plain chat turn without intent resolution."""
        async with self._turn_lock:
            await self._ensure_initialized()
            if is_cancelled(cancel):
                return
            user_turn = self.store.append_text(USER, message)
            chunks: list[str] = []
            cancelled = False
            stream = self.transport.stream_turn(
                self._flatten_for_request(),
                self.config.agent.default_mode,
            )
            async with aclosing(stream):
                async for chunk in stream:
                    if is_cancelled(cancel):
                        cancelled = True
                        break
                    chunks.append(chunk)
                    yield chunk
            if cancelled or is_cancelled(cancel) or not self.synthesizer.commit("".join(chunks)):
                self.store.discard(user_turn)

    async def generate_json(self, prompt: str) -> Any:
        """Ask for a JSON answer; undecodable replies come back as ``{"result": text}``."""
        response = await self.transport.send_turn(
            f"{prompt}\n\nPlease respond with valid JSON that matches the required schema.",
            "code",
        )
        try:
            return json.loads(response.text)
        except json.JSONDecodeError:
            return {"result": response.text}

    # Agentic turn --------------------------------------------------------

    async def run_turn(
        self,
        utterance: str,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[TurnEvent]:
        """Resolve intent for one utterance and relay the resulting events."""
        message = (utterance or "").strip()
        if not message:
            return

        async with self._turn_lock:
            await self._ensure_initialized()
            if is_cancelled(cancel):
                return
            user_turn = self.store.append_text(USER, message)
            try:
                self._set_state(TurnState.PLANNING)
                plan = await self.resolver.resolve(message, self._planning_context())
                if plan.needs_tools:
                    async for event in self._tool_path(message, plan, user_turn, cancel):
                        yield event
                else:
                    async for event in self._conversational_path(message, user_turn, cancel):
                        yield event
            except TransportError as e:
                self._set_state(TurnState.ERROR_REPORTING)
                log.error("Turn failed", error=str(e))
                yield TurnEvent.error(str(e))
            finally:
                self._set_state(TurnState.IDLE)

    async def _tool_path(
        self,
        message: str,
        plan: ToolCallPlan,
        user_turn: ConversationTurn,
        cancel: CancellationToken | None,
    ) -> AsyncIterator[TurnEvent]:
        self._set_state(TurnState.EXECUTING)
        if not is_cancelled(cancel):
            yield TurnEvent.progress(f"Executing {len(plan.tool_calls)} tool(s) for: {message}\n\n")
        execution = await self.executor.execute(plan.tool_calls, cancel)

        self._set_state(TurnState.SYNTHESIZING)
        if not execution.reports:
            self.store.discard(user_turn)
            return
        reply = self.synthesizer.tool_reply(plan.tool_calls, execution)
        if not is_cancelled(cancel):
            yield TurnEvent.content(reply)

        self._set_state(TurnState.COMMITTING)
        self.synthesizer.commit(reply)

    async def _conversational_path(
        self,
        message: str,
        user_turn: ConversationTurn,
        cancel: CancellationToken | None,
    ) -> AsyncIterator[TurnEvent]:
        mode: ResponseMode = await self.mode_selector.select(
            message,
            self.store.recent(self.config.agent.mode_history_turns),
        )

        self._set_state(TurnState.STREAMING)
        chunks: list[str] = []
        stream = self.transport.stream_turn(message, mode)
        async with aclosing(stream):
            async for chunk in stream:
                if is_cancelled(cancel):
                    log.info("Stream cancelled", fragments=len(chunks))
                    self.store.discard(user_turn)
                    return
                chunks.append(chunk)
                yield TurnEvent.content(chunk)

        if is_cancelled(cancel):
            log.info("Stream cancelled", fragments=len(chunks))
            self.store.discard(user_turn)
            return

        reply = "".join(chunks)
        self._set_state(TurnState.EXTRACTING_IMPLICIT)
        supplement = await self.synthesizer.implicit_actions(reply, cancel)
        if supplement:
            if not is_cancelled(cancel):
                yield TurnEvent.content(supplement)
            reply += supplement

        self._set_state(TurnState.SYNTHESIZING)
        if is_cancelled(cancel):
            self.store.discard(user_turn)
            return
        self._set_state(TurnState.COMMITTING)
        if self.synthesizer.commit(reply) is None:
            self.store.discard(user_turn)

    async def close(self) -> None:
        await self.transport.close()


def create_agent(config: Config | None = None) -> Agent:
    """Build an agent wired to the bundled local tools."""
    config = config or get_config()
    registry = create_default_registry(
        base_path=config.resolved_working_dir(),
        enabled=config.tools.enabled,
        shell_timeout=config.tools.shell.timeout,
        blocked_commands=config.tools.shell.blocked,
    )
    return Agent(config=config, registry=registry)
