"""Conversation history with role-alternation and validity invariants."""

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from parley.exceptions import HistoryInvariantViolation
from parley.logging import get_logger

log = get_logger(__name__)

USER = "user"
MODEL = "model"
VALID_ROLES = frozenset({USER, MODEL})


@dataclass
class Part:
    """One content part: either text or a structured payload."""

    text: str | None = None
    data: dict[str, Any] | None = None

    def is_valid(self) -> bool:
        if self.text is not None:
            return self.text != ""
        return bool(self.data)


@dataclass
class ConversationTurn:
    """A single user or model turn."""

    role: str
    parts: list[Part] = field(default_factory=list)

    @classmethod
    def from_text(cls, role: str, text: str) -> "ConversationTurn":
        return cls(role=role, parts=[Part(text=text)])

    @property
    def text(self) -> str:
        """Concatenated text of all text parts, space separated."""
        return " ".join(part.text for part in self.parts if part.text)


def is_valid_turn(turn: ConversationTurn) -> bool:
    """A turn is valid when it has parts and none of them is empty."""
    if not turn.parts:
        return False
    return all(isinstance(part, Part) and part.is_valid() for part in turn.parts)


def _merge_model_run(run: list[ConversationTurn]) -> ConversationTurn:
    if len(run) == 1:
        return run[0]
    parts: list[Part] = []
    for turn in run:
        parts.extend(turn.parts)
    return ConversationTurn(role=MODEL, parts=parts)


def curate_history(turns: Iterable[ConversationTurn]) -> list[ConversationTurn]:
    """Project a history onto its alternating, validity-filtered subsequence.

    Single left-to-right pass. A maximal run of model turns survives only if
    every turn in it is valid and it answers a kept user turn; the run is then
    folded into one model turn. An invalid run is dropped together with the
    user turn it answers. A user turn that never got a reply is superseded by
    the next user turn. Empty user turns are dropped.
    """
    source = list(turns)
    curated: list[ConversationTurn] = []
    i = 0
    length = len(source)
    while i < length:
        turn = source[i]
        if turn.role == USER:
            if curated and curated[-1].role == USER:
                curated.pop()
            if is_valid_turn(turn):
                curated.append(turn)
            i += 1
            continue

        run: list[ConversationTurn] = []
        valid = True
        while i < length and source[i].role == MODEL:
            run.append(source[i])
            if valid and not is_valid_turn(source[i]):
                valid = False
            i += 1

        answers_prompt = bool(curated) and curated[-1].role == USER
        if valid and answers_prompt:
            curated.append(_merge_model_run(run))
        elif answers_prompt:
            curated.pop()
    return copy.deepcopy(curated)


def validate_roles(turns: Iterable[ConversationTurn]) -> None:
    """Raise HistoryInvariantViolation for any role outside user/model."""
    for turn in turns:
        if turn.role not in VALID_ROLES:
            raise HistoryInvariantViolation(turn.role)


def format_transcript(
    turns: Iterable[ConversationTurn],
    user_label: str = USER,
    model_label: str = MODEL,
    separator: str = "\n",
) -> str:
    """Flatten turns into ``label: text`` lines for prompt building."""
    lines = []
    for turn in turns:
        label = user_label if turn.role == USER else model_label
        lines.append(f"{label}: {turn.text}")
    return separator.join(lines)


class ConversationStore:
    """Owns the ordered turn history of one conversation.

    All mutation goes through this class; readers get deep copies.
    """

    def __init__(self, history: list[ConversationTurn] | None = None):
        initial = list(history or [])
        validate_roles(initial)
        self._history: list[ConversationTurn] = copy.deepcopy(initial)

    def __len__(self) -> int:
        return len(self._history)

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        """Append a turn and return the stored instance."""
        validate_roles([turn])
        stored = copy.deepcopy(turn)
        self._history.append(stored)
        return stored

    def append_text(self, role: str, text: str) -> ConversationTurn:
        return self.append(ConversationTurn.from_text(role, text))

    def discard(self, turn: ConversationTurn) -> bool:
        """Remove ``turn`` if it is still the last entry (speculative rollback)."""
        if self._history and self._history[-1] is turn:
            self._history.pop()
            log.debug("Rolled back speculative turn", role=turn.role)
            return True
        return False

    def snapshot(self) -> list[ConversationTurn]:
        return copy.deepcopy(self._history)

    def curate(self) -> list[ConversationTurn]:
        return curate_history(self._history)

    def recent(self, count: int, curated: bool = True) -> list[ConversationTurn]:
        """Return the last ``count`` turns, curated by default."""
        if count <= 0:
            return []
        turns = self.curate() if curated else self.snapshot()
        return turns[-count:]

    def set_history(self, history: list[ConversationTurn]) -> None:
        """Replace the history after validating every role.

        Raises:
            HistoryInvariantViolation: before any mutation when a role is not
                ``user`` or ``model``
        """
        incoming = list(history)
        validate_roles(incoming)
        self._history = copy.deepcopy(incoming)

    def clear(self) -> None:
        self._history = []
