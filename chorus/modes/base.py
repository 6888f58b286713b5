"""Mode policy contract shared by every conversation mode.

A policy answers two questions for a turn:

- ``filter_messages``: which messages does a responding model see?
- ``select_respondents``: who responds now? (concurrent modes return the
  candidates unchanged)

It also describes how the turn is executed (``plan_rounds``): one or more
rounds of response slots, each round gated by a full barrier on the turn's
StreamingSet before the next round starts.

Policies are created once per turn by ``create_policy`` with the turn's
candidate list; role and attribution lookups are keyed by a model's
position in that list.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, Protocol, Sequence, runtime_checkable

from chorus.conversation.models import Message
from chorus.conversation.registry import ModelRegistry
from chorus.core.logging import get_logger
from chorus.streaming.transport import ChatMessages


logger = get_logger(__name__)


class ModeType(str, Enum):
    """Fixed conversation modes."""

    ISOLATED = "isolated"
    DISCUSS = "discuss"
    ROUND_ROBIN = "round_robin"
    DEBATE = "debate"
    EXPERT_PANEL = "expert_panel"
    CONSENSUS_BUILDING = "consensus_building"
    COLLABORATIVE_REFINEMENT = "collaborative_refinement"


@dataclass
class ResponseSlot:
    """One response to produce within a round.

    Attributes:
        model_id: Responding model.
        respondent_index: 0-based position in the turn's candidate list.
        system_prompt: Full system prompt for this call.
        temperature: Sampling temperature for this call.
        prompt: Instruction appended as a trailing user message; None means
            the turn's own user message drives the call.
    """

    model_id: str
    respondent_index: int
    system_prompt: str
    temperature: float
    prompt: str | None = None


@dataclass
class Round:
    """A group of slots started together (or one at a time when sequential)."""

    name: str
    slots: list[ResponseSlot] = field(default_factory=list)
    sequential: bool = False


@dataclass
class TurnRequest:
    """What a policy needs to plan a turn.

    Attributes:
        content: Raw user content of this turn.
        candidates: Candidate model ids in caller order.
        temperature: Turn default temperature.
        system_prompt: Base system prompt.
        history: Conversation snapshot including this turn's user message.
    """

    content: str
    candidates: list[str]
    temperature: float
    system_prompt: str
    history: list[Message] = field(default_factory=list)


MessageFilter = Callable[[Sequence[Message], str, str | None], list[Message]]


@runtime_checkable
class RoundLauncher(Protocol):
    """Executes rounds on behalf of a policy or the DSL engine.

    ``launch`` creates the round's placeholders and starts its respondents
    (one at a time for a sequential round, in which case it returns only
    after the last has settled). ``wait`` is the barrier: it returns once
    every response started so far in the turn has settled.
    """

    async def launch(self, round: Round, filter_messages: MessageFilter) -> list[str]:
        ...

    async def wait(self) -> None:
        ...


def sort_messages(messages: Sequence[Message], exclude_message_id: str | None = None) -> list[Message]:
    """Timestamp order (ties by position), optionally dropping one message."""
    indexed = [
        (index, message)
        for index, message in enumerate(messages)
        if message.id != exclude_message_id
    ]
    indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]))
    return [message for _, message in indexed]


def candidate_positions(model_ids: Sequence[str], candidates: Sequence[str]) -> list[int]:
    """Position of each respondent in ``candidates``.

    A model listed more than once takes its occurrences in order, so
    ``["gpt", "gpt"]`` over ``["gpt", "gpt", "claude"]`` maps to ``[0, 1]``.
    Ids missing from the candidates map to -1.
    """
    used: set[int] = set()
    positions = []
    for model_id in model_ids:
        position = next(
            (
                index
                for index, candidate in enumerate(candidates)
                if candidate == model_id and index not in used
            ),
            -1,
        )
        if position >= 0:
            used.add(position)
        positions.append(position)
    return positions


def latest_user_index(messages: Sequence[Message]) -> int:
    """Index of the last user message in an ordered list, or -1."""
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].is_user:
            return index
    return -1


class ModePolicy(ABC):
    """Base class for conversation mode policies."""

    mode: ClassVar[ModeType]
    description: ClassVar[str] = ""

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        candidates: Sequence[str] = (),
    ) -> None:
        self.registry = registry or ModelRegistry()
        self.candidates = list(candidates)

    @abstractmethod
    def filter_messages(
        self,
        all_messages: Sequence[Message],
        responding_model_id: str,
        exclude_message_id: str | None = None,
    ) -> list[Message]:
        """Messages visible to ``responding_model_id``, in timestamp order."""

    def select_respondents(
        self,
        all_messages: Sequence[Message],
        candidate_ids: Sequence[str],
    ) -> list[str]:
        """Who responds now. Concurrent modes return every candidate."""
        return list(candidate_ids)

    def system_prompt_for(self, base_prompt: str, respondent_index: int, turn: TurnRequest) -> str:
        """System prompt for one respondent; the default is the base prompt."""
        return base_prompt

    def plan_rounds(self, turn: TurnRequest) -> list[Round]:
        """Single concurrent round over the selected respondents."""
        respondents = self.select_respondents(turn.history, turn.candidates)
        return [Round(name=self.mode.value, slots=self._slots(respondents, turn))]

    def _slots(
        self,
        model_ids: Sequence[str],
        turn: TurnRequest,
        temperature: float | None = None,
        prompt: str | None = None,
    ) -> list[ResponseSlot]:
        slots = []
        positions = candidate_positions(model_ids, self.candidates)
        for model_id, index in zip(model_ids, positions):
            slots.append(
                ResponseSlot(
                    model_id=model_id,
                    respondent_index=index,
                    system_prompt=self.system_prompt_for(turn.system_prompt, index, turn),
                    temperature=turn.temperature if temperature is None else temperature,
                    prompt=prompt,
                )
            )
        return slots

    # ------------------------------------------------------------------
    # Attribution helpers
    # ------------------------------------------------------------------

    def index_of(self, model_id: str | None) -> int:
        """Position of a model in the candidate list, or -1."""
        try:
            return self.candidates.index(model_id)
        except ValueError:
            return -1

    def role_label(self, model_id: str) -> str | None:
        """Role shown in attribution tags; plain modes have none."""
        return None

    def attribute(self, message: Message) -> Message:
        """Prefix an assistant message with ``[Name]: `` exactly once.

        Returns a copy; stored messages are never modified.
        """
        if not message.is_assistant or not message.model_id:
            return message
        return attribute_message(
            message,
            self.registry.display_name(message.model_id),
            self.role_label(message.model_id),
        )


def attribute_message(message: Message, name: str, role: str | None = None) -> Message:
    """Copy of ``message`` tagged ``[name]: `` or ``[name as role]: ``.

    Content already starting with ``[name`` is returned unchanged.
    """
    if message.content.startswith(f"[{name}"):
        return message
    tag = f"[{name} as {role}]" if role else f"[{name}]"
    return dataclasses.replace(message, content=f"{tag}: {message.content}")


def build_request_messages(
    system_prompt: str,
    visible: Sequence[Message],
    fallback_content: str,
    prompt: str | None = None,
    model_label: str = "",
) -> ChatMessages:
    """Convert visible messages into the chat-completion ``messages`` array.

    Assistant messages without content (unstarted placeholders) are skipped.
    If no user message survives filtering, the turn's raw content is
    injected so the call never goes out without a user turn.
    """
    request: ChatMessages = []
    if system_prompt:
        request.append({"role": "system", "content": system_prompt})

    user_count = 0
    for message in visible:
        if message.is_user:
            request.append({"role": "user", "content": message.content})
            user_count += 1
        elif message.content.strip():
            request.append({"role": "assistant", "content": message.content})

    if user_count == 0:
        logger.warning(
            "No user messages visible, adding current message as fallback",
            model=model_label,
        )
        request.append({"role": "user", "content": fallback_content})

    if prompt and request[-1] != {"role": "user", "content": prompt}:
        request.append({"role": "user", "content": prompt})

    return request
