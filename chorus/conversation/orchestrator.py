"""
Conversation Orchestrator - runs one user turn across several models

Key Responsibilities:
- Append the user message with a strictly increasing timestamp
- Pick the mode policy (or DSL engine) for the turn
- Create assistant placeholders and launch one controller per respondent
- Gate rounds and phases on the turn's StreamingSet barrier
- Summarize the conversation after its first turn

Every turn owns a TurnContext (candidates, StreamingSet, tasks, produced
ids); nothing about a turn is process-wide. A failing respondent only
affects its own message, so ``send_turn`` never raises for one of them.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable

from chorus.conversation.models import Conversation, Message, MessageState, Sender, now_ms
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import ConversationStore
from chorus.core.config import Settings, get_settings
from chorus.core.exceptions import ChatNotFoundError
from chorus.core.logging import turn_log_context
from chorus.dsl.engine import DSLPhaseEngine
from chorus.dsl.models import DSLConversation
from chorus.modes.base import (
    MessageFilter,
    ModeType,
    ResponseSlot,
    Round,
    TurnRequest,
    build_request_messages,
)
from chorus.modes.factory import create_policy
from chorus.streaming.controller import ResponseStreamController, StreamState, with_error_marker
from chorus.streaming.throttle import ThrottleConfig
from chorus.streaming.tracker import StreamingSet
from chorus.streaming.transport import ChatTransport
from chorus.summary.generator import SummaryGenerator

logger = logging.getLogger(__name__)

_CANCELLED_REASON = "Request cancelled"

ModeSpec = ModeType | str | DSLConversation


@dataclass
class TurnContext:
    """Per-turn state.

    Attributes:
        chat_id: Conversation the turn belongs to.
        content: Raw user content.
        candidates: Respondent model ids in caller order.
        temperature: Turn default temperature.
        system_prompt: Base system prompt.
        mode: Mode name or DSL name, for logging.
        streaming: In-flight ids of this turn (the barrier).
        tasks: Running respondent tasks.
        message_ids: Every assistant id created in this turn, in order.
        states: Terminal state per settled message id.
        cancelled: Set by ``cancel_turn``; no further respondents start.
    """

    chat_id: str
    content: str
    candidates: list[str]
    temperature: float
    system_prompt: str
    mode: str
    streaming: StreamingSet = field(default_factory=StreamingSet)
    tasks: set[asyncio.Task] = field(default_factory=set)
    message_ids: list[str] = field(default_factory=list)
    states: dict[str, StreamState] = field(default_factory=dict)
    cancelled: bool = False


class _TurnLauncher:
    """RoundLauncher bound to one turn."""

    def __init__(self, orchestrator: ConversationOrchestrator, turn: TurnContext) -> None:
        self._orchestrator = orchestrator
        self._turn = turn

    async def launch(self, round: Round, filter_messages: MessageFilter) -> list[str]:
        turn = self._turn
        if turn.cancelled or not round.slots:
            return []

        # Placeholders first, so later slots sort after earlier ones.
        placed = []
        for slot in round.slots:
            message = self._orchestrator._create_placeholder(turn.chat_id, slot.model_id)
            turn.message_ids.append(message.id)
            placed.append((slot, message))

        logger.info(
            "Launching round %s for chat %s: %d respondent(s)%s",
            round.name,
            turn.chat_id,
            len(placed),
            " (sequential)" if round.sequential else "",
        )

        if round.sequential:
            for slot, message in placed:
                if turn.cancelled:
                    break
                task = self._start(slot, message, filter_messages)
                await self._reap([task])
        else:
            for slot, message in placed:
                self._start(slot, message, filter_messages)
            # Let every task reach STREAMING before a barrier can be checked.
            await asyncio.sleep(0)

        return [message.id for _, message in placed]

    async def wait(self) -> None:
        """Barrier: StreamingSet empty, then reap finished tasks."""
        await self._turn.streaming.wait_empty()
        if self._turn.tasks:
            await self._reap(list(self._turn.tasks))

    async def _reap(self, tasks: list[asyncio.Task]) -> None:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.error(
                    "Respondent task %s in chat %s failed: %s",
                    task.get_name(),
                    self._turn.chat_id,
                    result,
                    exc_info=result,
                )

    def _start(self, slot: ResponseSlot, message: Message, filter_messages: MessageFilter) -> asyncio.Task:
        task = asyncio.create_task(
            self._orchestrator._respond(self._turn, slot, message, filter_messages),
            name=f"respond-{message.id}",
        )
        self._turn.tasks.add(task)
        task.add_done_callback(self._turn.tasks.discard)
        return task


class ConversationOrchestrator:
    """Central coordinator for multi-model conversation turns.

    All model calls go through this orchestrator; respondents never talk to
    each other directly, they only see what their mode policy lets them see.

    Example:
        >>> orchestrator = ConversationOrchestrator(store, registry, transport)
        >>> ids = await orchestrator.send_turn(
        ...     "chat_1", "Compare REST and gRPC", ["gpt", "claude"],
        ...     mode=ModeType.DISCUSS,
        ... )
    """

    def __init__(
        self,
        store: ConversationStore,
        registry: ModelRegistry,
        transport: ChatTransport,
        settings: Settings | None = None,
        summary_generator: SummaryGenerator | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        default_mode: ModeSpec = ModeType.ISOLATED,
    ) -> None:
        self.store = store
        self.registry = registry
        self.transport = transport
        self.settings = settings or get_settings()
        self.summary_generator = summary_generator or SummaryGenerator(
            transport=transport,
            registry=registry,
            max_length=self.settings.summary_max_length,
            timeout=self.settings.call_timeout_seconds,
        )
        self.default_mode = default_mode
        self._rng = rng or random.Random()
        self._clock = clock
        self._throttle_config = ThrottleConfig.from_settings(self.settings)
        self._last_timestamp = 0
        self._active_turns: dict[str, TurnContext] = {}

    # =========================================================================
    # Turns
    # =========================================================================

    async def send_turn(
        self,
        chat_id: str,
        content: str,
        model_ids: list[str],
        temperature: float | None = None,
        mode: ModeSpec | None = None,
    ) -> list[str]:
        """Run one user turn and return the assistant message ids it produced.

        Returns once every respondent has settled (and, for a first turn,
        once the summary has been written). Without ``mode`` the
        orchestrator's ``default_mode`` drives the turn.

        Raises:
            ChatNotFoundError: If the chat does not exist.
            ValueError: If ``mode`` is not a known mode name.
        """
        if mode is None:
            mode = self.default_mode
        chat = self.store.get_chat(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        is_first_turn = not chat.messages
        if temperature is None:
            temperature = self.settings.default_temperature
        mode_name = mode.name if isinstance(mode, DSLConversation) else ModeType(mode).value

        timestamp = self._next_timestamp(chat)
        self.store.add_message(
            chat_id,
            Message(
                id=f"msg_{timestamp}_user",
                sender=Sender.USER,
                content=content,
                timestamp=timestamp,
            ),
        )

        candidates = list(model_ids)
        if not candidates:
            logger.warning("No models selected for chat %s, nothing to send", chat_id)
            return []

        turn = TurnContext(
            chat_id=chat_id,
            content=content,
            candidates=candidates,
            temperature=temperature,
            system_prompt=self.settings.system_prompt,
            mode=mode_name,
        )
        if chat_id in self._active_turns:
            logger.warning("Chat %s already has an active turn; starting another", chat_id)
        self._active_turns[chat_id] = turn
        logger.info(
            "Turn started for chat %s: mode=%s models=%s", chat_id, mode_name, candidates
        )

        launcher = _TurnLauncher(self, turn)
        try:
            with turn_log_context(chat_id, mode_name):
                await self._run_turn(turn, mode, launcher)
                await launcher.wait()
        except asyncio.CancelledError:
            logger.info("Turn for chat %s cancelled by its caller", chat_id)
            await self._abort(turn)
            raise
        finally:
            if turn.cancelled:
                self._settle_unstarted(turn)
            if self._active_turns.get(chat_id) is turn:
                del self._active_turns[chat_id]

        logger.info(
            "Turn finished for chat %s: %s",
            chat_id,
            {mid: state.value for mid, state in turn.states.items()},
        )

        after = self.store.get_chat(chat_id)
        if after is None or not after.messages:
            logger.warning(
                "Barrier clear but chat %s returned no messages; continuing", chat_id
            )

        if is_first_turn and self.settings.summary_enabled:
            await self._summarize(chat_id, is_regeneration=False)

        return list(turn.message_ids)

    async def _run_turn(self, turn: TurnContext, mode: ModeSpec, launcher: _TurnLauncher) -> None:
        chat = self.store.get_chat(turn.chat_id)
        request = TurnRequest(
            content=turn.content,
            candidates=turn.candidates,
            temperature=turn.temperature,
            system_prompt=turn.system_prompt,
            history=chat.messages if chat else [],
        )

        if isinstance(mode, DSLConversation):
            engine = DSLPhaseEngine(mode, self.registry, self._rng)
            await engine.run(request, launcher)
            return

        policy = create_policy(mode, self.registry, turn.candidates)
        for round in policy.plan_rounds(request):
            await launcher.launch(round, policy.filter_messages)
            await launcher.wait()

    async def _respond(
        self,
        turn: TurnContext,
        slot: ResponseSlot,
        placeholder: Message,
        filter_messages: MessageFilter,
    ) -> StreamState:
        """Build one respondent's context and stream its reply."""
        try:
            chat = self.store.get_chat(turn.chat_id)
            history = chat.messages if chat else []
            visible = filter_messages(history, slot.model_id, placeholder.id)
            request = build_request_messages(
                slot.system_prompt,
                visible,
                turn.content,
                slot.prompt,
                model_label=slot.model_id,
            )
        except Exception as e:
            logger.exception(
                "Could not build the request for %s in chat %s", placeholder.id, turn.chat_id
            )
            self._freeze(turn, placeholder.id, str(e) or type(e).__name__)
            return StreamState.ERRORED

        controller = ResponseStreamController(
            chat_id=turn.chat_id,
            message_id=placeholder.id,
            model_id=slot.model_id,
            store=self.store,
            registry=self.registry,
            transport=self.transport,
            streaming=turn.streaming,
            timeout=self.settings.call_timeout_seconds,
            throttle_config=self._throttle_config,
            clock=self._clock,
            timestamp=placeholder.timestamp,
        )
        try:
            state = await controller.run(request, slot.temperature)
        finally:
            if controller.is_terminal:
                turn.states[placeholder.id] = controller.state
        return state

    def _create_placeholder(self, chat_id: str, model_id: str) -> Message:
        chat = self.store.get_chat(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        timestamp = self._next_timestamp(chat)
        message = Message(
            id=f"msg_{timestamp}_{model_id}",
            sender=Sender.ASSISTANT,
            content="",
            timestamp=timestamp,
            model_id=model_id,
            state=MessageState.PENDING,
        )
        self.store.add_message(chat_id, message)
        return message

    def _next_timestamp(self, chat: Conversation) -> int:
        """Milliseconds strictly greater than anything issued before."""
        timestamp = max(now_ms(), chat.last_timestamp() + 1, self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    async def _abort(self, turn: TurnContext) -> None:
        """Cancel a turn's respondents and wait for them to settle."""
        turn.cancelled = True
        tasks = [task for task in turn.tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _settle_unstarted(self, turn: TurnContext) -> None:
        """Freeze placeholders that never started after a cancellation."""
        for message_id in turn.message_ids:
            self._freeze(turn, message_id, _CANCELLED_REASON)

    def _freeze(self, turn: TurnContext, message_id: str, reason: str) -> None:
        """Mark a still-pending placeholder ERRORED with an error marker."""
        chat = self.store.get_chat(turn.chat_id)
        message = chat.get_message(message_id) if chat else None
        if message is None or message.state.is_terminal:
            return
        self.store.update_message(
            turn.chat_id,
            message_id,
            with_error_marker(message.content, reason),
            state=MessageState.ERRORED,
            persist=True,
        )
        turn.states[message_id] = StreamState.ERRORED

    # =========================================================================
    # Active turns
    # =========================================================================

    def streaming_ids(self) -> list[str]:
        """Every in-flight message id across active turns."""
        ids: list[str] = []
        for turn in self._active_turns.values():
            ids.extend(turn.streaming.snapshot())
        return ids

    def active_turn(self, chat_id: str) -> TurnContext | None:
        return self._active_turns.get(chat_id)

    def active_turn_count(self) -> int:
        return len(self._active_turns)

    def cancel_turn(self, chat_id: str) -> int:
        """Cancel the running respondents of a chat's active turn.

        Returns:
            Number of tasks asked to cancel.
        """
        turn = self._active_turns.get(chat_id)
        if turn is None:
            return 0
        turn.cancelled = True
        tasks = [task for task in turn.tasks if not task.done()]
        for task in tasks:
            task.cancel()
        logger.info("Cancelled %d response(s) in chat %s", len(tasks), chat_id)
        return len(tasks)

    # =========================================================================
    # Summary
    # =========================================================================

    async def regenerate_summary(self, chat_id: str) -> str:
        """Recompute the title of an existing chat.

        Raises:
            ChatNotFoundError: If the chat does not exist.
        """
        if self.store.get_chat(chat_id) is None:
            raise ChatNotFoundError(chat_id)
        return await self._summarize(chat_id, is_regeneration=True)

    def summary_model_id(self) -> str | None:
        """Configured summary model, else the first active model."""
        if self.settings.summary_model_id:
            return self.settings.summary_model_id
        active = self.registry.active_models()
        return active[0].id if active else None

    async def _summarize(self, chat_id: str, is_regeneration: bool) -> str:
        snapshot = self.store.get_chat(chat_id)
        if snapshot is None:
            logger.error("Chat %s not found for summary generation", chat_id)
            return ""
        if not snapshot.messages:
            logger.info("Chat %s has no messages, skipping summary generation", chat_id)
            return snapshot.summary

        summary = self.summary_generator.basic_summary(snapshot)
        self.store.update_summary(chat_id, summary)

        model_id = self.summary_model_id()
        if model_id is None:
            logger.info("No summary model available for chat %s, keeping basic summary", chat_id)
        else:
            try:
                title = await self.summary_generator.llm_summary(snapshot, model_id, is_regeneration)
            except Exception as e:
                logger.warning("Model summary failed for chat %s: %s", chat_id, e)
            else:
                if title.strip():
                    summary = title
                    self.store.update_summary(chat_id, summary)

        after = self.store.get_chat(chat_id)
        if after is None or not after.messages:
            logger.error(
                "Chat %s lost its messages during summary generation; restoring %d message(s)",
                chat_id,
                len(snapshot.messages),
            )
            snapshot.summary = summary
            self.store.update_chat(snapshot)

        return summary
