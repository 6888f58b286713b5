"""ResponseStreamController - per-message streaming state machine.

States:
    CREATED    placeholder exists, no network activity
    STREAMING  id in the StreamingSet, call active, content accumulating
    COMPLETED  server signalled end of stream
    ERRORED    configuration/transport failure or cancellation
    TIMED_OUT  no terminal event within the call budget

Only CREATED -> STREAMING and STREAMING -> {COMPLETED, ERRORED, TIMED_OUT}
are valid. Whatever happens, the message id leaves the StreamingSet exactly
once and the accumulated content is flushed to the store; failures append a
human-readable ``[Error: ...]`` marker instead of discarding content.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

from chorus.conversation.models import Message, MessageState, ModelConfig, Sender, now_ms
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import ConversationStore
from chorus.core.exceptions import ChorusError, InvalidStateTransitionError
from chorus.core.logging import get_logger
from chorus.streaming.decoder import SSEDecoder, iter_deltas
from chorus.streaming.throttle import ThrottleConfig, WriteKind, WriteThrottle
from chorus.streaming.tracker import StreamingSet
from chorus.streaming.transport import ChatMessages, ChatTransport


logger = get_logger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 30.0
_CANCELLED_REASON = "Request cancelled"


class StreamState(str, Enum):
    """Controller lifecycle states."""

    CREATED = "created"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"

    @property
    def message_state(self) -> MessageState:
        return _MESSAGE_STATES[self]


_MESSAGE_STATES = {
    StreamState.CREATED: MessageState.PENDING,
    StreamState.STREAMING: MessageState.STREAMING,
    StreamState.COMPLETED: MessageState.COMPLETED,
    StreamState.ERRORED: MessageState.ERRORED,
    StreamState.TIMED_OUT: MessageState.TIMED_OUT,
}

_VALID_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.CREATED: frozenset({StreamState.STREAMING}),
    StreamState.STREAMING: frozenset(
        {StreamState.COMPLETED, StreamState.ERRORED, StreamState.TIMED_OUT}
    ),
}


def with_error_marker(content: str, reason: str) -> str:
    """Append an error marker, keeping whatever content already streamed."""
    marker = f"[Error: {reason}]"
    return f"{content}\n\n{marker}" if content else marker


class ResponseStreamController:
    """Owns one assistant message from placeholder to terminal state.

    The controller is the only writer of its message. Store writes are
    throttled while streaming; the terminal flush is unconditional.

    Example:
        >>> controller = ResponseStreamController(
        ...     chat_id="chat_1", message_id="msg_2_gpt", model_id="gpt",
        ...     store=store, registry=registry, transport=transport,
        ...     streaming=streaming_set,
        ... )
        >>> state = await controller.run(messages, temperature=0.7)
    """

    def __init__(
        self,
        *,
        chat_id: str,
        message_id: str,
        model_id: str,
        store: ConversationStore,
        registry: ModelRegistry,
        transport: ChatTransport,
        streaming: StreamingSet,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        throttle_config: ThrottleConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        timestamp: int | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.message_id = message_id
        self.model_id = model_id
        self._store = store
        self._registry = registry
        self._transport = transport
        self._streaming = streaming
        self._timeout = timeout
        self._throttle_config = throttle_config
        self._clock = clock
        self._timestamp = timestamp

        self._state = StreamState.CREATED
        self._content = ""
        self.delta_count = 0
        self.error: str | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def content(self) -> str:
        return self._content

    @property
    def is_terminal(self) -> bool:
        return self._state not in _VALID_TRANSITIONS

    def _transition(self, target: StreamState) -> None:
        allowed = _VALID_TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise InvalidStateTransitionError(
                f"Message {self.message_id}: {self._state.value} -> {target.value} is not allowed",
                from_state=self._state.value,
                to_state=target.value,
            )
        self._state = target

    async def run(self, messages: ChatMessages, temperature: float) -> StreamState:
        """Drive the call to a terminal state and return it.

        Never raises for transport, decode, configuration or timeout
        failures; those are encoded in the message content. Task
        cancellation is recorded on the message and then re-raised.
        """
        self._transition(StreamState.STREAMING)
        self._streaming.add(self.message_id)
        display_name = self._registry.display_name(self.model_id)
        try:
            self._write(persist=False)
            try:
                model = self._registry.resolve(self.model_id)
                async with asyncio.timeout(self._timeout):
                    await self._consume(model, messages, temperature)
            except TimeoutError:
                self._fail(
                    StreamState.TIMED_OUT,
                    f"Request to {display_name} timed out after {self._timeout:g} seconds",
                )
            except ChorusError as e:
                self._fail(StreamState.ERRORED, str(e))
            except asyncio.CancelledError:
                self._fail(StreamState.ERRORED, _CANCELLED_REASON)
                raise
            except Exception as e:
                logger.exception(
                    "Unexpected error while streaming",
                    message_id=self.message_id,
                    model_id=self.model_id,
                )
                self._fail(StreamState.ERRORED, str(e) or type(e).__name__)
            else:
                self._transition(StreamState.COMPLETED)
                self._write(persist=True)
                logger.info(
                    "Response completed",
                    message_id=self.message_id,
                    model_id=self.model_id,
                    chars=len(self._content),
                    deltas=self.delta_count,
                )
        finally:
            self._streaming.discard(self.message_id)
        return self._state

    async def _consume(
        self,
        model: ModelConfig,
        messages: ChatMessages,
        temperature: float,
    ) -> None:
        throttle = WriteThrottle(self._throttle_config, clock=self._clock)
        decoder = SSEDecoder()
        async with self._transport.stream_chat(model, messages, temperature) as byte_stream:
            async for delta in iter_deltas(byte_stream, decoder):
                self._content += delta
                self.delta_count += 1
                kind = throttle.record(len(delta))
                if kind is not WriteKind.NONE:
                    self._write(persist=kind is WriteKind.PERSIST)
        if decoder.skipped_lines:
            logger.debug(
                "Skipped malformed stream lines",
                message_id=self.message_id,
                skipped=decoder.skipped_lines,
            )

    def _fail(self, state: StreamState, reason: str) -> None:
        self.error = reason
        self._content = with_error_marker(self._content, reason)
        self._transition(state)
        self._write(persist=True)
        logger.warning(
            "Response failed",
            message_id=self.message_id,
            model_id=self.model_id,
            state=state.value,
            reason=reason,
        )

    def _write(self, persist: bool) -> None:
        """Write the latest accumulated content; recreate the message if it vanished."""
        state = self._state.message_state
        try:
            written = self._store.update_message(
                self.chat_id,
                self.message_id,
                self._content,
                state=state,
                persist=persist,
            )
            if written:
                return
            chat = self._store.get_chat(self.chat_id)
            if chat is None:
                logger.error("Chat not found for message write", chat_id=self.chat_id)
                return
            if chat.get_message(self.message_id) is not None:
                return
            logger.warning(
                "Recreating missing message",
                chat_id=self.chat_id,
                message_id=self.message_id,
            )
            self._store.add_message(
                self.chat_id,
                Message(
                    id=self.message_id,
                    sender=Sender.ASSISTANT,
                    content=self._content,
                    timestamp=self._timestamp or now_ms(),
                    model_id=self.model_id,
                    state=state,
                ),
            )
        except Exception:
            logger.exception(
                "Error updating message content",
                chat_id=self.chat_id,
                message_id=self.message_id,
            )
