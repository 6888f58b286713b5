"""End-to-end turn scenarios: orchestrator, policies, controllers and store
against a scripted fake backend."""

import asyncio

import pytest

from chorus.conversation import orchestrator as orchestrator_module
from chorus.conversation.models import MessageState
from chorus.conversation.orchestrator import ConversationOrchestrator
from chorus.conversation.registry import ModelRegistry
from chorus.conversation.store import InMemoryConversationStore
from chorus.core.config import Settings
from chorus.core.exceptions import ChatNotFoundError, TransportError
from chorus.dsl import example_dsl
from chorus.modes import ModeType
from chorus.modes.base import build_request_messages
from chorus.modes.refinement import REFINEMENT_PROMPT, SUMMARY_PROMPT
from tests.fakes.fake_transport import FakeChatTransport, ScriptedResponse, sse_chunks


pytestmark = pytest.mark.integration

_CHAT_ID = "chat_1"


@pytest.fixture
def chat_store(store: InMemoryConversationStore) -> InMemoryConversationStore:
    store.create_chat(_CHAT_ID)
    return store


def _orchestrator(store, registry, transport, settings) -> ConversationOrchestrator:
    return ConversationOrchestrator(store, registry, transport, settings=settings)


def _assistant_messages(store: InMemoryConversationStore):
    return [m for m in store.get_chat(_CHAT_ID).sorted_messages() if m.is_assistant]


async def _wait_for_streaming(orchestrator: ConversationOrchestrator) -> list[str]:
    for _ in range(200):
        ids = orchestrator.streaming_ids()
        if ids:
            return ids
        await asyncio.sleep(0.005)
    raise AssertionError("No response started streaming")


class TestIsolatedTurn:

    @pytest.mark.asyncio
    async def test_two_models_answer(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(
            {
                "gpt": ScriptedResponse(sse_chunks("Hello ", "from GPT")),
                "claude": ScriptedResponse(sse_chunks("Hello from Claude")),
            }
        )
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        ids = await orchestrator.send_turn(_CHAT_ID, "Hi all", ["gpt", "claude"])

        messages = chat_store.get_chat(_CHAT_ID).sorted_messages()
        assert [m.id for m in messages[1:]] == ids
        assert messages[0].is_user and messages[0].content == "Hi all"
        assert [m.content for m in messages[1:]] == ["Hello from GPT", "Hello from Claude"]
        assert all(m.state is MessageState.COMPLETED for m in messages[1:])
        timestamps = [m.timestamp for m in messages]
        assert timestamps == sorted(set(timestamps))
        assert orchestrator.streaming_ids() == []

    @pytest.mark.asyncio
    async def test_responses_run_concurrently(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(default=ScriptedResponse(sse_chunks("a", "b"), delay=0.01))
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude", "llama"])

        assert [kind for kind, _ in transport.events[:3]] == ["start", "start", "start"]

    @pytest.mark.asyncio
    async def test_models_never_see_each_other(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "One", ["gpt", "claude"])
        await orchestrator.send_turn(_CHAT_ID, "Two", ["gpt", "claude"])

        request = transport.messages_for("claude")
        assert request[0] == {"role": "system", "content": "You are a test assistant."}
        assert [m["role"] for m in request[1:]] == ["user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_uses_default_temperature(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt"])
        await orchestrator.send_turn(_CHAT_ID, "Hi again", ["gpt"], temperature=0.2)

        assert [call["temperature"] for call in transport.calls] == [
            test_settings.default_temperature,
            0.2,
        ]


class TestDiscussTurn:

    @pytest.mark.asyncio
    async def test_previous_replies_are_attributed(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(
            {
                "gpt": ScriptedResponse(sse_chunks("GPT view")),
                "claude": ScriptedResponse(sse_chunks("Claude view")),
            }
        )
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Topic", ["gpt", "claude"], mode=ModeType.DISCUSS)
        await orchestrator.send_turn(_CHAT_ID, "Go on", ["gpt", "claude"], mode="discuss")

        contents = [m["content"] for m in transport.messages_for("claude")]
        assert "[GPT]: GPT view" in contents
        assert "[Claude]: Claude view" in contents
        assert not any(content.startswith("[GPT]: [GPT]") for content in contents)


class TestRoundRobinTurn:

    @pytest.mark.asyncio
    async def test_each_model_waits_for_the_previous(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(
            {
                "gpt": ScriptedResponse(sse_chunks("first"), delay=0.01),
                "claude": ScriptedResponse(sse_chunks("second")),
            }
        )
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Go", ["gpt", "claude"], mode=ModeType.ROUND_ROBIN)

        assert transport.events == [
            ("start", "gpt"),
            ("end", "gpt"),
            ("start", "claude"),
            ("end", "claude"),
        ]
        assert transport.messages_for("claude")[-1] == {"role": "assistant", "content": "[GPT]: first"}
        assert transport.messages_for("gpt")[-1] == {"role": "user", "content": "Go"}


class TestRefinementTurn:

    @pytest.mark.asyncio
    async def test_answer_refine_summarize(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        ids = await orchestrator.send_turn(
            _CHAT_ID, "Plan a launch", ["gpt", "claude"], temperature=1.0,
            mode=ModeType.COLLABORATIVE_REFINEMENT,
        )

        assert len(ids) == 5
        assert [m.model_id for m in _assistant_messages(chat_store)] == [
            "gpt", "claude", "gpt", "claude", "gpt",
        ]
        assert [call["temperature"] for call in transport.calls[2:4]] == [0.8, 0.8]
        assert transport.calls[2]["messages"][-1] == {"role": "user", "content": REFINEMENT_PROMPT}
        assert transport.calls[4]["messages"][-1] == {"role": "user", "content": SUMMARY_PROMPT}
        refinement_contents = [m["content"] for m in transport.calls[3]["messages"]]
        assert "[GPT]: Fake reply" in refinement_contents

    @pytest.mark.asyncio
    async def test_rounds_do_not_overlap(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(
            {"gpt": ScriptedResponse(sse_chunks("slow"), delay=0.02)}
        )
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(
            _CHAT_ID, "Plan", ["gpt", "claude"], mode=ModeType.COLLABORATIVE_REFINEMENT
        )

        first_round_ends = max(
            index for index, event in enumerate(transport.events[:4]) if event[0] == "end"
        )
        assert transport.events.index(("start", "gpt"), 1) > first_round_ends


class TestDSLTurn:

    @pytest.mark.asyncio
    async def test_phases_run_in_order(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        ids = await orchestrator.send_turn(_CHAT_ID, "Explain caching", ["gpt", "claude"], mode=example_dsl())

        assert len(ids) == 5
        assert transport.started_models() == ["gpt", "claude", "gpt", "claude", "gpt"]
        first_phase = transport.calls[1]["messages"]
        assert [m["role"] for m in first_phase] == ["system", "user"]
        assert 'DSL Conversation Mode: "Collaborative Refinement"' in first_phase[0]["content"]
        assert "Phase 3: Final Summary" in transport.calls[4]["messages"][0]["content"]


class TestFailures:

    @pytest.mark.asyncio
    async def test_one_failing_respondent(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(
            {"claude": ScriptedResponse(open_error=TransportError("API returned status 500: boom"))}
        )
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude"])

        gpt, claude = _assistant_messages(chat_store)
        assert gpt.state is MessageState.COMPLETED
        assert claude.state is MessageState.ERRORED
        assert claude.content == "[Error: API returned status 500: boom]"

    @pytest.mark.asyncio
    async def test_unknown_model_fails_only_its_message(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        orchestrator = _orchestrator(chat_store, registry, FakeChatTransport(), test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "ghost"])

        gpt, ghost = _assistant_messages(chat_store)
        assert gpt.state is MessageState.COMPLETED
        assert ghost.content == "[Error: Model with ID ghost not found]"

    @pytest.mark.asyncio
    async def test_request_build_failure_freezes_placeholder(
        self,
        chat_store,
        registry: ModelRegistry,
        test_settings: Settings,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def build(system_prompt, visible, content, prompt=None, model_label=""):
            if model_label == "claude":
                raise ValueError("bad context")
            return build_request_messages(system_prompt, visible, content, prompt, model_label=model_label)

        monkeypatch.setattr(orchestrator_module, "build_request_messages", build)
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude"])

        gpt, claude = _assistant_messages(chat_store)
        assert gpt.state is MessageState.COMPLETED
        assert claude.state is MessageState.ERRORED
        assert claude.content == "[Error: bad context]"
        assert transport.started_models() == ["gpt"]

    @pytest.mark.asyncio
    async def test_unknown_chat(self, store, registry: ModelRegistry, test_settings: Settings) -> None:
        orchestrator = _orchestrator(store, registry, FakeChatTransport(), test_settings)

        with pytest.raises(ChatNotFoundError):
            await orchestrator.send_turn("missing", "Hi", ["gpt"])

    @pytest.mark.asyncio
    async def test_unknown_mode(self, chat_store, registry: ModelRegistry, test_settings: Settings) -> None:
        orchestrator = _orchestrator(chat_store, registry, FakeChatTransport(), test_settings)

        with pytest.raises(ValueError):
            await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt"], mode="shouting")
        assert chat_store.get_chat(_CHAT_ID).messages == []

    @pytest.mark.asyncio
    async def test_no_models_stores_user_message_only(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        assert await orchestrator.send_turn(_CHAT_ID, "Anyone?", []) == []
        assert [m.content for m in chat_store.get_chat(_CHAT_ID).messages] == ["Anyone?"]
        assert transport.calls == []


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_running_turn(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(default=ScriptedResponse(sse_chunks("partial", done=False), hang=True))
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        task = asyncio.create_task(orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude"]))
        streaming = await _wait_for_streaming(orchestrator)

        assert orchestrator.active_turn(_CHAT_ID) is not None
        assert orchestrator.cancel_turn(_CHAT_ID) == 2
        ids = await task

        assert sorted(streaming) == sorted(ids)
        for message in _assistant_messages(chat_store):
            assert message.state is MessageState.ERRORED
            assert message.content.endswith("[Error: Request cancelled]")
        assert orchestrator.active_turn(_CHAT_ID) is None
        assert orchestrator.streaming_ids() == []

    @pytest.mark.asyncio
    async def test_cancel_stops_later_respondents(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(default=ScriptedResponse(sse_chunks("x", done=False), hang=True))
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        task = asyncio.create_task(
            orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude"], mode=ModeType.ROUND_ROBIN)
        )
        await _wait_for_streaming(orchestrator)
        orchestrator.cancel_turn(_CHAT_ID)
        await task

        assert transport.started_models() == ["gpt"]
        gpt, claude = _assistant_messages(chat_store)
        assert gpt.content == "x\n\n[Error: Request cancelled]"
        assert claude.content == "[Error: Request cancelled]"
        assert claude.state is MessageState.ERRORED

    def test_cancel_without_active_turn(self, chat_store, registry, test_settings) -> None:
        orchestrator = _orchestrator(chat_store, registry, FakeChatTransport(), test_settings)

        assert orchestrator.cancel_turn(_CHAT_ID) == 0

    @pytest.mark.asyncio
    async def test_cancelling_caller_settles_sequential_turn(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(default=ScriptedResponse(sse_chunks("x", done=False), hang=True))
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        task = asyncio.create_task(
            orchestrator.send_turn(
                _CHAT_ID, "Hi", ["gpt", "claude", "llama"], mode=ModeType.ROUND_ROBIN
            )
        )
        await _wait_for_streaming(orchestrator)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert transport.started_models() == ["gpt"]
        messages = _assistant_messages(chat_store)
        assert [m.state for m in messages] == [MessageState.ERRORED] * 3
        assert [m.content for m in messages[1:]] == ["[Error: Request cancelled]"] * 2
        assert orchestrator.active_turn(_CHAT_ID) is None

    @pytest.mark.asyncio
    async def test_cancelling_caller_stops_concurrent_respondents(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(default=ScriptedResponse(sse_chunks("x", done=False), hang=True))
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)

        task = asyncio.create_task(orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt", "claude"]))
        await _wait_for_streaming(orchestrator)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for message in _assistant_messages(chat_store):
            assert message.state is MessageState.ERRORED
            assert message.content.endswith("[Error: Request cancelled]")
        assert orchestrator.streaming_ids() == []
        assert orchestrator.active_turn(_CHAT_ID) is None


class ForgetfulStore(InMemoryConversationStore):
    """Loses every message of a chat on the first summary write."""

    def __init__(self) -> None:
        super().__init__()
        self.dropped = False

    def update_summary(self, chat_id: str, summary: str) -> bool:
        if not self.dropped:
            self.dropped = True
            with self._lock:
                self._chats[chat_id].messages.clear()
        return super().update_summary(chat_id, summary)


class TestSummary:

    @pytest.fixture
    def summary_settings(self, test_settings: Settings) -> Settings:
        return test_settings.model_copy(update={"summary_enabled": True})

    @pytest.mark.asyncio
    async def test_first_turn_is_summarized_once(
        self, chat_store, registry: ModelRegistry, summary_settings: Settings
    ) -> None:
        transport = FakeChatTransport(completion="Greeting the panel")
        orchestrator = _orchestrator(chat_store, registry, transport, summary_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hello there", ["gpt", "claude"])
        await orchestrator.send_turn(_CHAT_ID, "Again", ["gpt"])

        assert chat_store.get_chat(_CHAT_ID).summary == "Greeting the panel"
        assert len(transport.completions) == 1
        assert transport.completions[0]["model_id"] == "gpt"

    @pytest.mark.asyncio
    async def test_failed_model_summary_keeps_basic(
        self, chat_store, registry: ModelRegistry, summary_settings: Settings
    ) -> None:
        transport = FakeChatTransport(completion_error=TransportError("down"))
        orchestrator = _orchestrator(chat_store, registry, transport, summary_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hello there", ["gpt"])

        assert chat_store.get_chat(_CHAT_ID).summary == "Hello there"

    @pytest.mark.asyncio
    async def test_empty_model_title_keeps_basic(
        self, chat_store, registry: ModelRegistry, summary_settings: Settings
    ) -> None:
        orchestrator = _orchestrator(chat_store, registry, FakeChatTransport(completion="  "), summary_settings)

        await orchestrator.send_turn(_CHAT_ID, "Hello there", ["gpt"])

        assert chat_store.get_chat(_CHAT_ID).summary == "Hello there"

    @pytest.mark.asyncio
    async def test_configured_summary_model(
        self, chat_store, registry: ModelRegistry, summary_settings: Settings
    ) -> None:
        settings = summary_settings.model_copy(update={"summary_model_id": "llama"})
        transport = FakeChatTransport()
        orchestrator = _orchestrator(chat_store, registry, transport, settings)

        await orchestrator.send_turn(_CHAT_ID, "Hello", ["gpt"])

        assert transport.completions[0]["model_id"] == "llama"

    @pytest.mark.asyncio
    async def test_lost_messages_are_restored(
        self, registry: ModelRegistry, summary_settings: Settings
    ) -> None:
        store = ForgetfulStore()
        store.create_chat(_CHAT_ID)
        orchestrator = _orchestrator(store, registry, FakeChatTransport(), summary_settings)

        ids = await orchestrator.send_turn(_CHAT_ID, "Hello", ["gpt"])

        chat = store.get_chat(_CHAT_ID)
        assert [m.id for m in chat.sorted_messages()][1:] == ids
        assert chat.summary == "Fake title"

    @pytest.mark.asyncio
    async def test_regenerate(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport(completion="Better title")
        orchestrator = _orchestrator(chat_store, registry, transport, test_settings)
        await orchestrator.send_turn(_CHAT_ID, "Hello", ["gpt"])

        summary = await orchestrator.regenerate_summary(_CHAT_ID)

        assert summary == "Better title"
        assert chat_store.get_chat(_CHAT_ID).summary == "Better title"
        assert "Suggest a different title" in transport.completions[0]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_regenerate_unknown_chat(self, store, registry, test_settings) -> None:
        orchestrator = _orchestrator(store, registry, FakeChatTransport(), test_settings)

        with pytest.raises(ChatNotFoundError):
            await orchestrator.regenerate_summary("missing")


class TestDefaultMode:

    @pytest.mark.asyncio
    async def test_default_mode_used_without_mode(
        self, chat_store, registry: ModelRegistry, test_settings: Settings
    ) -> None:
        transport = FakeChatTransport()
        orchestrator = ConversationOrchestrator(
            chat_store, registry, transport, settings=test_settings, default_mode=example_dsl()
        )

        ids = await orchestrator.send_turn(_CHAT_ID, "Hi", ["gpt"])

        assert len(ids) == 3
