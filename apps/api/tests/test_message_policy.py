"""
Tests for message selection: scripted pools, the Anthropic backend, and the
scripted fallback that hides generative failures from callers.
"""
import random
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import GenerativeBackendFailure
from schemas import MessageProviderKind, UserSettings
from services.message_policy import (
    DEFAULT_REPLY,
    MISSED_ESCALATION,
    SCRIPTED_MESSAGES,
    STREAK_LINES,
    AnthropicBackend,
    FallbackMessageProvider,
    GenerativeBackend,
    GenerativeMessageProvider,
    MessageContext,
    MessageType,
    ScriptedMessageProvider,
    build_prompt,
    create_provider,
)
from services.tone import ToneBand


class FakeBackend(GenerativeBackend):
    """Returns canned replies, or raises when told to."""

    def __init__(self, replies=None, fail=False):
        self.replies = list(replies or [])
        self.fail = fail
        self.calls = []

    async def generate(self, system_prompt, history, user_message):
        self.calls.append((system_prompt, list(history), user_message))
        if self.fail:
            raise GenerativeBackendFailure("backend down")
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.calls)}"


def all_scripted_lines():
    return {line for pool in SCRIPTED_MESSAGES.values() for line in pool}


class TestScriptedPools:
    def test_every_pool_has_at_least_three_entries(self):
        for message_type in MessageType:
            assert len(SCRIPTED_MESSAGES[message_type.value]) >= 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message_type",
        [
            MessageType.WELCOME,
            MessageType.CHECK_IN,
            MessageType.SKIPPED,
            MessageType.ENCOURAGEMENT,
            MessageType.REMINDER_FOLLOW_UP,
            MessageType.MESSAGE,
        ],
    )
    async def test_plain_types_come_from_their_pool(self, message_type):
        provider = ScriptedMessageProvider()
        message = await provider.get_message(MessageContext(type=message_type, streak=20))
        assert message in SCRIPTED_MESSAGES[message_type.value]

    @pytest.mark.asyncio
    async def test_unknown_type_gets_default_reply(self):
        provider = ScriptedMessageProvider()
        assert await provider.get_message(MessageContext(type="dance_party")) == DEFAULT_REPLY

    @pytest.mark.asyncio
    async def test_selection_covers_the_pool(self):
        provider = ScriptedMessageProvider(rng=random.Random(7))
        seen = set()
        for _ in range(200):
            seen.add(await provider.get_message(MessageContext(type=MessageType.CHECK_IN)))
        assert seen == set(SCRIPTED_MESSAGES[MessageType.CHECK_IN.value])


class TestCompletedMessages:
    @pytest.mark.asyncio
    async def test_short_streak_is_base_line_only(self):
        provider = ScriptedMessageProvider()
        message = await provider.get_message(
            MessageContext(type=MessageType.COMPLETED, streak=1, days_since_last=0)
        )
        assert message in SCRIPTED_MESSAGES[MessageType.COMPLETED.value]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "streak,band",
        [(3, ToneBand.GOOD), (7, ToneBand.GREAT), (14, ToneBand.AMAZING)],
    )
    async def test_streak_line_appended(self, streak, band):
        provider = ScriptedMessageProvider()
        message = await provider.get_message(
            MessageContext(type=MessageType.COMPLETED, streak=streak, days_since_last=0)
        )
        base = next(
            line for line in SCRIPTED_MESSAGES[MessageType.COMPLETED.value]
            if message.startswith(line + " ")
        )
        assert message[len(base) + 1:] in STREAK_LINES[band]


class TestMissedMessages:
    @pytest.mark.asyncio
    async def test_escalates_after_three_days(self):
        provider = ScriptedMessageProvider()
        message = await provider.get_message(
            MessageContext(type=MessageType.MISSED, streak=0, days_since_last=5)
        )
        assert message.endswith(" " + MISSED_ESCALATION)
        assert message[: -len(MISSED_ESCALATION) - 1] in SCRIPTED_MESSAGES[MessageType.MISSED.value]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [None, 0, 2, 3])
    async def test_no_escalation_otherwise(self, days):
        provider = ScriptedMessageProvider()
        message = await provider.get_message(
            MessageContext(type=MessageType.MISSED, streak=0, days_since_last=days)
        )
        assert MISSED_ESCALATION not in message
        assert message in SCRIPTED_MESSAGES[MessageType.MISSED.value]


class TestBuildPrompt:
    def test_embeds_streak_and_days(self):
        prompt = build_prompt(MessageContext(type=MessageType.COMPLETED, streak=4, days_since_last=1))
        assert "Current streak: 4 days." in prompt
        assert "Days since last workout: 1." in prompt

    def test_no_history_yet(self):
        prompt = build_prompt(MessageContext(type=MessageType.WELCOME))
        assert "none logged yet" in prompt

    def test_user_message_is_quoted(self):
        prompt = build_prompt(
            MessageContext(type=MessageType.MESSAGE, data={"content": "legs are sore"})
        )
        assert 'User says: "legs are sore"' in prompt


class TestGenerativeProvider:
    @pytest.mark.asyncio
    async def test_appends_exchange_after_success(self):
        backend = FakeBackend(replies=["Nice one."])
        provider = GenerativeMessageProvider(backend)
        context = MessageContext(type=MessageType.COMPLETED, streak=2, days_since_last=0)

        assert await provider.get_message(context) == "Nice one."
        assert provider.conversation_history == [
            {"role": "user", "content": build_prompt(context)},
            {"role": "assistant", "content": "Nice one."},
        ]

    @pytest.mark.asyncio
    async def test_history_sent_to_backend(self):
        backend = FakeBackend()
        provider = GenerativeMessageProvider(backend)
        await provider.get_message(MessageContext(type=MessageType.WELCOME))
        await provider.get_message(MessageContext(type=MessageType.CHECK_IN))

        _, history, _ = backend.calls[1]
        assert len(history) == 2
        assert history[1] == {"role": "assistant", "content": "reply 1"}

    @pytest.mark.asyncio
    async def test_history_keeps_most_recent_ten_exchanges(self):
        backend = FakeBackend()
        provider = GenerativeMessageProvider(backend, max_exchanges=10)
        for _ in range(13):
            await provider.get_message(MessageContext(type=MessageType.MESSAGE, data={"content": "hi"}))

        history = provider.conversation_history
        assert len(history) == 20
        assert history[0]["role"] == "user"
        assert history[1]["content"] == "reply 4"
        assert history[-1]["content"] == "reply 13"

    @pytest.mark.asyncio
    async def test_failure_leaves_history_untouched(self):
        backend = FakeBackend(fail=True)
        provider = GenerativeMessageProvider(backend)
        with pytest.raises(GenerativeBackendFailure):
            await provider.get_message(MessageContext(type=MessageType.WELCOME))
        assert provider.conversation_history == []

    def test_clear_history(self):
        provider = GenerativeMessageProvider(FakeBackend())
        provider.conversation_history = [{"role": "user", "content": "x"}]
        provider.clear_history()
        assert provider.conversation_history == []


class TestFallback:
    @pytest.mark.asyncio
    async def test_failing_backend_degrades_to_scripted(self):
        generative = GenerativeMessageProvider(FakeBackend(fail=True))
        provider = FallbackMessageProvider(generative, ScriptedMessageProvider())

        message = await provider.get_message(MessageContext(type=MessageType.SKIPPED))

        assert message in SCRIPTED_MESSAGES[MessageType.SKIPPED.value]
        assert generative.conversation_history == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_also_absorbed(self):
        primary = MagicMock()
        primary.get_message = AsyncMock(side_effect=RuntimeError("boom"))
        provider = FallbackMessageProvider(primary)

        message = await provider.get_message(MessageContext(type=MessageType.WELCOME))
        assert message in SCRIPTED_MESSAGES[MessageType.WELCOME.value]

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        provider = FallbackMessageProvider(GenerativeMessageProvider(FakeBackend(replies=["Live!"])))
        assert await provider.get_message(MessageContext(type=MessageType.WELCOME)) == "Live!"


class TestAnthropicBackend:
    def _client(self, content=None, side_effect=None):
        client = MagicMock()
        if side_effect is not None:
            client.messages.create = AsyncMock(side_effect=side_effect)
        else:
            client.messages.create = AsyncMock(return_value=SimpleNamespace(content=content))
        return client

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self):
        client = self._client(content=[
            SimpleNamespace(type="text", text="Get "),
            SimpleNamespace(type="tool_use"),
            SimpleNamespace(type="text", text="moving. "),
        ])
        backend = AnthropicBackend("key", model="test-model", max_tokens=50, client=client)

        reply = await backend.generate("system", [{"role": "user", "content": "a"}], "b")

        assert reply == "Get moving."
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 50
        assert kwargs["system"] == "system"
        assert kwargs["messages"][-1] == {"role": "user", "content": "b"}
        assert len(kwargs["messages"]) == 2

    @pytest.mark.asyncio
    async def test_request_error(self):
        backend = AnthropicBackend("key", client=self._client(side_effect=ConnectionError("offline")))
        with pytest.raises(GenerativeBackendFailure):
            await backend.generate("system", [], "hi")

    @pytest.mark.asyncio
    async def test_empty_content(self):
        backend = AnthropicBackend("key", client=self._client(content=[]))
        with pytest.raises(GenerativeBackendFailure):
            await backend.generate("system", [], "hi")

    @pytest.mark.asyncio
    async def test_malformed_content(self):
        backend = AnthropicBackend("key", client=self._client(content=None))
        with pytest.raises(GenerativeBackendFailure):
            await backend.generate("system", [], "hi")


class TestCreateProvider:
    def test_scripted_by_default(self):
        assert isinstance(create_provider(UserSettings()), ScriptedMessageProvider)

    def test_api_without_key_uses_scripted(self):
        user_settings = UserSettings(message_provider=MessageProviderKind.API, api_key="")
        assert isinstance(create_provider(user_settings), ScriptedMessageProvider)

    def test_api_with_key_is_wrapped_in_fallback(self):
        user_settings = UserSettings(message_provider=MessageProviderKind.API, api_key="sk-test")
        provider = create_provider(user_settings)
        assert isinstance(provider, FallbackMessageProvider)
        assert isinstance(provider.primary, GenerativeMessageProvider)
        assert isinstance(provider.primary.backend, AnthropicBackend)
        assert isinstance(provider.fallback, ScriptedMessageProvider)

    def test_injected_backend(self):
        backend = FakeBackend()
        user_settings = UserSettings(message_provider=MessageProviderKind.API)
        provider = create_provider(user_settings, backend=backend)
        assert provider.primary.backend is backend
