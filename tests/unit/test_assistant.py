"""
Unit tests for the assistant adapter: response parsing, the Gemini client and the chat session.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from lumina_home.assistant import (
    CONTROL_DEVICE_DECLARATION,
    DEFAULT_REPLY,
    GREETING,
    UNAVAILABLE_REPLY,
    VOICE_UNAVAILABLE_REPLY,
    AssistantChat,
    GeminiAssistant,
    UnavailableVoiceCapture,
    build_system_instruction,
    parse_generate_content,
)
from lumina_home.exceptions import AssistantUnavailableError
from lumina_home.intents import IntentRouter
from lumina_home.structs import AssistantAction, AssistantReply, EnvironmentReading


def _gemini_response(*parts):
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}


class FakeAssistant:
    """Returns a canned reply and records the state it was given."""

    def __init__(self, reply=None, error=None):
        self.reply = reply or AssistantReply()
        self.error = error
        self.calls = []

    async def respond(self, utterance, environment, devices):
        self.calls.append((utterance, environment, list(devices)))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeVoiceCapture:
    def __init__(self, transcript):
        self.transcript = transcript

    async def listen(self):
        return self.transcript


@pytest.fixture
def router(registry, mock_publisher):
    return IntentRouter(registry, mock_publisher)


class TestParseGenerateContent:
    """Tests for parse_generate_content()"""

    def test_text_and_function_calls(self):
        """Text parts are joined; controlDevice calls become actions"""
        data = _gemini_response(
            {"text": "OK, the living room light "},
            {"text": "is off."},
            {"functionCall": {"name": "controlDevice", "args": {"deviceId": "l1", "action": "toggle"}}},
        )

        reply = parse_generate_content(data)

        assert reply.text == "OK, the living room light is off."
        assert reply.actions == [AssistantAction(device_id="l1", action="toggle")]

    def test_other_functions_and_missing_ids_dropped(self):
        data = _gemini_response(
            {"functionCall": {"name": "somethingElse", "args": {"deviceId": "l1"}}},
            {"functionCall": {"name": "controlDevice", "args": {"action": "toggle"}}},
            {"functionCall": {"name": "controlDevice", "args": {"deviceId": "d1"}}},
        )

        reply = parse_generate_content(data)

        assert reply.text == ""
        assert reply.actions == [AssistantAction(device_id="d1", action="toggle")]

    @pytest.mark.parametrize("data", [None, [], {}, {"candidates": []}, {"candidates": [{"content": {}}]}])
    def test_empty_or_malformed(self, data):
        assert parse_generate_content(data) == AssistantReply()


class TestSystemInstruction:
    def test_embeds_state_snapshot(self, registry):
        text = build_system_instruction(EnvironmentReading(), registry.devices())

        assert "Lumina" in text
        assert '"temperature":23.5' in text
        assert '"id": "l1"' in text
        assert "controlDevice" in text


class TestGeminiAssistant:
    """Tests for GeminiAssistant.respond()"""

    @staticmethod
    def _mock_session(json_body=None, post_error=None):
        mock_session = AsyncMock()
        mock_session.closed = False
        if post_error is not None:
            mock_session.post = AsyncMock(side_effect=post_error)
        else:
            mock_response = AsyncMock()
            mock_response.raise_for_status = MagicMock()
            mock_response.json = AsyncMock(return_value=json_body)
            mock_session.post = AsyncMock(return_value=mock_response)
        return mock_session

    @pytest.mark.asyncio
    async def test_respond_success(self, registry):
        """The request carries the snapshot, the tool and temperature 0.5"""
        mock_session = self._mock_session(
            _gemini_response(
                {"text": "Done, the kitchen light is on."},
                {"functionCall": {"name": "controlDevice", "args": {"deviceId": "l2", "action": "toggle"}}},
            )
        )
        assistant = GeminiAssistant(api_key="test-key", model="gemini-test", http_session=mock_session)

        reply = await assistant.respond("turn on the kitchen light", registry.environment, registry.devices())

        assert reply.text == "Done, the kitchen light is on."
        assert reply.actions == [AssistantAction(device_id="l2")]
        url = mock_session.post.call_args.args[0]
        kwargs = mock_session.post.call_args.kwargs
        assert url.endswith("/models/gemini-test:generateContent")
        assert kwargs["headers"] == {"x-goog-api-key": "test-key"}
        body = kwargs["json"]
        assert body["generationConfig"]["temperature"] == 0.5
        assert body["tools"] == [{"functionDeclarations": [CONTROL_DEVICE_DECLARATION]}]
        assert body["contents"][0]["parts"][0]["text"] == "turn on the kitchen light"
        assert "Kitchen Light" in body["systemInstruction"]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_missing_api_key(self, registry):
        """No API key means the assistant is unavailable"""
        mock_session = self._mock_session({})
        assistant = GeminiAssistant(api_key=None, http_session=mock_session)

        with pytest.raises(AssistantUnavailableError):
            _ = await assistant.respond("hi", registry.environment, registry.devices())
        mock_session.post.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            aiohttp.ClientResponseError(None, None, status=403),
            aiohttp.ClientConnectionError("connection reset"),
            TimeoutError(),
        ],
    )
    async def test_transport_errors(self, registry, error):
        """HTTP and network failures surface as AssistantUnavailableError"""
        assistant = GeminiAssistant(api_key="test-key", http_session=self._mock_session(post_error=error))

        with pytest.raises(AssistantUnavailableError):
            _ = await assistant.respond("hi", registry.environment, registry.devices())

    @pytest.mark.asyncio
    async def test_invalid_json(self, registry):
        mock_session = self._mock_session()
        mock_session.post.return_value.json = AsyncMock(side_effect=json.JSONDecodeError("bad", "x", 0))
        assistant = GeminiAssistant(api_key="test-key", http_session=mock_session)

        with pytest.raises(AssistantUnavailableError):
            _ = await assistant.respond("hi", registry.environment, registry.devices())

    @pytest.mark.asyncio
    async def test_close(self):
        mock_session = self._mock_session({})
        assistant = GeminiAssistant(api_key="test-key", http_session=mock_session)

        await assistant.close()

        mock_session.close.assert_awaited_once()
        assert assistant.http_session is None


class TestAssistantChat:
    """Tests for AssistantChat"""

    def test_history_starts_with_greeting(self, router):
        chat = AssistantChat(router, FakeAssistant())
        assert [(m.role, m.content) for m in chat.history] == [("assistant", GREETING)]

    @pytest.mark.asyncio
    async def test_actions_applied_and_reply_appended(self, router, registry):
        """Toggle actions run before the reply is appended"""
        reply = AssistantReply(text="OK, the living room light is off.", actions=[AssistantAction(device_id="l1")])
        assistant = FakeAssistant(reply)
        chat = AssistantChat(router, assistant)

        message = await chat.send("  turn off the living room light ")

        assert message is not None
        assert message.content == "OK, the living room light is off."
        assert registry.get("l1").is_on is False
        assert [(m.role, m.content) for m in chat.history[1:]] == [
            ("user", "turn off the living room light"),
            ("assistant", "OK, the living room light is off."),
        ]
        utterance, environment, devices = assistant.calls[0]
        assert utterance == "turn off the living room light"
        assert environment == registry.environment
        assert len(devices) == 6
        await router.drain()

    @pytest.mark.asyncio
    async def test_assistant_toggle_reports_bound_device(self, router, mock_publisher):
        chat = AssistantChat(router, FakeAssistant(AssistantReply(actions=[AssistantAction(device_id="l1")])))

        _ = await chat.send("lights off")

        await router.drain()
        mock_publisher.publish.assert_awaited_once_with("light", "dengguang", 0)

    @pytest.mark.asyncio
    async def test_empty_text_becomes_default(self, router):
        chat = AssistantChat(router, FakeAssistant(AssistantReply(actions=[AssistantAction(device_id="d1")])))

        message = await chat.send("lock the front door")

        assert message is not None
        assert message.content == DEFAULT_REPLY
        await router.drain()

    @pytest.mark.asyncio
    async def test_unknown_device_skipped(self, router, registry):
        """Unknown ids are skipped; the remaining actions still apply"""
        reply = AssistantReply(
            text="Done.",
            actions=[AssistantAction(device_id="zz"), AssistantAction(device_id="l2")],
        )
        chat = AssistantChat(router, FakeAssistant(reply))

        message = await chat.send("kitchen light on")

        assert message is not None
        assert registry.get("l2").is_on is True

    @pytest.mark.asyncio
    async def test_unsupported_action_skipped(self, router, registry):
        reply = AssistantReply(actions=[AssistantAction(device_id="l2", action="dim")])
        chat = AssistantChat(router, FakeAssistant(reply))

        _ = await chat.send("dim the kitchen")

        assert registry.get("l2").is_on is False

    @pytest.mark.asyncio
    async def test_blank_input_ignored(self, router):
        assistant = FakeAssistant()
        chat = AssistantChat(router, assistant)

        assert await chat.send("   ") is None
        assert assistant.calls == []
        assert len(chat.history) == 1

    @pytest.mark.asyncio
    async def test_unavailable_becomes_inline_message(self, router, registry):
        """Assistant failure is reported in the chat; device control keeps working"""
        chat = AssistantChat(router, FakeAssistant(error=AssistantUnavailableError("no key")))

        message = await chat.send("hello")

        assert message is not None
        assert message.content == UNAVAILABLE_REPLY
        assert chat.history[-2].role == "user"
        _ = router.toggle("l2")
        assert registry.get("l2").is_on is True

    @pytest.mark.asyncio
    async def test_input_ignored_while_busy(self, router):
        """A second message sent while a request is in flight is dropped"""
        release = asyncio.Event()

        class SlowAssistant(FakeAssistant):
            async def respond(self, utterance, environment, devices):
                await release.wait()
                return await super().respond(utterance, environment, devices)

        assistant = SlowAssistant(AssistantReply(text="ok"))
        chat = AssistantChat(router, assistant)

        first = asyncio.create_task(chat.send("first"))
        await asyncio.sleep(0)
        assert chat.busy is True
        assert await chat.send("second") is None
        release.set()
        message = await first

        assert message is not None
        assert [c[0] for c in assistant.calls] == ["first"]
        assert chat.busy is False

    @pytest.mark.asyncio
    async def test_voice_unavailable(self, router):
        chat = AssistantChat(router, FakeAssistant())

        message = await chat.send_voice(UnavailableVoiceCapture())

        assert message is not None
        assert message.content == VOICE_UNAVAILABLE_REPLY

    @pytest.mark.asyncio
    async def test_voice_transcript_forwarded(self, router):
        assistant = FakeAssistant(AssistantReply(text="Sure."))
        chat = AssistantChat(router, assistant)

        message = await chat.send_voice(FakeVoiceCapture("what's the temperature"))

        assert message is not None
        assert message.content == "Sure."
        assert assistant.calls[0][0] == "what's the temperature"
