"""Conversational assistant adapter.

Sends an utterance plus a snapshot of the home to the Gemini ``generateContent``
REST endpoint and turns the reply into narrative text and device actions. The
language understanding itself happens remotely; this module only builds the
request, parses the response and applies the returned actions through the
:class:`~lumina_home.intents.IntentRouter`.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, cast

import aiohttp

from lumina_home.const import LUMINA_GEMINI_API_BASE, LUMINA_GEMINI_MODEL, LUMINA_GEMINI_TIMEOUT
from lumina_home.exceptions import AssistantUnavailableError, DeviceNotFoundError, VoiceUnavailableError
from lumina_home.logging_abstraction import get_logger
from lumina_home.structs import AssistantAction, AssistantReply, ChatMessage, Device, EnvironmentReading

if TYPE_CHECKING:
    from lumina_home.intents import IntentRouter

__all__ = [
    "CONTROL_DEVICE_DECLARATION",
    "AssistantChat",
    "AssistantProtocol",
    "GeminiAssistant",
    "UnavailableVoiceCapture",
    "VoiceCapture",
    "build_system_instruction",
    "parse_generate_content",
]

logger = get_logger(__name__)

GREETING = (
    "Hi! I'm Lumina. I can control the devices in your home or suggest ways to save energy. "
    'Try saying "turn on the living room light".'
)
DEFAULT_REPLY = "Done."
UNAVAILABLE_REPLY = "I can't reach the assistant right now. Please check that the API key is configured."
VOICE_UNAVAILABLE_REPLY = "Voice input is not available on this device."

CONTROL_DEVICE_DECLARATION: dict[str, object] = {
    "name": "controlDevice",
    "description": "Control a smart home device (e.g., turn on/off lights or lock/unlock doors).",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "deviceId": {
                "type": "STRING",
                "description": "The unique ID of the device to control.",
            },
            "action": {
                "type": "STRING",
                "description": 'The action to perform: "toggle".',
            },
        },
        "required": ["deviceId", "action"],
    },
}


def build_system_instruction(environment: EnvironmentReading, devices: Sequence[Device]) -> str:
    env_json = environment.model_dump_json()
    devices_json = json.dumps([d.model_dump(mode="json") for d in devices], ensure_ascii=False)
    return (
        "You are Lumina, a minimalist smart home assistant.\n"
        "Always reply briefly and professionally.\n"
        "\n"
        "Current state:\n"
        f"- Environment: {env_json}\n"
        f"- Devices: {devices_json}\n"
        "\n"
        "Rules:\n"
        "- Operating a device requires calling controlDevice.\n"
        '- After an action, confirm in one short sentence (e.g. "OK, the living room light is on.").\n'
        "- No small talk."
    )


def parse_generate_content(data: object) -> AssistantReply:
    """Collect text parts and ``controlDevice`` calls from a ``generateContent`` response.

    Only the first candidate is read. Calls to other functions and calls
    without a device id are dropped.
    """
    if not isinstance(data, dict):
        return AssistantReply()
    candidates = cast("dict[str, object]", data).get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return AssistantReply()
    first = cast("list[object]", candidates)[0]
    content = cast("dict[str, object]", first).get("content") if isinstance(first, dict) else None
    parts = cast("dict[str, object]", content).get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return AssistantReply()

    texts: list[str] = []
    actions: list[AssistantAction] = []
    for part in cast("list[object]", parts):
        if not isinstance(part, dict):
            continue
        part = cast("dict[str, object]", part)
        text = part.get("text")
        if isinstance(text, str):
            texts.append(text)
        call = part.get("functionCall")
        if isinstance(call, dict):
            call = cast("dict[str, object]", call)
            args = call.get("args")
            args = cast("dict[str, object]", args) if isinstance(args, dict) else {}
            device_id = args.get("deviceId")
            if call.get("name") != "controlDevice" or not isinstance(device_id, str) or not device_id:
                logger.debug("assistant:parse: ignoring function call %s", call)
                continue
            action = args.get("action")
            actions.append(AssistantAction(device_id=device_id, action=action if isinstance(action, str) else "toggle"))
    return AssistantReply(text="".join(texts).strip(), actions=actions)


class AssistantProtocol(Protocol):
    async def respond(
        self,
        utterance: str,
        environment: EnvironmentReading,
        devices: Sequence[Device],
    ) -> AssistantReply: ...


class GeminiAssistant:
    """Gemini ``generateContent`` client with one ``controlDevice`` tool."""

    lp: str = "gemini:"
    temperature: float = 0.5

    def __init__(
        self,
        api_key: str | None,
        model: str = LUMINA_GEMINI_MODEL,
        api_base: str = LUMINA_GEMINI_API_BASE,
        api_timeout: float = LUMINA_GEMINI_TIMEOUT,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.api_key: str | None = api_key
        self.model: str = model
        self.api_base: str = api_base.rstrip("/")
        self.api_timeout: float = api_timeout
        self.http_session: aiohttp.ClientSession | None = http_session

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def _check_session(self) -> aiohttp.ClientSession:
        if self.http_session is None or self.http_session.closed:
            logger.debug("%s_check_session: Creating new aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    def build_request(self, utterance: str, environment: EnvironmentReading, devices: Sequence[Device]) -> dict[str, object]:
        return {
            "systemInstruction": {"parts": [{"text": build_system_instruction(environment, devices)}]},
            "contents": [{"role": "user", "parts": [{"text": utterance}]}],
            "tools": [{"functionDeclarations": [CONTROL_DEVICE_DECLARATION]}],
            "generationConfig": {"temperature": self.temperature},
        }

    async def respond(
        self,
        utterance: str,
        environment: EnvironmentReading,
        devices: Sequence[Device],
    ) -> AssistantReply:
        lp = f"{self.lp}respond:"
        if not self.api_key:
            msg = "No Gemini API key configured (LUMINA_GEMINI_API_KEY)"
            raise AssistantUnavailableError(msg)

        sesh = await self._check_session()
        try:
            r = await sesh.post(
                self.url,
                json=self.build_request(utterance, environment, devices),
                headers={"x-goog-api-key": self.api_key},
                timeout=aiohttp.ClientTimeout(total=self.api_timeout),
            )
            r.raise_for_status()
            data: object = await r.json()
        except aiohttp.ClientResponseError as e:
            logger.warning("%s HTTP %s from assistant endpoint: %s", lp, e.status, e.message)
            msg = f"Assistant request failed with HTTP {e.status}"
            raise AssistantUnavailableError(msg) from e
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning("%s assistant endpoint unreachable: %s", lp, e)
            msg = "Assistant endpoint unreachable"
            raise AssistantUnavailableError(msg) from e
        except json.JSONDecodeError as e:
            logger.warning("%s invalid JSON from assistant endpoint: %s", lp, e)
            msg = "Assistant returned an invalid response"
            raise AssistantUnavailableError(msg) from e

        reply = parse_generate_content(data)
        logger.debug("%s text=%r actions=%s", lp, reply.text, [a.device_id for a in reply.actions])
        return reply

    async def close(self) -> None:
        if self.http_session is not None and not self.http_session.closed:
            await self.http_session.close()
        self.http_session = None


class VoiceCapture(Protocol):
    async def listen(self) -> str:
        """Capture one utterance and return its transcript."""
        ...


class UnavailableVoiceCapture:
    """Used when the host has no speech-to-text capability."""

    async def listen(self) -> str:
        msg = "Speech recognition is not supported on this host"
        raise VoiceUnavailableError(msg)


class AssistantChat:
    """Chat session: message history plus the applied side effects of each reply."""

    lp: str = "chat:"

    def __init__(self, router: IntentRouter, assistant: AssistantProtocol) -> None:
        self.router: IntentRouter = router
        self.assistant: AssistantProtocol = assistant
        self.history: list[ChatMessage] = [ChatMessage(role="assistant", content=GREETING)]
        self._busy: asyncio.Lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def _say(self, content: str) -> ChatMessage:
        message = ChatMessage(role="assistant", content=content)
        self.history.append(message)
        return message

    async def send(self, text: str) -> ChatMessage | None:
        """Send one user message; returns the assistant reply, or None if the input was ignored.

        Input is ignored when blank or while a previous request is in flight.
        Actions are applied before the reply is appended to the history.
        """
        lp = f"{self.lp}send:"
        text = text.strip()
        if not text:
            return None
        if self.busy:
            logger.info("%s request in flight, ignoring: %r", lp, text)
            return None

        async with self._busy:
            self.history.append(ChatMessage(role="user", content=text))
            registry = self.router.registry
            try:
                reply = await self.assistant.respond(text, registry.environment, registry.devices())
            except AssistantUnavailableError as e:
                logger.warning("%s assistant unavailable: %s", lp, e)
                return self._say(UNAVAILABLE_REPLY)

            for action in reply.actions:
                if action.action != "toggle":
                    logger.warning("%s unsupported action %r for %s, skipping", lp, action.action, action.device_id)
                    continue
                try:
                    _ = self.router.toggle(action.device_id, source="assistant")
                except DeviceNotFoundError:
                    logger.warning("%s assistant named unknown device %s, skipping", lp, action.device_id)
            return self._say(reply.text or DEFAULT_REPLY)

    async def send_voice(self, capture: VoiceCapture) -> ChatMessage | None:
        lp = f"{self.lp}send_voice:"
        try:
            transcript = await capture.listen()
        except VoiceUnavailableError as e:
            logger.info("%s %s", lp, e)
            return self._say(VOICE_UNAVAILABLE_REPLY)
        return await self.send(transcript)
