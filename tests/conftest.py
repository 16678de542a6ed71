import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import httpx
import pytest

from smarthopper.calls.interactions import (
    AIAgent,
    AIInteraction,
    AIInteractionText,
    AIInteractionToolCall,
    interaction_to_dict,
)
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest, RequestKind
from smarthopper.config import get_settings
from smarthopper.models.capability import AICapability
from smarthopper.providers.base import AIProvider
from smarthopper.providers.factory import ProviderSettings, SettingDescriptor
from smarthopper.providers.models import ProviderModels

MOCK_MODEL = "mock-model"
MOCK_CAPABILITIES = AICapability.TOOL_REASONING_CHAT | AICapability.TEXT2JSON


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("SMARTHOPPER_SETTINGS_PATH", str(tmp_path / "settings.json"))
    monkeypatch.setenv("SMARTHOPPER_PROVIDERS_DIR", "")
    monkeypatch.setenv("SMARTHOPPER_DEFAULT_PROVIDER", "")
    monkeypatch.setenv("SMARTHOPPER_SIGNING_KEY", "")
    monkeypatch.setenv("SMARTHOPPER_STREAM_IDLE_TIMEOUT_SECONDS", "0")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class ScriptedModels(ProviderModels):
    capabilities = {
        MOCK_MODEL: MOCK_CAPABILITIES,
        "mock-image": AICapability.TEXT2IMAGE,
    }
    defaults = {MOCK_MODEL: MOCK_CAPABILITIES, "mock-image": AICapability.TEXT2IMAGE}


class ScriptedSettings(ProviderSettings):
    descriptors = (
        SettingDescriptor(name="api_key", secret=True, default="test-key"),
        SettingDescriptor(name="model", default=""),
        SettingDescriptor(name="max_tokens", type=int, default=256, minimum=1, maximum=1024),
    )


class ScriptedProvider(AIProvider):
    """Provider answering from a list of canned replies over ``httpx.MockTransport``.

    A reply is ``{"text": ..., "tool_calls": [{"id", "name", "arguments"}],
    "finish_reason": ..., "input": n, "output": n}`` or a ready ``httpx.Response``.
    """

    name = "Mock"
    default_server_url = "https://mock.test/v1"

    def __init__(self, replies: list[Any] | None = None, *, name: str = "Mock") -> None:
        self.name = name
        self.replies = list(replies or [])
        self.sent: list[dict[str, Any]] = []
        self.http_requests: list[httpx.Request] = []
        super().__init__(transport=httpx.MockTransport(self._handle))
        self.settings_schema = ScriptedSettings()
        self.reload_settings()

    def create_models(self) -> ProviderModels:
        return ScriptedModels(self)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.http_requests.append(request)
        self.sent.append(json.loads(request.content or b"{}"))
        if not self.replies:
            return httpx.Response(500, text="no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def pre_call(self, request: AIRequest) -> AIRequest:
        request = super().pre_call(request)
        if request.kind is RequestKind.GENERATION and not request.endpoint:
            request = replace(request, endpoint="/chat")
        return request

    def encode_interaction(self, interaction: AIInteraction) -> dict[str, Any] | None:
        return interaction_to_dict(interaction)

    def encode(self, request: AIRequest) -> str:
        tools = self.get_formatted_tools(request.tool_filter) if request.tool_filter else None
        return json.dumps(
            {
                "model": request.model,
                "messages": [self.encode_interaction(i) for i in request.body],
                "tools": [tool["function"]["name"] for tool in tools or []],
                "schema": request.body.json_output_schema,
            }
        )

    def decode_response(self, raw: str) -> list[AIInteraction]:
        payload = json.loads(raw)
        interactions: list[AIInteraction] = []
        if payload.get("text") is not None:
            interactions.append(AIInteractionText(AIAgent.ASSISTANT, payload["text"]))
        for call in payload.get("tool_calls", []):
            interactions.append(
                AIInteractionToolCall(
                    name=call["name"], arguments=call.get("arguments", {}), id=call["id"]
                )
            )
        return interactions

    def decode_metrics(self, raw: str) -> AIMetrics:
        payload = json.loads(raw)
        return AIMetrics(
            finish_reason=payload.get("finish_reason", "stop"),
            input_tokens_prompt=payload.get("input", 0),
            output_tokens_generation=payload.get("output", 0),
        )


@pytest.fixture
def scripted_provider():
    """Build a ``ScriptedProvider`` with capabilities already registered."""

    async def _make(*replies: Any, name: str = "Mock") -> ScriptedProvider:
        provider = ScriptedProvider(list(replies), name=name)
        await provider.initialize()
        return provider

    return _make


def tool_call_reply(name: str, arguments: dict[str, Any], call_id: str = "call_1") -> dict:
    return {
        "tool_calls": [{"id": call_id, "name": name, "arguments": arguments}],
        "finish_reason": "tool_calls",
        "input": 10,
        "output": 5,
    }


def text_reply(text: str) -> dict:
    return {"text": text, "finish_reason": "stop", "input": 10, "output": 5}


@pytest.fixture
def replies():
    """Reply builders: ``replies.text("hi")`` and ``replies.tool("gh_get", {...})``."""

    class _Replies:
        text = staticmethod(text_reply)
        tool = staticmethod(tool_call_reply)

    return _Replies
