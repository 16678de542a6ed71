"""Anthropic Messages API provider."""

import json
from dataclasses import replace
from typing import Any

from smarthopper.calls.interactions import (
    AIAgent,
    AIInteraction,
    AIInteractionText,
    AIInteractionToolCall,
    AIInteractionToolResult,
)
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest, RequestKind
from smarthopper.config import get_settings
from smarthopper.errors import ProviderError
from smarthopper.models.capability import AICapability
from smarthopper.providers.base import AUTH_API_KEY, AIProvider
from smarthopper.providers.factory import ProviderSettings, SettingDescriptor
from smarthopper.providers.models import ProviderModels
from smarthopper.providers.streaming import StreamingAdapter, StreamState

API_VERSION = "2023-06-01"

_CHAT = (
    AICapability.TEXT_INPUT
    | AICapability.IMAGE_INPUT
    | AICapability.TEXT_OUTPUT
    | AICapability.JSON_OUTPUT
    | AICapability.FUNCTION_CALLING
)


def _usage_metrics(usage: object, finish_reason: str = "") -> AIMetrics:
    if not isinstance(usage, dict):
        return AIMetrics(finish_reason=finish_reason)
    return AIMetrics(
        finish_reason=finish_reason,
        input_tokens_prompt=int(usage.get("input_tokens", 0) or 0),
        input_tokens_cached=int(usage.get("cache_read_input_tokens", 0) or 0),
        output_tokens_generation=int(usage.get("output_tokens", 0) or 0),
    )


class AnthropicModels(ProviderModels):
    capabilities = {
        "claude-opus-4*": _CHAT | AICapability.REASONING,
        "claude-sonnet-4*": _CHAT | AICapability.REASONING,
        "claude-haiku-4*": _CHAT,
        "claude-3-7-sonnet*": _CHAT | AICapability.REASONING,
        "claude-3-5-haiku*": AICapability.TEXT2TEXT | AICapability.FUNCTION_CALLING,
        "claude-sonnet-4-5": _CHAT | AICapability.REASONING,
        "claude-haiku-4-5": _CHAT,
    }
    defaults = {
        "claude-sonnet-4-5": (
            AICapability.TOOL_CHAT | AICapability.TEXT2JSON | AICapability.TOOL_REASONING_CHAT
        ),
        "claude-haiku-4-5": AICapability.TEXT2TEXT,
    }

    async def retrieve_available(self) -> list[str]:
        result = await self.provider.call(
            AIRequest(
                provider=self.provider.name,
                endpoint="/models",
                http_method="GET",
                kind=RequestKind.BACKOFFICE,
            )
        )
        if not result.success:
            raise ProviderError(result.error_message)
        payload = json.loads(result.raw or "{}")
        return [
            item["id"]
            for item in payload.get("data", [])
            if isinstance(item, dict) and isinstance(item.get("id"), str)
        ]


class AnthropicProviderSettings(ProviderSettings):
    descriptors = (
        SettingDescriptor(
            name="api_key",
            secret=True,
            default_factory=lambda: get_settings().anthropic_api_key or None,
            description="Anthropic API key",
        ),
        SettingDescriptor(name="model", default="", description="Preferred model"),
        SettingDescriptor(name="max_tokens", type=int, default=4096, minimum=1, maximum=64000),
        SettingDescriptor(name="temperature", type=float, default=0.5, minimum=0.0, maximum=1.0),
        SettingDescriptor(name="enable_streaming", type=bool, default=True),
    )


class AnthropicStreamingAdapter(StreamingAdapter):
    """Folds Messages API stream events; ``message_stop`` ends the stream."""

    def apply_event(self, state: StreamState, event: dict[str, Any]) -> str:
        kind = event.get("type")
        if kind == "message_start":
            usage = (event.get("message") or {}).get("usage")
            state.metrics = state.metrics.combine(_usage_metrics(usage))
            return ""
        if kind == "message_delta":
            delta = event.get("delta") or {}
            output = int((event.get("usage") or {}).get("output_tokens", 0) or 0)
            state.metrics = replace(
                state.metrics,
                finish_reason=str(delta.get("stop_reason") or state.metrics.finish_reason),
                output_tokens_generation=output or state.metrics.output_tokens_generation,
            )
            return ""
        index = int(event.get("index", 0) or 0)
        if kind == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.add_tool_call_delta(
                    index, id=block.get("id") or "", name=block.get("name") or ""
                )
            return ""
        if kind != "content_block_delta":
            return ""
        delta = event.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text") or ""
            state.text.append(text)
            return text
        if delta_type == "thinking_delta":
            state.reasoning.append(delta.get("thinking") or "")
        elif delta_type == "input_json_delta":
            state.add_tool_call_delta(index, arguments=delta.get("partial_json") or "")
        return ""

    def is_terminal(self, payload: str) -> bool:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            return False
        return isinstance(event, dict) and event.get("type") == "message_stop"


class AnthropicProvider(AIProvider):
    name = "Anthropic"
    default_server_url = "https://api.anthropic.com/v1"

    def create_models(self) -> ProviderModels:
        return AnthropicModels(self)

    def get_streaming_adapter(self) -> StreamingAdapter | None:
        if not self.get_setting("enable_streaming", bool):
            return None
        return AnthropicStreamingAdapter(self)

    def pre_call(self, request: AIRequest) -> AIRequest:
        request = super().pre_call(request)
        headers = {"anthropic-version": API_VERSION, **request.headers}
        request = replace(request, authentication=AUTH_API_KEY, headers=headers)
        if request.kind is RequestKind.GENERATION and not request.endpoint:
            request = replace(request, endpoint="/messages", http_method="POST")
        return request

    def encode_interaction(self, interaction: AIInteraction) -> dict[str, Any] | None:
        match interaction:
            case AIInteractionText(agent=AIAgent.USER | AIAgent.ASSISTANT as agent):
                return {
                    "role": agent.value,
                    "content": [{"type": "text", "text": interaction.content}],
                }
            case AIInteractionToolCall():
                return {
                    "role": "assistant",
                    "content": [
                        {
                            "type": "tool_use",
                            "id": interaction.id,
                            "name": interaction.name,
                            "input": interaction.arguments,
                        }
                    ],
                }
            case AIInteractionToolResult():
                return {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": interaction.id,
                            "content": json.dumps(interaction.result),
                            "is_error": not interaction.succeeded,
                        }
                    ],
                }
        return None

    def encode_messages(self, request: AIRequest) -> tuple[str, list[dict[str, Any]]]:
        """System prompt and the role-alternating message list."""
        system: list[str] = []
        messages: list[dict[str, Any]] = []
        for interaction in request.body:
            if isinstance(interaction, AIInteractionText) and interaction.agent in (
                AIAgent.SYSTEM,
                AIAgent.CONTEXT,
            ):
                if interaction.content:
                    system.append(interaction.content)
                continue
            encoded = self.encode_interaction(interaction)
            if encoded is None:
                continue
            if messages and messages[-1]["role"] == encoded["role"]:
                messages[-1]["content"].extend(encoded["content"])
            else:
                messages.append(encoded)
        return "\n\n".join(system), messages

    def get_formatted_tools(self, tool_filter: str | None = "*") -> list[dict[str, Any]] | None:
        tools = super().get_formatted_tools(tool_filter)
        if not tools:
            return None
        return [
            {
                "name": tool["function"]["name"],
                "description": tool["function"]["description"],
                "input_schema": tool["function"]["parameters"],
            }
            for tool in tools
        ]

    def encode(self, request: AIRequest) -> str:
        if request.kind is not RequestKind.GENERATION:
            return ""
        system, messages = self.encode_messages(request)
        if request.capability & AICapability.JSON_OUTPUT and request.body.json_output_schema:
            instruction = (
                "Respond only with JSON matching this schema:\n"
                f"{request.body.json_output_schema}"
            )
            system = f"{system}\n\n{instruction}" if system else instruction
        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": self.get_setting("max_tokens", int) or 4096,
            "messages": messages,
            "temperature": self.get_setting("temperature", float),
        }
        if system:
            body["system"] = system
        if request.tool_filter:
            tools = self.get_formatted_tools(request.tool_filter)
            if tools:
                body["tools"] = tools
        if request.stream:
            body["stream"] = True
        return json.dumps(body)

    def decode_response(self, raw: str) -> list[AIInteraction]:
        payload = json.loads(raw) if raw.strip() else {}
        if not isinstance(payload, dict):
            raise ValueError("response is not a JSON object")
        blocks = payload.get("content")
        if blocks is None:
            return []
        if not isinstance(blocks, list):
            raise ValueError("response content is not a list")

        texts: list[str] = []
        thinking: list[str] = []
        calls: list[AIInteraction] = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            match block.get("type"):
                case "text":
                    texts.append(block.get("text") or "")
                case "thinking":
                    thinking.append(block.get("thinking") or "")
                case "tool_use" if block.get("name"):
                    call = AIInteractionToolCall(
                        name=block["name"], arguments=block.get("input") or {}
                    )
                    if block.get("id"):
                        call = replace(call, id=block["id"])
                    calls.append(call)

        interactions: list[AIInteraction] = []
        if texts or thinking:
            interactions.append(
                AIInteractionText(AIAgent.ASSISTANT, "".join(texts), "".join(thinking))
            )
        interactions.extend(calls)
        return interactions

    def decode_metrics(self, raw: str) -> AIMetrics:
        payload = json.loads(raw) if raw.strip() else {}
        return _usage_metrics(payload.get("usage"), str(payload.get("stop_reason") or ""))


class AnthropicProviderFactory:
    def create_provider(self) -> AnthropicProvider:
        return AnthropicProvider()

    def create_provider_settings(self) -> ProviderSettings:
        return AnthropicProviderSettings()
