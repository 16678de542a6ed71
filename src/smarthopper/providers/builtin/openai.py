"""OpenAI chat completions provider."""

import json
from dataclasses import replace
from typing import Any

from smarthopper.calls.interactions import (
    AIAgent,
    AIInteraction,
    AIInteractionError,
    AIInteractionText,
    AIInteractionToolCall,
    AIInteractionToolResult,
)
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest, RequestKind
from smarthopper.config import get_settings
from smarthopper.errors import ProviderError
from smarthopper.models.capability import AICapability
from smarthopper.providers.base import AIProvider
from smarthopper.providers.factory import ProviderSettings, SettingDescriptor
from smarthopper.providers.models import ProviderModels
from smarthopper.providers.streaming import StreamingAdapter, StreamState

_CHAT = (
    AICapability.TEXT_INPUT
    | AICapability.IMAGE_INPUT
    | AICapability.TEXT_OUTPUT
    | AICapability.JSON_OUTPUT
    | AICapability.FUNCTION_CALLING
)

_ROLES = {
    AIAgent.SYSTEM: "system",
    AIAgent.CONTEXT: "system",
    AIAgent.USER: "user",
    AIAgent.ASSISTANT: "assistant",
}


def _coerce_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        chunks: list[str] = []
        for item in value:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                chunks.append(item["text"])
        return "".join(chunks)
    return ""


def _parse_arguments(arguments: object) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str) and arguments.strip():
        try:
            decoded = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _usage_metrics(usage: object, finish_reason: str = "") -> AIMetrics:
    if not isinstance(usage, dict):
        return AIMetrics(finish_reason=finish_reason)
    prompt_details = usage.get("prompt_tokens_details") or {}
    completion_details = usage.get("completion_tokens_details") or {}
    cached = int(prompt_details.get("cached_tokens", 0) or 0)
    reasoning = int(completion_details.get("reasoning_tokens", 0) or 0)
    return AIMetrics(
        finish_reason=finish_reason,
        input_tokens_prompt=int(usage.get("prompt_tokens", 0) or 0) - cached,
        input_tokens_cached=cached,
        output_tokens_generation=int(usage.get("completion_tokens", 0) or 0) - reasoning,
        output_tokens_reasoning=reasoning,
    )


class OpenAIModels(ProviderModels):
    capabilities = {
        "gpt-5-mini": _CHAT | AICapability.REASONING,
        "gpt-5-nano": _CHAT | AICapability.REASONING,
        "gpt-5*": _CHAT | AICapability.REASONING,
        "gpt-4.1-mini": _CHAT,
        "gpt-4.1*": _CHAT,
        "gpt-4o*": _CHAT,
        "o4-mini": _CHAT | AICapability.REASONING,
        "dall-e-3": AICapability.TEXT2IMAGE,
        "gpt-image-1": AICapability.TEXT2IMAGE | AICapability.IMAGE_INPUT,
    }
    defaults = {
        "gpt-5-mini": (
            AICapability.TOOL_CHAT | AICapability.TEXT2JSON | AICapability.TOOL_REASONING_CHAT
        ),
        "gpt-5-nano": AICapability.TEXT2TEXT,
        "dall-e-3": AICapability.TEXT2IMAGE,
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


class OpenAIProviderSettings(ProviderSettings):
    descriptors = (
        SettingDescriptor(
            name="api_key",
            secret=True,
            default_factory=lambda: get_settings().openai_api_key or None,
            description="OpenAI API key",
        ),
        SettingDescriptor(name="model", default="", description="Preferred model"),
        SettingDescriptor(name="max_tokens", type=int, default=4096, minimum=1, maximum=128000),
        SettingDescriptor(
            name="reasoning_effort",
            default="medium",
            allowed_values=("minimal", "low", "medium", "high"),
        ),
        SettingDescriptor(name="enable_streaming", type=bool, default=True),
    )


class OpenAIStreamingAdapter(StreamingAdapter):
    def apply_event(self, state: StreamState, event: dict[str, Any]) -> str:
        if event.get("usage"):
            usage = _usage_metrics(event["usage"], state.metrics.finish_reason)
            state.metrics = usage
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        choice = choices[0] if isinstance(choices[0], dict) else {}
        if choice.get("finish_reason"):
            state.metrics = replace(state.metrics, finish_reason=str(choice["finish_reason"]))
        delta = choice.get("delta") or {}
        reasoning = _coerce_text(delta.get("reasoning_content"))
        if reasoning:
            state.reasoning.append(reasoning)
        for call in delta.get("tool_calls") or []:
            function = call.get("function") or {}
            state.add_tool_call_delta(
                int(call.get("index", 0)),
                id=call.get("id") or "",
                name=function.get("name") or "",
                arguments=function.get("arguments") or "",
            )
        text = _coerce_text(delta.get("content"))
        if text:
            state.text.append(text)
        return text


class OpenAIProvider(AIProvider):
    name = "OpenAI"
    default_server_url = "https://api.openai.com/v1"

    def create_models(self) -> ProviderModels:
        return OpenAIModels(self)

    def get_streaming_adapter(self) -> StreamingAdapter | None:
        if not self.get_setting("enable_streaming", bool):
            return None
        return OpenAIStreamingAdapter(self)

    def pre_call(self, request: AIRequest) -> AIRequest:
        request = super().pre_call(request)
        if request.kind is RequestKind.GENERATION and not request.endpoint:
            request = replace(request, endpoint="/chat/completions", http_method="POST")
        return request

    def encode_interaction(self, interaction: AIInteraction) -> dict[str, Any] | None:
        match interaction:
            case AIInteractionText(agent=agent, content=content) if agent in _ROLES:
                return {"role": _ROLES[agent], "content": content}
            case AIInteractionToolCall():
                return {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": interaction.id,
                            "type": "function",
                            "function": {
                                "name": interaction.name,
                                "arguments": json.dumps(interaction.arguments),
                            },
                        }
                    ],
                }
            case AIInteractionToolResult():
                return {
                    "role": "tool",
                    "tool_call_id": interaction.id,
                    "content": json.dumps(interaction.result),
                }
            case AIInteractionError():
                return None
        return None

    def encode_messages(self, request: AIRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for interaction in request.body:
            encoded = self.encode_interaction(interaction)
            if encoded is None:
                continue
            previous = messages[-1] if messages else None
            if (
                "tool_calls" in encoded
                and previous is not None
                and previous["role"] == "assistant"
            ):
                previous.setdefault("tool_calls", []).extend(encoded["tool_calls"])
                continue
            messages.append(encoded)
        return messages

    def encode(self, request: AIRequest) -> str:
        if request.kind is not RequestKind.GENERATION:
            return ""
        body: dict[str, Any] = {
            "model": request.model,
            "messages": self.encode_messages(request),
            "max_completion_tokens": self.get_setting("max_tokens", int) or 4096,
        }
        if self.model_manager.validate_capabilities(
            self.name, request.model, AICapability.REASONING
        ):
            body["reasoning_effort"] = self.get_setting("reasoning_effort") or "medium"
        if request.tool_filter:
            tools = self.get_formatted_tools(request.tool_filter)
            if tools:
                body["tools"] = tools
        if request.capability & AICapability.JSON_OUTPUT and request.body.json_output_schema:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "response",
                    "schema": json.loads(request.body.json_output_schema),
                    "strict": False,
                },
            }
        if request.stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return json.dumps(body)

    def decode_response(self, raw: str) -> list[AIInteraction]:
        payload = json.loads(raw) if raw.strip() else {}
        if not isinstance(payload, dict):
            raise ValueError("response is not a JSON object")
        choices = payload.get("choices")
        if choices is None:
            return []
        if not isinstance(choices, list) or not choices:
            raise ValueError("response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ValueError("response choice has no message")

        interactions: list[AIInteraction] = []
        content = _coerce_text(message.get("content"))
        reasoning = _coerce_text(message.get("reasoning_content"))
        if content or reasoning:
            interactions.append(AIInteractionText(AIAgent.ASSISTANT, content, reasoning))
        for call in message.get("tool_calls") or []:
            function = call.get("function") if isinstance(call, dict) else None
            if not isinstance(function, dict) or not function.get("name"):
                continue
            tool_call = AIInteractionToolCall(
                name=function["name"], arguments=_parse_arguments(function.get("arguments"))
            )
            if call.get("id"):
                tool_call = replace(tool_call, id=call["id"])
            interactions.append(tool_call)
        return interactions

    def decode_metrics(self, raw: str) -> AIMetrics:
        payload = json.loads(raw) if raw.strip() else {}
        finish_reason = ""
        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            finish_reason = str(choices[0].get("finish_reason") or "")
        return _usage_metrics(payload.get("usage"), finish_reason)


class OpenAIProviderFactory:
    def create_provider(self) -> OpenAIProvider:
        return OpenAIProvider()

    def create_provider_settings(self) -> ProviderSettings:
        return OpenAIProviderSettings()
