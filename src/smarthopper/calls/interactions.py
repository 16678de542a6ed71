"""Conversation interactions and the ordered body that carries them.

Every interaction variant has a ``kind`` discriminant, so callers can match
exhaustively on ``AIInteraction`` instead of probing class hierarchies.
"""

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal, TypeAlias

from smarthopper.calls.messages import RuntimeMessage, messages_from_payload
from smarthopper.calls.metrics import AIMetrics
from smarthopper.ids import new_tool_call_id


class AIAgent(str, Enum):
    SYSTEM = "system"
    CONTEXT = "context"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class AIInteractionText:
    agent: AIAgent
    content: str
    reasoning: str = ""
    metrics: AIMetrics = field(default_factory=AIMetrics)
    kind: Literal["text"] = field(default="text", init=False)


@dataclass(slots=True, frozen=True)
class AIInteractionToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_tool_call_id)
    agent: AIAgent = AIAgent.ASSISTANT
    reasoning: str = ""
    metrics: AIMetrics = field(default_factory=AIMetrics)
    kind: Literal["tool_call"] = field(default="tool_call", init=False)


@dataclass(slots=True, frozen=True)
class AIInteractionToolResult:
    id: str
    name: str
    result: dict[str, Any] = field(default_factory=dict)
    agent: AIAgent = AIAgent.TOOL_RESULT
    metrics: AIMetrics = field(default_factory=AIMetrics)
    kind: Literal["tool_result"] = field(default="tool_result", init=False)

    @property
    def messages(self) -> list[RuntimeMessage]:
        return messages_from_payload(self.result)

    @property
    def succeeded(self) -> bool:
        if self.result.get("success") is False:
            return False
        return not any(message.is_error for message in self.messages)


@dataclass(slots=True, frozen=True)
class AIInteractionError:
    content: str
    agent: AIAgent = AIAgent.ERROR
    metrics: AIMetrics = field(default_factory=AIMetrics)
    kind: Literal["error"] = field(default="error", init=False)


AIInteraction: TypeAlias = (
    AIInteractionText | AIInteractionToolCall | AIInteractionToolResult | AIInteractionError
)


def system(content: str) -> AIInteractionText:
    return AIInteractionText(AIAgent.SYSTEM, content)


def user(content: str) -> AIInteractionText:
    return AIInteractionText(AIAgent.USER, content)


def assistant(content: str, reasoning: str = "") -> AIInteractionText:
    return AIInteractionText(AIAgent.ASSISTANT, content, reasoning)


def interaction_to_dict(interaction: AIInteraction) -> dict[str, Any]:
    match interaction:
        case AIInteractionText():
            payload: dict[str, Any] = {
                "agent": interaction.agent.value,
                "content": interaction.content,
            }
            if interaction.reasoning:
                payload["reasoning"] = interaction.reasoning
        case AIInteractionToolCall():
            payload = {
                "agent": interaction.agent.value,
                "id": interaction.id,
                "name": interaction.name,
                "arguments": interaction.arguments,
            }
        case AIInteractionToolResult():
            payload = {
                "agent": interaction.agent.value,
                "id": interaction.id,
                "name": interaction.name,
                "result": interaction.result,
            }
        case AIInteractionError():
            payload = {"agent": interaction.agent.value, "content": interaction.content}
    return {"kind": interaction.kind, **payload}


def interaction_from_dict(raw: dict[str, Any]) -> AIInteraction:
    kind = raw.get("kind")
    if kind == "tool_call":
        arguments = raw.get("arguments") or {}
        if isinstance(arguments, str):
            arguments = json.loads(arguments) if arguments.strip() else {}
        return AIInteractionToolCall(
            name=str(raw.get("name", "")),
            arguments=arguments,
            id=str(raw.get("id") or new_tool_call_id()),
        )
    if kind == "tool_result":
        return AIInteractionToolResult(
            id=str(raw.get("id", "")),
            name=str(raw.get("name", "")),
            result=dict(raw.get("result") or {}),
        )
    if kind == "error":
        return AIInteractionError(content=str(raw.get("content", "")))
    if kind == "text":
        return AIInteractionText(
            agent=AIAgent(raw.get("agent", AIAgent.USER.value)),
            content=str(raw.get("content", "")),
            reasoning=str(raw.get("reasoning", "")),
        )
    raise ValueError(f"unknown interaction kind: {kind!r}")


@dataclass(slots=True, frozen=True)
class AIBody:
    """Ordered, immutable interaction history sent with a request.

    Append order is decode order; the last tool call or tool result in the
    sequence is the authoritative one for the current turn.
    """

    interactions: tuple[AIInteraction, ...] = ()
    tool_filter: str | None = None
    json_output_schema: str = ""

    @classmethod
    def of(cls, interactions: Iterable[AIInteraction], **kwargs: Any) -> "AIBody":
        return cls(tuple(interactions), **kwargs)

    def __len__(self) -> int:
        return len(self.interactions)

    def __iter__(self) -> Iterator[AIInteraction]:
        return iter(self.interactions)

    def with_appended(self, *interactions: AIInteraction) -> "AIBody":
        return replace(self, interactions=self.interactions + tuple(interactions))

    def last(self) -> AIInteraction | None:
        return self.interactions[-1] if self.interactions else None

    def last_tool_result(self) -> AIInteractionToolResult | None:
        for interaction in reversed(self.interactions):
            if isinstance(interaction, AIInteractionToolResult):
                return interaction
        return None

    def last_text(self, agent: AIAgent = AIAgent.ASSISTANT) -> AIInteractionText | None:
        for interaction in reversed(self.interactions):
            if isinstance(interaction, AIInteractionText) and interaction.agent is agent:
                return interaction
        return None

    def tool_calls(self) -> list[AIInteractionToolCall]:
        return [i for i in self.interactions if isinstance(i, AIInteractionToolCall)]

    def tool_results(self) -> list[AIInteractionToolResult]:
        return [i for i in self.interactions if isinstance(i, AIInteractionToolResult)]

    def pending_tool_calls(self) -> list[AIInteractionToolCall]:
        """Tool calls that have no tool result with the same id later in the body."""
        pending: list[AIInteractionToolCall] = []
        answered: set[str] = set()
        for interaction in reversed(self.interactions):
            if isinstance(interaction, AIInteractionToolResult):
                answered.add(interaction.id)
            elif isinstance(interaction, AIInteractionToolCall):
                if interaction.id not in answered:
                    pending.append(interaction)
        pending.reverse()
        return pending

    def metrics(self) -> AIMetrics:
        total = AIMetrics()
        for interaction in self.interactions:
            total = total.combine(interaction.metrics)
        return total

    def to_list(self) -> list[dict[str, Any]]:
        return [interaction_to_dict(i) for i in self.interactions]
