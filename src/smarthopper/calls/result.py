"""Immutable result of one provider call or tool execution."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from smarthopper.calls.interactions import (
    AIBody,
    AIInteraction,
    AIInteractionError,
    AIInteractionToolCall,
    AIInteractionToolResult,
)
from smarthopper.calls.messages import MessageCode, Origin, RuntimeMessage, error, normalize
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest


class AICallStatus(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    STREAMING = "streaming"
    CALLING_TOOLS = "calling_tools"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class AIReturn:
    request: AIRequest | None = None
    body: AIBody = field(default_factory=AIBody)
    status: AICallStatus = AICallStatus.COMPLETED
    metrics: AIMetrics = field(default_factory=AIMetrics)
    raw: Any = None
    messages: tuple[RuntimeMessage, ...] = ()

    @property
    def all_messages(self) -> tuple[RuntimeMessage, ...]:
        """Request validation messages merged with return messages."""
        merged = list(self.messages)
        if self.request is not None:
            merged.extend(self.request.messages)
        return normalize(merged)

    @property
    def success(self) -> bool:
        return not any(message.is_error for message in self.all_messages)

    @property
    def error_message(self) -> str:
        for message in self.all_messages:
            if message.is_error:
                return message.message
        return ""

    @property
    def finish_reason(self) -> str:
        return self.metrics.finish_reason

    @property
    def pending_tool_calls(self) -> list[AIInteractionToolCall]:
        return self.body.pending_tool_calls()

    @property
    def last_tool_result(self) -> AIInteractionToolResult | None:
        return self.body.last_tool_result()

    def with_status(self, status: AICallStatus) -> "AIReturn":
        return replace(self, status=status)

    def with_metrics(self, metrics: AIMetrics) -> "AIReturn":
        return replace(self, metrics=metrics)

    def with_messages(self, *messages: RuntimeMessage) -> "AIReturn":
        return replace(self, messages=normalize(self.messages + tuple(messages)))

    @classmethod
    def create_success(
        cls,
        interactions: list[AIInteraction] | tuple[AIInteraction, ...],
        *,
        request: AIRequest | None = None,
        metrics: AIMetrics | None = None,
        raw: Any = None,
        status: AICallStatus = AICallStatus.COMPLETED,
    ) -> "AIReturn":
        return cls(
            request=request,
            body=AIBody.of(interactions),
            status=status,
            metrics=metrics or AIMetrics(),
            raw=raw,
        )

    @classmethod
    def create_error(
        cls,
        message: str,
        *,
        request: AIRequest | None = None,
        origin: Origin = Origin.RETURN,
        code: MessageCode = MessageCode.UNKNOWN,
        finish_reason: str = "error",
        raw: Any = None,
    ) -> "AIReturn":
        metrics = AIMetrics(
            provider=request.provider if request else "",
            model=request.model if request else "",
            finish_reason=finish_reason,
        )
        return cls(
            request=request,
            body=AIBody.of([AIInteractionError(content=message)]),
            status=AICallStatus.ERROR,
            metrics=metrics,
            raw=raw,
            messages=(error(message, origin, code),),
        )

    @classmethod
    def create_provider_error(
        cls,
        message: str,
        *,
        request: AIRequest | None = None,
        raw: Any = None,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> "AIReturn":
        return cls.create_error(
            f"Provider error: {message}",
            request=request,
            origin=Origin.PROVIDER,
            code=code,
            raw=raw,
        )

    @classmethod
    def create_network_error(
        cls,
        message: str,
        *,
        request: AIRequest | None = None,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> "AIReturn":
        return cls.create_error(
            f"Network error: {message}", request=request, origin=Origin.NETWORK, code=code
        )

    @classmethod
    def create_tool_error(
        cls,
        message: str,
        *,
        request: AIRequest | None = None,
        code: MessageCode = MessageCode.UNKNOWN,
    ) -> "AIReturn":
        return cls.create_error(
            f"Tool error: {message}", request=request, origin=Origin.TOOL, code=code
        )

    def to_dict(self) -> dict[str, Any]:
        last = self.body.last()
        result: Any = None
        if isinstance(last, AIInteractionToolResult):
            result = last.result
        elif last is not None and hasattr(last, "content"):
            result = last.content
        return {
            "success": self.success,
            "status": self.status.value,
            "result": result,
            "messages": [message.to_dict() for message in self.all_messages],
            "metrics": self.metrics.to_dict(),
        }
