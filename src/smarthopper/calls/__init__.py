"""Request, interaction and result types shared by providers, tools and the orchestrator."""

from smarthopper.calls.interactions import (
    AIAgent,
    AIBody,
    AIInteraction,
    AIInteractionError,
    AIInteractionText,
    AIInteractionToolCall,
    AIInteractionToolResult,
)
from smarthopper.calls.messages import MessageCode, Origin, RuntimeMessage, Severity
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest, RequestKind
from smarthopper.calls.result import AICallStatus, AIReturn

__all__ = [
    "AIAgent",
    "AIBody",
    "AICallStatus",
    "AIInteraction",
    "AIInteractionError",
    "AIInteractionText",
    "AIInteractionToolCall",
    "AIInteractionToolResult",
    "AIMetrics",
    "AIRequest",
    "AIReturn",
    "MessageCode",
    "Origin",
    "RequestKind",
    "RuntimeMessage",
    "Severity",
]
