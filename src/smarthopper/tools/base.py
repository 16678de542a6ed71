"""Tool definitions and the context handed to tool handlers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from smarthopper.calls.messages import Origin, RuntimeMessage, error, parse_origin
from smarthopper.models.capability import AICapability

if TYPE_CHECKING:
    from smarthopper.calls.request import AIRequest
    from smarthopper.calls.result import AIReturn
    from smarthopper.tools.canvas import Canvas

AICaller = Callable[["AIRequest"], Awaitable["AIReturn"]]
ToolHandler = Callable[["ToolContext"], Awaitable[dict[str, Any]]]

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(slots=True)
class ToolContext:
    """Arguments plus the collaborators a handler may need.

    ``call_ai`` runs a nested AI request through the orchestrator; ``canvas``
    is the document the canvas tools read and mutate.
    """

    arguments: dict[str, Any] = field(default_factory=dict)
    provider: str = "Default"
    model: str = ""
    call_ai: AICaller | None = None
    canvas: Canvas | None = None
    cancel: asyncio.Event | None = None
    tool_call_id: str = ""


@dataclass(slots=True)
class AITool:
    name: str
    description: str
    category: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(default_factory=lambda: dict(EMPTY_PARAMETERS))
    required_capabilities: AICapability = AICapability.NONE

    def schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def tool_error(message: str, origin: Origin | str = Origin.TOOL) -> dict[str, Any]:
    """Failure payload understood by every caller of ``execute_tool``."""
    return {"success": False, "messages": [error(message, parse_origin(origin)).to_dict()]}


def messages_payload(messages: tuple[RuntimeMessage, ...] | list[RuntimeMessage]) -> dict[str, Any]:
    return {"success": False, "messages": [message.to_dict() for message in messages]}
