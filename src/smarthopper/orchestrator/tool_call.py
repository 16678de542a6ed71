"""Execute one tool-call interaction and wrap its payload as a tool result."""

import asyncio
import logging
from dataclasses import replace

from smarthopper.calls.interactions import AIInteractionToolCall, AIInteractionToolResult
from smarthopper.calls.messages import MessageCode, Origin, error, messages_from_payload
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AICallStatus, AIReturn
from smarthopper.cancellation import run_cancellable
from smarthopper.config import get_settings
from smarthopper.models.capability import AICapability, to_detailed_string
from smarthopper.models.manager import ModelManager
from smarthopper.tools.base import ToolContext, tool_error
from smarthopper.tools.manager import ToolManager

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Tool execution cancelled or timed out"


class ToolCallExecutor:
    def __init__(
        self,
        tools: ToolManager,
        *,
        model_manager: ModelManager | None = None,
        timeout: float | None = None,
    ) -> None:
        self.tools = tools
        self.model_manager = model_manager
        self.timeout = timeout

    def _timeout(self) -> float:
        return self.timeout or get_settings().clamped_tool_timeout()

    def capability_error(self, name: str, context: ToolContext) -> str | None:
        """Reject a tool whose required capabilities the selected model lacks.

        Skipped without a model manager, a concrete provider and model, or a
        registered tool with requirements.
        """
        tool = self.tools.get(name)
        provider, model = context.provider, context.model
        if self.model_manager is None or tool is None:
            return None
        if tool.required_capabilities == AICapability.NONE:
            return None
        if not provider or provider == "Default" or not model:
            return None
        if self.model_manager.validate_capabilities(provider, model, tool.required_capabilities):
            return None
        return (
            f"Selected model '{model}' on provider '{provider}' does not support required "
            f"capabilities ({to_detailed_string(tool.required_capabilities)}) "
            f"for tool '{name}'"
        )

    async def execute(
        self,
        tool_call: AIInteractionToolCall,
        *,
        request: AIRequest | None = None,
        context: ToolContext | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AIReturn:
        """Run ``tool_call`` and return an ``AIReturn`` whose body is its tool result.

        Failure messages embedded in the payload become the return's messages, so
        ``success`` mirrors the tool outcome. Cancellation propagates as
        ``CallCancelledError``.
        """
        context = context or ToolContext()
        context = replace(context, cancel=cancel or context.cancel, tool_call_id=tool_call.id)
        mismatch = self.capability_error(tool_call.name, context)
        if mismatch is not None:
            logger.info("Skipping tool %s: %s", tool_call.name, mismatch)
            payload = tool_error(mismatch, Origin.VALIDATION)
        else:
            try:
                payload = await run_cancellable(
                    self.tools.execute_tool(tool_call.name, tool_call.arguments, context),
                    cancel,
                    timeout=self._timeout(),
                )
            except TimeoutError:
                logger.warning("Tool %s timed out after %ss", tool_call.name, self._timeout())
                payload = tool_error(TIMEOUT_MESSAGE)

        result = AIInteractionToolResult(id=tool_call.id, name=tool_call.name, result=payload)
        messages = messages_from_payload(payload)
        if payload.get("success") is False and not any(m.is_error for m in messages):
            messages.append(
                error(
                    f"Tool '{tool_call.name}' reported failure",
                    Origin.TOOL,
                    MessageCode.TOOL_VALIDATION_ERROR,
                )
            )
        status = AICallStatus.COMPLETED if result.succeeded else AICallStatus.ERROR
        return AIReturn.create_success([result], request=request, status=status).with_messages(
            *messages
        )
