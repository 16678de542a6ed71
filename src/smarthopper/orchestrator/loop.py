"""Tool-call loop: call the provider, run requested tools, feed results back."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import replace

from smarthopper.calls.messages import MessageCode, Origin, RuntimeMessage, warning
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AICallStatus, AIReturn
from smarthopper.cancellation import is_cancelled
from smarthopper.config import get_settings
from smarthopper.errors import CallCancelledError, ToolLoopLimitError
from smarthopper.logging import bound_context
from smarthopper.orchestrator.tool_call import ToolCallExecutor
from smarthopper.providers.base import AIProvider
from smarthopper.providers.registry import ProviderRegistry
from smarthopper.tools.base import ToolContext
from smarthopper.tools.manager import ToolManager

logger = logging.getLogger(__name__)


def cancelled_return(request: AIRequest | None, metrics: AIMetrics | None = None) -> AIReturn:
    cancelled = AIReturn.create_error(
        "Call cancelled",
        request=request,
        origin=Origin.REQUEST,
        code=MessageCode.CANCELLED,
        finish_reason="cancelled",
    )
    if metrics is None:
        return cancelled
    return cancelled.with_metrics(metrics.combine(cancelled.metrics))


def unknown_provider_return(request: AIRequest) -> AIReturn:
    return AIReturn.create_error(
        f"Provider '{request.provider}' is not available",
        request=request,
        origin=Origin.REQUEST,
        code=MessageCode.UNKNOWN_PROVIDER,
    )


class ToolCallLoop:
    """Drives ``idle → requested → {completed | calling_tools | error}`` until a turn
    finishes without pending tool calls.

    Each ``calling_tools`` turn appends the assistant interactions and one tool
    result per pending call to the conversation, then re-calls the provider.
    The loop ends on completion, provider error, cancellation or after
    ``max_iterations`` provider calls, which is reported as a distinct error.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        tools: ToolManager,
        *,
        max_iterations: int | None = None,
        executor: ToolCallExecutor | None = None,
    ) -> None:
        self.providers = providers
        self.tools = tools
        self.max_iterations = max_iterations or get_settings().max_tool_iterations
        self.executor = executor or ToolCallExecutor(tools, model_manager=providers.model_manager)

    def _resolve(self, request: AIRequest) -> tuple[AIRequest, AIProvider | None]:
        provider = self.providers.get_provider(request.provider)
        if provider is None:
            return request, None
        return replace(request, provider=provider.name), provider

    def _tool_context(self, request: AIRequest, context: ToolContext | None) -> ToolContext:
        context = context or ToolContext()
        return replace(
            context,
            provider=request.provider,
            model=context.model or request.model,
            call_ai=context.call_ai or self.run,
        )

    async def _run_tools(
        self,
        request: AIRequest,
        result: AIReturn,
        context: ToolContext,
        cancel: asyncio.Event | None,
        notes: list[RuntimeMessage],
    ) -> AIRequest:
        pending = result.pending_tool_calls
        body = request.body.with_appended(*result.body)
        context = replace(context, model=context.model or result.metrics.model)
        for tool_call in pending:
            logger.info("Executing tool %s (%s)", tool_call.name, tool_call.id)
            tool_return = await self.executor.execute(
                tool_call, request=request, context=context, cancel=cancel
            )
            body = body.with_appended(*tool_return.body)
            if not tool_return.success:
                notes.append(
                    warning(
                        f"Tool '{tool_call.name}' failed: {tool_return.error_message}",
                        Origin.TOOL,
                    )
                )
        return request.with_body(body)

    async def run(
        self,
        request: AIRequest,
        *,
        cancel: asyncio.Event | None = None,
        context: ToolContext | None = None,
    ) -> AIReturn:
        request, provider = self._resolve(request)
        if provider is None:
            return unknown_provider_return(request)

        metrics = AIMetrics()
        notes: list[RuntimeMessage] = []
        tool_context = self._tool_context(request, context)
        with bound_context(provider=provider.name, model=request.model or "default"):
            try:
                for iteration in range(1, self.max_iterations + 1):
                    if is_cancelled(cancel):
                        return cancelled_return(request, metrics).with_messages(*notes)
                    result = await provider.call(request, cancel=cancel)
                    metrics = metrics.combine(result.metrics)
                    if result.status is not AICallStatus.CALLING_TOOLS:
                        logger.info("Tool-call loop finished after %d iterations", iteration)
                        return result.with_metrics(metrics).with_messages(*notes)
                    request = await self._run_tools(request, result, tool_context, cancel, notes)
            except CallCancelledError:
                return cancelled_return(request, metrics).with_messages(*notes)

        limit = ToolLoopLimitError(self.max_iterations)
        logger.warning("%s", limit)
        return (
            AIReturn.create_error(
                str(limit), request=request, origin=Origin.RETURN, code=MessageCode.TOOL_LOOP_LIMIT
            )
            .with_metrics(replace(metrics, finish_reason="error"))
            .with_messages(*notes)
        )

    async def stream(
        self,
        request: AIRequest,
        *,
        cancel: asyncio.Event | None = None,
        context: ToolContext | None = None,
    ) -> AsyncIterator[AIReturn]:
        """Like ``run`` but yields each turn's streaming deltas before the final result."""
        request, provider = self._resolve(request)
        if provider is None:
            yield unknown_provider_return(request)
            return

        metrics = AIMetrics()
        notes: list[RuntimeMessage] = []
        tool_context = self._tool_context(request, context)
        for _iteration in range(self.max_iterations):
            if is_cancelled(cancel):
                yield cancelled_return(request, metrics).with_messages(*notes)
                return
            final: AIReturn | None = None
            async for item in provider.stream(request, cancel=cancel):
                if item.status is AICallStatus.STREAMING:
                    yield item
                else:
                    final = item
            if final is None:
                final = AIReturn.create_error("Stream ended without a result", request=request)
            metrics = metrics.combine(final.metrics)
            if final.status is not AICallStatus.CALLING_TOOLS:
                yield final.with_metrics(metrics).with_messages(*notes)
                return
            try:
                request = await self._run_tools(request, final, tool_context, cancel, notes)
            except CallCancelledError:
                yield cancelled_return(request, metrics).with_messages(*notes)
                return

        limit = ToolLoopLimitError(self.max_iterations)
        logger.warning("%s", limit)
        yield (
            AIReturn.create_error(
                str(limit), request=request, origin=Origin.RETURN, code=MessageCode.TOOL_LOOP_LIMIT
            )
            .with_metrics(replace(metrics, finish_reason="error"))
            .with_messages(*notes)
        )

