"""Composition root: wires model registry, providers, tools and the tool-call loop."""

import asyncio
import logging
from dataclasses import replace
from typing import Any

import httpx

from smarthopper.calls.interactions import AIInteractionToolCall, AIInteractionToolResult
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AIReturn
from smarthopper.config import get_settings, validate_settings_for_env
from smarthopper.errors import CallCancelledError
from smarthopper.models.manager import ModelManager
from smarthopper.orchestrator.loop import ToolCallLoop
from smarthopper.orchestrator.tool_call import ToolCallExecutor
from smarthopper.providers.registry import Notifier, ProviderRegistry, TrustPrompt
from smarthopper.settings_store import SettingsStore
from smarthopper.tools.base import ToolContext
from smarthopper.tools.canvas import Canvas, InMemoryCanvas
from smarthopper.tools.manager import ToolManager

logger = logging.getLogger(__name__)


class SmartHopperCore:
    """Everything a host needs to run AI calls and tools against one canvas.

    ``start`` discovers builtin tools, builtin and entry-point providers and
    plugin files, then waits for provider initialization. All services are
    also usable individually through the attributes set here.
    """

    def __init__(
        self,
        *,
        canvas: Canvas | None = None,
        settings_store: SettingsStore | None = None,
        trust_prompt: TrustPrompt | None = None,
        notifier: Notifier | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        max_iterations: int | None = None,
    ) -> None:
        settings = get_settings()
        self.canvas: Canvas = canvas or InMemoryCanvas()
        self.model_manager = ModelManager()
        self.settings_store = settings_store or SettingsStore(settings.settings_path)
        self.tools = ToolManager()
        self.providers = ProviderRegistry(
            self.model_manager,
            self.settings_store,
            trust_prompt=trust_prompt,
            notifier=notifier,
            http_transport=http_transport,
            tool_manager=self.tools,
        )
        self.executor = ToolCallExecutor(self.tools, model_manager=self.model_manager)
        self.loop = ToolCallLoop(
            self.providers, self.tools, max_iterations=max_iterations, executor=self.executor
        )
        self._started = False

    async def start(self, *, load_plugins: bool = True) -> None:
        if self._started:
            return
        validate_settings_for_env(get_settings())
        self.tools.discover()
        self.providers.register_builtin()
        self.providers.discover_entry_points()
        if load_plugins:
            await self.providers.discover()
        await self.providers.wait_initialized()
        self._started = True
        logger.info(
            "SmartHopper core started with %d providers and %d tools",
            len(self.providers.get_providers()),
            len(self.tools.tools()),
        )

    async def aclose(self) -> None:
        await self.providers.wait_initialized()
        self._started = False

    async def __aenter__(self) -> "SmartHopperCore":
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    def _context(
        self, provider: str = "Default", model: str = "", context: ToolContext | None = None
    ) -> ToolContext:
        context = context or ToolContext()
        return replace(
            context,
            provider=context.provider if context.provider != "Default" else provider,
            model=context.model or model,
            call_ai=context.call_ai or self.call_ai,
            canvas=context.canvas or self.canvas,
        )

    async def call_ai(
        self,
        request: AIRequest,
        *,
        cancel: asyncio.Event | None = None,
        context: ToolContext | None = None,
    ) -> AIReturn:
        """Run ``request`` through the tool-call loop until a final answer."""
        context = self._context(request.provider, request.model, context)
        return await self.loop.run(request, cancel=cancel, context=context)

    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        context: ToolContext | None = None,
    ) -> dict[str, Any]:
        return await self.tools.execute_tool(name, arguments, self._context(context=context))

    async def call_ai_tool(
        self,
        tool_name: str,
        parameters: dict[str, Any] | None = None,
        *,
        provider: str = "Default",
        model: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Invoke one tool on behalf of a host component and return its JSON payload.

        Failed tools come back as ``{"success": False, "error": ..., "messages": [...]}``
        with the tool's own messages preserved.
        """
        tool_call = AIInteractionToolCall(name=tool_name, arguments=dict(parameters or {}))
        resolved = self.providers.get_provider(provider)
        context = self._context(resolved.name if resolved else provider, model or "")
        try:
            result = await self.executor.execute(tool_call, context=context, cancel=cancel)
        except CallCancelledError:
            return {"success": False, "error": "Call cancelled", "messages": []}
        last = result.body.last()
        if result.success and isinstance(last, AIInteractionToolResult):
            return last.result
        payload = last.result if isinstance(last, AIInteractionToolResult) else {}
        messages = payload.get("messages")
        if not isinstance(messages, list):
            messages = [message.to_dict() for message in result.all_messages]
        return {"success": False, "error": result.error_message, "messages": messages}
