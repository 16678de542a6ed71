"""Tool registration, filtering and failure-safe dispatch."""

import importlib
import logging
import pkgutil
import threading
from collections.abc import Callable, Iterable
from dataclasses import replace
from types import ModuleType
from typing import Any

from smarthopper.errors import ToolError
from smarthopper.tools.base import AITool, ToolContext, tool_error
from smarthopper.tools.filtering import Filter

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "smarthopper.tools"
BUILTIN_PACKAGE = "smarthopper.tools.builtin"


def _tools_from(target: ModuleType | Callable[[], Iterable[AITool]]) -> list[AITool]:
    get_tools = getattr(target, "get_tools", None) if isinstance(target, ModuleType) else target
    if not callable(get_tools):
        return []
    return [tool for tool in get_tools() if isinstance(tool, AITool)]


class ToolManager:
    def __init__(self) -> None:
        self._tools: dict[str, AITool] = {}
        self._lock = threading.Lock()
        self._discovered = False

    def register(self, tool: AITool) -> None:
        with self._lock:
            if tool.name in self._tools:
                raise ToolError(f"Tool '{tool.name}' is already registered")
            self._tools[tool.name] = tool

    def get(self, name: str) -> AITool | None:
        return self._tools.get(name)

    def tools(self, tool_filter: str | None = "*") -> list[AITool]:
        """Tools whose category or name passes ``tool_filter``."""
        parsed = Filter.parse(tool_filter)
        return [
            tool for tool in self._tools.values() if parsed.allows_any(tool.category, tool.name)
        ]

    def schemas(self, tool_filter: str | None = "*") -> list[dict[str, Any]]:
        return [tool.schema() for tool in self.tools(tool_filter)]

    def discover(self) -> int:
        """Register builtin tool modules and ``smarthopper.tools`` entry points, once."""
        with self._lock:
            if self._discovered:
                return 0
            self._discovered = True

        found: list[AITool] = []
        package = importlib.import_module(BUILTIN_PACKAGE)
        for _importer, modname, _ispkg in pkgutil.iter_modules(package.__path__):
            try:
                found.extend(_tools_from(importlib.import_module(f"{BUILTIN_PACKAGE}.{modname}")))
            except Exception:
                logger.warning("Failed to load builtin tool module: %s", modname, exc_info=True)

        from importlib.metadata import entry_points

        for ep in entry_points().select(group=ENTRY_POINT_GROUP):
            try:
                found.extend(_tools_from(ep.load()))
            except Exception:
                logger.warning("Failed to load tool entry point: %s", ep.name, exc_info=True)

        registered = 0
        for tool in found:
            try:
                self.register(tool)
            except ToolError:
                logger.warning("Skipping duplicate tool %s", tool.name)
                continue
            registered += 1
        logger.info("Registered %d tools", registered)
        return registered

    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        context: ToolContext | None = None,
    ) -> dict[str, Any]:
        """Run a tool by name; failures come back as a ``messages`` payload, never raised."""
        tool = self.get(name)
        if tool is None:
            return tool_error(f"Tool '{name}' not found")

        arguments = dict(arguments or {})
        context = replace(context, arguments=arguments) if context else ToolContext(arguments)
        try:
            result = await tool.handler(context)
        except Exception as exc:
            logger.warning("Tool %s failed", name, exc_info=True)
            return tool_error(f"Error executing tool '{name}': {exc}")
        if not isinstance(result, dict):
            return {"success": True, "result": result}
        return result
