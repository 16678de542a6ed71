import pytest

from smarthopper.errors import ToolError
from smarthopper.tools.base import AITool, ToolContext
from smarthopper.tools.manager import ToolManager


async def _echo(context: ToolContext) -> dict:
    return {"success": True, "echo": context.arguments, "provider": context.provider}


async def _explode(context: ToolContext) -> dict:
    raise RuntimeError("kaboom")


async def _plain(context: ToolContext):
    return 42


def _tool(name: str, handler=_echo, category: str = "Components") -> AITool:
    return AITool(name=name, description=f"{name} tool", category=category, handler=handler)


def test_register_rejects_duplicate_names() -> None:
    manager = ToolManager()
    manager.register(_tool("gh_get"))

    with pytest.raises(ToolError, match="already registered"):
        manager.register(_tool("gh_get"))


def test_filter_matches_category_or_name() -> None:
    manager = ToolManager()
    manager.register(_tool("gh_get"))
    manager.register(_tool("gh_put"))
    manager.register(_tool("script_generate", category="Scripting"))

    assert [t.name for t in manager.tools("Scripting")] == ["script_generate"]
    assert [t.name for t in manager.tools("gh_put")] == ["gh_put"]
    assert [t.name for t in manager.tools("Components,-gh_put")] == ["gh_get"]
    assert manager.tools("-*") == []
    assert len(manager.schemas()) == 3
    assert manager.schemas("Scripting")[0]["parameters"] == {"type": "object", "properties": {}}


@pytest.mark.asyncio
async def test_execute_tool_passes_arguments_in_context() -> None:
    manager = ToolManager()
    manager.register(_tool("echo"))

    result = await manager.execute_tool("echo", {"x": 1}, ToolContext(provider="OpenAI"))

    assert result == {"success": True, "echo": {"x": 1}, "provider": "OpenAI"}


@pytest.mark.asyncio
async def test_execute_unknown_tool_returns_failure_payload() -> None:
    result = await ToolManager().execute_tool("nope", {})

    assert result["success"] is False
    assert result["messages"][0]["message"] == "Tool 'nope' not found"
    assert result["messages"][0]["severity"] == "Error"


@pytest.mark.asyncio
async def test_handler_exception_becomes_failure_payload() -> None:
    manager = ToolManager()
    manager.register(_tool("boom", handler=_explode))

    result = await manager.execute_tool("boom", None)

    assert result["success"] is False
    assert result["messages"][0]["message"] == "Error executing tool 'boom': kaboom"


@pytest.mark.asyncio
async def test_non_dict_result_is_wrapped() -> None:
    manager = ToolManager()
    manager.register(_tool("plain", handler=_plain))

    assert await manager.execute_tool("plain", {}) == {"success": True, "result": 42}


def test_discover_registers_builtin_tools_once() -> None:
    manager = ToolManager()

    first = manager.discover()
    second = manager.discover()

    names = {tool.name for tool in manager.tools()}
    assert first >= 7
    assert second == 0
    assert {"gh_get", "gh_put", "gh_merge", "gh_tidy_up"} <= names
    assert {"text_generate", "script_generate", "script_edit"} <= names
    assert manager.get("gh_get").category == "Components"
