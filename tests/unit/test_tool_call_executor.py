import asyncio

import pytest

from smarthopper.calls.interactions import AIInteractionToolCall
from smarthopper.calls.messages import MessageCode
from smarthopper.calls.result import AICallStatus
from smarthopper.errors import CallCancelledError
from smarthopper.models.capability import AICapability
from smarthopper.models.manager import ModelManager
from smarthopper.orchestrator.tool_call import TIMEOUT_MESSAGE, ToolCallExecutor
from smarthopper.tools.base import AITool, ToolContext
from smarthopper.tools.manager import ToolManager


async def _ok(context: ToolContext) -> dict:
    return {"success": True, "seen": context.tool_call_id}


async def _slow(context: ToolContext) -> dict:
    await asyncio.sleep(3600)
    return {"success": True}


async def _quiet_failure(context: ToolContext) -> dict:
    return {"success": False}


def _executor(timeout: float | None = None) -> ToolCallExecutor:
    tools = ToolManager()
    for name, handler in (("ok", _ok), ("slow", _slow), ("quiet", _quiet_failure)):
        tools.register(AITool(name=name, description=name, category="Test", handler=handler))
    return ToolCallExecutor(tools, timeout=timeout)


def _call(name: str) -> AIInteractionToolCall:
    return AIInteractionToolCall(name=name, arguments={}, id=f"call_{name}")


@pytest.mark.asyncio
async def test_successful_tool_call_wraps_result() -> None:
    result = await _executor().execute(_call("ok"))

    assert result.success
    assert result.status is AICallStatus.COMPLETED
    tool_result = result.last_tool_result
    assert tool_result.id == "call_ok"
    assert tool_result.result == {"success": True, "seen": "call_ok"}


@pytest.mark.asyncio
async def test_timeout_becomes_failed_tool_result() -> None:
    result = await _executor(timeout=0.05).execute(_call("slow"))

    assert not result.success
    assert result.status is AICallStatus.ERROR
    assert result.error_message == TIMEOUT_MESSAGE
    assert result.last_tool_result.result["success"] is False


@pytest.mark.asyncio
async def test_unknown_tool_message_is_lifted_to_return() -> None:
    result = await _executor().execute(_call("missing"))

    assert not result.success
    assert result.error_message == "Tool 'missing' not found"


@pytest.mark.asyncio
async def test_failure_without_messages_gets_generic_error() -> None:
    result = await _executor().execute(_call("quiet"))

    assert not result.success
    assert result.all_messages[0].code is MessageCode.TOOL_VALIDATION_ERROR
    assert "reported failure" in result.error_message


@pytest.mark.asyncio
async def test_cancellation_propagates() -> None:
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    with pytest.raises(CallCancelledError):
        await _executor(timeout=30).execute(_call("slow"), cancel=cancel)


def _capability_executor() -> ToolCallExecutor:
    manager = ModelManager()
    capable = AICapability.TOOL_CHAT | AICapability.JSON_OUTPUT
    manager.register_capabilities("OpenAI", "gpt-4o", capable)
    manager.register_capabilities("OpenAI", "dall-e-3", AICapability.TEXT2IMAGE)
    tools = ToolManager()
    tools.register(
        AITool(
            name="json_tool",
            description="needs json",
            category="Test",
            handler=_ok,
            required_capabilities=AICapability.TEXT2JSON,
        )
    )
    return ToolCallExecutor(tools, model_manager=manager)


@pytest.mark.asyncio
async def test_tool_requirements_checked_against_selected_model() -> None:
    executor = _capability_executor()

    capable = await executor.execute(
        _call("json_tool"), context=ToolContext(provider="OpenAI", model="gpt-4o")
    )
    incapable = await executor.execute(
        _call("json_tool"), context=ToolContext(provider="OpenAI", model="dall-e-3")
    )
    unresolved = await executor.execute(_call("json_tool"), context=ToolContext(model="dall-e-3"))

    assert capable.success
    assert not incapable.success
    assert "does not support required capabilities" in incapable.error_message
    assert incapable.last_tool_result.result["messages"][0]["origin"] == "Validation"
    assert unresolved.success
