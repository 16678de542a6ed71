import asyncio
import json

import pytest
import structlog

from smarthopper.calls.interactions import AIBody, user
from smarthopper.calls.messages import MessageCode, Severity
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AICallStatus
from smarthopper.orchestrator.loop import ToolCallLoop
from smarthopper.providers.registry import ProviderRegistry
from smarthopper.tools.base import AITool, ToolContext
from smarthopper.tools.canvas import InMemoryCanvas
from smarthopper.tools.manager import ToolManager

SCRIPT_REPLY = json.dumps(
    {
        "language": "python",
        "script": "a = x",
        "inputs": [{"name": "x", "type": "float", "description": "in"}],
        "outputs": [{"name": "a", "type": "float", "description": "out"}],
        "summary": "Pass-through.",
    }
)


@pytest.fixture
def canvas() -> InMemoryCanvas:
    return InMemoryCanvas(
        {
            "components": [
                {"instanceGuid": "a", "name": "Number Slider", "category": "Params"},
                {"instanceGuid": "b", "name": "Addition", "category": "Maths"},
            ],
            "connections": [{"from": "a", "fromParam": "N", "to": "b", "toParam": "A"}],
        }
    )


@pytest.fixture
def make_loop(scripted_provider):
    async def _make(*replies, max_iterations: int = 5):
        tools = ToolManager()
        tools.discover()
        registry = ProviderRegistry(tool_manager=tools)
        provider = await scripted_provider(*replies)
        registry.register_provider(provider)
        await registry.wait_initialized()
        return ToolCallLoop(registry, tools, max_iterations=max_iterations), provider

    return _make


def _request(text: str, tool_filter: str = "Components", provider: str = "Mock") -> AIRequest:
    return AIRequest(provider=provider, body=AIBody.of([user(text)], tool_filter=tool_filter))


@pytest.mark.asyncio
async def test_answer_without_tool_calls_calls_provider_once(make_loop, replies) -> None:
    loop, provider = await make_loop(replies.text("Nothing to do."))

    result = await loop.run(_request("Hello"))

    assert result.success
    assert result.status is AICallStatus.COMPLETED
    assert len(provider.http_requests) == 1
    assert provider.sent[0]["tools"] == ["gh_get", "gh_put", "gh_merge", "gh_tidy_up"]


@pytest.mark.asyncio
async def test_tool_result_is_fed_back_to_provider(make_loop, replies, canvas) -> None:
    loop, provider = await make_loop(
        replies.tool("gh_get", {"connectionDepth": 0}),
        replies.text("Two components are on the canvas."),
    )

    result = await loop.run(_request("What is on the canvas?"), context=ToolContext(canvas=canvas))

    assert result.success
    assert result.body.last_text().content == "Two components are on the canvas."
    assert len(provider.http_requests) == 2
    follow_up = provider.sent[1]["messages"]
    assert [m["kind"] for m in follow_up] == ["text", "tool_call", "tool_result"]
    tool_payload = follow_up[2]["result"]
    assert tool_payload["success"] is True
    assert tool_payload["componentCount"] == 2
    assert result.metrics.input_tokens == 20
    assert result.metrics.output_tokens == 10
    assert result.metrics.provider == "Mock"


@pytest.mark.asyncio
async def test_failed_tool_is_reported_and_loop_continues(make_loop, replies) -> None:
    loop, provider = await make_loop(replies.tool("gh_nope", {}), replies.text("Sorry."))

    result = await loop.run(_request("Try it"))

    assert result.success
    follow_up = provider.sent[1]["messages"]
    assert follow_up[2]["result"]["success"] is False
    warnings = [m for m in result.all_messages if m.severity is Severity.WARNING]
    assert warnings[0].message == "Tool 'gh_nope' failed: Tool 'gh_nope' not found"


@pytest.mark.asyncio
async def test_loop_stops_at_iteration_limit(make_loop, replies) -> None:
    loop, provider = await make_loop(
        replies.tool("gh_get", {}, "call_1"),
        replies.tool("gh_get", {}, "call_2"),
        replies.tool("gh_get", {}, "call_3"),
        max_iterations=2,
    )

    result = await loop.run(_request("Loop forever"))

    assert not result.success
    assert result.finish_reason == "error"
    assert result.all_messages[0].code is MessageCode.TOOL_LOOP_LIMIT
    assert "2 iterations" in result.error_message
    assert len(provider.http_requests) == 2


@pytest.mark.asyncio
async def test_unknown_provider_fails_without_calls(make_loop, replies) -> None:
    loop, provider = await make_loop(replies.text("unused"))

    result = await loop.run(_request("Hi", provider="Ghost"))

    assert not result.success
    assert result.error_message == "Provider 'Ghost' is not available"
    assert result.all_messages[0].code is MessageCode.UNKNOWN_PROVIDER
    assert provider.http_requests == []


@pytest.mark.asyncio
async def test_default_provider_is_resolved(make_loop, replies) -> None:
    loop, _provider = await make_loop(replies.text("Hi there"))

    result = await loop.run(_request("Hi", provider="Default"))

    assert result.success
    assert result.metrics.provider == "Mock"


@pytest.mark.asyncio
async def test_cancelled_before_start(make_loop, replies) -> None:
    loop, provider = await make_loop(replies.text("unused"))
    cancel = asyncio.Event()
    cancel.set()

    result = await loop.run(_request("Hi"), cancel=cancel)

    assert result.finish_reason == "cancelled"
    assert result.all_messages[0].code is MessageCode.CANCELLED
    assert provider.http_requests == []


@pytest.mark.asyncio
async def test_ai_tool_runs_nested_call_through_loop(make_loop, replies) -> None:
    loop, provider = await make_loop(
        replies.tool("script_generate", {"instructions": "pass x through"}),
        replies.text(SCRIPT_REPLY),
        replies.text("Generated the script."),
    )

    result = await loop.run(_request("Make a script", tool_filter="Scripting"))

    assert result.success
    assert result.body.last_text().content == "Generated the script."
    assert len(provider.http_requests) == 3
    nested = provider.sent[1]
    assert nested["tools"] == []
    assert nested["schema"]
    tool_payload = provider.sent[2]["messages"][2]["result"]
    assert tool_payload["success"] is True
    assert tool_payload["componentName"] == "Python 3 Script"


@pytest.mark.asyncio
async def test_stream_yields_final_result_after_tools(make_loop, replies, canvas) -> None:
    loop, provider = await make_loop(replies.tool("gh_get", {}), replies.text("Done."))

    items = [
        item
        async for item in loop.stream(_request("Look"), context=ToolContext(canvas=canvas))
    ]

    assert len(items) == 1
    assert items[0].body.last_text().content == "Done."
    assert len(provider.http_requests) == 2


@pytest.mark.asyncio
async def test_cancelled_between_tool_turns_keeps_usage(make_loop, replies) -> None:
    loop, provider = await make_loop(replies.tool("stop_here", {}), replies.text("unused"))
    cancel = asyncio.Event()

    async def stop_here(context: ToolContext) -> dict:
        cancel.set()
        return {"success": True}

    loop.tools.register(
        AITool(name="stop_here", description="stop_here", category="Test", handler=stop_here)
    )

    result = await loop.run(_request("Go", tool_filter="Test"), cancel=cancel)

    assert not result.success
    assert result.finish_reason == "cancelled"
    assert result.all_messages[0].code is MessageCode.CANCELLED
    assert result.metrics.input_tokens == 10
    assert result.metrics.provider == "Mock"
    assert len(provider.http_requests) == 1


@pytest.mark.asyncio
async def test_nested_run_restores_outer_log_context(make_loop, replies) -> None:
    loop, _provider = await make_loop(
        replies.tool("ask_again", {}), replies.text("inner"), replies.text("outer")
    )
    seen: list[dict] = []

    async def ask_again(context: ToolContext) -> dict:
        inner = AIRequest(
            provider=context.provider,
            model="mock-model",
            body=AIBody.of([user("again")], tool_filter="-*"),
        )
        await context.call_ai(inner)
        seen.append(structlog.contextvars.get_contextvars())
        return {"success": True}

    loop.tools.register(
        AITool(name="ask_again", description="ask_again", category="Test", handler=ask_again)
    )

    result = await loop.run(_request("Go", tool_filter="Test"))

    assert result.success
    assert seen[0]["provider"] == "Mock"
    assert seen[0]["model"] == "default"
    assert "model" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_stream_iteration_limit_keeps_tool_warnings(make_loop, replies) -> None:
    loop, _provider = await make_loop(
        replies.tool("gh_nope", {}, "call_1"),
        replies.tool("gh_nope", {}, "call_2"),
        max_iterations=2,
    )

    items = [item async for item in loop.stream(_request("Loop"))]

    final = items[-1]
    assert final.all_messages[0].code is MessageCode.TOOL_LOOP_LIMIT
    warnings = [m for m in final.all_messages if m.severity is Severity.WARNING]
    assert warnings[0].message == "Tool 'gh_nope' failed: Tool 'gh_nope' not found"
