import json

import pytest

from smarthopper.calls.interactions import assistant
from smarthopper.calls.messages import Origin
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AIReturn
from smarthopper.errors import ToolError
from smarthopper.tools.base import ToolContext
from smarthopper.tools.builtin.ai_tools import (
    SCRIPT_CAPABILITY,
    TEXT_CAPABILITY,
    parse_json_reply,
    script_edit,
    script_generate,
    strip_think_tags,
    text_generate,
)
from smarthopper.tools.canvas import InMemoryCanvas


class FakeAI:
    """Records nested requests and answers with canned assistant text."""

    def __init__(self, *answers: str, fail: str = "") -> None:
        self.answers = list(answers)
        self.fail = fail
        self.requests: list[AIRequest] = []

    async def __call__(self, request: AIRequest) -> AIReturn:
        self.requests.append(request)
        if self.fail:
            return AIReturn.create_error(self.fail, request=request, origin=Origin.PROVIDER)
        return AIReturn.create_success([assistant(self.answers.pop(0))], request=request)


def _ctx(call_ai, canvas=None, **arguments) -> ToolContext:
    return ToolContext(
        arguments=arguments, provider="OpenAI", model="gpt-4o", call_ai=call_ai, canvas=canvas
    )


def test_strip_think_tags_and_parse_json_reply() -> None:
    assert strip_think_tags("<think>plan</think> Answer ") == "Answer"
    assert parse_json_reply('<THINK>x</THINK>```json\n{"a": 1}\n```') == {"a": 1}
    with pytest.raises(ToolError, match="not valid JSON"):
        parse_json_reply("sure, here it is")
    with pytest.raises(ToolError, match="JSON object"):
        parse_json_reply("[1, 2]")


@pytest.mark.asyncio
async def test_text_generate_runs_nested_call_without_tools() -> None:
    ai = FakeAI("<think>hmm</think>A haiku.")

    result = await text_generate(_ctx(ai, prompt="Write a haiku"))

    assert result["success"] is True
    assert result["result"] == "A haiku."
    request = ai.requests[0]
    assert (request.provider, request.model) == ("OpenAI", "gpt-4o")
    assert request.capability == TEXT_CAPABILITY
    assert request.body.tool_filter == "-*"
    assert request.body.interactions[1].content == "Write a haiku"


@pytest.mark.asyncio
async def test_text_generate_validates_and_propagates_failures() -> None:
    missing = await text_generate(_ctx(FakeAI(), prompt="  "))
    failed = await text_generate(_ctx(FakeAI(fail="quota exceeded"), prompt="hi"))

    assert missing["messages"][0]["message"] == "Missing required parameter: prompt"
    assert failed["success"] is False
    assert failed["messages"][0]["message"] == "quota exceeded"


@pytest.mark.asyncio
async def test_text_generate_without_ai_caller_raises() -> None:
    with pytest.raises(ToolError, match="No AI caller"):
        await text_generate(_ctx(None, prompt="hi"))


@pytest.mark.asyncio
async def test_script_generate_builds_component_document() -> None:
    reply = {
        "language": "Python",
        "script": "a = x * 2",
        "inputs": [{"name": "x", "type": "float", "description": "value"}],
        "outputs": [{"name": "a", "type": "float", "description": "double"}],
        "summary": "Doubles x.",
    }
    ai = FakeAI(f"```json\n{json.dumps(reply)}\n```")

    result = await script_generate(_ctx(ai, instructions="double the input", language="python"))

    assert result["success"] is True
    assert result["language"] == "python"
    assert result["componentName"] == "Python 3 Script"
    assert (result["inputCount"], result["outputCount"]) == (1, 1)
    component = json.loads(result["ghjson"])["components"][0]
    assert component["instanceGuid"] == result["instanceGuid"]
    assert component["script"] == "a = x * 2"
    request = ai.requests[0]
    assert request.capability == SCRIPT_CAPABILITY
    assert json.loads(request.body.json_output_schema)["required"][0] == "language"
    assert "'python'" in request.body.interactions[0].content


@pytest.mark.asyncio
async def test_script_generate_rejects_unsupported_language() -> None:
    ai = FakeAI(json.dumps({"language": "rust", "script": "fn main() {}"}))

    result = await script_generate(_ctx(ai, instructions="hello"))

    assert result["success"] is False
    assert "Unsupported language 'rust'" in result["messages"][0]["message"]


@pytest.mark.asyncio
async def test_script_edit_updates_component_on_canvas() -> None:
    canvas = InMemoryCanvas(
        {"components": [{"instanceGuid": "s1", "language": "python", "script": "a = x"}]}
    )
    ai = FakeAI(json.dumps({"script": "a = x + 1", "changesSummary": "Adds one."}))

    result = await script_edit(_ctx(ai, canvas, instanceGuid="s1", instructions="add one"))

    assert result["success"] is True
    assert result["changesSummary"] == "Adds one."
    assert canvas.document(["s1"])["components"][0]["script"] == "a = x + 1"
    assert '"script": "a = x"' in ai.requests[0].body.interactions[0].content


@pytest.mark.asyncio
async def test_script_edit_requires_existing_script_component() -> None:
    canvas = InMemoryCanvas({"components": [{"instanceGuid": "p1", "name": "Point"}]})

    not_script = await script_edit(_ctx(FakeAI(), canvas, instanceGuid="p1", instructions="x"))
    no_canvas = await script_edit(_ctx(FakeAI(), None, instanceGuid="p1", instructions="x"))
    missing = await script_edit(_ctx(FakeAI(), canvas, instructions="x"))

    assert "not found on the canvas" in not_script["messages"][0]["message"]
    assert no_canvas["success"] is False
    assert missing["success"] is False
