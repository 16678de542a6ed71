"""AI-backed tools: free text generation and script component generation/editing."""

import json
import re
import uuid
from typing import Any

from smarthopper.calls.interactions import AIBody, system, user
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AIReturn
from smarthopper.errors import ToolError
from smarthopper.models.capability import AICapability
from smarthopper.tools.base import AITool, ToolContext, messages_payload, tool_error

_THINK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

TEXT_CAPABILITY = AICapability.TEXT_INPUT | AICapability.TEXT_OUTPUT
SCRIPT_CAPABILITY = AICapability.TEXT_INPUT | AICapability.TEXT_OUTPUT | AICapability.JSON_OUTPUT

DEFAULT_TEXT_PROMPT = (
    "You are a helpful AI assistant. Generate clear, relevant, and well-structured text "
    "based on the user's prompt. Provide thoughtful and accurate responses that directly "
    "address what the user is asking for."
)

SCRIPT_LANGUAGES = {
    "python": "Python 3 Script",
    "ironpython": "IronPython 2 Script",
    "c#": "C# Script",
    "vb": "VB Script",
}

SCRIPT_SYSTEM_PROMPT = (
    "You are a Grasshopper script component generator. Generate a complete script for a "
    "Grasshopper script component based on the user instructions.\n\n"
    'You MUST choose the scripting language and return it in the "language" field. '
    'The language MUST be one of: "python", "ironpython", "c#", "vb". '
    'Use "python" unless the user explicitly requests another language.\n\n'
    "Respond with a JSON object holding language, script, inputs (name, type, description, "
    "access), outputs (name, type, description), an optional nickname and a short summary. "
    "The JSON object is parsed programmatically, so it must be valid JSON with no extra text."
)

SCRIPT_EDIT_PROMPT = (
    "You are a Grasshopper script editor. Apply the user's instructions to the script below "
    "and respond with a JSON object holding the full updated script, inputs, outputs and a "
    "short changesSummary. Keep parameter names stable unless the instructions ask otherwise."
)

_PARAM_ITEMS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "type": {"type": "string"},
        "description": {"type": "string"},
        "access": {"type": "string", "enum": ["item", "list", "tree"]},
    },
    "required": ["name", "type", "description"],
}

SCRIPT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "language": {"type": "string", "enum": list(SCRIPT_LANGUAGES)},
        "script": {"type": "string"},
        "inputs": {"type": "array", "items": _PARAM_ITEMS},
        "outputs": {"type": "array", "items": _PARAM_ITEMS},
        "nickname": {"type": "string"},
        "summary": {"type": "string"},
    },
    "required": ["language", "script", "inputs", "outputs", "summary"],
}

SCRIPT_EDIT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "script": {"type": "string"},
        "inputs": {"type": "array", "items": _PARAM_ITEMS},
        "outputs": {"type": "array", "items": _PARAM_ITEMS},
        "changesSummary": {"type": "string"},
    },
    "required": ["script", "changesSummary"],
}


def strip_think_tags(text: str) -> str:
    return _THINK.sub("", text or "").strip()


def parse_json_reply(text: str) -> dict[str, Any]:
    cleaned = strip_think_tags(text)
    fenced = _FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ToolError(f"AI response is not valid JSON: {exc.msg}") from exc
    if not isinstance(decoded, dict):
        raise ToolError("AI response must be a JSON object")
    return decoded


async def _ask(
    context: ToolContext,
    body: AIBody,
    capability: AICapability,
) -> AIReturn:
    if context.call_ai is None:
        raise ToolError("No AI caller is available in this tool context")
    request = AIRequest(
        provider=context.provider or "Default",
        model=context.model,
        capability=capability,
        body=body,
    )
    return await context.call_ai(request)


def _reply_text(result: AIReturn) -> str:
    last = result.body.last_text()
    return last.content if last is not None else ""


async def text_generate(context: ToolContext) -> dict[str, Any]:
    prompt = str(context.arguments.get("prompt") or "")
    if not prompt.strip():
        return tool_error("Missing required parameter: prompt")
    instructions = str(context.arguments.get("instructions") or "") or DEFAULT_TEXT_PROMPT
    body = AIBody.of([system(instructions), user(prompt)], tool_filter="-*")
    result = await _ask(context, body, TEXT_CAPABILITY)
    if not result.success:
        return messages_payload(result.all_messages)
    return {
        "success": True,
        "result": strip_think_tags(_reply_text(result)),
        "metrics": result.metrics.to_dict(),
    }


async def script_generate(context: ToolContext) -> dict[str, Any]:
    instructions = str(context.arguments.get("instructions") or "")
    if not instructions.strip():
        return tool_error("Missing required 'instructions' parameter.")
    prompt = SCRIPT_SYSTEM_PROMPT
    preferred = str(context.arguments.get("language") or "")
    if preferred:
        prompt += f"\n\nThe user prefers the '{preferred}' scripting language."

    body = AIBody.of(
        [system(prompt), user(instructions)],
        tool_filter="-*",
        json_output_schema=json.dumps(SCRIPT_SCHEMA),
    )
    result = await _ask(context, body, SCRIPT_CAPABILITY)
    if not result.success:
        return messages_payload(result.all_messages)

    reply = parse_json_reply(_reply_text(result))
    language = str(reply.get("language") or "python").lower()
    if language not in SCRIPT_LANGUAGES:
        supported = ", ".join(SCRIPT_LANGUAGES)
        return tool_error(f"Unsupported language '{language}'. Supported: {supported}")

    inputs = reply.get("inputs") if isinstance(reply.get("inputs"), list) else []
    outputs = reply.get("outputs") if isinstance(reply.get("outputs"), list) else []
    component = {
        "instanceGuid": str(uuid.uuid4()),
        "name": SCRIPT_LANGUAGES[language],
        "nickname": reply.get("nickname") or "AI Script",
        "category": "Maths",
        "language": language,
        "script": str(reply.get("script") or ""),
        "inputs": inputs,
        "outputs": outputs,
        "position": {"x": 0.0, "y": 0.0},
    }
    document = {"components": [component], "connections": [], "groups": []}
    return {
        "success": True,
        "ghjson": json.dumps(document),
        "language": language,
        "componentName": component["name"],
        "instanceGuid": component["instanceGuid"],
        "inputCount": len(inputs),
        "outputCount": len(outputs),
        "summary": str(reply.get("summary") or ""),
        "message": "Script component GhJSON generated successfully. "
        "Use gh_put to place it on the canvas.",
    }


async def script_edit(context: ToolContext) -> dict[str, Any]:
    guid = str(context.arguments.get("instanceGuid") or "")
    instructions = str(context.arguments.get("instructions") or "")
    if not guid or not instructions.strip():
        return tool_error("Missing required 'instanceGuid' or 'instructions' parameter.")
    if context.canvas is None:
        return tool_error("No canvas is available to edit scripts on")

    components = context.canvas.document([guid])["components"]
    if not components or "script" not in components[0]:
        return tool_error(f"Script component '{guid}' not found on the canvas")
    current = components[0]

    snapshot = {
        "language": current.get("language", "python"),
        "script": current.get("script", ""),
        "inputs": current.get("inputs", []),
        "outputs": current.get("outputs", []),
    }
    body = AIBody.of(
        [
            system(f"{SCRIPT_EDIT_PROMPT}\n\nCurrent component:\n{json.dumps(snapshot)}"),
            user(instructions),
        ],
        tool_filter="-*",
        json_output_schema=json.dumps(SCRIPT_EDIT_SCHEMA),
    )
    result = await _ask(context, body, SCRIPT_CAPABILITY)
    if not result.success:
        return messages_payload(result.all_messages)

    reply = parse_json_reply(_reply_text(result))
    changes: dict[str, Any] = {"script": str(reply.get("script") or "")}
    for key in ("inputs", "outputs"):
        if isinstance(reply.get(key), list):
            changes[key] = reply[key]
    context.canvas.update(guid, changes)
    return {
        "success": True,
        "instanceGuid": guid,
        "changesSummary": str(reply.get("changesSummary") or ""),
        "message": "Script component updated.",
    }


def get_tools() -> list[AITool]:
    return [
        AITool(
            name="text_generate",
            description="Generates text based on a prompt and optional instructions",
            category="DataProcessing",
            handler=text_generate,
            parameters={
                "type": "object",
                "properties": {
                    "prompt": {"type": "string", "description": "The prompt to generate text from"},
                    "instructions": {
                        "type": "string",
                        "description": "Optional instructions for the AI (system prompt)",
                    },
                },
                "required": ["prompt"],
            },
            required_capabilities=TEXT_CAPABILITY,
        ),
        AITool(
            name="script_generate",
            description=(
                "Generate a new Grasshopper script component from natural language "
                "instructions. Returns GhJSON representing the script component (does not "
                "place it on canvas)."
            ),
            category="Scripting",
            handler=script_generate,
            parameters={
                "type": "object",
                "properties": {
                    "instructions": {
                        "type": "string",
                        "description": "What the script should do.",
                    },
                    "language": {
                        "type": "string",
                        "description": "Optional preferred scripting language.",
                        "enum": list(SCRIPT_LANGUAGES),
                    },
                },
                "required": ["instructions"],
            },
            required_capabilities=SCRIPT_CAPABILITY,
        ),
        AITool(
            name="script_edit",
            description=(
                "Edit an existing script component on the canvas following natural language "
                "instructions. Call gh_get first to find the component GUID."
            ),
            category="Scripting",
            handler=script_edit,
            parameters={
                "type": "object",
                "properties": {
                    "instanceGuid": {
                        "type": "string",
                        "description": "GUID of the script component to edit.",
                    },
                    "instructions": {
                        "type": "string",
                        "description": "How the script should change.",
                    },
                },
                "required": ["instanceGuid", "instructions"],
            },
            required_capabilities=SCRIPT_CAPABILITY,
        ),
    ]
