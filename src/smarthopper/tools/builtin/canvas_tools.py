"""Canvas tools: read, place, merge and tidy components of a GhJSON document."""

import json
from collections import defaultdict
from typing import Any

from smarthopper.tools.base import AITool, ToolContext, tool_error
from smarthopper.tools.canvas import merge_documents, parse_document
from smarthopper.tools.filtering import Filter

CATEGORY = "Components"
COLUMN_WIDTH = 200.0
ROW_HEIGHT = 100.0

_ATTR_SYNONYMS = {
    "locked": "disabled",
    "unlocked": "enabled",
    "remarks": "remark",
    "info": "remark",
    "warn": "warning",
    "warnings": "warning",
    "errors": "error",
}


def _tokens(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(str(item) for item in value)
    return ""


def _normalize_attr_filter(raw: str) -> str:
    normalized: list[str] = []
    for token in raw.replace(",", " ").split():
        sign = token[0] if token[0] in "+-" else ""
        name = token[len(sign) :].lower()
        normalized.append(sign + _ATTR_SYNONYMS.get(name, name))
    return " ".join(normalized)


def component_tags(component: dict[str, Any]) -> list[str]:
    tags = ["selected" if component.get("selected") else "unselected"]
    tags.append("disabled" if component.get("locked") else "enabled")
    for message in component.get("messages", []):
        severity = str(message.get("severity", "")).lower()
        if severity in ("error", "warning", "remark"):
            tags.append(severity)
    return tags


def _neighbours(connections: list[dict[str, Any]]) -> dict[str, set[str]]:
    graph: dict[str, set[str]] = defaultdict(set)
    for connection in connections:
        source, target = connection.get("from"), connection.get("to")
        if source and target:
            graph[source].add(target)
            graph[target].add(source)
    return graph


def _expand(guids: set[str], connections: list[dict[str, Any]], depth: int) -> set[str]:
    graph = _neighbours(connections)
    result = set(guids)
    frontier = set(guids)
    for _ in range(max(depth, 0)):
        frontier = {n for guid in frontier for n in graph.get(guid, ())} - result
        if not frontier:
            break
        result |= frontier
    return result


async def gh_get(context: ToolContext) -> dict[str, Any]:
    canvas = context.canvas
    if canvas is None:
        return tool_error("No canvas is available")
    args = context.arguments
    document = canvas.document()
    components = document["components"]

    guid_filter = args.get("guidFilter")
    if guid_filter:
        wanted = {str(guid) for guid in guid_filter}
        components = [c for c in components if c.get("instanceGuid") in wanted]

    attr_filter = Filter.parse(_normalize_attr_filter(_tokens(args.get("attrFilter"))))
    components = [c for c in components if attr_filter.allows_any(*component_tags(c))]

    category_filter = Filter.parse(_tokens(args.get("categoryFilter")))
    components = [
        c
        for c in components
        if category_filter.allows_any(str(c.get("category", "")), str(c.get("subcategory", "")))
    ]

    try:
        depth = int(args.get("connectionDepth") or 0)
    except (TypeError, ValueError):
        return tool_error("connectionDepth must be an integer")
    guids = _expand(
        {str(c.get("instanceGuid")) for c in components}, document["connections"], depth
    )
    result = canvas.document(guids)
    return {
        "success": True,
        "ghjson": json.dumps(result),
        "componentCount": len(result["components"]),
        "guids": [c.get("instanceGuid") for c in result["components"]],
    }


async def gh_put(context: ToolContext) -> dict[str, Any]:
    canvas = context.canvas
    if canvas is None:
        return tool_error("No canvas is available")
    try:
        document = parse_document(context.arguments.get("ghjson") or "")
    except ValueError as exc:
        return tool_error(str(exc))
    if not document["components"]:
        return tool_error("GhJSON document contains no components")
    edit_mode = bool(context.arguments.get("editMode", False))
    placed = canvas.add(document, replace_existing=edit_mode)
    return {
        "success": True,
        "components": placed,
        "analysis": f"Placed {len(placed)} components on the canvas.",
    }


async def gh_merge(context: ToolContext) -> dict[str, Any]:
    try:
        merged = merge_documents(
            context.arguments.get("target") or "", context.arguments.get("source") or ""
        )
    except ValueError as exc:
        return tool_error(str(exc))
    document = merged.document
    return {
        "success": True,
        "ghjson": json.dumps(document),
        "componentsAdded": merged.components_added,
        "componentsDuplicated": merged.components_duplicated,
        "connectionsAdded": merged.connections_added,
        "connectionsDuplicated": merged.connections_duplicated,
        "groupsAdded": merged.groups_added,
        "totalComponents": len(document["components"]),
        "totalConnections": len(document["connections"]),
        "totalGroups": len(document["groups"]),
    }


def layout_columns(
    components: list[dict[str, Any]], connections: list[dict[str, Any]]
) -> dict[str, int]:
    """Column index per component: longest chain of upstream connections, cycles cut."""
    guids = {str(c.get("instanceGuid")) for c in components}
    upstream: dict[str, set[str]] = defaultdict(set)
    for connection in connections:
        source, target = connection.get("from"), connection.get("to")
        if source in guids and target in guids and source != target:
            upstream[target].add(source)

    columns: dict[str, int] = {}

    def column(guid: str, visiting: frozenset[str]) -> int:
        if guid in columns:
            return columns[guid]
        parents = [p for p in upstream.get(guid, ()) if p not in visiting]
        value = 1 + max((column(p, visiting | {guid}) for p in parents), default=-1)
        columns[guid] = value
        return value

    for guid in sorted(guids):
        column(guid, frozenset())
    return columns


async def gh_tidy_up(context: ToolContext) -> dict[str, Any]:
    canvas = context.canvas
    if canvas is None:
        return tool_error("No canvas is available")
    guids = [str(guid) for guid in context.arguments.get("guids") or []]
    if not guids:
        return tool_error("Missing required 'guids' parameter.")
    document = canvas.document(guids)
    components = document["components"]
    if not components:
        return tool_error("None of the given components are on the canvas")

    positions = [c.get("position") or {} for c in components]
    start = context.arguments.get("startPoint") or {}
    origin_x = float(start.get("x", min(float(p.get("x", 0.0)) for p in positions)))
    origin_y = float(start.get("y", min(float(p.get("y", 0.0)) for p in positions)))

    columns = layout_columns(components, document["connections"])
    by_column: dict[int, list[dict[str, Any]]] = defaultdict(list)
    for component in components:
        by_column[columns[str(component.get("instanceGuid"))]].append(component)

    targets: dict[str, tuple[float, float]] = {}
    for index in sorted(by_column):
        ordered = sorted(
            by_column[index],
            key=lambda c: (
                float((c.get("position") or {}).get("y", 0.0)),
                float((c.get("position") or {}).get("x", 0.0)),
            ),
        )
        for row, component in enumerate(ordered):
            targets[str(component.get("instanceGuid"))] = (
                origin_x + index * COLUMN_WIDTH,
                origin_y + row * ROW_HEIGHT,
            )
    moved = canvas.move(targets)
    return {"success": True, "moved": moved}


def _string_list(description: str) -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def get_tools() -> list[AITool]:
    return [
        AITool(
            name="gh_get",
            description=(
                "Read the current Grasshopper file with optional filters. By default, it "
                "returns all components. Returns a GhJSON structure of the file."
            ),
            category=CATEGORY,
            handler=gh_get,
            parameters={
                "type": "object",
                "properties": {
                    "attrFilter": _string_list(
                        "Attribute tokens, '+' includes and '-' excludes: selected/unselected, "
                        "enabled/disabled, error/warning/remark."
                    ),
                    "categoryFilter": _string_list(
                        "Category or subcategory tokens, e.g. ['+Vector', '-Curve']."
                    ),
                    "guidFilter": _string_list("Optional component GUIDs to start from."),
                    "connectionDepth": {
                        "type": "integer",
                        "description": "Levels of connected components to include. Default 0.",
                    },
                },
            },
        ),
        AITool(
            name="gh_put",
            description=(
                "Add new components to the canvas from GhJSON format, including their "
                "positions and connections."
            ),
            category=CATEGORY,
            handler=gh_put,
            parameters={
                "type": "object",
                "properties": {
                    "ghjson": {"type": "string", "description": "GhJSON document string"},
                    "editMode": {
                        "type": "boolean",
                        "description": "When true, components with the same GUID are replaced.",
                    },
                },
                "required": ["ghjson"],
            },
        ),
        AITool(
            name="gh_merge",
            description=(
                "Merge two GhJSON documents into one. The target document takes priority on "
                "conflicts; connections and groups from both documents are combined."
            ),
            category=CATEGORY,
            handler=gh_merge,
            parameters={
                "type": "object",
                "properties": {
                    "target": {"type": "string", "description": "Target GhJSON document."},
                    "source": {"type": "string", "description": "Source GhJSON document."},
                },
                "required": ["target", "source"],
            },
        ),
        AITool(
            name="gh_tidy_up",
            description=(
                "Organize components into a tidy grid layout. Call `gh_get` first to get the "
                "list of GUIDs."
            ),
            category=CATEGORY,
            handler=gh_tidy_up,
            parameters={
                "type": "object",
                "properties": {
                    "guids": _string_list("Component GUIDs to include in the tidy-up."),
                    "startPoint": {
                        "type": "object",
                        "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
                        "description": "Optional top-left of the grid.",
                    },
                },
                "required": ["guids"],
            },
        ),
    ]
