"""Canvas collaborator used by the canvas tools, plus document helpers.

Documents are plain dicts in a compact GhJSON shape::

    {
        "components": [{"instanceGuid", "name", "nickname", "category",
                        "position": {"x", "y"}, "selected", "locked",
                        "messages": [{"severity", "message"}], ...}],
        "connections": [{"from", "fromParam", "to", "toParam"}],
        "groups": [{"name", "members": [guid, ...]}],
    }
"""

import copy
import json
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Canvas(Protocol):
    def document(self, guids: Iterable[str] | None = None) -> dict[str, Any]: ...

    def add(self, document: dict[str, Any], *, replace_existing: bool = False) -> list[str]: ...

    def move(self, positions: dict[str, tuple[float, float]]) -> list[str]: ...

    def update(self, guid: str, changes: dict[str, Any]) -> bool: ...


def empty_document() -> dict[str, Any]:
    return {"components": [], "connections": [], "groups": []}


def parse_document(raw: str | dict[str, Any]) -> dict[str, Any]:
    """Decode a document and fill missing sections; malformed input raises ``ValueError``."""
    if isinstance(raw, str):
        if not raw.strip():
            raise ValueError("GhJSON document is empty")
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"GhJSON document is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ValueError("GhJSON document must be an object")
    components = raw.get("components", [])
    if not isinstance(components, list) or not all(isinstance(c, dict) for c in components):
        raise ValueError("GhJSON 'components' must be a list of objects")
    document = empty_document()
    document.update(copy.deepcopy(raw))
    return document


def connection_key(connection: dict[str, Any]) -> tuple[str, str, str, str]:
    return (
        str(connection.get("from", "")),
        str(connection.get("fromParam", "")),
        str(connection.get("to", "")),
        str(connection.get("toParam", "")),
    )


@dataclass(slots=True)
class MergeResult:
    document: dict[str, Any]
    components_added: int = 0
    components_duplicated: int = 0
    connections_added: int = 0
    connections_duplicated: int = 0
    groups_added: int = 0


def merge_documents(
    target: str | dict[str, Any], source: str | dict[str, Any]
) -> MergeResult:
    """Merge ``source`` into a copy of ``target``; target wins on duplicate GUIDs."""
    merged = parse_document(target)
    source = parse_document(source)
    result = MergeResult(document=merged)
    known = {component.get("instanceGuid") for component in merged["components"]}
    for component in source["components"]:
        if component.get("instanceGuid") in known:
            result.components_duplicated += 1
            continue
        merged["components"].append(component)
        known.add(component.get("instanceGuid"))
        result.components_added += 1

    seen = {connection_key(connection) for connection in merged["connections"]}
    for connection in source["connections"]:
        key = connection_key(connection)
        if key in seen:
            result.connections_duplicated += 1
            continue
        merged["connections"].append(copy.deepcopy(connection))
        seen.add(key)
        result.connections_added += 1

    group_names = {group.get("name") for group in merged["groups"]}
    for group in source["groups"]:
        if group.get("name") in group_names:
            continue
        merged["groups"].append(copy.deepcopy(group))
        group_names.add(group.get("name"))
        result.groups_added += 1
    return result


class InMemoryCanvas:
    """Canvas held in memory, used headless and in tests."""

    def __init__(self, document: dict[str, Any] | None = None) -> None:
        self._lock = threading.Lock()
        self._doc = parse_document(document) if document is not None else empty_document()

    def document(self, guids: Iterable[str] | None = None) -> dict[str, Any]:
        with self._lock:
            doc = copy.deepcopy(self._doc)
        if guids is None:
            return doc
        wanted = set(guids)
        doc["components"] = [c for c in doc["components"] if c.get("instanceGuid") in wanted]
        doc["connections"] = [
            c for c in doc["connections"] if c.get("from") in wanted and c.get("to") in wanted
        ]
        return doc

    def add(self, document: dict[str, Any], *, replace_existing: bool = False) -> list[str]:
        """Place components; GUID clashes get fresh GUIDs unless ``replace_existing``."""
        incoming = parse_document(document)
        remap: dict[str, str] = {}
        placed: list[str] = []
        with self._lock:
            existing = {c.get("instanceGuid"): i for i, c in enumerate(self._doc["components"])}
            for component in incoming["components"]:
                guid = str(component.get("instanceGuid") or "")
                if guid and guid in existing and replace_existing:
                    self._doc["components"][existing[guid]] = component
                    placed.append(guid)
                    continue
                if not guid or guid in existing:
                    fresh = str(uuid.uuid4())
                    if guid:
                        remap[guid] = fresh
                    component["instanceGuid"] = fresh
                    guid = fresh
                component.setdefault("position", {"x": 0.0, "y": 0.0})
                self._doc["components"].append(component)
                existing[guid] = len(self._doc["components"]) - 1
                placed.append(guid)

            seen = {connection_key(c) for c in self._doc["connections"]}
            for connection in incoming["connections"]:
                connection["from"] = remap.get(connection.get("from"), connection.get("from"))
                connection["to"] = remap.get(connection.get("to"), connection.get("to"))
                if connection_key(connection) not in seen:
                    self._doc["connections"].append(connection)
                    seen.add(connection_key(connection))
        return placed

    def move(self, positions: dict[str, tuple[float, float]]) -> list[str]:
        moved: list[str] = []
        with self._lock:
            for component in self._doc["components"]:
                guid = component.get("instanceGuid")
                if guid in positions:
                    x, y = positions[guid]
                    component["position"] = {"x": float(x), "y": float(y)}
                    moved.append(guid)
        return moved

    def update(self, guid: str, changes: dict[str, Any]) -> bool:
        with self._lock:
            for component in self._doc["components"]:
                if component.get("instanceGuid") == guid:
                    component.update(copy.deepcopy(changes))
                    return True
        return False
