"""Severity-tagged runtime messages attached to requests, returns and tool results."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any


class Severity(str, Enum):
    ERROR = "Error"
    WARNING = "Warning"
    REMARK = "Remark"


class Origin(str, Enum):
    REQUEST = "Request"
    RETURN = "Return"
    PROVIDER = "Provider"
    TOOL = "Tool"
    NETWORK = "Network"
    VALIDATION = "Validation"


class MessageCode(IntEnum):
    UNKNOWN = 0
    PROVIDER_MISSING = 1
    UNKNOWN_PROVIDER = 2
    UNKNOWN_MODEL = 3
    NO_CAPABLE_MODEL = 4
    CAPABILITY_MISMATCH = 5
    STREAMING_DISABLED_PROVIDER = 6
    STREAMING_UNSUPPORTED_MODEL = 7
    TOOL_VALIDATION_ERROR = 8
    BODY_INVALID = 9
    RETURN_INVALID = 10
    NETWORK_TIMEOUT = 11
    AUTHENTICATION_MISSING = 12
    AUTHORIZATION_FAILED = 13
    RATE_LIMITED = 14
    TOOL_LOOP_LIMIT = 15
    CANCELLED = 16


_SEVERITY_RANK = {Severity.ERROR: 3, Severity.WARNING: 2, Severity.REMARK: 1}
_SEVERITY_ALIASES = {"info": Severity.REMARK, "information": Severity.REMARK}


@dataclass(slots=True, frozen=True)
class RuntimeMessage:
    severity: Severity
    origin: Origin
    message: str
    code: MessageCode = MessageCode.UNKNOWN
    surfaceable: bool = True

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "origin": self.origin.value,
        }

    @classmethod
    def from_dict(
        cls, raw: dict[str, Any], default_origin: Origin = Origin.TOOL
    ) -> "RuntimeMessage":
        return cls(
            severity=parse_severity(raw.get("severity")),
            origin=parse_origin(raw.get("origin"), default_origin),
            message=str(raw.get("message") or ""),
        )


def error(message: str, origin: Origin, code: MessageCode = MessageCode.UNKNOWN) -> RuntimeMessage:
    return RuntimeMessage(Severity.ERROR, origin, message, code)


def warning(
    message: str, origin: Origin, code: MessageCode = MessageCode.UNKNOWN
) -> RuntimeMessage:
    return RuntimeMessage(Severity.WARNING, origin, message, code)


def remark(message: str, origin: Origin, code: MessageCode = MessageCode.UNKNOWN) -> RuntimeMessage:
    return RuntimeMessage(Severity.REMARK, origin, message, code)


def parse_severity(value: object) -> Severity:
    text = str(value or "").strip()
    for severity in Severity:
        if severity.value.lower() == text.lower():
            return severity
    return _SEVERITY_ALIASES.get(text.lower(), Severity.ERROR)


def parse_origin(value: object, default: Origin = Origin.TOOL) -> Origin:
    text = str(value or "").strip().lower()
    for origin in Origin:
        if origin.value.lower() == text:
            return origin
    return default


def normalize(messages: Iterable[RuntimeMessage]) -> tuple[RuntimeMessage, ...]:
    """Drop empty and repeated message texts, then order Error > Warning > Remark."""
    seen: set[str] = set()
    unique: list[RuntimeMessage] = []
    for item in messages:
        if not item.message or item.message in seen:
            continue
        seen.add(item.message)
        unique.append(item)
    unique.sort(key=lambda item: _SEVERITY_RANK[item.severity], reverse=True)
    return tuple(unique)


def messages_from_payload(payload: dict[str, Any] | None) -> list[RuntimeMessage]:
    """Read the ``messages`` array of a tool result payload."""
    if not isinstance(payload, dict):
        return []
    raw = payload.get("messages")
    if not isinstance(raw, list):
        return []
    return [RuntimeMessage.from_dict(item) for item in raw if isinstance(item, dict)]
