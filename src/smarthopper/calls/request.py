"""Provider-agnostic request descriptor."""

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from smarthopper.calls.interactions import AIBody
from smarthopper.calls.messages import (
    MessageCode,
    Origin,
    RuntimeMessage,
    error,
    normalize,
    remark,
    warning,
)
from smarthopper.models.capability import AICapability, to_detailed_string

if TYPE_CHECKING:
    from smarthopper.models.manager import ModelManager

SUPPORTED_HTTP_METHODS = ("GET", "POST", "DELETE", "PATCH")


class RequestKind(str, Enum):
    GENERATION = "generation"
    BACKOFFICE = "backoffice"


@dataclass(slots=True, frozen=True)
class AIRequest:
    provider: str
    model: str = ""
    endpoint: str = ""
    body: AIBody = field(default_factory=AIBody)
    capability: AICapability = AICapability.TEXT2TEXT
    http_method: str = "POST"
    content_type: str = "application/json"
    authentication: str = "bearer"
    headers: dict[str, str] = field(default_factory=dict)
    kind: RequestKind = RequestKind.GENERATION
    stream: bool = False
    timeout_seconds: float | None = None
    requested_model: str = ""
    messages: tuple[RuntimeMessage, ...] = ()

    @property
    def tool_filter(self) -> str | None:
        return self.body.tool_filter

    @property
    def wants_streaming(self) -> bool:
        return self.stream and self.kind is RequestKind.GENERATION

    def effective_capability(self) -> AICapability:
        """Requested capability, plus function calling when tools are exposed."""
        capability = self.capability
        if self.body.tool_filter and self.body.tool_filter.strip() not in ("", "-*"):
            capability |= AICapability.FUNCTION_CALLING
        return capability

    def with_body(self, body: AIBody) -> "AIRequest":
        return replace(self, body=body)

    def with_model(self, model: str) -> "AIRequest":
        return replace(self, model=model, requested_model=self.requested_model or self.model)

    def with_messages(self, *messages: RuntimeMessage) -> "AIRequest":
        return replace(self, messages=self.messages + tuple(messages))

    def is_valid(
        self, model_manager: "ModelManager | None" = None
    ) -> tuple[bool, tuple[RuntimeMessage, ...]]:
        """Validate structure and, when a model manager is given, the model choice.

        A model the manager has never seen is reported as a remark only, so
        requests keep flowing while provider initialization is still running.
        """
        found: list[RuntimeMessage] = list(self.messages)
        if not self.provider or not self.provider.strip():
            found.append(
                error("Provider is required", Origin.VALIDATION, MessageCode.PROVIDER_MISSING)
            )
        if not self.endpoint or not self.endpoint.strip():
            found.append(
                error("Endpoint is required", Origin.VALIDATION, MessageCode.BODY_INVALID)
            )

        if self.kind is RequestKind.GENERATION:
            capability = self.effective_capability()
            if not self.model:
                found.append(
                    error(
                        f"No capable model found for provider '{self.provider}' "
                        f"with capability {to_detailed_string(capability)}",
                        Origin.VALIDATION,
                        MessageCode.NO_CAPABLE_MODEL,
                    )
                )
            elif model_manager is not None and self.provider:
                found.extend(self._model_diagnostics(model_manager, capability))

            if len(self.body) == 0:
                found.append(
                    error(
                        "At least one interaction is required",
                        Origin.VALIDATION,
                        MessageCode.BODY_INVALID,
                    )
                )
            if capability & AICapability.JSON_OUTPUT and not self.body.json_output_schema:
                found.append(
                    error(
                        "JsonOutput capability requires a non-empty JSON output schema",
                        Origin.VALIDATION,
                        MessageCode.BODY_INVALID,
                    )
                )
            found.extend(self._schema_diagnostics())

        messages = normalize(found)
        return not any(message.is_error for message in messages), messages

    def _schema_diagnostics(self) -> list[RuntimeMessage]:
        schema = self.body.json_output_schema
        if not schema:
            return []
        try:
            parsed = json.loads(schema)
        except ValueError as exc:
            text = f"JSON output schema is not valid JSON: {exc}"
            return [error(text, Origin.VALIDATION, MessageCode.BODY_INVALID)]
        if not isinstance(parsed, dict):
            text = "JSON output schema must be a JSON object"
            return [error(text, Origin.VALIDATION, MessageCode.BODY_INVALID)]
        return []

    def _model_diagnostics(
        self, model_manager: "ModelManager", capability: AICapability
    ) -> list[RuntimeMessage]:
        record = model_manager.get_capabilities(self.provider, self.model)
        if record is None:
            if model_manager.has_provider_capabilities(self.provider):
                text = f"Model '{self.model}' is not registered for provider '{self.provider}'."
                return [warning(text, Origin.VALIDATION, MessageCode.UNKNOWN_MODEL)]
            text = (
                f"Capabilities of provider '{self.provider}' are not loaded yet; "
                f"model '{self.model}' was not validated."
            )
            return [remark(text, Origin.VALIDATION, MessageCode.UNKNOWN_MODEL)]
        if not record.has_capability(capability):
            text = (
                f"Model '{self.model}' does not support {to_detailed_string(capability)}"
            )
            return [error(text, Origin.VALIDATION, MessageCode.CAPABILITY_MISMATCH)]
        return []

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "capability": to_detailed_string(self.capability),
            "kind": self.kind.value,
            "stream": self.stream,
            "interactions": self.body.to_list(),
        }
