"""Provider abstraction: wire encoding, HTTP transport and the per-call state machine."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import httpx

from smarthopper.calls.interactions import AIInteraction
from smarthopper.calls.messages import MessageCode, Origin, remark
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import SUPPORTED_HTTP_METHODS, AIRequest, RequestKind
from smarthopper.calls.result import AICallStatus, AIReturn
from smarthopper.cancellation import run_cancellable
from smarthopper.config import get_settings
from smarthopper.errors import (
    CallCancelledError,
    ConfigError,
    ProviderError,
    UnsupportedOperationError,
)
from smarthopper.models.capability import AICapability
from smarthopper.models.manager import ModelManager
from smarthopper.providers.factory import ProviderSettings
from smarthopper.providers.models import ProviderModels

if TYPE_CHECKING:
    from smarthopper.providers.streaming import StreamingAdapter
    from smarthopper.settings_store import SettingsStore
    from smarthopper.tools.manager import ToolManager

logger = logging.getLogger(__name__)

AUTH_BEARER = "bearer"
AUTH_API_KEY = "x-api-key"
SUPPORTED_AUTH_SCHEMES = (AUTH_BEARER, AUTH_API_KEY)

_ZERO_VALUES: dict[type, Any] = {str: "", int: 0, float: 0.0, bool: False}


def join_url(base_url: str, endpoint: str) -> str:
    """Absolute endpoints are used as-is, relative ones are appended to ``base_url``."""
    if not endpoint or not endpoint.strip():
        raise ValueError("Endpoint cannot be empty")
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    return f"{(base_url or '').rstrip('/')}{path}"


def auth_headers(provider_name: str, scheme: str | None, api_key: str) -> dict[str, str]:
    normalized = (scheme or "").strip().lower()
    if normalized in ("", "none"):
        return {}
    if normalized not in SUPPORTED_AUTH_SCHEMES:
        raise UnsupportedOperationError(
            f"Authentication method '{scheme}' is not supported. "
            f"Supported methods: {', '.join(SUPPORTED_AUTH_SCHEMES)}"
        )
    if not api_key or not api_key.strip():
        raise ConfigError(f"{provider_name} API key is not configured or is invalid.")
    if normalized == AUTH_BEARER:
        return {"Authorization": f"Bearer {api_key}"}
    return {"x-api-key": api_key}


def _error_code(status_code: int | None) -> MessageCode:
    if status_code in (401, 403):
        return MessageCode.AUTHORIZATION_FAILED
    if status_code == 429:
        return MessageCode.RATE_LIMITED
    return MessageCode.UNKNOWN


def coerce_setting(value: Any, type_: type) -> Any:
    if isinstance(value, type_) and not (type_ is int and isinstance(value, bool)):
        return value
    try:
        if type_ is bool:
            text = str(value).strip().lower()
            if text in ("true", "1", "yes"):
                return True
            return False
        if type_ in (int, float, str):
            return type_(value)
    except (TypeError, ValueError):
        return _ZERO_VALUES.get(type_)
    return _ZERO_VALUES.get(type_)


class AIProvider(ABC):
    """Base class for one AI vendor integration.

    Subclasses supply the wire format (``encode``/``decode_response``/
    ``decode_metrics``) and usually a ``pre_call`` that fills the endpoint and
    headers. The base class owns validation, HTTP, metrics and status
    classification so that ``call`` behaves the same for every vendor.
    """

    name: str = ""
    default_server_url: str = ""
    is_enabled: bool = True
    api_key_setting: str = "api_key"

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self.model_manager = ModelManager()
        self.settings_store: SettingsStore | None = None
        self.tool_manager: ToolManager | None = None
        self.settings_schema = ProviderSettings()
        self.models: ProviderModels = self.create_models()
        self._settings_lock = threading.Lock()
        self._injected_settings: dict[str, Any] = {}
        self._default_settings: dict[str, Any] = {}

    def create_models(self) -> ProviderModels:
        return ProviderModels(self)

    def attach(
        self,
        *,
        model_manager: ModelManager | None = None,
        settings_store: SettingsStore | None = None,
        settings_schema: ProviderSettings | None = None,
        tool_manager: ToolManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Wire application-owned services into a provider created by its factory."""
        if model_manager is not None:
            self.model_manager = model_manager
        if settings_store is not None:
            self.settings_store = settings_store
        if settings_schema is not None:
            self.settings_schema = settings_schema
        if tool_manager is not None:
            self.tool_manager = tool_manager
        if transport is not None:
            self._transport = transport

    @property
    def transport(self) -> httpx.AsyncBaseTransport | None:
        return self._transport

    @property
    def supports_streaming(self) -> bool:
        return self.get_streaming_adapter() is not None

    def get_streaming_adapter(self) -> StreamingAdapter | None:
        return None

    # Initialization

    async def initialize(self) -> None:
        """Load settings and their defaults, then register model capabilities once."""
        self.reload_settings()
        try:
            await self.model_manager.register_provider_once(self.name, self._register_models)
        except Exception:
            logger.warning("Model registration failed for provider %s", self.name, exc_info=True)

    async def _register_models(self) -> None:
        capabilities = await self.models.retrieve_capabilities()
        defaults = self.models.retrieve_default()
        for model, flags in capabilities.items():
            self.model_manager.register_capabilities(
                self.name, model, flags, self.models.find_default_for(model, defaults)
            )
        for model, default_for in defaults.items():
            if model not in capabilities:
                self.model_manager.register_capabilities(
                    self.name, model, self.models.retrieve_capabilities_for(model), default_for
                )
        logger.info("Registered %d models for provider %s", len(capabilities), self.name)

    def reload_settings(self) -> None:
        """Rebuild the cache from schema defaults overlaid with persisted values."""
        try:
            defaults = self.settings_schema.defaults()
        except Exception:
            logger.warning("Loading setting defaults failed for %s", self.name, exc_info=True)
            defaults = {}
        stored = self.settings_store.get_provider_settings(self.name) if self.settings_store else {}
        with self._settings_lock:
            self._default_settings = defaults
            self._injected_settings = {**defaults, **stored}

    # Settings

    def refresh_cached_settings(self, values: dict[str, Any] | None) -> None:
        if not values:
            return
        with self._settings_lock:
            self._injected_settings.update(values)

    def get_setting(self, key: str, type_: type = str) -> Any:
        """Injected value, else provider default, else the zero value of ``type_``."""
        with self._settings_lock:
            value = self._injected_settings.get(key)
            if value is None:
                value = self._default_settings.get(key)
        if value is None:
            return _ZERO_VALUES.get(type_)
        return coerce_setting(value, type_)

    def set_setting(self, key: str, value: Any) -> None:
        if not key or not key.strip():
            return
        with self._settings_lock:
            self._injected_settings[key] = value
        if self.settings_store is None:
            return
        try:
            self.settings_store.set_setting(self.name, key, value)
        except OSError:
            logger.warning("Persisting setting %s for %s failed", key, self.name, exc_info=True)

    def api_key(self) -> str:
        return self.get_setting(self.api_key_setting)

    # Model selection and tools

    def get_default_model(
        self, required: AICapability = AICapability.BASIC_CHAT, use_settings: bool = True
    ) -> str | None:
        """Configured model when it satisfies ``required``, else the registry default.

        ``None`` means no suitable model; callers fail the request instead of
        substituting another model.
        """
        if use_settings:
            configured = self.get_setting("model")
            if configured.strip() and self.model_manager.validate_capabilities(
                self.name, configured, required
            ):
                return configured
        fallback = self.model_manager.get_default_model(self.name, required)
        return fallback or None

    def get_formatted_tools(self, tool_filter: str | None = "*") -> list[dict[str, Any]] | None:
        if self.tool_manager is None:
            return None
        tools = [
            {
                "type": "function",
                "function": {
                    "name": schema["name"],
                    "description": schema["description"],
                    "parameters": schema["parameters"],
                },
            }
            for schema in self.tool_manager.schemas(tool_filter)
        ]
        return tools or None

    # Wire format

    @abstractmethod
    def encode(self, request: AIRequest) -> str:
        """Serialize the request body for the vendor API."""

    @abstractmethod
    def encode_interaction(self, interaction: AIInteraction) -> dict[str, Any] | None:
        """Serialize one interaction; ``None`` drops it from the payload."""

    @abstractmethod
    def decode_response(self, raw: str) -> list[AIInteraction]:
        """Turn a response body into interactions in vendor order."""

    @abstractmethod
    def decode_metrics(self, raw: str) -> AIMetrics: ...

    # Call pipeline

    def pre_call(self, request: AIRequest) -> AIRequest:
        if request.model or request.kind is not RequestKind.GENERATION:
            return request
        model = self.get_default_model(request.effective_capability())
        if not model:
            return request
        return request.with_model(model).with_messages(
            remark(
                f"Model is not specified - the default model '{model}' will be used",
                Origin.VALIDATION,
            )
        )

    def post_call(self, response: AIReturn) -> AIReturn:
        if not response.success:
            return response.with_status(AICallStatus.ERROR)
        if response.body.pending_tool_calls():
            return response.with_status(AICallStatus.CALLING_TOOLS)
        return response.with_status(AICallStatus.COMPLETED)

    def validate(self, request: AIRequest) -> tuple[AIRequest, AIReturn | None]:
        """Return the request with its diagnostics, or an error result when invalid."""
        valid, messages = request.is_valid(self.model_manager)
        request = replace(request, messages=messages)
        if valid:
            return request, None
        details = ", ".join(message.message for message in messages if message.is_error)
        failed = AIReturn.create_error(
            f"The request is not valid: {details}",
            request=request,
            origin=Origin.VALIDATION,
            code=MessageCode.BODY_INVALID,
        )
        return request, failed

    async def call(self, request: AIRequest, *, cancel: asyncio.Event | None = None) -> AIReturn:
        """Run one request through pre-call, validation, HTTP, decoding and post-call.

        API, network, decoding and cancellation failures come back as a failed
        ``AIReturn``. ``ConfigError`` (missing API key, unsupported method or
        authentication scheme) propagates.
        """
        started = time.perf_counter()
        request = self.pre_call(request)
        request, invalid = self.validate(request)
        if invalid is not None:
            logger.info("Rejected invalid request for %s: %s", self.name, invalid.error_message)
            return invalid.with_metrics(
                replace(invalid.metrics, completion_time=time.perf_counter() - started)
            )

        try:
            response = await run_cancellable(self.call_api(request), cancel)
            response = self.decode(response)
        except ConfigError:
            raise
        except CallCancelledError:
            response = AIReturn.create_error(
                "Call cancelled",
                request=request,
                origin=Origin.REQUEST,
                code=MessageCode.CANCELLED,
                finish_reason="cancelled",
            )
        except httpx.TimeoutException as exc:
            response = AIReturn.create_network_error(
                f"{self.name} request timed out: {exc}",
                request=request,
                code=MessageCode.NETWORK_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            response = AIReturn.create_network_error(f"{self.name}: {exc}", request=request)
        except ProviderError as exc:
            logger.warning("Provider %s call failed: %s", self.name, exc)
            response = AIReturn.create_provider_error(
                str(exc), request=request, raw=exc.body, code=_error_code(exc.status_code)
            )

        response = response.with_metrics(
            response.metrics.with_identity(
                provider=self.name,
                model=request.model,
                completion_time=time.perf_counter() - started,
            )
        )
        return self.post_call(response)

    def decode(self, response: AIReturn) -> AIReturn:
        raw = response.raw if isinstance(response.raw, str) else ""
        try:
            interactions = self.decode_response(raw)
            metrics = self.decode_metrics(raw)
        except (ValueError, LookupError, TypeError, AttributeError) as exc:
            raise ProviderError(f"Invalid response from {self.name}: {exc}", body=raw) from exc
        return replace(
            response,
            body=response.body.with_appended(*interactions),
            metrics=response.metrics.combine(metrics),
        )

    async def call_api(self, request: AIRequest) -> AIReturn:
        method = request.http_method.upper()
        if method not in SUPPORTED_HTTP_METHODS:
            raise UnsupportedOperationError(
                f"HTTP method '{request.http_method}' is not supported. "
                f"Supported methods: {', '.join(SUPPORTED_HTTP_METHODS)}"
            )
        url = join_url(self.default_server_url, request.endpoint)
        headers = {"Accept": "application/json", **request.headers}
        headers.update(auth_headers(self.name, request.authentication, self.api_key()))

        content: bytes | None = None
        if method in ("POST", "PATCH"):
            try:
                encoded = self.encode(request)
            except (ValueError, TypeError) as exc:
                raise ProviderError(
                    f"Could not encode request for {self.name}: {exc}", retryable=False
                ) from exc
            if encoded:
                content = encoded.encode("utf-8")
                headers.setdefault("Content-Type", request.content_type)

        timeout = request.timeout_seconds or get_settings().request_timeout_seconds
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.request(method, url, headers=headers, content=content)

        if response.status_code >= 400:
            detail = response.text
            raise ProviderError(
                f"Error from {self.name} API: {response.status_code} - {detail}",
                retryable=response.status_code == 429 or response.status_code >= 500,
                status_code=response.status_code,
                body=detail,
            )
        return AIReturn(
            request=request,
            raw=response.text,
            status=AICallStatus.REQUESTED,
            metrics=AIMetrics(provider=self.name, model=request.model),
        )

    async def stream(
        self, request: AIRequest, *, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[AIReturn]:
        """Yield streaming deltas and then the final result.

        Providers without a streaming adapter yield a single ``call`` result.
        """
        adapter = self.get_streaming_adapter()
        if adapter is None:
            yield await self.call(request, cancel=cancel)
            return
        async for item in adapter.stream(request, cancel=cancel):
            yield item
