"""Server-sent events plumbing shared by providers that stream responses."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import httpx

from smarthopper.calls.interactions import (
    AIAgent,
    AIBody,
    AIInteraction,
    AIInteractionText,
    AIInteractionToolCall,
)
from smarthopper.calls.messages import MessageCode, Origin
from smarthopper.calls.metrics import AIMetrics
from smarthopper.calls.request import AIRequest
from smarthopper.calls.result import AICallStatus, AIReturn
from smarthopper.config import get_settings
from smarthopper.errors import ConfigError, StreamingError
from smarthopper.providers.base import auth_headers, join_url

if TYPE_CHECKING:
    from smarthopper.providers.base import AIProvider

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"

_IDLE = object()
_CANCELLED = object()
_EOF = object()


async def _next_line(lines: AsyncIterator[str]) -> Any:
    try:
        return await anext(lines)
    except StopAsyncIteration:
        return _EOF


@dataclass(slots=True)
class StreamState:
    """Accumulates streamed deltas into the interactions of one turn."""

    text: list[str] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    tool_calls: dict[int, dict[str, Any]] = field(default_factory=dict)
    metrics: AIMetrics = field(default_factory=AIMetrics)

    def add_tool_call_delta(
        self, index: int, *, id: str = "", name: str = "", arguments: str = ""
    ) -> None:
        slot = self.tool_calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if id:
            slot["id"] = id
        if name:
            slot["name"] = name
        slot["arguments"] += arguments

    def interactions(self) -> list[AIInteraction]:
        result: list[AIInteraction] = []
        content = "".join(self.text)
        reasoning = "".join(self.reasoning)
        if content or reasoning:
            result.append(AIInteractionText(AIAgent.ASSISTANT, content, reasoning, self.metrics))
        for index in sorted(self.tool_calls):
            slot = self.tool_calls[index]
            raw_arguments = slot["arguments"].strip()
            try:
                arguments = json.loads(raw_arguments) if raw_arguments else {}
            except json.JSONDecodeError:
                arguments = {}
            call = AIInteractionToolCall(name=slot["name"], arguments=arguments)
            if slot["id"]:
                call = replace(call, id=slot["id"])
            result.append(call)
        return result


class StreamingAdapter:
    """Opens an SSE request for a provider and turns its events into ``AIReturn`` deltas.

    Providers plug in ``apply_event`` (vendor event → state, returning the text
    delta) and optionally ``is_terminal`` for vendor end markers.
    """

    def __init__(self, provider: AIProvider) -> None:
        self.provider = provider

    def prepare(self, request: AIRequest) -> AIRequest:
        return self.provider.pre_call(replace(request, stream=True))

    def build_full_url(self, endpoint: str) -> str:
        return join_url(self.provider.default_server_url, endpoint)

    def apply_authentication(
        self, headers: dict[str, str], authentication: str | None, api_key: str
    ) -> None:
        headers.update(auth_headers(self.provider.name, authentication, api_key))

    def create_http_client(self, timeout: float | None = None) -> httpx.AsyncClient:
        timeout = timeout or get_settings().request_timeout_seconds
        return httpx.AsyncClient(timeout=timeout, transport=self.provider.transport)

    def create_sse_request(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: str,
        content_type: str = "application/json",
        headers: dict[str, str] | None = None,
    ) -> httpx.Request:
        merged = dict(headers or {})
        merged["Accept"] = "text/event-stream"
        merged["Content-Type"] = content_type
        content = (body or "").encode("utf-8")
        return client.build_request("POST", url, content=content, headers=merged)

    async def send_for_stream(
        self, client: httpx.AsyncClient, request: httpx.Request
    ) -> httpx.Response:
        """Send and return as soon as headers arrive; the body is read lazily."""
        return await client.send(request, stream=True)

    async def read_sse_data(
        self,
        response: httpx.Response,
        *,
        cancel: asyncio.Event | None = None,
        idle_timeout: float | None = None,
        is_terminal: Callable[[str], bool] | None = None,
    ) -> AsyncIterator[str]:
        """Yield ``data:`` payloads until ``[DONE]``, a terminal payload, idle timeout or cancel.

        A non-success status raises ``StreamingError`` carrying the body. Idle
        timeout and cancellation close the response and end the sequence
        without raising. Read errors after cancellation end the sequence, any
        other read error propagates.
        """
        if response.status_code >= 400:
            detail = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise StreamingError(
                f"Streaming request failed: {response.status_code} "
                f"{response.reason_phrase} - {detail}",
                status_code=response.status_code,
                body=detail,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        lines = response.aiter_lines()
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    break
                try:
                    line = await self._read_line(lines, cancel, idle_timeout)
                except (httpx.HTTPError, OSError):
                    if cancel is not None and cancel.is_set():
                        break
                    raise
                if line is _IDLE:
                    logger.info("SSE stream idle for %.3fs, closing", idle_timeout or 0)
                    break
                if line is _CANCELLED or line is _EOF:
                    break
                if not line.strip():
                    continue
                if not line.startswith(DATA_PREFIX):
                    continue
                payload = line[len(DATA_PREFIX) :].strip()
                if payload == DONE_MARKER:
                    break
                yield payload
                if is_terminal is not None and is_terminal(payload):
                    break
        finally:
            with contextlib.suppress(httpx.HTTPError, OSError, RuntimeError):
                await lines.aclose()
            await response.aclose()

    @staticmethod
    async def _read_line(
        lines: AsyncIterator[str],
        cancel: asyncio.Event | None,
        idle_timeout: float | None,
    ) -> Any:
        if cancel is None and not idle_timeout:
            return await _next_line(lines)

        read = asyncio.ensure_future(_next_line(lines))
        waiters: set[asyncio.Future[Any]] = {read}
        stop: asyncio.Future[Any] | None = None
        if cancel is not None:
            stop = asyncio.ensure_future(cancel.wait())
            waiters.add(stop)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=idle_timeout or None, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if stop is not None:
                stop.cancel()
        if read in done:
            return read.result()

        read.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await read
        if cancel is not None and cancel.is_set():
            return _CANCELLED
        return _IDLE

    async def stream(
        self, request: AIRequest, *, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[AIReturn]:
        """Run a streamed call: text deltas as ``streaming`` results, then the final result."""
        provider = self.provider
        started = time.perf_counter()
        request, invalid = provider.validate(self.prepare(request))
        if invalid is not None:
            yield invalid
            return

        headers = dict(request.headers)
        self.apply_authentication(headers, request.authentication, provider.api_key())
        url = self.build_full_url(request.endpoint)
        idle_timeout = get_settings().stream_idle_timeout_seconds or None
        state = StreamState()
        failure: AIReturn | None = None

        try:
            body = self.encode_body(request)
            async with self.create_http_client(request.timeout_seconds) as client:
                http_request = self.create_sse_request(
                    client, url, body, request.content_type, headers
                )
                response = await self.send_for_stream(client, http_request)
                async for payload in self.read_sse_data(
                    response,
                    cancel=cancel,
                    idle_timeout=idle_timeout,
                    is_terminal=self.is_terminal,
                ):
                    delta = self.apply_payload(state, payload)
                    if delta:
                        yield AIReturn(
                            request=request,
                            body=AIBody.of([AIInteractionText(AIAgent.ASSISTANT, delta)]),
                            status=AICallStatus.STREAMING,
                        )
        except ConfigError:
            raise
        except StreamingError as exc:
            failure = AIReturn.create_provider_error(str(exc), request=request, raw=exc.body)
        except httpx.TimeoutException as exc:
            failure = AIReturn.create_network_error(
                f"{provider.name} stream timed out: {exc}",
                request=request,
                code=MessageCode.NETWORK_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            failure = AIReturn.create_network_error(f"{provider.name}: {exc}", request=request)

        if failure is None and cancel is not None and cancel.is_set():
            failure = AIReturn.create_error(
                "Call cancelled",
                request=request,
                origin=Origin.REQUEST,
                code=MessageCode.CANCELLED,
                finish_reason="cancelled",
            )
        final = failure or AIReturn.create_success(
            state.interactions(), request=request, metrics=state.metrics
        )
        final = final.with_metrics(
            final.metrics.with_identity(
                provider=provider.name,
                model=request.model,
                completion_time=time.perf_counter() - started,
            )
        )
        yield provider.post_call(final)

    def encode_body(self, request: AIRequest) -> str:
        try:
            return self.provider.encode(request)
        except (ValueError, TypeError) as exc:
            raise StreamingError(
                f"Could not encode request for {self.provider.name}: {exc}", retryable=False
            ) from exc

    def apply_payload(self, state: StreamState, payload: str) -> str:
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE payload from %s", self.provider.name)
            return ""
        if not isinstance(event, dict):
            return ""
        try:
            return self.apply_event(state, event)
        except (ValueError, LookupError, TypeError, AttributeError) as exc:
            raise StreamingError(
                f"Invalid stream event from {self.provider.name}: {exc}",
                body=payload,
                retryable=False,
            ) from exc

    def apply_event(self, state: StreamState, event: dict[str, Any]) -> str:
        """Fold one vendor event into ``state``; return the new text, if any."""
        return ""

    def is_terminal(self, payload: str) -> bool:
        return False
