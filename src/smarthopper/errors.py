"""SmartHopper exception hierarchy.

Runtime failures of a provider call or a tool invocation are reported as
data (failed results, ``messages`` entries). The exceptions below are raised
for misconfiguration, registry misuse and security gate failures, or are used
internally and converted at the call boundary.
"""


class SmartHopperError(Exception):
    """Base exception for all SmartHopper errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(SmartHopperError):
    """Error communicating with an AI provider."""

    def __init__(
        self,
        message: str = "",
        *,
        retryable: bool = True,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code
        self.body = body


class StreamingError(ProviderError):
    """A streamed response failed or carried an unusable event."""


class ConfigError(SmartHopperError):
    """Invalid or missing configuration."""


class UnsupportedOperationError(ConfigError):
    """Request uses an HTTP method or authentication scheme the core cannot send."""


class ToolError(SmartHopperError):
    """Error registering or dispatching a tool."""


class ToolLoopLimitError(SmartHopperError):
    """The tool-call loop reached its iteration limit without a final answer."""

    def __init__(self, iterations: int) -> None:
        super().__init__(f"Tool-call loop stopped after {iterations} iterations")
        self.iterations = iterations


class SecurityError(SmartHopperError):
    """A provider plugin failed a pre-load security check."""


class SignatureError(SecurityError):
    """Provider plugin signature is missing or does not match."""


class HashMismatchError(SecurityError):
    """Provider plugin hash differs from the published manifest."""


class CallCancelledError(SmartHopperError):
    """The caller's cancellation event fired before the operation finished."""
