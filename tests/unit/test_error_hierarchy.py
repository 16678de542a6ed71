"""Tests for error hierarchy."""

from smarthopper.errors import (
    CallCancelledError,
    ConfigError,
    HashMismatchError,
    ProviderError,
    SecurityError,
    SignatureError,
    SmartHopperError,
    StreamingError,
    ToolError,
    ToolLoopLimitError,
    UnsupportedOperationError,
)


def test_hierarchy() -> None:
    assert issubclass(ProviderError, SmartHopperError)
    assert issubclass(StreamingError, ProviderError)
    assert issubclass(ToolError, SmartHopperError)
    assert issubclass(UnsupportedOperationError, ConfigError)
    assert issubclass(SignatureError, SecurityError)
    assert issubclass(HashMismatchError, SecurityError)
    assert issubclass(CallCancelledError, SmartHopperError)


def test_retryable_default() -> None:
    assert SmartHopperError("test").retryable is False
    assert ProviderError("test").retryable is True
    assert ToolError("test").retryable is False
    assert ConfigError("test").retryable is False


def test_error_message() -> None:
    err = ProviderError("provider down", status_code=503, body="busy")
    assert str(err) == "provider down"
    assert err.retryable is True
    assert (err.status_code, err.body) == (503, "busy")


def test_loop_limit_carries_iterations() -> None:
    err = ToolLoopLimitError(3)
    assert err.iterations == 3
    assert "3 iterations" in str(err)


def test_catch_as_smarthopper_error() -> None:
    try:
        raise UnsupportedOperationError("test")
    except SmartHopperError as exc:
        assert exc.retryable is False
