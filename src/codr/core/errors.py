from __future__ import annotations
from typing import Optional


class ProviderError(Exception):
    """Base class for provider-level failures."""


class ConfigurationError(ProviderError):
    """
    Fatal to the attempted call and raised before any network I/O:
    missing credential, invalid option, unknown provider key.
    The fix is to change settings, not to retry.
    """


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider: str):
        super().__init__(f"Unsupported LLM provider: {provider}")
        self.provider = provider


class TransportError(ProviderError):
    """
    Network failure, non-2xx response or stream abort. Terminates the current
    stream; increments already delivered stay valid.
    `retryable` is informational only (rate limits, timeouts, 5xx).
    """
    def __init__(self, message: str, *, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class FrameDecodeError(ProviderError):
    """One malformed stream frame. Adapters skip it and keep reading."""


class ConversationStateError(RuntimeError):
    """Operation not allowed in the conversation's current state."""


def classify_transport_exception(exc: Exception) -> TransportError:
    """
    Convert SDK/client exceptions into a neutral TransportError.
    Avoid hard dependency on specific SDK exception classes by inspecting attributes/message.
    """
    if isinstance(exc, TransportError):
        return exc
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None) or getattr(exc, "code", None)
    msg = str(exc) or exc.__class__.__name__

    if isinstance(status, int):
        retryable = status == 429 or status >= 500
        return TransportError(msg, status_code=status, retryable=retryable)

    lower = msg.lower()
    if any(k in lower for k in ("rate limit", "temporarily unavailable", "timeout", "timed out", "connection")):
        return TransportError(msg, retryable=True)
    return TransportError(msg)
