"""Error taxonomy for provider calls. str(exc) is the human-readable message shown to users."""

from __future__ import annotations


class LlmaxxError(Exception):
    """Base class for everything the client core raises."""


class ProviderError(LlmaxxError):
    """Base class for provider-level failures."""

    default_message = "API request failed"

    def __init__(self, message: str | None = None, *, provider: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.provider = provider


class TransportError(ProviderError):
    """Network/connection failure or non-2xx HTTP status."""

    default_message = "Network connection failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError, TimeoutError):
    """Call exceeded its deadline. Distinct from cancellation."""

    default_message = "Request timed out"


class ProtocolError(ProviderError):
    """Malformed or unexpected response shape."""

    default_message = "Unexpected response from provider"


class UnsupportedOperationError(ProviderError):
    """Capability not implemented by the provider. A configuration error, not a crash."""

    def __init__(
        self,
        capability: str,
        *,
        provider: str | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"{provider or 'provider'} does not support {capability}",
            provider=provider,
        )
        self.capability = capability


class RequestCancelledError(LlmaxxError):
    """Single-shot request aborted by cancel_request(). Not a ProviderError."""

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(message)
