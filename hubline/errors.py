"""Client error types for hubline transports."""

from __future__ import annotations


class HublineClientError(Exception):
    """Base error for hubline client failures."""


class HublineCredentialError(HublineClientError):
    """Token acquisition failed."""


class HublineTransportError(HublineClientError):
    """Base error for realtime and HTTP transport failures."""


class HublineTimeout(HublineTransportError):
    """Timeout while communicating with the server."""


class HublineConnectionError(HublineTransportError):
    """Network connection to the server failed."""


class HublineHandshakeError(HublineTransportError):
    """Realtime hub handshake failed."""


class HublineInvocationError(HublineTransportError):
    """Hub method invocation completed with an error."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"Invocation of {method} failed: {message}")
        self.method = method


class HublineResponseError(HublineClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class HublineAuthorizationError(HublineResponseError):
    """HTTP response rejected the credential (401 or 403)."""
