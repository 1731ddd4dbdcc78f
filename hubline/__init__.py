"""Authenticated HTTP and realtime hub access with shared credentials."""

__version__ = "0.1.0"

from .client import ClientOptions, HublineClient
from .credentials import CredentialCoordinator, TokenAcquire
from .errors import (
    HublineAuthorizationError,
    HublineClientError,
    HublineConnectionError,
    HublineCredentialError,
    HublineHandshakeError,
    HublineInvocationError,
    HublineResponseError,
    HublineTimeout,
    HublineTransportError,
)
from .http import HublineHttpClient, HublineResponse, progress_percent
from .hub import HubConnection
from .realtime import (
    Closed,
    ConnectionState,
    RealtimeSession,
    RealtimeTransport,
    Reconnected,
    Reconnecting,
    subscription_key,
)
from .retry import call_with_auth_retry, is_authorization_failure
from .singleflight import SingleFlight

__all__ = [
    "ClientOptions",
    "Closed",
    "ConnectionState",
    "CredentialCoordinator",
    "HubConnection",
    "HublineAuthorizationError",
    "HublineClient",
    "HublineClientError",
    "HublineConnectionError",
    "HublineCredentialError",
    "HublineHandshakeError",
    "HublineHttpClient",
    "HublineInvocationError",
    "HublineResponse",
    "HublineResponseError",
    "HublineTimeout",
    "HublineTransportError",
    "RealtimeSession",
    "RealtimeTransport",
    "Reconnected",
    "Reconnecting",
    "SingleFlight",
    "TokenAcquire",
    "__version__",
    "call_with_auth_retry",
    "is_authorization_failure",
    "progress_percent",
    "subscription_key",
]
