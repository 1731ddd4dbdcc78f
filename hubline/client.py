"""Client facade combining credentials, HTTP calls and the realtime session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

import aiohttp

from .credentials import CredentialCoordinator, TokenAcquire
from .hub import DEFAULT_RECONNECT_DELAYS, HubConnection, InvocationHandler
from .http import (
    DEFAULT_CHUNK_SIZE,
    JSON_CONTENT_TYPE,
    HttpMethod,
    HublineHttpClient,
    HublineResponse,
    ProgressCallback,
    RequestBody,
    UploadMethod,
)
from .realtime import (
    ConnectionState,
    LifecycleEvent,
    LifecycleListener,
    RealtimeSession,
    RealtimeTransport,
)

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientOptions:
    """Configuration for :class:`HublineClient`.

    Attributes:
        base_url: Server root URL; HTTP paths and the hub path are appended
        token_acquire: Async callable returning a bearer token; receives True
            when a fresh token is required
        hub_path: Path of the realtime hub endpoint
        request_timeout: Total timeout for HTTP calls (seconds)
        reconnect_delays: Delays before each realtime reconnect attempt
        upload_chunk_size: Chunk size used for upload progress reporting
    """

    base_url: str
    token_acquire: TokenAcquire
    hub_path: str = "/hubs/rtm"
    request_timeout: float = 30.0
    reconnect_delays: tuple[float, ...] = DEFAULT_RECONNECT_DELAYS
    upload_chunk_size: int = DEFAULT_CHUNK_SIZE


class HublineClient:
    """Authenticated access to HTTP endpoints and the realtime hub.

    Usage:
        async with HublineClient(ClientOptions(url, fetch_token)) as client:
            await client.subscribe("room-1", "message", on_message)
            response = await client.get("/api/user")
    """

    def __init__(
        self,
        options: ClientOptions,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: RealtimeTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            options: Client configuration
            session: Shared aiohttp session; one is created (and closed on
                destroy) when omitted
            transport: Realtime transport; defaults to a HubConnection on
                ``base_url + hub_path``
        """
        self.options = options
        self.credentials = CredentialCoordinator(options.token_acquire)

        self._session = session
        self._owns_session = session is None
        self._http: HublineHttpClient | None = None

        if transport is None:
            transport = HubConnection(
                options.base_url.rstrip("/") + options.hub_path,
                reconnect_delays=options.reconnect_delays,
            )
        self.realtime = RealtimeSession(transport, self.credentials)

    async def __aenter__(self) -> HublineClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.destroy()

    @property
    def connection_state(self) -> ConnectionState:
        """Return the realtime connection state."""
        return self.realtime.connection_state

    @property
    def http(self) -> HublineHttpClient:
        """Return the HTTP client, creating the aiohttp session on first use."""
        if self._http is None:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            self._http = HublineHttpClient(
                self._session,
                self.options.base_url,
                self.credentials,
                timeout=self.options.request_timeout,
                chunk_size=self.options.upload_chunk_size,
            )
        return self._http

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the realtime connection."""
        await self.realtime.connect()

    async def subscribe(
        self, scope: str | None, event: str, callback: InvocationHandler
    ) -> bool:
        """Subscribe to a realtime event; see :meth:`RealtimeSession.subscribe`."""
        return await self.realtime.subscribe(scope, event, callback)

    async def unsubscribe(
        self, scope: str | None, event: str, callback: InvocationHandler
    ) -> None:
        """Unsubscribe from a realtime event."""
        await self.realtime.unsubscribe(scope, event, callback)

    def add_connection_listener(
        self, event: str | type[LifecycleEvent], listener: LifecycleListener
    ) -> None:
        """Register a lifecycle listener (close, reconnecting, reconnected)."""
        self.realtime.add_connection_listener(event, listener)

    def remove_connection_listener(
        self, event: str | type[LifecycleEvent], listener: LifecycleListener
    ) -> None:
        """Remove a lifecycle listener."""
        self.realtime.remove_connection_listener(event, listener)

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def get(self, path: str, *, retry: bool = True) -> HublineResponse:
        """GET ``path``."""
        return await self.http.get(path, retry=retry)

    async def post(
        self,
        path: str,
        method: HttpMethod = "POST",
        body: RequestBody = None,
        content_type: str = JSON_CONTENT_TYPE,
        *,
        retry: bool = True,
    ) -> HublineResponse:
        """Send a request with a body."""
        return await self.http.post(path, method, body, content_type, retry=retry)

    async def upload(
        self,
        path: str,
        method: UploadMethod = "POST",
        body: RequestBody = None,
        content_type: str = JSON_CONTENT_TYPE,
        on_progress: ProgressCallback | None = None,
        *,
        retry: bool = True,
    ) -> HublineResponse:
        """Upload a body with progress reporting."""
        return await self.http.upload(
            path, method, body, content_type, on_progress, retry=retry
        )

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def destroy(self) -> None:
        """Stop the realtime connection and release the owned HTTP session."""
        try:
            await self.realtime.destroy()
        finally:
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None
                self._http = None
        _LOGGER.debug("Client destroyed")
