"""Realtime session manager.

This module owns the lifecycle of the realtime connection on top of a
``RealtimeTransport``. It handles:
- Connection start with a single forced-refresh retry
- Subscription reference counting per composite key
- Lifecycle event fan-out to registered listeners
- Replaying every subscription after a reconnect

The server forgets all subscriptions when the connection drops, so the
session is the source of truth for what must be re-subscribed.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Protocol

from .credentials import CredentialCoordinator
from .errors import HublineConnectionError
from .hub import AccessTokenFactory, ErrorHandler, InvocationHandler, ReconnectedHandler

_LOGGER = logging.getLogger(__name__)

EVENT_NAMESPACE = ".connection"
SUBSCRIBE_METHOD = "Subscribe"
UNSUBSCRIBE_METHOD = "Unsubscribe"


class RealtimeTransport(Protocol):
    """Contract of the underlying realtime connection."""

    def set_access_token_factory(self, factory: AccessTokenFactory | None) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def invoke(self, method: str, *args: Any) -> Any: ...

    def on(self, name: str, handler: InvocationHandler) -> None: ...

    def off(self, name: str, handler: InvocationHandler | None = None) -> None: ...

    def on_close(self, handler: ErrorHandler) -> None: ...

    def on_reconnecting(self, handler: ErrorHandler) -> None: ...

    def on_reconnected(self, handler: ReconnectedHandler) -> None: ...


class ConnectionState(Enum):
    """Lifecycle states of the realtime connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class Closed:
    """The connection closed and will not reconnect on its own."""

    name: ClassVar[str] = "close" + EVENT_NAMESPACE

    error: BaseException | None = None


@dataclass(frozen=True)
class Reconnecting:
    """The connection dropped and the transport is reconnecting."""

    name: ClassVar[str] = "reconnecting" + EVENT_NAMESPACE

    error: BaseException | None = None


@dataclass(frozen=True)
class Reconnected:
    """The transport reconnected; subscriptions are being replayed."""

    name: ClassVar[str] = "reconnected" + EVENT_NAMESPACE

    connection_id: str | None = None


LifecycleEvent = Closed | Reconnecting | Reconnected
LifecycleListener = Callable[[LifecycleEvent], Any]


def connection_event_name(event: str | type[LifecycleEvent]) -> str:
    """Return the namespaced listener name for ``event``.

    >>> connection_event_name("reconnected")
    'reconnected.connection'
    """
    if not isinstance(event, str):
        return event.name
    return event if event.endswith(EVENT_NAMESPACE) else event + EVENT_NAMESPACE


def subscription_key(scope: str | None, event: str) -> str:
    """Build the composite key identifying one server-side topic."""
    return f"{scope}:{event}" if scope else event


class RealtimeSession:
    """Lifecycle and subscription manager for a realtime transport.

    Usage:
        session = RealtimeSession(HubConnection(url), credentials)
        await session.connect()
        await session.subscribe("room-1", "message", on_message)
        session.add_connection_listener(Reconnected, on_reconnected)
        await session.destroy()
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        credentials: CredentialCoordinator,
    ) -> None:
        self._transport = transport
        self._credentials = credentials

        self._state = ConnectionState.CONNECTING
        self._destroyed = False
        self._start_task: asyncio.Task[None] | None = None

        self._subscriptions: dict[str, int] = {}
        self._listeners: dict[str, list[LifecycleListener]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()

        transport.set_access_token_factory(self._access_token_hook(force_refresh=False))
        transport.on_close(self._handle_close)
        transport.on_reconnecting(self._handle_reconnecting)
        transport.on_reconnected(self._handle_reconnected)

    @property
    def connection_state(self) -> ConnectionState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def subscriptions(self) -> Mapping[str, int]:
        """Return a read-only view of subscription reference counts."""
        return MappingProxyType(self._subscriptions)

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the transport, retrying once with a refreshed token.

        Concurrent callers share one attempt. A new attempt is only made once
        the previous one has failed or the connection has closed.

        Raises:
            Exception: Whatever the transport raised on the retried start
        """
        if self._destroyed:
            raise HublineConnectionError("Realtime session has been destroyed")
        await asyncio.shield(self._ensure_start_task())

    async def destroy(self) -> None:
        """Stop the transport. The session cannot be used afterwards."""
        _LOGGER.info("Destroying realtime session")
        self._set_state(ConnectionState.CLOSED)
        self._destroyed = True

        start_task = self._start_task
        if start_task is not None and not start_task.done():
            start_task.cancel()
            await asyncio.wait({start_task})

        for task in list(self._background_tasks):
            task.cancel()

        await self._transport.stop()

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        scope: str | None,
        event: str,
        callback: InvocationHandler,
    ) -> bool:
        """Subscribe ``callback`` to ``event`` within ``scope``.

        Subscriptions are best-effort: failures are logged, not raised.

        Returns:
            True if the server accepted the subscription
        """
        await self._wait_started()
        key = subscription_key(scope, event)

        try:
            await self._transport.invoke(SUBSCRIBE_METHOD, key)
        except Exception as err:
            _LOGGER.warning("Error subscribing to %s: %s", key, err)
            return False

        self._subscriptions[key] = self._subscriptions.get(key, 0) + 1
        self._transport.on(key, callback)
        _LOGGER.debug("Subscribed to %s (refs=%d)", key, self._subscriptions[key])
        return True

    async def unsubscribe(
        self,
        scope: str | None,
        event: str,
        callback: InvocationHandler,
    ) -> None:
        """Drop one reference to ``event`` within ``scope``.

        The server is told to unsubscribe only when the last reference goes.
        The local callback is always removed.
        """
        await self._wait_started()
        key = subscription_key(scope, event)

        count = self._subscriptions.get(key, 0)
        if count > 1:
            self._subscriptions[key] = count - 1
        elif count == 1:
            del self._subscriptions[key]
            try:
                await self._transport.invoke(UNSUBSCRIBE_METHOD, key)
            except Exception as err:
                _LOGGER.warning("Error unsubscribing from %s: %s", key, err)

        self._transport.off(key, callback)
        _LOGGER.debug("Unsubscribed from %s (refs=%d)", key, max(count - 1, 0))

    # -------------------------------------------------------------------------
    # Public API: Lifecycle listeners
    # -------------------------------------------------------------------------

    def add_connection_listener(
        self,
        event: str | type[LifecycleEvent],
        listener: LifecycleListener,
    ) -> None:
        """Register ``listener`` for a lifecycle event (class or name)."""
        name = connection_event_name(event)
        self._listeners.setdefault(name, []).append(listener)

    def remove_connection_listener(
        self,
        event: str | type[LifecycleEvent],
        listener: LifecycleListener,
    ) -> None:
        """Remove a listener added with :meth:`add_connection_listener`."""
        listeners = self._listeners.get(connection_event_name(event), [])
        if listener in listeners:
            listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Internal: Connection start
    # -------------------------------------------------------------------------

    def _ensure_start_task(self) -> asyncio.Task[None]:
        task = self._start_task
        if task is None or (task.done() and self._state is ConnectionState.CLOSED):
            task = asyncio.create_task(self._start())
            task.add_done_callback(self._start_done)
            self._start_task = task
        return task

    async def _wait_started(self) -> None:
        """Wait until the initial start attempt settles, successful or not."""
        task = self._start_task or self._ensure_start_task()
        await asyncio.wait({task})

    async def _start(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._transport.start()
        except Exception as err:
            _LOGGER.warning("Could not start realtime connection: %s", err)
            self._transport.set_access_token_factory(
                self._access_token_hook(force_refresh=True)
            )
            try:
                await self._transport.start()
            except Exception as retry_err:
                _LOGGER.error("Realtime connection failed: %s", retry_err)
                self._set_state(ConnectionState.CLOSED)
                raise
            finally:
                self._transport.set_access_token_factory(
                    self._access_token_hook(force_refresh=False)
                )

        self._set_state(ConnectionState.CONNECTED)
        _LOGGER.info("Realtime connection started")

    @staticmethod
    def _start_done(task: asyncio.Task[None]) -> None:
        if not task.cancelled():
            # Retrieved here so subscribers waiting on a failed start stay quiet.
            task.exception()

    def _access_token_hook(self, *, force_refresh: bool) -> AccessTokenFactory:
        """Build the token hook for one connection attempt.

        With ``force_refresh`` the first token request of that attempt
        bypasses the cache; later requests (reconnects) use it again.
        """
        refresh_pending = force_refresh

        async def access_token() -> str:
            nonlocal refresh_pending
            if refresh_pending:
                refresh_pending = False
                _LOGGER.info("Retrying realtime connection with refreshed token")
                return await self._credentials.get_token(force_refresh=True)
            return await self._credentials.get_token()

        return access_token

    # -------------------------------------------------------------------------
    # Internal: Lifecycle dispatch
    # -------------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if self._destroyed or self._state is state:
            return
        _LOGGER.debug("State: %s → %s", self._state.value, state.value)
        self._state = state

    def _handle_close(self, error: BaseException | None = None) -> None:
        if self._destroyed:
            return
        self._set_state(ConnectionState.CLOSED)
        self._dispatch(Closed(error))

    def _handle_reconnecting(self, error: BaseException | None = None) -> None:
        if self._destroyed:
            return
        self._set_state(ConnectionState.RECONNECTING)
        self._dispatch(Reconnecting(error))

    def _handle_reconnected(self, connection_id: str | None = None) -> None:
        if self._destroyed:
            return
        self._set_state(ConnectionState.CONNECTED)
        self._dispatch(Reconnected(connection_id))
        self._resubscribe()

    def _dispatch(self, event: LifecycleEvent) -> None:
        listeners = list(self._listeners.get(event.name, []))
        _LOGGER.debug("Dispatching %s to %d listener(s)", event.name, len(listeners))

        for listener in listeners:
            try:
                result = listener(event)
            except Exception as err:
                _LOGGER.exception("Listener for %s failed: %s", event.name, err)
                continue
            if inspect.isawaitable(result):
                self._track(result, f"listener for {event.name}")

    def _resubscribe(self) -> None:
        """Replay every subscribed key; the server lost them on reconnect."""
        for key in list(self._subscriptions):
            self._track(
                self._transport.invoke(SUBSCRIBE_METHOD, key), f"resubscribe {key}"
            )

    def _track(self, awaitable: Any, description: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)
        task.add_done_callback(functools.partial(self._background_done, description))

    def _background_done(self, description: str, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and (err := task.exception()) is not None:
            _LOGGER.warning("Error in %s: %s", description, err)
