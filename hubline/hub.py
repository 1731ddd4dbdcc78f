"""Default realtime transport speaking the JSON hub protocol over websockets.

Handles:
- Handshake and bearer token handoff on every (re)connect
- Invocation / completion correlation
- Server-to-client method dispatch
- Keepalive pings
- Automatic reconnect on a fixed delay schedule

Subscription bookkeeping is not done here; see ``hubline.realtime``.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import (
    HublineClientError,
    HublineConnectionError,
    HublineHandshakeError,
    HublineInvocationError,
    HublineTimeout,
)
from .protocol import (
    HubMessageType,
    build_close,
    build_handshake,
    build_invocation,
    build_ping,
    decode_frames,
    parse_handshake_response,
)
from .ws import connect_websocket

_LOGGER = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAYS: tuple[float, ...] = (0.0, 2.0, 10.0, 30.0)

AccessTokenFactory = Callable[[], Awaitable[str | None]]
InvocationHandler = Callable[..., Any]
ErrorHandler = Callable[[BaseException | None], Any]
ReconnectedHandler = Callable[[str | None], Any]


class HubConnection:
    """Hub connection over a single WebSocket.

    Usage:
        hub = HubConnection("https://example.com/hubs/rtm")
        hub.set_access_token_factory(fetch_token)
        hub.on("message", handle_message)
        await hub.start()
        await hub.invoke("Subscribe", "room:message")
        await hub.stop()
    """

    def __init__(
        self,
        url: str,
        *,
        access_token_factory: AccessTokenFactory | None = None,
        reconnect_delays: Sequence[float] = DEFAULT_RECONNECT_DELAYS,
        keepalive_interval: float = 15.0,
        handshake_timeout: float = 15.0,
        ping_interval: int | None = 20,
    ) -> None:
        """Initialize hub connection.

        Args:
            url: Hub endpoint URL
            access_token_factory: Called before every connect attempt
            reconnect_delays: Seconds to wait before each reconnect attempt;
                empty disables automatic reconnect
            keepalive_interval: Interval between hub ping frames (seconds)
            handshake_timeout: Timeout for socket open and handshake (seconds)
            ping_interval: WebSocket-level ping interval (seconds)
        """
        self.url = url
        self._access_token_factory = access_token_factory
        self._reconnect_delays = tuple(reconnect_delays)
        self._keepalive_interval = keepalive_interval
        self._handshake_timeout = handshake_timeout
        self._ping_interval = ping_interval

        self._ws: ClientConnection | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._stopping = False

        self._invocation_ids = itertools.count(1)
        self._pending: dict[str, tuple[str, asyncio.Future[Any]]] = {}
        self._handlers: dict[str, list[InvocationHandler]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._close_handlers: list[ErrorHandler] = []
        self._reconnecting_handlers: list[ErrorHandler] = []
        self._reconnected_handlers: list[ReconnectedHandler] = []

    @property
    def is_connected(self) -> bool:
        """Return True while a socket is open and handshaken."""
        return self._ws is not None

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    def set_access_token_factory(self, factory: AccessTokenFactory | None) -> None:
        """Replace the hook asked for a token before each connect attempt."""
        self._access_token_factory = factory

    async def start(self) -> None:
        """Open the socket and complete the handshake.

        Raises:
            HublineClientError: If the token, socket or handshake fails
        """
        if self._ws is not None:
            raise HublineConnectionError("Hub connection is already started")

        self._stopping = False
        await self._open()

        if self._keepalive_task is None:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        _LOGGER.info("Hub connection started: %s", self.url)

    async def stop(self) -> None:
        """Close the connection without reconnecting."""
        _LOGGER.info("Stopping hub connection: %s", self.url)
        self._stopping = True

        for task in (self._keepalive_task, self._listen_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._keepalive_task = None
        self._listen_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.send(build_close())
            await ws.close()

        self._fail_pending(HublineConnectionError("Hub connection stopped"))

    def on_close(self, handler: ErrorHandler) -> None:
        """Register a handler for a connection that will not come back."""
        self._close_handlers.append(handler)

    def on_reconnecting(self, handler: ErrorHandler) -> None:
        """Register a handler for a lost connection entering reconnect."""
        self._reconnecting_handlers.append(handler)

    def on_reconnected(self, handler: ReconnectedHandler) -> None:
        """Register a handler for a successful reconnect."""
        self._reconnected_handlers.append(handler)

    # -------------------------------------------------------------------------
    # Public API: Methods
    # -------------------------------------------------------------------------

    async def invoke(self, method: str, *args: Any) -> Any:
        """Invoke a hub method and wait for its completion.

        Raises:
            HublineConnectionError: If not connected or the send fails
            HublineInvocationError: If the server completed with an error
        """
        ws = self._ws
        if ws is None:
            raise HublineConnectionError("Hub connection is not started")

        invocation_id = str(next(self._invocation_ids))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = (method, future)

        try:
            await ws.send(
                build_invocation(method, list(args), invocation_id=invocation_id)
            )
        except (WebSocketException, OSError) as err:
            self._pending.pop(invocation_id, None)
            raise HublineConnectionError(f"Failed to send {method}") from err

        return await future

    def on(self, name: str, handler: InvocationHandler) -> None:
        """Register a handler for server-to-client calls of ``name``."""
        self._handlers.setdefault(name.lower(), []).append(handler)

    def off(self, name: str, handler: InvocationHandler | None = None) -> None:
        """Remove one handler for ``name``, or all of them."""
        key = name.lower()
        handlers = self._handlers.get(key)
        if not handlers:
            return
        if handler is None:
            del self._handlers[key]
            return
        with contextlib.suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            del self._handlers[key]

    # -------------------------------------------------------------------------
    # Internal: Connection
    # -------------------------------------------------------------------------

    async def _open(self) -> None:
        token = None
        if self._access_token_factory is not None:
            token = await self._access_token_factory()

        ws = await connect_websocket(
            self.url,
            access_token=token,
            ping_interval=self._ping_interval,
            timeout=self._handshake_timeout,
        )
        try:
            leftover = await self._handshake(ws)
        except BaseException:
            await ws.close()
            raise

        if self._stopping:
            await ws.close()
            raise HublineConnectionError("Hub connection stopped while connecting")

        self._ws = ws
        self._listen_task = asyncio.create_task(self._listen(ws))
        for frame in leftover:
            self._handle_frame(frame)

    async def _handshake(self, ws: ClientConnection) -> list[dict[str, Any]]:
        try:
            await ws.send(build_handshake())
            raw = await asyncio.wait_for(ws.recv(), timeout=self._handshake_timeout)
        except TimeoutError as err:
            raise HublineTimeout("Hub handshake timed out") from err
        except (WebSocketException, OSError) as err:
            raise HublineConnectionError("Connection lost during handshake") from err

        if not isinstance(raw, str):
            raise HublineHandshakeError("Handshake response is not text")
        return parse_handshake_response(raw)

    async def _listen(self, ws: ClientConnection) -> None:
        """Read frames until the socket ends, then reconnect or close."""
        error: BaseException | None = None
        allow_reconnect = True

        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    frames = decode_frames(raw)
                except ValueError as err:
                    _LOGGER.warning("Invalid hub message: %s", err)
                    continue

                close_frame = next(
                    (f for f in frames if f.get("type") == HubMessageType.CLOSE),
                    None,
                )
                for frame in frames:
                    if frame is close_frame:
                        break
                    self._handle_frame(frame)

                if close_frame is not None:
                    if close_error := close_frame.get("error"):
                        error = HublineConnectionError(
                            f"Server closed connection: {close_error}"
                        )
                    allow_reconnect = bool(close_frame.get("allowReconnect", False))
                    await ws.close()
                    break
        except ConnectionClosed as err:
            error = err

        if self._stopping or self._ws is not ws:
            return

        self._ws = None
        self._fail_pending(HublineConnectionError("Hub connection lost"))

        if not allow_reconnect or not self._reconnect_delays:
            _LOGGER.info("Hub connection closed: %s", error)
            self._fire(self._close_handlers, error)
            return

        await self._reconnect(error)

    async def _reconnect(self, error: BaseException | None) -> None:
        _LOGGER.warning("Hub connection lost, reconnecting: %s", error)
        self._fire(self._reconnecting_handlers, error)

        for attempt, delay in enumerate(self._reconnect_delays, start=1):
            await asyncio.sleep(delay)
            if self._stopping:
                return
            try:
                await self._open()
            except HublineClientError as err:
                _LOGGER.warning("Reconnect attempt %d failed: %s", attempt, err)
                error = err
                continue

            _LOGGER.info("Hub connection reconnected (attempt %d)", attempt)
            self._fire(self._reconnected_handlers, None)
            return

        _LOGGER.error(
            "Hub connection gave up after %d attempts", len(self._reconnect_delays)
        )
        self._fire(self._close_handlers, error)

    async def _keepalive_loop(self) -> None:
        """Send ping frames so the server does not time the client out."""
        while not self._stopping:
            await asyncio.sleep(self._keepalive_interval)
            ws = self._ws
            if ws is None:
                continue
            try:
                await ws.send(build_ping())
            except (WebSocketException, OSError) as err:
                _LOGGER.debug("Keepalive ping failed: %s", err)

    # -------------------------------------------------------------------------
    # Internal: Frame handling
    # -------------------------------------------------------------------------

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        msg_type = frame.get("type")

        if msg_type == HubMessageType.INVOCATION:
            self._dispatch(str(frame.get("target", "")), frame.get("arguments") or [])
        elif msg_type == HubMessageType.COMPLETION:
            self._complete(frame)
        elif msg_type == HubMessageType.PING:
            return
        else:
            _LOGGER.debug("Ignoring hub frame type %s", msg_type)

    def _complete(self, frame: dict[str, Any]) -> None:
        entry = self._pending.pop(str(frame.get("invocationId")), None)
        if entry is None:
            _LOGGER.debug("Completion for unknown invocation %s", frame.get("invocationId"))
            return

        method, future = entry
        if future.done():
            return
        if error := frame.get("error"):
            future.set_exception(HublineInvocationError(method, str(error)))
        else:
            future.set_result(frame.get("result"))

    def _dispatch(self, target: str, arguments: list[Any]) -> None:
        handlers = self._handlers.get(target.lower())
        if not handlers:
            _LOGGER.debug("No handler registered for %s", target)
            return

        for handler in list(handlers):
            try:
                result = handler(*arguments)
            except Exception as err:
                _LOGGER.exception("Handler for %s failed: %s", target, err)
                continue
            if inspect.isawaitable(result):
                self._track(result)

    def _fire(self, handlers: list[Callable[[Any], Any]], arg: Any) -> None:
        for handler in list(handlers):
            try:
                result = handler(arg)
            except Exception as err:
                _LOGGER.exception("Lifecycle handler failed: %s", err)
                continue
            if inspect.isawaitable(result):
                self._track(result)

    def _track(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and (err := task.exception()) is not None:
            _LOGGER.error("Hub handler task failed: %s", err)

    def _fail_pending(self, error: HublineClientError) -> None:
        pending, self._pending = self._pending, {}
        for _method, future in pending.values():
            if not future.done():
                future.set_exception(error)
