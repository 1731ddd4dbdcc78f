"""WebSocket helpers for the hubline realtime transport."""

from __future__ import annotations

import asyncio
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    HublineConnectionError,
    HublineHandshakeError,
    HublineTimeout,
)


def to_websocket_url(url: str, *, access_token: str | None = None) -> str:
    """Convert an http(s) URL into a ws(s) URL, adding the access token query."""
    parts = urlsplit(url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    query = parts.query
    if access_token:
        token_query = urlencode({"access_token": access_token})
        query = f"{query}&{token_query}" if query else token_query
    return urlunsplit((scheme, parts.netloc, parts.path, query, parts.fragment))


async def connect_websocket(
    url: str,
    *,
    access_token: str | None = None,
    ping_interval: int | None = 20,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to a hub WebSocket endpoint.

    The bearer token travels both as the ``access_token`` query parameter and
    as an Authorization header; servers read one or the other.

    Args:
        url: Hub URL (http, https, ws or wss)
        access_token: Optional bearer token
        ping_interval: Interval for ping frames
        timeout: Connection timeout
    """
    ws_url = to_websocket_url(url, access_token=access_token)
    headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
    try:
        return await asyncio.wait_for(
            websockets.connect(
                ws_url,
                additional_headers=headers,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise HublineTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise HublineHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise HublineConnectionError("WebSocket connection failed") from err
