"""Tests for the HublineClient facade."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hubline import ClientOptions, ConnectionState, HubConnection, HublineClient
from hubline.realtime import Reconnected

from .conftest import FakeTransport, TokenSource, create_mock_response


@pytest.fixture
def options(token_source: TokenSource) -> ClientOptions:
    """Create client options."""
    return ClientOptions(base_url="https://hub.example.com", token_acquire=token_source)


class TestHublineClient:
    """Test wiring of credentials, HTTP and realtime."""

    def test_default_transport(self, options: ClientOptions) -> None:
        """Test the default transport targets base_url + hub_path."""
        options.hub_path = "/hubs/custom"
        client = HublineClient(options)

        transport = client.realtime._transport
        assert isinstance(transport, HubConnection)
        assert transport.url == "https://hub.example.com/hubs/custom"

    async def test_token_shared_between_http_and_realtime(
        self,
        options: ClientOptions,
        transport: FakeTransport,
        mock_session: MagicMock,
        token_source: TokenSource,
    ) -> None:
        """Test one cached token serves the hub and HTTP calls."""
        mock_session.request.return_value = create_mock_response(status=200)
        client = HublineClient(options, session=mock_session, transport=transport)

        await client.connect()
        await client.get("/api/user")

        assert transport.tokens_seen == ["token-1"]
        headers = mock_session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer token-1"
        assert token_source.calls == [False]

    async def test_http_refresh_visible_to_realtime(
        self,
        options: ClientOptions,
        transport: FakeTransport,
        mock_session: MagicMock,
    ) -> None:
        """Test a token refreshed by an HTTP retry is used by the hub hook."""
        mock_session.request.side_effect = [
            create_mock_response(status=401),
            create_mock_response(status=200),
        ]
        client = HublineClient(options, session=mock_session, transport=transport)

        await client.post("/api/messages", "POST", "{}")
        await client.connect()

        assert transport.tokens_seen == ["token-2"]

    async def test_subscribe_and_listeners(
        self,
        options: ClientOptions,
        transport: FakeTransport,
        mock_session: MagicMock,
    ) -> None:
        """Test subscriptions and lifecycle listeners pass through."""
        client = HublineClient(options, session=mock_session, transport=transport)
        callback, listener = MagicMock(), MagicMock()
        client.add_connection_listener("reconnected", listener)

        assert await client.subscribe("roomA", "message", callback)
        transport.fire_reconnected("conn-9")
        await client.unsubscribe("roomA", "message", callback)

        listener.assert_called_once_with(Reconnected("conn-9"))
        transport.off.assert_called_once_with("roomA:message", callback)

    async def test_context_manager(
        self,
        options: ClientOptions,
        transport: FakeTransport,
        mock_session: MagicMock,
    ) -> None:
        """Test the context manager connects and destroys."""
        async with HublineClient(
            options, session=mock_session, transport=transport
        ) as client:
            assert client.connection_state is ConnectionState.CONNECTED

        transport.stop.assert_awaited_once()
        assert client.connection_state is ConnectionState.CLOSED
        mock_session.close.assert_not_called()

    async def test_destroy_closes_owned_session(
        self, options: ClientOptions, transport: FakeTransport
    ) -> None:
        """Test an internally created aiohttp session is closed on destroy."""
        owned = MagicMock()
        owned.close = MagicMock(return_value=_done())
        client = HublineClient(options, transport=transport)

        with patch("hubline.client.aiohttp.ClientSession", return_value=owned):
            assert client.http is client.http

        await client.destroy()

        owned.close.assert_called_once_with()
        transport.stop.assert_awaited_once()


async def _done() -> None:
    return None
