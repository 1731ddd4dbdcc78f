"""Pytest configuration and fixtures for hubline tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from hubline.credentials import CredentialCoordinator
from hubline.errors import HublineConnectionError


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    read_data: bytes = b"",
    reason: str | None = None,
    headers: dict[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        read_data: Data to return from read() call
        reason: HTTP reason phrase
        headers: Response headers

    Returns:
        Configured AsyncMock response usable as an async context manager
    """
    response = AsyncMock()
    response.status = status
    response.reason = reason
    response.headers = headers or {}
    response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class TokenSource:
    """Token acquisition stub handing out numbered tokens."""

    def __init__(self, *, delay: float = 0.0, fail: bool = False) -> None:
        self.calls: list[bool] = []
        self.delay = delay
        self.fail = fail

    async def __call__(self, force_refresh: bool) -> str:
        self.calls.append(force_refresh)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("identity provider unavailable")
        return f"token-{len(self.calls)}"


@pytest.fixture
def token_source() -> TokenSource:
    """Create a token source that answers immediately."""
    return TokenSource()


@pytest.fixture
def credentials(token_source: TokenSource) -> CredentialCoordinator:
    """Create a coordinator backed by ``token_source``."""
    return CredentialCoordinator(token_source)


class FakeTransport:
    """In-memory RealtimeTransport recording every interaction."""

    def __init__(self) -> None:
        self.start = AsyncMock(side_effect=self._start)
        self.stop = AsyncMock()
        self.invoke = AsyncMock()
        self.on = MagicMock()
        self.off = MagicMock()
        self.start_errors: list[Exception] = []
        self.tokens_seen: list[str] = []
        self.token_factory: Callable[[], Any] | None = None
        self.close_handlers: list[Callable[[Any], Any]] = []
        self.reconnecting_handlers: list[Callable[[Any], Any]] = []
        self.reconnected_handlers: list[Callable[[Any], Any]] = []

    async def _start(self) -> None:
        assert self.token_factory is not None
        self.tokens_seen.append(await self.token_factory())
        if self.start_errors:
            raise self.start_errors.pop(0)

    def set_access_token_factory(self, factory: Callable[[], Any] | None) -> None:
        self.token_factory = factory

    def on_close(self, handler: Callable[[Any], Any]) -> None:
        self.close_handlers.append(handler)

    def on_reconnecting(self, handler: Callable[[Any], Any]) -> None:
        self.reconnecting_handlers.append(handler)

    def on_reconnected(self, handler: Callable[[Any], Any]) -> None:
        self.reconnected_handlers.append(handler)

    def fire_close(self, error: BaseException | None = None) -> None:
        for handler in self.close_handlers:
            handler(error)

    def fire_reconnecting(self, error: BaseException | None = None) -> None:
        for handler in self.reconnecting_handlers:
            handler(error)

    def fire_reconnected(self, connection_id: str | None = None) -> None:
        for handler in self.reconnected_handlers:
            handler(connection_id)


@pytest.fixture
def transport() -> FakeTransport:
    """Create a fake realtime transport."""
    return FakeTransport()


def connection_refused() -> HublineConnectionError:
    """Return the error a transport raises when a start attempt fails."""
    return HublineConnectionError("WebSocket connection failed")
