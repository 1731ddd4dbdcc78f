"""Credential coordination shared by every hubline transport.

The coordinator owns the one bearer token used by HTTP calls, uploads and the
realtime connection. Validity is never tracked locally: a token is considered
good until a transport reports an authorization failure, at which point the
caller asks for a forced refresh.

Concurrent refreshes are coalesced, so any number of callers waiting for a
token trigger at most one call to the acquisition function.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from .errors import HublineCredentialError
from .singleflight import SingleFlight

_LOGGER = logging.getLogger(__name__)

TokenAcquire = Callable[[bool], Awaitable[str]]


class CredentialCoordinator:
    """Cache a bearer token and mediate refreshes.

    Usage:
        credentials = CredentialCoordinator(fetch_token)
        token = await credentials.get_token()
        token = await credentials.get_token(force_refresh=True)
    """

    def __init__(self, token_acquire: TokenAcquire) -> None:
        """Initialize coordinator.

        Args:
            token_acquire: Application callable returning a token. It receives
                True when the previous token was rejected and a fresh one is
                required.
        """
        self._token_acquire = token_acquire
        self._token: str | None = None
        self._refresh: SingleFlight[str] = SingleFlight()

    @property
    def token(self) -> str | None:
        """Return the cached token, if any."""
        return self._token

    @property
    def refreshing(self) -> bool:
        """Return True while a token acquisition is outstanding."""
        return self._refresh.in_flight

    def clear(self) -> None:
        """Forget the cached token."""
        self._token = None

    async def get_token(self, force_refresh: bool = False) -> str:
        """Return a token, acquiring one when needed.

        A forced refresh skips the cache but still joins an acquisition that is
        already running instead of starting a second one.

        Raises:
            HublineCredentialError: If the acquisition function fails
        """
        if self._token and not force_refresh:
            return self._token

        if self._refresh.in_flight:
            _LOGGER.debug("Token refresh in progress, waiting for it")

        return await self._refresh.run(lambda: self._acquire(force_refresh))

    async def _acquire(self, force_refresh: bool) -> str:
        _LOGGER.debug("Acquiring token (force_refresh=%s)", force_refresh)
        try:
            token = await self._token_acquire(force_refresh)
        except HublineCredentialError:
            raise
        except Exception as err:
            raise HublineCredentialError("Token acquisition failed") from err

        if not token:
            raise HublineCredentialError("Token acquisition returned an empty token")

        self._token = token
        return token
