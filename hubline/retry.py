"""Retry-on-authorization-failure policy for transport calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from .credentials import CredentialCoordinator

_LOGGER = logging.getLogger(__name__)

AUTHORIZATION_FAILURE_STATUSES: frozenset[int] = frozenset({401, 403})


class _HasStatus(Protocol):
    @property
    def status(self) -> int: ...


R = TypeVar("R", bound=_HasStatus)


def is_authorization_failure(status: int) -> bool:
    """Return True when status means the credential was rejected."""
    return status in AUTHORIZATION_FAILURE_STATUSES


async def call_with_auth_retry(
    credentials: CredentialCoordinator,
    attempt: Callable[[str], Awaitable[R]],
    *,
    retry: bool = True,
) -> R:
    """Run ``attempt`` with a token, retrying once after a forced refresh.

    Args:
        credentials: Coordinator supplying tokens
        attempt: Performs one call with the given bearer token
        retry: When False the first result is returned unconditionally

    Returns:
        The first result that is not an authorization failure, or the result
        of the single retry, whatever its status.

    Raises:
        HublineCredentialError: If a token cannot be acquired
    """
    token = await credentials.get_token()
    result = await attempt(token)

    if retry and is_authorization_failure(result.status):
        _LOGGER.debug("Authorization failed (%d), refreshing token", result.status)
        token = await credentials.get_token(force_refresh=True)
        result = await attempt(token)

    return result
