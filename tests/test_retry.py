"""Tests for the retry-on-authorization-failure policy."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from hubline.credentials import CredentialCoordinator
from hubline.retry import call_with_auth_retry, is_authorization_failure

from .conftest import TokenSource


@dataclass
class Outcome:
    status: int
    token: str


class ScriptedCall:
    """Call returning scripted statuses and recording the tokens used."""

    def __init__(self, *statuses: int) -> None:
        self._statuses = list(statuses)
        self.tokens: list[str] = []

    async def __call__(self, token: str) -> Outcome:
        self.tokens.append(token)
        return Outcome(self._statuses.pop(0), token)


@pytest.mark.parametrize(
    ("status", "expected"),
    [(401, True), (403, True), (400, False), (404, False), (500, False), (200, False)],
)
def test_is_authorization_failure(status: int, expected: bool) -> None:
    """Test only 401 and 403 classify as authorization failures."""
    assert is_authorization_failure(status) is expected


class TestCallWithAuthRetry:
    """Test the single retry after a forced refresh."""

    async def test_success_not_retried(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test a successful call runs once with the cached token."""
        call = ScriptedCall(200)

        result = await call_with_auth_retry(credentials, call)

        assert result.status == 200
        assert call.tokens == ["token-1"]
        assert token_source.calls == [False]

    async def test_retry_once_after_401(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test a 401 forces a refresh and the retry result is returned."""
        call = ScriptedCall(401, 200)

        result = await call_with_auth_retry(credentials, call)

        assert result.status == 200
        assert call.tokens == ["token-1", "token-2"]
        assert token_source.calls == [False, True]

    async def test_retry_once_after_403(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test a 403 is treated like a 401."""
        call = ScriptedCall(403, 204)

        result = await call_with_auth_retry(credentials, call)

        assert result.status == 204
        assert token_source.calls == [False, True]

    async def test_no_retry_storm(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test a second 401 is returned verbatim without another refresh."""
        call = ScriptedCall(401, 401)

        result = await call_with_auth_retry(credentials, call)

        assert result == Outcome(401, "token-2")
        assert len(call.tokens) == 2
        assert token_source.calls == [False, True]

    async def test_other_errors_returned_as_is(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test non-authorization failures are not retried."""
        call = ScriptedCall(500)

        result = await call_with_auth_retry(credentials, call)

        assert result.status == 500
        assert token_source.calls == [False]

    async def test_retry_disabled(
        self, credentials: CredentialCoordinator, token_source: TokenSource
    ) -> None:
        """Test retry=False returns the first authorization failure."""
        call = ScriptedCall(401)

        result = await call_with_auth_retry(credentials, call, retry=False)

        assert result.status == 401
        assert token_source.calls == [False]
