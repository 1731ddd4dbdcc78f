"""HTTP client for hubline API endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import aiohttp

from .credentials import CredentialCoordinator
from .errors import (
    HublineAuthorizationError,
    HublineConnectionError,
    HublineResponseError,
    HublineTimeout,
)
from .retry import call_with_auth_retry, is_authorization_failure

_LOGGER = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
DEFAULT_CHUNK_SIZE = 64 * 1024

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
UploadMethod = Literal["POST", "PUT", "PATCH"]
RequestBody = str | bytes | aiohttp.FormData | None
ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class HublineResponse:
    """Snapshot of a completed HTTP response."""

    status: int
    reason: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        """Return True for 2xx statuses."""
        return 200 <= self.status < 300

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body as text."""
        return self.body.decode(encoding)

    def json(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.body)

    def raise_for_status(self) -> None:
        """Raise when the response is not successful."""
        if self.ok:
            return
        message = f"Request failed with status {self.status}"
        if is_authorization_failure(self.status):
            raise HublineAuthorizationError(self.status, message)
        raise HublineResponseError(self.status, message)


def progress_percent(loaded: int, total: int | None) -> float:
    """Return upload progress in [0, 100].

    Unknown or zero totals report 100 so callers never see a division artifact.
    """
    if not total or total <= 0:
        return 100.0
    return min(loaded / total * 100, 100.0)


async def _progress_stream(
    data: bytes,
    on_progress: ProgressCallback,
    chunk_size: int,
) -> AsyncIterator[bytes]:
    """Yield ``data`` in chunks, reporting progress after each one."""
    total = len(data)
    sent = 0
    for start in range(0, total, chunk_size):
        chunk = data[start : start + chunk_size]
        yield chunk
        sent += len(chunk)
        on_progress(progress_percent(sent, total))


class HublineHttpClient:
    """HTTP client wrapper attaching bearer credentials to every call.

    Authorization failures (401/403) force one token refresh and one retry.
    Other failing statuses are returned as a response with ``ok`` False.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        credentials: CredentialCoordinator,
        *,
        timeout: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._timeout = timeout
        self._chunk_size = chunk_size

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @staticmethod
    def _auth_headers(token: str, content_type: str = "") -> dict[str, str]:
        headers = {"Authorization": f"Bearer {token}"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def get(self, path: str, *, retry: bool = True) -> HublineResponse:
        """Fetch ``path`` with a JSON content type."""

        async def attempt(token: str) -> HublineResponse:
            return await self._request(
                "GET", path, headers=self._auth_headers(token, JSON_CONTENT_TYPE)
            )

        response = await call_with_auth_retry(self._credentials, attempt, retry=retry)
        if not response.ok:
            _LOGGER.warning("Error calling endpoint %s: %d", path, response.status)
        return response

    async def post(
        self,
        path: str,
        method: HttpMethod = "POST",
        body: RequestBody = None,
        content_type: str = JSON_CONTENT_TYPE,
        *,
        retry: bool = True,
    ) -> HublineResponse:
        """Send ``body`` to ``path``.

        An empty ``content_type`` omits the header so multipart bodies can
        supply their own boundary.
        """

        async def attempt(token: str) -> HublineResponse:
            return await self._request(
                method,
                path,
                headers=self._auth_headers(token, content_type),
                data=body,
            )

        return await call_with_auth_retry(self._credentials, attempt, retry=retry)

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
        """Upload ``body`` to ``path`` reporting percentage progress.

        A retry after an authorization failure repeats the whole upload,
        progress reporting included.
        """

        async def attempt(token: str) -> HublineResponse:
            headers = self._auth_headers(token, content_type)
            data: Any = body
            streamed = False
            if on_progress is not None and isinstance(body, (str, bytes)) and body:
                raw = body.encode() if isinstance(body, str) else body
                headers["Content-Length"] = str(len(raw))
                data = _progress_stream(raw, on_progress, self._chunk_size)
                streamed = True

            response = await self._request(method, path, headers=headers, data=data)

            if on_progress is not None and not streamed:
                # Multipart bodies have no size up front; empty ones are done.
                on_progress(progress_percent(0, None))
            return response

        return await call_with_auth_retry(self._credentials, attempt, retry=retry)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str],
        data: Any = None,
    ) -> HublineResponse:
        url = self._url(path)
        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                data=data,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                body = await resp.read()
                return HublineResponse(
                    status=resp.status,
                    reason=resp.reason,
                    headers=dict(resp.headers),
                    body=body,
                )
        except TimeoutError as err:
            raise HublineTimeout(f"{method} {path} timed out") from err
        except aiohttp.ClientError as err:
            raise HublineConnectionError(f"{method} {path} failed") from err
