from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from ..blocklist.models import OutboundRequest
from ..constants import SYNC_TIMEOUT_SECONDS

log = logging.getLogger("sentinel.remote")


class RemoteError(Exception):
    """Base class for remote authority failures."""


class RemoteUnavailableError(RemoteError):
    """No response was received (connection refused, DNS failure, timeout)."""


class RemoteRejectedError(RemoteError):
    """The remote authority answered, but with a failure."""

    def __init__(self, status: int, body: str = "", message: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"remote rejected request (HTTP {status}): {body[:200]}")


class RemoteAuthorityClient:
    """Thin aiohttp client for the remote blocklist authority.

    Every request carries the bearer token. Failures are normalized into
    :class:`RemoteUnavailableError` and :class:`RemoteRejectedError` so callers
    can tell "never arrived" apart from "arrived and was refused".
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = api_token
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def post(self, path: str, body: dict[str, Any], *, timeout: Optional[float] = None) -> Any:
        url = f"{self.base_url}{path}"
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        try:
            async with self._get_session().post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self._token}"},
                **kwargs,
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise RemoteRejectedError(resp.status, text)
                if not text.strip():
                    return None
                try:
                    return json.loads(text)
                except ValueError as e:
                    raise RemoteRejectedError(resp.status, text, "remote returned invalid JSON") from e
        except RemoteError:
            raise
        except asyncio.TimeoutError as e:
            raise RemoteUnavailableError(f"timed out calling {path}") from e
        except aiohttp.ClientError as e:
            raise RemoteUnavailableError(f"{type(e).__name__} calling {path}: {e}") from e

    async def pull_sync(self, revision: str, instance_id: str) -> dict[str, Any]:
        data = await self.post(
            "/sync",
            {"revision": revision, "instanceId": instance_id},
            timeout=SYNC_TIMEOUT_SECONDS,
        )
        if not isinstance(data, dict):
            raise RemoteRejectedError(200, str(data), "sync response is not an object")
        return data

    async def submit(
        self,
        request: OutboundRequest,
        *,
        instance_id: Optional[str] = None,
        offline_retry: bool = False,
        timeout: Optional[float] = None,
    ) -> Any:
        body = request.to_payload()
        if instance_id is not None:
            body["instanceId"] = instance_id
        if offline_retry:
            body["isOfflineRetry"] = True
        log.debug("Submitting %s request %s to %s", request.kind, request.request_id, request.endpoint)
        return await self.post(request.endpoint, body, timeout=timeout)
