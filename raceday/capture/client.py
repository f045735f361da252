"""HTTP client the operator console uses to talk to the record store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from ..settings import settings

logger = logging.getLogger(__name__)


class SubmissionRejected(Exception):
    """The store refused the request (4xx). Retrying will not help."""

    def __init__(self, status: int, detail: str):
        self.status = status
        self.detail = detail
        super().__init__(detail)


class SubmissionUnavailable(Exception):
    """The store could not be reached or failed on its side. Retry later."""


class StoreClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.CAPTURE_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CAPTURE_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "StoreClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._get_client().request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SubmissionUnavailable(str(e) or e.__class__.__name__) from e
        if resp.status_code >= 500:
            raise SubmissionUnavailable(f"Server error {resp.status_code}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except (ValueError, AttributeError):
                detail = resp.text
            if not isinstance(detail, str):
                detail = str(detail)
            raise SubmissionRejected(resp.status_code, detail)
        try:
            return resp.json()
        except ValueError as e:
            # a 2xx that is not JSON comes from something in front of the store, e.g. a captive portal
            raise SubmissionUnavailable(f"Unexpected response body ({resp.status_code})") from e

    async def submit_finish(self, race_id: int, bib_number: int, timestamp: datetime) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/races/{race_id}/finish-times",
            json={"bib_number": bib_number, "timestamp": timestamp.isoformat()},
        )

    async def get_results(self, race_id: int, scheme: str = "overall", age_scheme: str = "standard") -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/api/races/{race_id}/results",
            params={"scheme": scheme, "age_scheme": age_scheme},
        )

    async def health(self) -> bool:
        try:
            await self._request("GET", "/api/health")
        except (SubmissionUnavailable, SubmissionRejected) as e:
            logger.debug("Health probe failed: %s", e)
            return False
        return True
