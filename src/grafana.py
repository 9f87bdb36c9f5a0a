"""
Grafana API client - HTTP boundary to the dashboard service.

Every call retries transport failures and 5xx responses up to the
configured budget before surfacing a ServiceCallError. Callers only ever
see a response with a status below 500, or an exception.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from config import GrafanaConfig
from dashboards import Folder, UpsertRequest

logger = logging.getLogger(__name__)


class GrafanaError(Exception):
    """Base exception for Grafana API failures."""


class ServiceCallError(GrafanaError):
    """Raised when a request could not be completed within the retry budget."""

    def __init__(
        self,
        method: str,
        path: str,
        attempts: int,
        status: Optional[int] = None,
        reason: str = "",
    ):
        self.method = method
        self.path = path
        self.attempts = attempts
        self.status = status
        self.reason = reason
        super().__init__(
            f"{method} {path} failed after {attempts} attempt(s): {reason}"
        )


class ResponseDecodeError(GrafanaError):
    """Raised when Grafana returns a body that cannot be decoded."""


class FolderCreationError(GrafanaError):
    """Raised when Grafana does not hand back a usable folder id."""

    def __init__(self, title: str, reason: str):
        self.title = title
        super().__init__(f"Failed to create folder '{title}': {reason}")


@dataclass
class GrafanaResponse:
    """Status and raw body of a completed Grafana call."""

    status: int
    body: bytes = b""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise ResponseDecodeError(f"Malformed response body: {e}") from e


class GrafanaClient:
    """
    Async client for the subset of the Grafana HTTP API the loader needs.

    A fresh aiohttp session is opened per request; the loader issues one
    request at a time so there is nothing to pool.
    """

    def __init__(self, config: Optional[GrafanaConfig] = None):
        self.config = config or GrafanaConfig()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"
        if self.config.user:
            headers["X-Forwarded-User"] = self.config.user
        return headers

    async def request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> GrafanaResponse:
        """
        Send a request, retrying transport errors and 5xx responses.

        Args:
            method: HTTP method.
            path: API path, appended to the configured base URL.
            payload: Optional JSON body.

        Returns:
            The first response with a status below 500.

        Raises:
            ServiceCallError: If every attempt in the retry budget failed.
        """
        url = f"{self.config.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        attempts = self.config.retry
        last_status: Optional[int] = None
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                async with aiohttp.ClientSession(
                    timeout=timeout, headers=self._get_headers()
                ) as session:
                    async with session.request(method, url, json=payload) as resp:
                        body = await resp.read()
                        if resp.status < 500:
                            return GrafanaResponse(status=resp.status, body=body)
                        last_status = resp.status
                        last_error = f"HTTP {resp.status}"
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                f"{method} {path} failed (attempt {attempt}/{attempts}): {last_error}"
            )
            if attempt < attempts:
                await asyncio.sleep(self.config.retry_delay)

        raise ServiceCallError(method, path, attempts, last_status, last_error)

    async def list_folders(self) -> List[Folder]:
        """List all folders."""
        response = await self.request("GET", "/api/folders")
        if response.status != 200:
            raise ServiceCallError(
                "GET", "/api/folders", 1, response.status, response.text
            )

        body = response.json()
        if not isinstance(body, list):
            raise ResponseDecodeError("Expected a JSON array of folders")
        try:
            return [Folder.model_validate(item) for item in body]
        except ValidationError as e:
            raise ResponseDecodeError(f"Malformed folder entry: {e}") from e

    async def create_folder(self, title: str) -> Folder:
        """Create a folder and return it as Grafana stored it."""
        response = await self.request("POST", "/api/folders", {"title": title})
        if response.status not in (200, 201):
            raise FolderCreationError(
                title, f"HTTP {response.status}: {response.text}"
            )

        try:
            return Folder.model_validate(response.json())
        except ValidationError as e:
            raise ResponseDecodeError(f"Malformed folder response: {e}") from e

    async def upsert_dashboard(self, request: UpsertRequest) -> GrafanaResponse:
        """Create or update a dashboard keyed by its uid."""
        return await self.request("POST", "/api/dashboards/db", request.to_payload())

    async def delete_dashboard(self, uid: str) -> GrafanaResponse:
        """Delete the dashboard stored under ``uid``."""
        path = f"/api/dashboards/uid/{quote(uid, safe='')}"
        return await self.request("DELETE", path)
