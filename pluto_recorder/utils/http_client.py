"""Shared HTTP helpers for the boot API, stitcher manifests, and CDN segments."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
import requests

REAL_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; rv:129.0) Gecko/20100101 Firefox/129.0"
)

CDN_HEADERS: Dict[str, str] = {
    "user-agent": REAL_USER_AGENT,
    "accept": "*/*",
    "accept-language": "de-DE,de;q=0.9,en;q=0.8",
    "origin": "https://pluto.tv",
    "referer": "https://pluto.tv/",
}


class DownloadError(Exception):
    """Raised when a network call fails or returns a non-success status."""


class AuthenticationError(DownloadError):
    """Raised when the stitcher or boot service rejects the session."""


class HttpClient:
    """Handles boot, manifest, key and segment requests with shared headers."""

    def __init__(self, timeout: int = 10) -> None:
        self.timeout = timeout
        self._session = requests.Session()
        self._headers = CDN_HEADERS.copy()
        self._session.headers.update(self._headers)

        self._async_session: Optional[aiohttp.ClientSession] = None
        self._async_lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON document (boot API)."""

        response = self._get(url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            logging.error("Response from %s is not JSON: %s", url, exc)
            raise DownloadError(f"Invalid JSON from {url}") from exc

    def fetch_text(self, url: str) -> str:
        """Fetch a manifest as text."""

        response = self._get(url)
        response.encoding = "utf-8"
        return response.text

    def fetch_bytes(self, url: str) -> bytes:
        """Fetch a key or segment body as raw bytes."""

        return self._get(url).content

    async def fetch_bytes_async(self, url: str) -> bytes:
        """Asynchronously fetch a key or segment body as raw bytes."""

        session = await self._get_async_session()
        try:
            async with session.get(url) as resp:
                if resp.status in {401, 403}:
                    raise AuthenticationError(f"Request to {url} rejected (status {resp.status})")
                if resp.status >= 400:
                    raise DownloadError(f"Request to {url} failed (status {resp.status})")
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logging.debug("Async GET %s failed: %s", url, exc)
            raise DownloadError(f"Request to {url} failed: {exc}") from exc

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logging.debug("GET %s failed: %s", url, exc)
            raise DownloadError(f"Request to {url} failed: {exc}") from exc

        if response.status_code in {401, 403}:
            logging.error("Request to %s rejected (status %s).", url, response.status_code)
            raise AuthenticationError(f"Request to {url} rejected (status {response.status_code})")

        try:
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DownloadError(f"Request to {url} failed: {exc}") from exc
        return response

    async def _get_async_session(self) -> aiohttp.ClientSession:
        current_loop = asyncio.get_running_loop()
        if self._async_session:
            if (
                self._async_session.closed
                or not self._loop
                or self._loop.is_closed()
                or self._loop is not current_loop
            ):
                await self._shutdown_async_session()

        if self._async_lock is None or self._loop is not current_loop:
            self._async_lock = asyncio.Lock()

        async with self._async_lock:
            if self._async_session and not self._async_session.closed:
                return self._async_session
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            connector = aiohttp.TCPConnector(limit=0)
            self._async_session = aiohttp.ClientSession(
                timeout=timeout,
                connector=connector,
                headers=self._headers.copy(),
            )
            self._loop = current_loop
        return self._async_session

    async def _shutdown_async_session(self) -> None:
        if self._async_session:
            try:
                await self._async_session.close()
            except aiohttp.ClientError as exc:  # pragma: no cover - best effort
                logging.debug("Closing async session failed: %s", exc)
        self._async_session = None
        self._loop = None

    async def aclose(self) -> None:
        """Close the aiohttp session from inside the loop that created it."""

        await self._shutdown_async_session()

    def close(self) -> None:
        self._session.close()

        if self._async_session and not self._async_session.closed:
            if self._loop and not self._loop.is_closed() and not self._loop.is_running():
                self._loop.run_until_complete(self._async_session.close())
            else:
                logging.debug("Dropping async session bound to a finished event loop")
        self._async_session = None
        self._loop = None

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
