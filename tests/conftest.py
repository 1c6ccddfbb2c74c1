import asyncio
from typing import Dict, List, Union

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from pluto_recorder.utils.http_client import DownloadError

KEY_PREFIX = "x" * 25
KEY_URI_A = f"https://keys.example.com/drm/v1/{KEY_PREFIX}epochA"
KEY_URI_B = f"https://keys.example.com/drm/v1/{KEY_PREFIX}epochB"
SEGMENT_BASE = "https://cdn.example.com/stitch/720pDRM/show/clip1"
ZERO_IV = "0x" + "0" * 32

Response = Union[bytes, str, dict, Exception]


def encrypt(plaintext: bytes, key: bytes, iv: bytes = bytes(16)) -> bytes:
    return AES.new(key, AES.MODE_CBC, iv).encrypt(pad(plaintext, AES.block_size))


class FakeHttpClient:
    """In-memory stand-in for HttpClient keyed by URL."""

    def __init__(self, responses: Dict[str, Response] = None) -> None:
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[str] = []
        self.closed = False
        self.calls_after_close: List[str] = []

    def _lookup(self, url: str) -> Response:
        self.calls.append(url)
        if url not in self.responses:
            raise DownloadError(f"Request to {url} failed (status 404)")
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    def get_json(self, url, params=None):
        return self._lookup(url)

    def fetch_text(self, url: str) -> str:
        return self._lookup(url)

    def fetch_bytes(self, url: str) -> bytes:
        return self._lookup(url)

    async def fetch_bytes_async(self, url: str) -> bytes:
        await asyncio.sleep(0)
        if self.closed:
            self.calls_after_close.append(url)
        return self._lookup(url)

    async def aclose(self) -> None:
        self.closed = True
        await asyncio.sleep(0)

    def close(self) -> None:
        return None

    def count(self, url: str) -> int:
        return self.calls.count(url)


@pytest.fixture
def http_client():
    return FakeHttpClient()
