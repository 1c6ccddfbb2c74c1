"""Models describing a stitcher session and a decrypt run."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

CHANNEL_PATH = "v2/stitch/hls/channel"


class SessionInfo(BaseModel):
    """Simplified view of the boot API response."""

    stitcher_url: str
    stitcher_params: str = ""
    session_token: str
    refresh_at: datetime

    def master_url(self, channel_id: str) -> str:
        base = f"{self.stitcher_url.rstrip('/')}/{CHANNEL_PATH}/{channel_id}/master.m3u8"
        query = f"{self.stitcher_params}&jwt={self.session_token}" if self.stitcher_params else f"jwt={self.session_token}"
        return f"{base}?{query}"

    def variant_url(self, channel_id: str, variant_uri: str) -> str:
        # Variant URIs already carry a query string from the stitcher.
        separator = "&" if "?" in variant_uri else "?"
        return (
            f"{self.stitcher_url.rstrip('/')}/{CHANNEL_PATH}/{channel_id}/"
            f"{variant_uri}{separator}jwt={self.session_token}"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current >= self.refresh_at


class SegmentFailure(BaseModel):
    url: str
    reason: str


class ProcessReport(BaseModel):
    """Outcome of one decrypt run over a media playlist."""

    written: int = 0
    skipped: int = 0
    failed: List[SegmentFailure] = []

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def total(self) -> int:
        return self.written + self.skipped + len(self.failed)
