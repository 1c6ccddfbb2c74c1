"""Session bootstrap against the Pluto TV boot service."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from ..downloader.m3u8_parser import M3U8Parser, ParseError, select_highest_bandwidth
from ..models import SessionInfo
from ..utils.http_client import HttpClient

BOOT_URL = "https://boot.pluto.tv/v4/start"
DEFAULT_REFRESH_SECONDS = 3600
PRESET_CLIENT_INFO: Dict[str, str] = {
    "appName": "web",
    "appVersion": "9.3.0-69146e96681a70e0e5f4f40942d0abc67f04864a",
    "deviceVersion": "129.0.0",
    "deviceModel": "web",
    "deviceMake": "firefox",
    "deviceType": "web",
    "clientModelNumber": "1.0.0",
}


class BootAPI:
    """Obtains a stitcher URL and session token for channel playback."""

    def __init__(self, http_client: HttpClient) -> None:
        self._client = http_client
        self._parser = M3U8Parser(http_client)

    def start(self, now: Optional[datetime] = None) -> SessionInfo:
        params = {**PRESET_CLIENT_INFO, "clientID": str(uuid.uuid4())}
        data = self._client.get_json(BOOT_URL, params=params)

        stitcher = (data.get("servers") or {}).get("stitcher")
        token = data.get("sessionToken")
        if not stitcher or not token:
            raise ValueError("Boot response is missing servers.stitcher or sessionToken")

        try:
            refresh_in = int(data.get("refreshInSec") or DEFAULT_REFRESH_SECONDS)
        except (TypeError, ValueError):
            refresh_in = DEFAULT_REFRESH_SECONDS
        started = now or datetime.now(timezone.utc)
        session = SessionInfo(
            stitcher_url=stitcher,
            stitcher_params=data.get("stitcherParams") or "",
            session_token=token,
            refresh_at=started + timedelta(seconds=refresh_in - 1),
        )
        logging.info("Started stitcher session, refresh due at %s", session.refresh_at.isoformat())
        return session

    def resolve_playlist_url(self, channel_id: str, session: Optional[SessionInfo] = None) -> Tuple[str, SessionInfo]:
        """Authorized media playlist URL of the channel's best variant."""

        session = session or self.start()
        master = self._parser.parse_master_url(session.master_url(channel_id))
        variant = select_highest_bandwidth(master.variants)
        if variant is None:
            raise ParseError(f"master playlist for channel {channel_id} has no stream variants")
        logging.info("Selected variant %s (%s bps)", variant.uri, variant.bandwidth)
        return session.variant_url(channel_id, variant.uri), session
