"""
Resolve a content identifier (BVID) into a signed, expiring audio URL.

The upstream CDN signs its links with an embedded expiry; this module
reads it back and hands callers a local proxy URL alongside the raw one.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlparse

from halfbeat.core.api import BilibiliClient
from halfbeat.core.dto import BiliAudio, ResolvedLink, VideoInfoDTO
from halfbeat.core.errors import (
    NoPlayableTrackError,
    NotFoundError,
    PlayerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Query parameters that may carry the link expiry, in priority order
EXPIRY_PARAMS = ("expire", "expires", "deadline", "e", "validtime")

# Used whenever no expiry can be read from the link
DEFAULT_LINK_LIFETIME = timedelta(hours=2)

# Values above this are millisecond timestamps
_MILLIS_THRESHOLD = 10 ** 12

_BVID_RE = re.compile(r"BV[0-9A-Za-z]{10}")


def derive_expire_time(raw_url: str, now: Optional[datetime] = None) -> datetime:
    """
    Read the expiry embedded in a signed URL.

    The first recognised parameter that parses as a positive integer wins.
    Falls back to now + 2h when nothing usable is present.
    """
    now = now or datetime.now(timezone.utc)
    fallback = now + DEFAULT_LINK_LIFETIME
    try:
        query = parse_qs(urlparse(raw_url).query)
    except ValueError:
        return fallback

    for key in EXPIRY_PARAMS:
        values = query.get(key)
        if not values or not values[0]:
            continue
        try:
            ts = int(values[0])
        except ValueError:
            continue
        if ts > _MILLIS_THRESHOLD:
            ts //= 1000
        if ts > 0:
            try:
                return datetime.fromtimestamp(ts, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                continue
    return fallback


def extract_bvid(text: str) -> str:
    """Pull a BVID out of free text or a video URL; empty string if absent."""
    match = _BVID_RE.search(text or "")
    return match.group(0) if match else ""


class LinkResolver:
    """Turns a BVID (+ page) into a ResolvedLink."""

    def __init__(self, api: BilibiliClient, proxy):
        """
        Args:
            api: Platform client sharing the cookie-bearing session
            proxy: AudioProxy used to build local URLs (never started here)
        """
        self.api = api
        self.proxy = proxy

    def resolve(self, bvid: str, page: int = 1) -> ResolvedLink:
        """
        Resolve page ``page`` of ``bvid``.

        Out-of-range pages (or < 1) fall back to the first page. Errors
        propagate unchanged; nothing here retries.
        """
        if not bvid:
            raise ValidationError("BVID must not be empty")

        pages = self.api.get_pages(bvid)
        if not pages:
            raise NotFoundError(f"pagelist: no data returned for BVID={bvid}")

        selected = pages[0]
        if 1 <= page <= len(pages):
            selected = pages[page - 1]
        elif page != 1:
            logger.debug(f"Page {page} out of range for {bvid} ({len(pages)} pages), using page 1")

        tracks = self.api.get_audio_tracks(bvid, selected.cid)
        if not tracks:
            raise NoPlayableTrackError(f"no audio track found for {bvid}")

        primary = tracks[0]
        raw_url = primary.base_url
        if not raw_url and primary.backup_urls:
            raw_url = primary.backup_urls[0]
        if not raw_url:
            raise NoPlayableTrackError(f"no playable audio URL in audio track for {bvid}")

        expires_at = derive_expire_time(raw_url)
        logger.info(f"Resolved {bvid} p{selected.page or page}: expires {expires_at.isoformat()}")
        return ResolvedLink(
            raw_url=raw_url,
            proxy_url=self.proxy.audio_proxy_url(raw_url),
            expires_at=expires_at,
            title=selected.part,
            duration=selected.duration,
        )

    def resolve_audio(self, text: str) -> BiliAudio:
        """Resolve the first page of the BVID found in ``text``, with cover and author."""
        bvid = extract_bvid(text)
        if not bvid:
            raise ValidationError("invalid BVID format")

        link = self.resolve(bvid, 1)
        try:
            meta = self.api.get_video_info(bvid)
        except PlayerError as e:
            # Cover and author are optional for playback
            logger.warning(f"Video info unavailable for {bvid}: {e}")
            meta = VideoInfoDTO(title=link.title, cover="", duration=link.duration, author="")

        return BiliAudio(
            url=link.raw_url,
            expires_at=link.expires_at,
            from_cache=False,
            title=link.title,
            format="m4a",
            cover=meta.cover,
            duration=meta.duration,
            author=meta.author,
        )
