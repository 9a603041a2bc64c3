from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from halfbeat.core.dto import (
    AudioTrackDTO,
    FavoriteCollectionDTO,
    FavoriteItemDTO,
    LoginPollDTO,
    PageDTO,
    QRCodeDTO,
    SearchResultDTO,
    UserInfoDTO,
    VideoInfoDTO,
)
from halfbeat.core.errors import NotFoundError, TransportError, UpstreamAPIError

from .base import BaseAPIClient

_TAG_RE = re.compile(r"<[^>]+>")

# Requests the DASH manifest (audio tracks listed separately from video)
PLAYURL_FNVAL = 4048

QR_CODE_LIFETIME = timedelta(minutes=3)


def normalize_bili_pic(url: str) -> str:
    """Force cover URLs onto https, accepting protocol-relative input."""
    url = (url or "").strip()
    if not url:
        return ""
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    if url.startswith("https://"):
        return url
    return "https://" + url.lstrip("/")


class BilibiliClient(BaseAPIClient):
    BASE_URL = "https://api.bilibili.com"
    PASSPORT_URL = "https://passport.bilibili.com"
    PLATFORM = "bilibili"
    _logger = logging.getLogger(__name__)

    # --------------------------------------------------
    # Playback
    # --------------------------------------------------

    def get_pages(self, bvid: str) -> List[PageDTO]:
        data = self._request(
            "GET",
            "/x/player/pagelist",
            params={"bvid": bvid},
            endpoint="pagelist",
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise TransportError("pagelist decode error: data is not a list")
        return [
            PageDTO(
                cid=int(p.get("cid") or 0),
                page=int(p.get("page") or 0),
                part=p.get("part") or "",
                duration=int(p.get("duration") or 0),
            )
            for p in data
            if isinstance(p, dict)
        ]

    def get_audio_tracks(self, bvid: str, cid: int) -> List[AudioTrackDTO]:
        data = self._request(
            "GET",
            "/x/player/playurl",
            params={"bvid": bvid, "cid": cid, "fnval": PLAYURL_FNVAL},
            headers={"Referer": f"https://www.bilibili.com/video/{bvid}"},
            endpoint="playurl",
        )
        dash = (data or {}).get("dash") or {}
        tracks = []
        for raw in dash.get("audio") or []:
            if not isinstance(raw, dict):
                continue
            base = raw.get("baseUrl") or raw.get("base_url") or ""
            backups = raw.get("backup_url") or raw.get("backupUrl") or []
            tracks.append(AudioTrackDTO(base_url=base, backup_urls=list(backups)))
        return tracks

    def get_video_info(self, bvid: str) -> VideoInfoDTO:
        data = self._request(
            "GET",
            "/x/web-interface/view",
            params={"bvid": bvid},
            headers={"Referer": f"https://www.bilibili.com/video/{bvid}"},
            endpoint="video info",
        ) or {}

        # Co-created videos list every staff member; fall back to the uploader
        authors = [s.get("name") for s in data.get("staff") or [] if s.get("name")]
        owner = (data.get("owner") or {}).get("name")
        if not authors and owner:
            authors = [owner]

        return VideoInfoDTO(
            title=data.get("title") or "",
            cover=normalize_bili_pic(data.get("pic") or ""),
            duration=int(data.get("duration") or 0),
            author="; ".join(authors),
        )

    # --------------------------------------------------
    # Search
    # --------------------------------------------------

    def search_videos(self, keyword: str, page: int = 1, page_size: int = 10) -> List[SearchResultDTO]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 30:
            page_size = 10

        payload = self._request_envelope(
            "GET",
            "/x/web-interface/search/type",
            params={
                "search_type": "video",
                "keyword": keyword,
                "page": page,
                "page_size": page_size,
                "order": "totalrank",
            },
            endpoint="search",
        )
        if payload.get("code", 0) != 0:
            # Search is anonymous and often rate-limited; an empty page is the useful answer
            self._logger.warning(
                f"search for {keyword!r} returned code={payload.get('code')}: {payload.get('message')}"
            )
            return []

        results = ((payload.get("data") or {}).get("result")) or []
        return [
            SearchResultDTO(
                bvid=item.get("bvid") or "",
                title=_TAG_RE.sub("", item.get("title") or ""),
                author=item.get("author") or "",
                cover=normalize_bili_pic(item.get("pic") or ""),
                duration=str(item.get("duration") or ""),
            )
            for item in results
            if isinstance(item, dict)
        ]

    # --------------------------------------------------
    # Login
    # --------------------------------------------------

    def generate_login_qr(self) -> QRCodeDTO:
        data = self._request(
            "GET",
            f"{self.PASSPORT_URL}/x/passport-login/web/qrcode/generate",
            endpoint="generate QR",
        ) or {}
        return QRCodeDTO(
            url=data.get("url") or "",
            qrcode_key=data.get("qrcode_key") or "",
            expire_at=datetime.now(timezone.utc) + QR_CODE_LIFETIME,
        )

    def poll_login(self, qrcode_key: str) -> LoginPollDTO:
        """
        Poll QR login state.

        The outer envelope is always code 0; the login state lives in
        ``data.code``. On success the response sets the session cookies on
        the shared jar.
        """
        data = self._request(
            "GET",
            f"{self.PASSPORT_URL}/x/passport-login/web/qrcode/poll",
            params={"qrcode_key": qrcode_key},
            endpoint="poll login",
        ) or {}
        return LoginPollDTO(
            status_code=int(data.get("code", -1)),
            message=data.get("message") or "",
            url=data.get("url") or "",
            refresh_token=data.get("refresh_token") or "",
        )

    def get_nav(self) -> UserInfoDTO:
        data = self._request("GET", "/x/web-interface/nav", endpoint="user info") or {}
        if not data.get("isLogin"):
            raise UpstreamAPIError(-101, "login session has expired", endpoint="user info")
        return UserInfoDTO(
            uid=int(data.get("mid") or 0),
            username=data.get("uname") or "",
            face=data.get("face") or "",
            level=int((data.get("level_info") or {}).get("current_level") or 0),
            vip_type=int(data.get("vipType") or 0),
        )

    # --------------------------------------------------
    # Favorite folders
    # --------------------------------------------------

    def get_created_folders(self, mid: int) -> List[FavoriteCollectionDTO]:
        data = self._request(
            "GET",
            "/x/v3/fav/folder/created/list",
            params={"up_mid": mid, "pn": 1, "ps": 100},
            endpoint="favorite folders",
        ) or {}
        return [self._normalize_folder(f) for f in data.get("list") or [] if isinstance(f, dict)]

    def get_folder_info(self, media_id: int) -> FavoriteCollectionDTO:
        data = self._request(
            "GET",
            "/x/v3/fav/resource/list",
            params={"media_id": media_id, "pn": 1, "ps": 1},
            endpoint="favorite info",
            html_is_missing=True,
        ) or {}
        info = data.get("info")
        if not isinstance(info, dict):
            raise NotFoundError(f"favorite folder {media_id} does not exist or is private")
        return self._normalize_folder(info)

    def get_folder_bvids(self, media_id: int) -> List[FavoriteItemDTO]:
        data = self._request(
            "GET",
            "/x/v3/fav/resource/ids",
            params={"media_id": media_id, "platform": "web"},
            endpoint="favorite ids",
            html_is_missing=True,
        )
        if not data:
            raise NotFoundError(f"favorite folder {media_id} is empty or does not exist")

        items = []
        for raw in data:
            # type 2 = video; audio (12) and collections (21) are skipped
            if not isinstance(raw, dict) or raw.get("type") != 2:
                continue
            bvid = raw.get("bvid") or raw.get("bv_id") or ""
            if bvid:
                items.append(FavoriteItemDTO(bvid=bvid))
        return items

    @staticmethod
    def _normalize_folder(raw: Dict[str, Any]) -> FavoriteCollectionDTO:
        return FavoriteCollectionDTO(
            id=int(raw.get("id") or 0),
            title=raw.get("title") or "",
            count=int(raw.get("media_count") or 0),
            cover=normalize_bili_pic(raw.get("cover") or ""),
        )
