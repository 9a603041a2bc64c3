from dataclasses import dataclass, field
from datetime import datetime
from typing import List


@dataclass(frozen=True)
class PageDTO:
    cid: int
    page: int
    part: str
    duration: int


@dataclass(frozen=True)
class AudioTrackDTO:
    base_url: str
    backup_urls: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VideoInfoDTO:
    title: str
    cover: str
    duration: int
    author: str


@dataclass(frozen=True)
class SearchResultDTO:
    bvid: str
    title: str
    author: str
    cover: str
    duration: str


@dataclass(frozen=True)
class ResolvedLink:
    """A signed upstream media URL plus its local proxy equivalent."""

    raw_url: str
    proxy_url: str
    expires_at: datetime
    title: str
    duration: int


@dataclass(frozen=True)
class BiliAudio:
    url: str
    expires_at: datetime
    from_cache: bool
    title: str
    format: str
    cover: str
    duration: int
    author: str
