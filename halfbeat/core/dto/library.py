"""
Library Store entities.

These are mutable on purpose: the store assigns ids and timestamps on save.
Datetimes are timezone-aware UTC.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class StreamSource:
    id: str
    bvid: str
    stream_url: str
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class Song:
    id: str = ""
    bvid: str = ""
    name: str = ""
    singer: str = ""
    singer_id: str = ""
    cover: str = ""
    source_id: str = ""
    stream_url: str = ""
    stream_url_expires_at: Optional[datetime] = None
    lyric: str = ""
    lyric_offset: float = 0.0
    skip_start_time: float = 0.0
    skip_end_time: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SongRef:
    song_id: str
    favorite_id: str = ""


@dataclass
class Favorite:
    id: str = ""
    title: str = ""
    song_ids: List[SongRef] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Theme:
    id: str = ""
    name: str = ""
    colors: dict = field(default_factory=dict)
    background_image: str = ""
    is_default: bool = False
    is_read_only: bool = False


@dataclass
class PlayerSetting:
    id: int = 1
    play_mode: str = "order"
    default_volume: float = 0.5
    themes: str = "[]"
    current_theme_id: str = "light"
    updated_at: Optional[datetime] = None


@dataclass
class LyricMapping:
    id: str
    lyric: str = ""
    offset: float = 0.0
    updated_at: Optional[datetime] = None


@dataclass
class Playlist:
    id: int = 1
    queue: str = "[]"
    current_index: int = 0
    updated_at: Optional[datetime] = None


@dataclass
class PlayHistory:
    favorite_id: str = ""
    song_id: str = ""
    timestamp: int = 0


@dataclass
class ExportData:
    songs: List[Song] = field(default_factory=list)
    favorites: List[Favorite] = field(default_factory=list)
    settings: Optional[PlayerSetting] = None
    lyrics: List[LyricMapping] = field(default_factory=list)
