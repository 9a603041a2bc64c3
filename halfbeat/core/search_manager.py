from __future__ import annotations

import logging
from typing import List

from halfbeat.core.dto import Song
from halfbeat.core.errors import PlayerError, ValidationError

logger = logging.getLogger(__name__)


class SearchManager:
    """Searches the local library and the platform, returning Song-shaped results."""

    def __init__(self, db, api, resolver):
        self.db = db
        self.api = api
        self.resolver = resolver

    def search_local(self, keyword: str) -> List[Song]:
        return self.db.search_local_songs(keyword)

    def search_remote(self, keyword: str, page: int = 1, page_size: int = 10) -> List[Song]:
        """Platform video search; results are unsaved songs (empty id)."""
        results = self.api.search_videos(keyword, page, page_size)
        return [
            Song(bvid=r.bvid, name=r.title, singer=r.author, cover=r.cover)
            for r in results
        ]

    def search_bvid(self, bvid: str) -> List[Song]:
        """
        Every local song with this BVID, followed by one unsaved entry
        describing the remote video when it resolves.
        """
        if not bvid:
            raise ValidationError("BVID must not be empty")
        results = self.db.find_songs_by_bvid(bvid)
        try:
            audio = self.resolver.resolve_audio(bvid)
        except PlayerError as e:
            logger.info(f"Remote lookup for {bvid} failed: {e}")
            return results
        results.append(Song(bvid=bvid, name=audio.title, singer=audio.author, cover=audio.cover))
        return results
