"""Test local and remote search"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from halfbeat.core.dto import BiliAudio, SearchResultDTO, Song
from halfbeat.core.errors import NotFoundError, ValidationError
from halfbeat.core.search_manager import SearchManager

BVID = "BV1xx411c7mD"


@pytest.fixture
def api():
    return Mock()


@pytest.fixture
def resolver():
    resolver = Mock()
    resolver.resolve_audio.return_value = BiliAudio(
        url="https://cdn/a.m4s",
        expires_at=datetime.now(timezone.utc),
        from_cache=False,
        title="Remote Title",
        format="m4a",
        cover="https://i0.hdslb.com/c.jpg",
        duration=180,
        author="Uploader",
    )
    return resolver


@pytest.fixture
def search(db, api, resolver):
    return SearchManager(db, api, resolver)


class TestSearchManager:
    """Test search result shaping"""

    def test_search_bvid_local_first(self, search, db):
        local = db.upsert_songs([Song(bvid=BVID, name="Mine")])[0]

        results = search.search_bvid(BVID)

        assert [r.id for r in results] == [local.id, ""]
        assert results[1].name == "Remote Title"
        assert results[1].singer == "Uploader"

    def test_search_bvid_remote_failure(self, search, db, resolver):
        local = db.upsert_songs([Song(bvid=BVID, name="Mine")])[0]
        resolver.resolve_audio.side_effect = NotFoundError("gone")

        assert [r.id for r in search.search_bvid(BVID)] == [local.id]

    def test_search_bvid_empty(self, search):
        with pytest.raises(ValidationError):
            search.search_bvid("")

    def test_search_remote_maps_results(self, search, api):
        api.search_videos.return_value = [
            SearchResultDTO(bvid=BVID, title="Song", author="Singer", cover="https://c", duration="3:00"),
        ]

        results = search.search_remote("song", page=2)

        assert results == [Song(bvid=BVID, name="Song", singer="Singer", cover="https://c")]
        api.search_videos.assert_called_once_with("song", 2, 10)

    def test_search_local(self, search, db):
        db.upsert_songs([Song(name="Evening Rain"), Song(name="Morning")])
        assert [s.name for s in search.search_local("rain")] == ["Evening Rain"]
