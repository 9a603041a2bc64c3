"""Test configuration and fixtures"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from halfbeat.core.audio_proxy import AudioProxy
from halfbeat.core.context import DataDirs
from halfbeat.core.database import DatabaseManager
from halfbeat.core.dto import PageDTO, AudioTrackDTO


class FakeResponse:
    """Minimal stand-in for requests.Response"""

    def __init__(self, status_code=200, body=b"", headers=None, json_data=None, chunk_size=None):
        self.status_code = status_code
        self.content = body
        self.headers = dict(headers or {})
        self._json = json_data
        self._chunk_size = chunk_size
        self.closed = False

    @property
    def text(self):
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def iter_content(self, chunk_size=1):
        size = self._chunk_size or chunk_size
        for i in range(0, len(self.content), size):
            yield self.content[i:i + size]

    def close(self):
        self.closed = True


@pytest.fixture
def data_dirs(tmp_path):
    """DataDirs rooted in a temporary directory"""
    return DataDirs(tmp_path / "data")


@pytest.fixture
def db(data_dirs):
    """Connected and seeded database"""
    manager = DatabaseManager(data_dirs.database)
    manager.connect()
    manager.seed()
    yield manager
    manager.close()


@pytest.fixture
def proxy(data_dirs):
    """Audio proxy that is never started; used for URL building"""
    return AudioProxy(data_dirs, host="127.0.0.1", port=9999)


@pytest.fixture
def future():
    """A timestamp comfortably in the future"""
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture
def mock_api():
    """Platform client returning one page with one audio track"""
    api = Mock()
    api.get_pages.return_value = [PageDTO(cid=111, page=1, part="Song Part", duration=200)]
    api.get_audio_tracks.return_value = [
        AudioTrackDTO(base_url="https://cdn.example.com/a.m4s?deadline=4102444800")
    ]
    return api


@pytest.fixture
def fake_response():
    """The FakeResponse class, for building canned requests responses"""
    return FakeResponse
