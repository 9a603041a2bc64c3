"""Test play history persistence"""

import json

import pytest

from halfbeat.core.errors import ValidationError
from halfbeat.core.play_history import PlayHistoryStore


class TestPlayHistoryStore:
    """Test the last-played record"""

    def test_empty_when_missing(self, data_dirs):
        history = PlayHistoryStore(data_dirs.play_history_file).load()
        assert (history.favorite_id, history.song_id, history.timestamp) == ("", "", 0)

    def test_save_and_load(self, data_dirs):
        store = PlayHistoryStore(data_dirs.play_history_file)

        saved = store.save("FavList-default", "song-1")
        loaded = store.load()

        assert loaded == saved
        assert loaded.timestamp > 0

    def test_file_format(self, data_dirs):
        PlayHistoryStore(data_dirs.play_history_file).save("FavList-a", "song-2")

        text = data_dirs.play_history_file.read_text(encoding="utf-8")
        assert text.startswith("{\n  ")
        assert set(json.loads(text)) == {"favoriteId", "songId", "timestamp"}

    def test_corrupt_file(self, data_dirs):
        data_dirs.play_history_file.write_text("[1, 2", encoding="utf-8")
        with pytest.raises(ValidationError):
            PlayHistoryStore(data_dirs.play_history_file).load()
