import json
import logging
import time
from dataclasses import asdict
from pathlib import Path

from halfbeat.core.dto import PlayHistory
from halfbeat.core.errors import ValidationError
from halfbeat.utils.file_utils import write_bytes_atomic

logger = logging.getLogger(__name__)


class PlayHistoryStore:
    """Remembers the last played song and the favorite list it came from."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, favorite_id: str, song_id: str) -> PlayHistory:
        history = PlayHistory(favorite_id=favorite_id, song_id=song_id, timestamp=int(time.time()))
        payload = {
            "favoriteId": history.favorite_id,
            "songId": history.song_id,
            "timestamp": history.timestamp,
        }
        write_bytes_atomic(self.path, json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))
        logger.debug(f"Saved play history: {asdict(history)}")
        return history

    def load(self) -> PlayHistory:
        """The stored record; an empty one when nothing was saved yet."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return PlayHistory()
        except json.JSONDecodeError as e:
            raise ValidationError(f"play history is corrupt: {e}") from e
        if not isinstance(raw, dict):
            raise ValidationError("play history is corrupt: expected an object")
        return PlayHistory(
            favorite_id=raw.get("favoriteId") or "",
            song_id=raw.get("songId") or "",
            timestamp=int(raw.get("timestamp") or 0),
        )
