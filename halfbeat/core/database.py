"""
Database schema and management for the player library.
Handles configuration, songs, favorites, settings, lyrics and the play queue.
"""
import sqlite3
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone

from halfbeat.core.dto import (
    ExportData,
    Favorite,
    LyricMapping,
    PlayerSetting,
    Playlist,
    Song,
    SongRef,
    StreamSource,
    Theme,
)
from halfbeat.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_FAVORITE_ID = "FavList-default"
DEFAULT_FAVORITE_TITLE = "默认歌单"
DEFAULT_THEME_ID = "light"

_SONG_COLUMNS = (
    "id", "bvid", "name", "singer", "singer_id", "cover", "source_id",
    "stream_url", "stream_url_expires_at", "lyric", "lyric_offset",
    "skip_start_time", "skip_end_time", "created_at", "updated_at",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable timestamp in database: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def theme_to_dict(theme: Theme) -> Dict[str, Any]:
    return {
        "id": theme.id,
        "name": theme.name,
        "colors": theme.colors,
        "backgroundImage": theme.background_image,
        "isDefault": theme.is_default,
        "isReadOnly": theme.is_read_only,
    }


def theme_from_dict(raw: Dict[str, Any]) -> Theme:
    return Theme(
        id=raw.get("id") or "",
        name=raw.get("name") or "",
        colors=raw.get("colors") or {},
        background_image=raw.get("backgroundImage") or "",
        is_default=bool(raw.get("isDefault")),
        is_read_only=bool(raw.get("isReadOnly")),
    )


class DatabaseManager:
    """Manages SQLite database operations for configuration and the music library"""

    VERSION = "1.0.0"

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize database manager

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.half-beat-player/half_beat.db
        """
        if db_path is None:
            db_path = Path.home() / ".half-beat-player" / "half_beat.db"

        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self):
        """Establish database connection"""
        self.conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )
        self.conn.row_factory = sqlite3.Row
        self._initialize_schema()

    def _initialize_schema(self):
        """Create database schema if not exists"""
        cursor = self.conn.cursor()

        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='config'")
        schema_exists = cursor.fetchone() is not None

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stream_sources (
                id TEXT PRIMARY KEY,
                bvid TEXT NOT NULL DEFAULT '',
                stream_url TEXT NOT NULL DEFAULT '',
                expires_at TEXT,
                created_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS songs (
                id TEXT PRIMARY KEY,
                bvid TEXT NOT NULL DEFAULT '',
                name TEXT NOT NULL,
                singer TEXT NOT NULL DEFAULT '',
                singer_id TEXT NOT NULL DEFAULT '',
                cover TEXT NOT NULL DEFAULT '',
                source_id TEXT NOT NULL DEFAULT '',
                stream_url TEXT NOT NULL DEFAULT '',
                stream_url_expires_at TEXT,
                lyric TEXT NOT NULL DEFAULT '',
                lyric_offset REAL NOT NULL DEFAULT 0,
                skip_start_time REAL NOT NULL DEFAULT 0,
                skip_end_time REAL NOT NULL DEFAULT 0,
                created_at TEXT,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS favorites (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                created_at TEXT,
                updated_at TEXT
            )
        """)

        # Row order within a favorite is the insertion order
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS song_refs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                favorite_id TEXT NOT NULL,
                song_id TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS player_settings (
                id INTEGER PRIMARY KEY,
                play_mode TEXT NOT NULL DEFAULT 'order',
                default_volume REAL NOT NULL DEFAULT 0.5,
                themes TEXT NOT NULL DEFAULT '[]',
                current_theme_id TEXT NOT NULL DEFAULT 'light',
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS lyric_mappings (
                id TEXT PRIMARY KEY,
                lyric TEXT NOT NULL DEFAULT '',
                time_offset REAL NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS playlists (
                id INTEGER PRIMARY KEY,
                queue TEXT NOT NULL DEFAULT '[]',
                current_index INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_songs_bvid ON songs(bvid)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_songs_source ON songs(source_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_song_refs_favorite ON song_refs(favorite_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_song_refs_song ON song_refs(song_id)")

        self._set_default_config()

        self.conn.commit()

        if not schema_exists:
            logger.info("Database schema initialized")
        else:
            logger.debug("Database schema verified")

    def _set_default_config(self):
        """Set default configuration values"""
        defaults = {
            'app_version': self.VERSION,
            'proxy_host': '127.0.0.1',
            'proxy_port': '9999',
            'connect_timeout': '10',
            'read_timeout': '30',
            'download_timeout': '300',
            'max_connections_per_host': '10',
            'max_total_connections': '100',
            'log_level_core': 'INFO',
            'log_level_api': 'INFO',
            'log_level_network': 'INFO',
            'log_level_download': 'INFO',
            'log_level_database': 'WARNING',
            'log_level_auth': 'INFO',
        }

        cursor = self.conn.cursor()
        for key, value in defaults.items():
            cursor.execute("""
                INSERT OR IGNORE INTO config (key, value)
                VALUES (?, ?)
            """, (key, value))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Retrieve configuration value

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else default

    def set_config(self, key: str, value: Any):
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT OR REPLACE INTO config (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
        """, (key, str(value)))
        self.conn.commit()

    def get_all_config(self) -> Dict[str, str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT key, value FROM config")
        return {row['key']: row['value'] for row in cursor.fetchall()}

    # ------------------------------------------------------------------
    # Songs and stream sources
    # ------------------------------------------------------------------

    def seed(self):
        """Create the default favorite list when the library has none."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM favorites")
        if cursor.fetchone()[0] > 0:
            return
        now = _to_iso(_now())
        cursor.execute("""
            INSERT INTO favorites (id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
        """, (DEFAULT_FAVORITE_ID, DEFAULT_FAVORITE_TITLE, now, now))
        self.conn.commit()
        logger.info("Seeded default favorite list")

    @staticmethod
    def _row_to_song(row: sqlite3.Row) -> Song:
        return Song(
            id=row['id'],
            bvid=row['bvid'],
            name=row['name'],
            singer=row['singer'],
            singer_id=row['singer_id'],
            cover=row['cover'],
            source_id=row['source_id'],
            stream_url=row['stream_url'],
            stream_url_expires_at=_from_iso(row['stream_url_expires_at']),
            lyric=row['lyric'],
            lyric_offset=row['lyric_offset'],
            skip_start_time=row['skip_start_time'],
            skip_end_time=row['skip_end_time'],
            created_at=_from_iso(row['created_at']),
            updated_at=_from_iso(row['updated_at']),
        )

    @staticmethod
    def _song_params(song: Song) -> tuple:
        return (
            song.id, song.bvid or "", song.name, song.singer or "", song.singer_id or "",
            song.cover or "", song.source_id or "", song.stream_url or "",
            _to_iso(song.stream_url_expires_at), song.lyric or "",
            float(song.lyric_offset or 0), float(song.skip_start_time or 0),
            float(song.skip_end_time or 0), _to_iso(song.created_at), _to_iso(song.updated_at),
        )

    def list_songs(self) -> List[Song]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM songs ORDER BY created_at, rowid")
        return [self._row_to_song(row) for row in cursor.fetchall()]

    def get_song(self, song_id: str) -> Optional[Song]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM songs WHERE id = ?", (song_id,))
        row = cursor.fetchone()
        return self._row_to_song(row) if row else None

    def find_songs_by_bvid(self, bvid: str) -> List[Song]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM songs WHERE bvid = ? ORDER BY created_at, rowid", (bvid,))
        return [self._row_to_song(row) for row in cursor.fetchall()]

    def search_local_songs(self, keyword: str) -> List[Song]:
        """Songs whose name or singer contains ``keyword``."""
        term = f"%{keyword}%"
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT * FROM songs WHERE name LIKE ? OR singer LIKE ?
            ORDER BY created_at, rowid
        """, (term, term))
        return [self._row_to_song(row) for row in cursor.fetchall()]

    def upsert_songs(self, songs: Iterable[Song]) -> List[Song]:
        """
        Insert or update songs in one transaction.

        Every song without an id gets a fresh uuid, so two instances of
        the same BVID stay distinct. A song carrying ``stream_url`` but no
        ``source_id`` gets a new stream source. Ids and timestamps are
        written back onto the passed objects.

        Raises:
            ValidationError: a song has no name (nothing is written)
        """
        songs = list(songs)
        now = _now()
        with self.conn:
            cursor = self.conn.cursor()
            for song in songs:
                if not song.id:
                    song.id = str(uuid.uuid4())
                if not song.name:
                    raise ValidationError("song is missing a name")

                if song.stream_url and not song.source_id:
                    song.source_id = self._insert_stream_source(
                        cursor, song.bvid, song.stream_url, song.stream_url_expires_at
                    )

                song.created_at = song.created_at or now
                song.updated_at = now
                cursor.execute(f"""
                    INSERT INTO songs ({', '.join(_SONG_COLUMNS)})
                    VALUES ({', '.join('?' for _ in _SONG_COLUMNS)})
                    ON CONFLICT(id) DO UPDATE SET
                      bvid = excluded.bvid,
                      name = excluded.name,
                      singer = excluded.singer,
                      singer_id = excluded.singer_id,
                      cover = excluded.cover,
                      source_id = excluded.source_id,
                      stream_url = excluded.stream_url,
                      stream_url_expires_at = excluded.stream_url_expires_at,
                      lyric = excluded.lyric,
                      lyric_offset = excluded.lyric_offset,
                      skip_start_time = excluded.skip_start_time,
                      skip_end_time = excluded.skip_end_time,
                      updated_at = excluded.updated_at
                """, self._song_params(song))
        logger.debug(f"Upserted {len(songs)} songs")
        return songs

    @staticmethod
    def _insert_stream_source(cursor, bvid: str, stream_url: str, expires_at: Optional[datetime]) -> str:
        source_id = str(uuid.uuid4())
        cursor.execute("""
            INSERT INTO stream_sources (id, bvid, stream_url, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (source_id, bvid or "", stream_url, _to_iso(expires_at), _to_iso(_now())))
        return source_id

    def create_stream_source(self, bvid: str, stream_url: str, expires_at: Optional[datetime]) -> str:
        """Persist a stream source and return its id."""
        with self.conn:
            return self._insert_stream_source(self.conn.cursor(), bvid, stream_url, expires_at)

    def get_stream_source(self, source_id: str) -> Optional[StreamSource]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM stream_sources WHERE id = ?", (source_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return StreamSource(
            id=row['id'],
            bvid=row['bvid'],
            stream_url=row['stream_url'],
            expires_at=_from_iso(row['expires_at']),
            created_at=_from_iso(row['created_at']),
        )

    def update_song_stream(self, song_id: str, stream_url: str, expires_at: Optional[datetime]):
        """Record a freshly resolved stream URL on a song."""
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("""
                UPDATE songs SET stream_url = ?, stream_url_expires_at = ?, updated_at = ?
                WHERE id = ?
            """, (stream_url, _to_iso(expires_at), _to_iso(_now()), song_id))
            if cursor.rowcount == 0:
                raise NotFoundError(f"song not found: {song_id}")

    def delete_song(self, song_id: str):
        """
        Delete a song that no favorite references.

        Its stream source goes too once no other song points at it.
        Unknown ids are a no-op.

        Raises:
            ValidationError: the song is still in a favorite list
        """
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM song_refs WHERE song_id = ?", (song_id,))
            if cursor.fetchone()[0] > 0:
                raise ValidationError("song is still referenced by a favorite list")

            cursor.execute("SELECT source_id FROM songs WHERE id = ?", (song_id,))
            row = cursor.fetchone()
            if row is None:
                return
            cursor.execute("DELETE FROM songs WHERE id = ?", (song_id,))

            source_id = row['source_id']
            if source_id:
                cursor.execute("SELECT COUNT(*) FROM songs WHERE source_id = ?", (source_id,))
                if cursor.fetchone()[0] == 0:
                    cursor.execute("DELETE FROM stream_sources WHERE id = ?", (source_id,))

    def delete_unreferenced_songs(self) -> int:
        """Delete every song outside all favorites and purge orphaned sources."""
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("""
                DELETE FROM songs
                WHERE id NOT IN (SELECT DISTINCT song_id FROM song_refs)
            """)
            deleted = cursor.rowcount
            cursor.execute("""
                DELETE FROM stream_sources
                WHERE id NOT IN (
                    SELECT DISTINCT source_id FROM songs
                    WHERE source_id IS NOT NULL AND source_id != ''
                )
            """)
        logger.info(f"Deleted {deleted} unreferenced songs")
        return deleted

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def list_favorites(self) -> List[Favorite]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM favorites ORDER BY created_at, rowid")
        favorites = [
            Favorite(
                id=row['id'],
                title=row['title'],
                created_at=_from_iso(row['created_at']),
                updated_at=_from_iso(row['updated_at']),
            )
            for row in cursor.fetchall()
        ]
        by_id = {fav.id: fav for fav in favorites}
        cursor.execute("SELECT favorite_id, song_id FROM song_refs ORDER BY id")
        for row in cursor.fetchall():
            fav = by_id.get(row['favorite_id'])
            if fav is not None:
                fav.song_ids.append(SongRef(song_id=row['song_id'], favorite_id=fav.id))
        return favorites

    def save_favorite(self, favorite: Favorite) -> Favorite:
        """Create or update a favorite list and replace its song refs."""
        if not favorite.id:
            favorite.id = f"FavList-{uuid.uuid4()}"
        now = _now()
        favorite.created_at = favorite.created_at or now
        favorite.updated_at = now
        with self.conn:
            cursor = self.conn.cursor()
            self._write_favorite(cursor, favorite)
        return favorite

    @staticmethod
    def _write_favorite(cursor, favorite: Favorite):
        cursor.execute("""
            INSERT INTO favorites (id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              title = excluded.title,
              updated_at = excluded.updated_at
        """, (favorite.id, favorite.title or "", _to_iso(favorite.created_at), _to_iso(favorite.updated_at)))
        cursor.execute("DELETE FROM song_refs WHERE favorite_id = ?", (favorite.id,))
        for ref in favorite.song_ids:
            ref.favorite_id = favorite.id
        cursor.executemany(
            "INSERT INTO song_refs (favorite_id, song_id) VALUES (?, ?)",
            [(favorite.id, ref.song_id) for ref in favorite.song_ids],
        )

    def delete_favorite(self, favorite_id: str):
        with self.conn:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM favorites WHERE id = ?", (favorite_id,))
            cursor.execute("DELETE FROM song_refs WHERE favorite_id = ?", (favorite_id,))

    # ------------------------------------------------------------------
    # Player settings and themes
    # ------------------------------------------------------------------

    def get_player_setting(self) -> PlayerSetting:
        """Stored settings, created with defaults on first access."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM player_settings WHERE id = 1")
        row = cursor.fetchone()
        if row is None:
            setting = PlayerSetting(updated_at=_now())
            self.save_player_setting(setting)
            return setting
        return PlayerSetting(
            id=row['id'],
            play_mode=row['play_mode'],
            default_volume=row['default_volume'],
            themes=row['themes'],
            current_theme_id=row['current_theme_id'],
            updated_at=_from_iso(row['updated_at']),
        )

    def save_player_setting(self, setting: PlayerSetting):
        setting.id = 1
        setting.updated_at = _now()
        with self.conn:
            self._write_player_setting(self.conn.cursor(), setting)

    @staticmethod
    def _write_player_setting(cursor, setting: PlayerSetting):
        cursor.execute("""
            INSERT OR REPLACE INTO player_settings
            (id, play_mode, default_volume, themes, current_theme_id, updated_at)
            VALUES (1, ?, ?, ?, ?, ?)
        """, (
            setting.play_mode,
            float(setting.default_volume),
            setting.themes or "[]",
            setting.current_theme_id or DEFAULT_THEME_ID,
            _to_iso(setting.updated_at),
        ))

    def get_themes(self) -> List[Theme]:
        raw = self.get_player_setting().themes
        if not raw or raw == "null":
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"stored themes are not valid JSON: {e}") from e
        return [theme_from_dict(item) for item in items or [] if isinstance(item, dict)]

    def _save_themes(self, setting: PlayerSetting, themes: List[Theme]):
        setting.themes = json.dumps([theme_to_dict(t) for t in themes], ensure_ascii=False)
        self.save_player_setting(setting)

    def create_theme(self, theme: Theme) -> Theme:
        setting = self.get_player_setting()
        themes = self.get_themes()
        theme.id = f"theme-{uuid.uuid4()}"
        theme.is_default = False
        theme.is_read_only = False
        themes.append(theme)
        self._save_themes(setting, themes)
        logger.debug(f"Created theme {theme.id} ({theme.name})")
        return theme

    def update_theme(self, theme: Theme):
        """Replace a stored theme, keeping its ``is_default`` flag."""
        setting = self.get_player_setting()
        themes = self.get_themes()
        for i, existing in enumerate(themes):
            if existing.id == theme.id:
                theme.is_default = existing.is_default
                themes[i] = theme
                break
        else:
            raise NotFoundError(f"theme not found: {theme.id}")
        self._save_themes(setting, themes)

    def delete_theme(self, theme_id: str):
        setting = self.get_player_setting()
        remaining = []
        for theme in self.get_themes():
            if theme.id == theme_id:
                if theme.is_default:
                    raise ValidationError("cannot delete default theme")
                continue
            remaining.append(theme)
        if setting.current_theme_id == theme_id:
            setting.current_theme_id = DEFAULT_THEME_ID
        self._save_themes(setting, remaining)

    def set_current_theme(self, theme_id: str):
        setting = self.get_player_setting()
        setting.current_theme_id = theme_id
        self.save_player_setting(setting)

    # ------------------------------------------------------------------
    # Lyrics and playlist
    # ------------------------------------------------------------------

    def save_lyric_mapping(self, mapping: LyricMapping):
        if not mapping.id:
            raise ValidationError("lyric id required")
        mapping.updated_at = _now()
        with self.conn:
            self._write_lyric_mapping(self.conn.cursor(), mapping)

    @staticmethod
    def _write_lyric_mapping(cursor, mapping: LyricMapping):
        cursor.execute("""
            INSERT OR REPLACE INTO lyric_mappings (id, lyric, time_offset, updated_at)
            VALUES (?, ?, ?, ?)
        """, (mapping.id, mapping.lyric or "", float(mapping.offset or 0), _to_iso(mapping.updated_at)))

    def get_lyric_mapping(self, mapping_id: str) -> LyricMapping:
        """The stored mapping, or an empty one carrying ``mapping_id``."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM lyric_mappings WHERE id = ?", (mapping_id,))
        row = cursor.fetchone()
        if row is None:
            return LyricMapping(id=mapping_id)
        return self._row_to_lyric(row)

    @staticmethod
    def _row_to_lyric(row: sqlite3.Row) -> LyricMapping:
        return LyricMapping(
            id=row['id'],
            lyric=row['lyric'],
            offset=row['time_offset'],
            updated_at=_from_iso(row['updated_at']),
        )

    def save_playlist(self, queue_json: str, current_index: int):
        with self.conn:
            self.conn.execute("""
                INSERT OR REPLACE INTO playlists (id, queue, current_index, updated_at)
                VALUES (1, ?, ?, ?)
            """, (queue_json, int(current_index), _to_iso(_now())))

    def get_playlist(self) -> Playlist:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM playlists WHERE id = 1")
        row = cursor.fetchone()
        if row is None:
            return Playlist()
        return Playlist(
            id=row['id'],
            queue=row['queue'],
            current_index=row['current_index'],
            updated_at=_from_iso(row['updated_at']),
        )

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_data(self) -> ExportData:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM lyric_mappings ORDER BY id")
        lyrics = [self._row_to_lyric(row) for row in cursor.fetchall()]
        return ExportData(
            songs=self.list_songs(),
            favorites=self.list_favorites(),
            settings=self.get_player_setting(),
            lyrics=lyrics,
        )

    def import_data(self, data: ExportData):
        """Replace songs, favorites, settings and lyrics in one transaction."""
        now = _now()
        with self.conn:
            cursor = self.conn.cursor()
            self._clear_library_tables(cursor)
            for song in data.songs:
                if not song.name:
                    raise ValidationError(f"imported song {song.id or '?'} is missing a name")
                song.id = song.id or str(uuid.uuid4())
                song.created_at = song.created_at or now
                song.updated_at = song.updated_at or now
                cursor.execute(f"""
                    INSERT OR REPLACE INTO songs ({', '.join(_SONG_COLUMNS)})
                    VALUES ({', '.join('?' for _ in _SONG_COLUMNS)})
                """, self._song_params(song))
            for favorite in data.favorites:
                favorite.id = favorite.id or f"FavList-{uuid.uuid4()}"
                favorite.created_at = favorite.created_at or now
                favorite.updated_at = favorite.updated_at or now
                self._write_favorite(cursor, favorite)
            if data.settings is not None:
                data.settings.updated_at = now
                self._write_player_setting(cursor, data.settings)
            for mapping in data.lyrics:
                if not mapping.id:
                    raise ValidationError("lyric id required")
                mapping.updated_at = mapping.updated_at or now
                self._write_lyric_mapping(cursor, mapping)
        logger.info(
            f"Imported {len(data.songs)} songs, {len(data.favorites)} favorites, "
            f"{len(data.lyrics)} lyric mappings"
        )

    def clear_library(self):
        """Remove songs, favorites and lyrics, then reseed the default favorite."""
        now = _to_iso(_now())
        with self.conn:
            cursor = self.conn.cursor()
            self._clear_library_tables(cursor)
            cursor.execute("""
                INSERT INTO favorites (id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (DEFAULT_FAVORITE_ID, DEFAULT_FAVORITE_TITLE, now, now))
        logger.info("Library cleared")

    @staticmethod
    def _clear_library_tables(cursor):
        cursor.execute("DELETE FROM song_refs")
        cursor.execute("DELETE FROM favorites")
        cursor.execute("DELETE FROM songs")
        cursor.execute("DELETE FROM lyric_mappings")

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
