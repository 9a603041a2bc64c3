"""
Song downloads and the two local audio directories.

``audio_cache`` is filled passively by the proxy while songs play;
``downloads`` holds files the user asked for. Both name files
``<song id>.m4s`` and every write goes through a ``.part`` file.
"""
import logging
import os
import shutil
import sqlite3
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests

from halfbeat.core.dto import Song
from halfbeat.core.errors import (
    IntegrityError,
    NotFoundError,
    PlayerError,
    TransportError,
    ValidationError,
)
from halfbeat.core.http_client import MEDIA_HEADERS
from halfbeat.utils.file_utils import (
    audio_filename,
    directory_size,
    part_path,
    promote_part_file,
    remove_quietly,
    reveal_in_file_manager,
)

logger = logging.getLogger(__name__)

# A stored link must stay valid at least this long to be downloaded as-is
FRESHNESS_MARGIN = timedelta(seconds=30)


class DownloadManager:
    """
    Manages explicit song downloads and the local audio directories
    """

    def __init__(
        self,
        db_manager,
        resolver,
        session: requests.Session,
        dirs,
        proxy,
        *,
        timeout: Tuple[float, float] = (10, 30),
        download_timeout: float = 300,
        chunk_size: int = 64 * 1024,
    ):
        """
        Initialize download manager

        Args:
            db_manager: DatabaseManager holding the songs
            resolver: LinkResolver used when a stored link is stale
            session: Shared cookie-bearing session
            dirs: DataDirs with the audio directories
            proxy: AudioProxy, for recognising and building local URLs
            timeout: (connect, read) socket timeouts
            download_timeout: Ceiling in seconds for one whole download
        """
        self.db = db_manager
        self.resolver = resolver
        self.session = session
        self.dirs = dirs
        self.proxy = proxy
        self.timeout = timeout
        self.download_timeout = download_timeout
        self._chunk_size = chunk_size
        self._locks: Dict[str, threading.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def download_song(self, song_id: str) -> Path:
        """
        Download a song into the downloads directory and return its path.

        At most one download per song id runs at a time; a caller that had
        to wait reuses the file the first one produced.

        Raises:
            ValidationError: empty or unsafe id, song without a BVID
            NotFoundError: unknown song
            TransportError: network failure, non-200 status, timeout
            IntegrityError: missing/non-positive length or size mismatch
        """
        filename = audio_filename(song_id)
        destination = self.dirs.downloads / filename

        lock, waited = self._claim(song_id)
        if waited:
            logger.info(f"Download of {song_id} already running, waiting for it")
            lock.acquire()
        try:
            if waited and destination.is_file():
                return destination
            return self._download(song_id, destination)
        finally:
            lock.release()
            self._forget(song_id)

    def _claim(self, song_id: str) -> Tuple[threading.Lock, bool]:
        """Take the song's lock if free; the flag says the caller must wait for it."""
        with self._locks_guard:
            lock = self._locks.get(song_id)
            if lock is None:
                lock = self._locks[song_id] = threading.Lock()
            self._lock_users[song_id] = self._lock_users.get(song_id, 0) + 1
            return lock, not lock.acquire(blocking=False)

    def _forget(self, song_id: str) -> None:
        # The entry lives only while someone holds or waits for it
        with self._locks_guard:
            remaining = self._lock_users[song_id] - 1
            if remaining:
                self._lock_users[song_id] = remaining
            else:
                del self._lock_users[song_id]
                del self._locks[song_id]

    def _download(self, song_id: str, destination: Path) -> Path:
        song = self.db.get_song(song_id)
        if song is None:
            raise NotFoundError(f"song not found: {song_id}")

        audio_url = self._audio_url_for(song)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = part_path(destination)
        remove_quietly(tmp)

        logger.info(f"Downloading {song.name} ({song_id})")
        started = time.monotonic()
        try:
            resp = self.session.get(
                audio_url,
                headers=MEDIA_HEADERS,
                stream=True,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"download failed: {e}") from e

        try:
            if resp.status_code != 200:
                raise TransportError(f"download failed with HTTP {resp.status_code}")

            expected = _content_length(resp)
            if expected is None or expected <= 0:
                raise IntegrityError("cannot verify download: server sent no positive Content-Length")

            written = self._write_body(resp, tmp, started)
        finally:
            resp.close()

        if written != expected:
            remove_quietly(tmp)
            raise IntegrityError(f"incomplete download: expected {expected} bytes, got {written}")

        promote_part_file(tmp, destination, expected)
        logger.info(f"Downloaded {destination.name}: {expected} bytes in {time.monotonic() - started:.1f}s")
        return destination

    def _write_body(self, resp, tmp: Path, started: float) -> int:
        written = 0
        try:
            with open(tmp, "wb") as f:
                for chunk in resp.iter_content(chunk_size=self._chunk_size):
                    if not chunk:
                        continue
                    f.write(chunk)
                    written += len(chunk)
                    if time.monotonic() - started > self.download_timeout:
                        raise TransportError(f"download timed out after {self.download_timeout:.0f}s")
                f.flush()
                os.fsync(f.fileno())
        except requests.RequestException as e:
            remove_quietly(tmp)
            raise TransportError(f"download interrupted: {e}") from e
        except OSError as e:
            remove_quietly(tmp)
            raise IntegrityError(f"could not write {tmp.name}: {e}") from e
        except PlayerError:
            remove_quietly(tmp)
            raise
        return written

    def _audio_url_for(self, song: Song) -> str:
        """
        Upstream URL to download from.

        A stored direct link with more than 30 s left is used as-is. Proxy
        URLs and stale links are re-resolved and the fresh proxy URL is
        written back onto the song.
        """
        url = song.stream_url
        expires_at = song.stream_url_expires_at
        if not url and song.source_id:
            source = self.db.get_stream_source(song.source_id)
            if source is not None:
                url, expires_at = source.stream_url, source.expires_at

        now = datetime.now(timezone.utc)
        fresh = bool(url) and expires_at is not None and expires_at > now + FRESHNESS_MARGIN
        if fresh and not self.proxy.is_proxy_url(url):
            return url

        if not song.bvid:
            raise ValidationError(f"song {song.id} has no BVID; cannot resolve a play URL")
        link = self.resolver.resolve(song.bvid, 1)

        try:
            self.db.update_song_stream(song.id, link.proxy_url, link.expires_at)
        except (sqlite3.Error, PlayerError) as e:
            logger.warning(f"Could not store refreshed stream URL for {song.id}: {e}")
        return link.raw_url

    # ------------------------------------------------------------------
    # Local lookups
    # ------------------------------------------------------------------

    def get_local_audio_url(self, song_id: str) -> Optional[str]:
        """Proxy URL of a local copy (passive cache first), or None."""
        filename = audio_filename(song_id)
        for directory in (self.dirs.audio_cache, self.dirs.downloads):
            if (directory / filename).is_file():
                return self.proxy.local_url(filename)
        return None

    def is_song_downloaded(self, song_id: str) -> bool:
        return (self.dirs.downloads / audio_filename(song_id)).is_file()

    def delete_downloaded_song(self, song_id: str) -> None:
        path = self.dirs.downloads / audio_filename(song_id)
        try:
            path.unlink()
            logger.info(f"Deleted download {path.name}")
        except FileNotFoundError:
            pass

    def get_audio_cache_size(self) -> int:
        return directory_size(self.dirs.audio_cache)

    def clear_audio_cache(self) -> Tuple[int, int]:
        """
        Remove every passively cached file.

        Returns:
            (files removed, bytes freed)
        """
        cache_dir = self.dirs.audio_cache
        files = [p for p in cache_dir.rglob("*") if p.is_file()]
        freed = sum(p.stat().st_size for p in files)
        shutil.rmtree(cache_dir, ignore_errors=True)
        cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cleared audio cache: {len(files)} files, {freed} bytes")
        return len(files), freed

    # ------------------------------------------------------------------
    # File manager
    # ------------------------------------------------------------------

    def open_audio_cache_folder(self) -> None:
        reveal_in_file_manager(self.dirs.audio_cache)

    def open_downloads_folder(self) -> None:
        reveal_in_file_manager(self.dirs.downloads)

    def open_downloaded_file(self, song_id: str) -> None:
        path = self.dirs.downloads / audio_filename(song_id)
        if not path.is_file():
            raise NotFoundError(f"song {song_id} has not been downloaded")
        reveal_in_file_manager(path, select=True)


def _content_length(resp) -> Optional[int]:
    value = resp.headers.get("Content-Length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
