from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from halfbeat.core.account_manager import AccountManager
from halfbeat.core.api import BilibiliClient
from halfbeat.core.audio_proxy import DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT, AudioProxy
from halfbeat.core.credentials import CredentialStore
from halfbeat.core.database import DatabaseManager
from halfbeat.core.download_manager import DownloadManager
from halfbeat.core.errors import PlayerError
from halfbeat.core.http_client import HttpClient, create_http_client_from_settings
from halfbeat.core.link_resolver import LinkResolver
from halfbeat.core.play_history import PlayHistoryStore
from halfbeat.core.search_manager import SearchManager
from halfbeat.core.theme_images import ThemeImageStore
from halfbeat.utils.logging_config import LoggingManager

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "HALF_BEAT_DATA_DIR"


class DataDirs:
    """
    Centralized on-disk layout.

    Provides a single source of truth for every file and directory the
    backend touches. Directory properties create the directory on access.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Args:
            base_dir: Base directory. Defaults to $HALF_BEAT_DATA_DIR or ~/.half-beat-player
        """
        if base_dir is None:
            env = os.environ.get(DATA_DIR_ENV)
            base_dir = Path(env).expanduser() if env else Path.home() / ".half-beat-player"
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)

    def _dir(self, name: str) -> Path:
        path = self.base / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def audio_cache(self) -> Path:
        """Passive cache filled while songs stream"""
        return self._dir("audio_cache")

    @property
    def downloads(self) -> Path:
        """User-requested downloads"""
        return self._dir("downloads")

    @property
    def theme_images(self) -> Path:
        return self._dir("theme_images")

    @property
    def logs(self) -> Path:
        return self._dir("logs")

    @property
    def database(self) -> Path:
        return self.base / "half_beat.db"

    @property
    def credentials_file(self) -> Path:
        return self.base / "sessdata.json"

    @property
    def play_history_file(self) -> Path:
        return self.base / "play_history.json"


class CoreContext:
    """
    Shared Core dependencies (DB + session + services).

    Use a single instance for the app lifetime. The HTTP session and its
    cookie jar are created here and handed to every collaborator.
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        *,
        proxy_port: Optional[int] = None,
    ):
        self.dirs = DataDirs(base_dir)

        self.db = DatabaseManager(self.dirs.database)
        self.db.connect()
        self.db.seed()

        self.logging = LoggingManager(self.dirs.logs, db_manager=self.db)

        self.http: HttpClient = create_http_client_from_settings(self.db)
        self.session = self.http.create_sync_session()
        self.api = BilibiliClient(session=self.session, timeout=self.http.config.timeout)

        self.credentials = CredentialStore(self.session, self.dirs.credentials_file)
        try:
            self.credentials.restore()
        except PlayerError as e:
            logger.warning(f"Ignoring saved credential: {e}")

        host = self.db.get_config("proxy_host", DEFAULT_PROXY_HOST)
        if proxy_port is None:
            try:
                proxy_port = int(self.db.get_config("proxy_port", DEFAULT_PROXY_PORT))
            except (TypeError, ValueError):
                proxy_port = DEFAULT_PROXY_PORT
        self.proxy = AudioProxy(
            self.dirs,
            host=host,
            port=proxy_port,
            connect_timeout=self.http.config.connect_timeout,
            read_timeout=self.http.config.read_timeout,
        )

        self.resolver = LinkResolver(self.api, self.proxy)
        self.downloads = DownloadManager(
            self.db,
            self.resolver,
            self.session,
            self.dirs,
            self.proxy,
            timeout=self.http.config.timeout,
            download_timeout=self.http.config.download_timeout,
        )
        self.theme_images = ThemeImageStore(self.dirs, self.session, self.proxy)
        self.play_history = PlayHistoryStore(self.dirs.play_history_file)
        self.account = AccountManager(self.api, self.credentials)
        self.search = SearchManager(self.db, self.api, self.resolver)

        logger.info(f"Core context ready (data dir {self.dirs.base})")

    def close(self) -> None:
        self.proxy.stop()
        self.http.close()
        self.db.close()
