"""
Centralized HTTP client configuration.

Provides one explicitly constructed requests.Session shared by every
outbound platform call, with:
- Browser-like headers (User-Agent, Referer, Origin)
- A single cookie jar carrying the platform session credential
- Connection pool sizing and connect/read timeouts from settings
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)


PLATFORM_ORIGIN = "https://www.bilibili.com"
PLATFORM_REFERER = "https://www.bilibili.com/"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Headers for JSON API requests
API_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Referer": PLATFORM_REFERER,
    "Origin": PLATFORM_ORIGIN,
}

# Headers for media/file downloads (CDNs reject requests without a platform Referer)
MEDIA_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Encoding": "identity;q=1, *;q=0",
    "Referer": PLATFORM_REFERER,
    "Origin": PLATFORM_ORIGIN,
}

# Headers for cover/theme image downloads
IMAGE_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Referer": PLATFORM_REFERER,
    "Origin": PLATFORM_ORIGIN,
}


class HttpClientConfig:
    """Central HTTP client configuration."""

    def __init__(
        self,
        max_connections_per_host: int = 10,
        max_total_connections: int = 100,
        connect_timeout: float = 10,
        read_timeout: float = 30,
        download_timeout: float = 300,
    ):
        self.max_connections_per_host = max_connections_per_host
        self.max_total_connections = max_total_connections
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        # Ceiling for a whole large download, not a single socket read
        self.download_timeout = download_timeout

    @property
    def timeout(self) -> Tuple[float, float]:
        """(connect, read) tuple in the form requests expects."""
        return (self.connect_timeout, self.read_timeout)


class HttpClient:
    """
    HTTP client factory owned by the CoreContext.

    There is no module-level singleton: the session is created here and
    passed by reference to every collaborator that talks to the platform.
    """

    def __init__(self, config: Optional[HttpClientConfig] = None):
        self.config = config or HttpClientConfig()
        self._sync_session: Optional[requests.Session] = None

    def create_sync_session(self, headers: Optional[Dict[str, str]] = None) -> requests.Session:
        """
        Create a configured requests.Session for synchronous HTTP.

        Args:
            headers: Optional headers to use (defaults to API_HEADERS)

        Returns:
            Configured requests.Session
        """
        session = requests.Session()
        session.headers.update(headers or API_HEADERS)

        adapter = HTTPAdapter(
            pool_connections=self.config.max_total_connections,
            pool_maxsize=self.config.max_connections_per_host,
        )
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        self._sync_session = session
        logger.debug(
            f"Sync session created (pool {self.config.max_total_connections}/"
            f"{self.config.max_connections_per_host}, timeout {self.config.timeout})"
        )
        return session

    def close(self):
        """Close the session."""
        if self._sync_session:
            self._sync_session.close()
            self._sync_session = None


def create_http_client_from_settings(db_manager) -> HttpClient:
    """
    Create HttpClient configured from database settings.

    Args:
        db_manager: DatabaseManager instance to read settings from

    Returns:
        Configured HttpClient instance
    """

    def _number(key: str, default: float) -> float:
        try:
            return float(db_manager.get_config(key, default))
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {key}, using {default}")
            return default

    config = HttpClientConfig(
        max_connections_per_host=int(_number("max_connections_per_host", 10)),
        max_total_connections=int(_number("max_total_connections", 100)),
        connect_timeout=_number("connect_timeout", 10),
        read_timeout=_number("read_timeout", 30),
        download_timeout=_number("download_timeout", 300),
    )
    return HttpClient(config)
