"""
Persistence for the platform session cookie.

The ``SESSDATA`` cookie is the only login signal. It lives in the shared
session's cookie jar while the process runs and in a small owner-only
JSON file between runs.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import requests
from requests.cookies import create_cookie

from halfbeat.core.errors import ValidationError
from halfbeat.utils.file_utils import write_bytes_atomic

logger = logging.getLogger(__name__)

SESSION_COOKIE = "SESSDATA"
COOKIE_DOMAIN = ".bilibili.com"
# Restored cookies get an assumed lifetime; the platform does not report the real one
RESTORED_COOKIE_LIFETIME = timedelta(days=30)


class CredentialStore:
    def __init__(self, session: requests.Session, path: Path):
        """
        Args:
            session: Shared session whose cookie jar carries the credential
            path: Location of the persisted credential file
        """
        self.session = session
        self.path = Path(path)

    def _session_cookie(self) -> Optional[str]:
        for cookie in self.session.cookies:
            if (
                cookie.name == SESSION_COOKIE
                and cookie.value
                and cookie.domain.lstrip(".").endswith("bilibili.com")
            ):
                return cookie.value
        return None

    def is_logged_in(self) -> bool:
        """True while the jar holds a non-empty session cookie. No network."""
        return self._session_cookie() is not None

    def save(self) -> bool:
        """
        Write the jar's session cookie to disk (mode 0600).

        Returns:
            False when the jar holds no session cookie
        """
        value = self._session_cookie()
        if value is None:
            logger.warning("No session cookie in jar; nothing to save")
            return False
        payload = {
            "sessdata": value,
            "saved_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        write_bytes_atomic(self.path, json.dumps(payload).encode("utf-8"), mode=0o600)
        logger.info("Session credential saved")
        return True

    def restore(self) -> bool:
        """
        Load a persisted session cookie into the jar.

        A missing file is a normal first run and returns False.

        Raises:
            ValidationError: the file exists but is not a credential record
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No saved session credential")
            return False

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"saved credential is corrupt: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("saved credential is corrupt: expected an object")

        value = data.get("sessdata") or ""
        if not value:
            return False

        expires = datetime.now(timezone.utc) + RESTORED_COOKIE_LIFETIME
        self.session.cookies.set_cookie(
            create_cookie(
                SESSION_COOKIE,
                value,
                domain=COOKIE_DOMAIN,
                path="/",
                secure=True,
                expires=int(expires.timestamp()),
                rest={"HttpOnly": None},
            )
        )
        logger.info(f"Session credential restored (saved {data.get('saved_at') or 'at unknown time'})")
        return True

    def logout(self) -> None:
        """Clear platform cookies and delete the file. Never raises."""
        for cookie in list(self.session.cookies):
            if not cookie.domain.lstrip(".").endswith("bilibili.com"):
                continue
            try:
                self.session.cookies.clear(cookie.domain, cookie.path, cookie.name)
            except KeyError:
                pass

        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete saved credential: {e}")
        logger.info("Logged out")
