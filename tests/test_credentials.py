"""Test session credential persistence"""

import json
import os
import stat
import sys

import pytest
import requests
from requests.cookies import create_cookie

from halfbeat.core.credentials import CredentialStore
from halfbeat.core.errors import ValidationError


@pytest.fixture
def session():
    return requests.Session()


@pytest.fixture
def store(session, data_dirs):
    return CredentialStore(session, data_dirs.credentials_file)


def login(session, value="abc%2C123"):
    session.cookies.set_cookie(create_cookie("SESSDATA", value, domain=".bilibili.com", path="/"))
    session.cookies.set_cookie(create_cookie("bili_jct", "csrf", domain=".bilibili.com", path="/"))


class TestCredentialStore:
    """Test saving, restoring and clearing the session cookie"""

    def test_not_logged_in_initially(self, store):
        assert store.is_logged_in() is False

    def test_other_domain_does_not_count(self, store, session):
        session.cookies.set_cookie(create_cookie("SESSDATA", "x", domain="example.com", path="/"))
        assert store.is_logged_in() is False

    def test_save_without_cookie(self, store, data_dirs):
        assert store.save() is False
        assert not data_dirs.credentials_file.exists()

    def test_save_writes_record(self, store, session, data_dirs):
        login(session)

        assert store.save() is True

        record = json.loads(data_dirs.credentials_file.read_text(encoding="utf-8"))
        assert record["sessdata"] == "abc%2C123"
        assert record["saved_at"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_save_is_owner_only(self, store, session, data_dirs):
        login(session)
        store.save()
        mode = stat.S_IMODE(os.stat(data_dirs.credentials_file).st_mode)
        assert mode == 0o600

    def test_restore_into_fresh_session(self, store, session, data_dirs):
        login(session)
        store.save()

        fresh = requests.Session()
        restored = CredentialStore(fresh, data_dirs.credentials_file)
        assert restored.restore() is True
        assert restored.is_logged_in()

        cookie = next(c for c in fresh.cookies if c.name == "SESSDATA")
        assert cookie.domain == ".bilibili.com"
        assert cookie.path == "/"
        assert cookie.secure
        assert cookie.expires is not None

    def test_restore_missing_file(self, store):
        assert store.restore() is False
        assert store.is_logged_in() is False

    def test_restore_corrupt_file(self, store, data_dirs):
        data_dirs.credentials_file.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError):
            store.restore()

    def test_restore_empty_value(self, store, data_dirs):
        data_dirs.credentials_file.write_text(json.dumps({"sessdata": ""}), encoding="utf-8")
        assert store.restore() is False

    def test_logout(self, store, session, data_dirs):
        login(session)
        session.cookies.set_cookie(create_cookie("keep", "1", domain="example.com", path="/"))
        store.save()

        store.logout()

        assert store.is_logged_in() is False
        assert not data_dirs.credentials_file.exists()
        assert [c.name for c in session.cookies] == ["keep"]

    def test_logout_twice(self, store):
        store.logout()
        store.logout()
        assert store.is_logged_in() is False
