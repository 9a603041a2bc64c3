"""Test file helpers, logging configuration and the core context"""

import logging
from unittest.mock import patch

import pytest

from halfbeat.core.context import DATA_DIR_ENV, CoreContext, DataDirs
from halfbeat.core.errors import IntegrityError, ValidationError
from halfbeat.utils.file_utils import (
    audio_filename,
    directory_size,
    part_path,
    promote_part_file,
    reveal_in_file_manager,
    write_bytes_atomic,
)
from halfbeat.utils.logging_config import LoggerCategory, LoggingManager


class TestFileUtils:
    """Test atomic writes and path helpers"""

    def test_audio_filename(self):
        assert audio_filename("1b4e28ba-2fa1-11d2-883f-0016d3cca427") == "1b4e28ba-2fa1-11d2-883f-0016d3cca427.m4s"

    @pytest.mark.parametrize("bad", ["", "..", "a/b", "a b", "x" * 200])
    def test_audio_filename_rejects(self, bad):
        with pytest.raises(ValidationError):
            audio_filename(bad)

    def test_write_bytes_atomic(self, tmp_path):
        target = tmp_path / "nested" / "file.bin"

        write_bytes_atomic(target, b"payload")

        assert target.read_bytes() == b"payload"
        assert not part_path(target).exists()

    def test_promote_size_mismatch(self, tmp_path):
        tmp = tmp_path / "x.m4s.part"
        tmp.write_bytes(b"123")

        with pytest.raises(IntegrityError):
            promote_part_file(tmp, tmp_path / "x.m4s", expected_size=10)
        assert not tmp.exists()
        assert not (tmp_path / "x.m4s").exists()

    def test_promote_replaces_existing(self, tmp_path):
        dest = tmp_path / "x.m4s"
        dest.write_bytes(b"old")
        tmp = part_path(dest)
        tmp.write_bytes(b"newer")

        promote_part_file(tmp, dest, expected_size=5)

        assert dest.read_bytes() == b"newer"

    def test_directory_size(self, tmp_path):
        (tmp_path / "a").write_bytes(b"12")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b").write_bytes(b"345")
        assert directory_size(tmp_path) == 5
        assert directory_size(tmp_path / "missing") == 0

    @patch("halfbeat.utils.file_utils.subprocess.Popen")
    def test_reveal_linux_opens_parent(self, mock_popen, tmp_path):
        target = tmp_path / "song.m4s"
        with patch("halfbeat.utils.file_utils.sys.platform", "linux"):
            reveal_in_file_manager(target, select=True)
        mock_popen.assert_called_once_with(["xdg-open", str(tmp_path)])

    @patch("halfbeat.utils.file_utils.subprocess.Popen")
    def test_reveal_macos_selects(self, mock_popen, tmp_path):
        target = tmp_path / "song.m4s"
        with patch("halfbeat.utils.file_utils.sys.platform", "darwin"):
            reveal_in_file_manager(target, select=True)
        mock_popen.assert_called_once_with(["open", "-R", str(target)])

    def test_reveal_unsupported_platform(self, tmp_path):
        with patch("halfbeat.utils.file_utils.sys.platform", "plan9"):
            with pytest.raises(ValidationError):
                reveal_in_file_manager(tmp_path)


class TestLoggingManager:
    """Test categorized log levels"""

    def test_defaults_without_db(self, tmp_path):
        manager = LoggingManager(tmp_path / "logs")
        assert manager.get_category_level(LoggerCategory.DATABASE) == logging.WARNING
        assert manager.get_category_level(LoggerCategory.NETWORK) == logging.INFO

    def test_levels_persist(self, tmp_path, db):
        manager = LoggingManager(tmp_path / "logs", db_manager=db)
        manager.set_category_level(LoggerCategory.DOWNLOAD, logging.DEBUG)

        assert db.get_config("log_level_download") == "DEBUG"
        assert logging.getLogger("halfbeat.core.download_manager").level == logging.DEBUG
        assert LoggingManager(tmp_path / "logs", db_manager=db).get_category_level(
            LoggerCategory.DOWNLOAD
        ) == logging.DEBUG

    def test_invalid_stored_level_falls_back(self, tmp_path, db):
        db.set_config("log_level_api", "LOUD")
        manager = LoggingManager(tmp_path / "logs", db_manager=db)
        assert manager.get_category_level(LoggerCategory.API) == logging.INFO

    def test_unknown_category(self, tmp_path):
        with pytest.raises(ValueError):
            LoggingManager(tmp_path / "logs").set_category_level("gui", logging.DEBUG)

    def test_get_all_levels_is_a_copy(self, tmp_path):
        manager = LoggingManager(tmp_path / "logs")
        levels = manager.get_all_levels()
        levels[LoggerCategory.CORE] = logging.CRITICAL
        assert manager.get_category_level(LoggerCategory.CORE) == logging.INFO
        assert set(levels) == {"core", "api", "network", "download", "database", "auth"}

    def test_setup_installs_handlers(self, tmp_path):
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        try:
            LoggingManager(tmp_path / "logs").setup_logging(logging.DEBUG)
            logging.getLogger("halfbeat.core.context").info("hello")
            for handler in root.handlers:
                handler.flush()
            assert (tmp_path / "logs" / "half_beat.log").exists()
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved[0]:
                root.addHandler(handler)
            root.setLevel(saved[1])


class TestCoreContext:
    """Test composition of the core services"""

    def test_data_dirs_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "env-data"))
        dirs = DataDirs()
        assert dirs.base == tmp_path / "env-data"
        assert dirs.audio_cache.is_dir()
        assert dirs.downloads.is_dir()

    def test_context_wires_shared_session(self, tmp_path):
        ctx = CoreContext(tmp_path / "ctx", proxy_port=0)
        try:
            assert ctx.api.session is ctx.session
            assert ctx.credentials.session is ctx.session
            assert ctx.downloads.session is ctx.session
            assert ctx.resolver.proxy is ctx.proxy
            assert ctx.proxy.is_running is False
            assert ctx.db.list_favorites()[0].id == "FavList-default"
        finally:
            ctx.close()

    def test_context_restores_credential(self, tmp_path):
        base = tmp_path / "ctx"
        base.mkdir()
        (base / "sessdata.json").write_text('{"sessdata": "token"}', encoding="utf-8")

        ctx = CoreContext(base, proxy_port=0)
        try:
            assert ctx.account.is_logged_in()
        finally:
            ctx.close()

    def test_context_ignores_corrupt_credential(self, tmp_path):
        base = tmp_path / "ctx"
        base.mkdir()
        (base / "sessdata.json").write_text("garbage", encoding="utf-8")

        ctx = CoreContext(base, proxy_port=0)
        try:
            assert ctx.account.is_logged_in() is False
        finally:
            ctx.close()
