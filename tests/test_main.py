"""Test the headless entry point"""

import logging
import signal
import socket
import threading
from unittest.mock import patch

import pytest

import main


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved[0]:
        root.addHandler(handler)
    root.setLevel(saved[1])


class TestMain:
    """Test startup and shutdown of the backend process"""

    def test_sigterm_stops_cleanly(self, tmp_path):
        handlers = {}
        installed = threading.Event()

        def fake_signal(signum, handler):
            handlers[signum] = handler
            installed.set()

        result = []
        with patch("main.signal.signal", side_effect=fake_signal):
            runner = threading.Thread(
                target=lambda: result.append(main.main(["--data-dir", str(tmp_path), "--port", "0"]))
            )
            runner.start()
            assert installed.wait(5)
            handlers[signal.SIGTERM](signal.SIGTERM, None)
            runner.join(10)

        assert not runner.is_alive()
        assert result == [0]

    def test_port_in_use_returns_error(self, tmp_path):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            port = blocker.getsockname()[1]
            with patch("main.signal.signal"):
                assert main.main(["--data-dir", str(tmp_path), "--port", str(port)]) == 1
        finally:
            blocker.close()
