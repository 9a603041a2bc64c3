"""Test theme image storage"""

import base64
import hashlib
from unittest.mock import Mock, patch

import pytest

from halfbeat.core.errors import TransportError, ValidationError
from halfbeat.core.theme_images import (
    ThemeImageStore,
    decode_image_data_url,
    image_extension,
    sniff_image_type,
)

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG = b"\xFF\xD8\xFF\xE0" + b"\x01" * 64


def data_url(mime, payload):
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def store(data_dirs, session, proxy):
    return ThemeImageStore(data_dirs, session, proxy)


class TestSniffing:
    """Test image type detection"""

    def test_known_signatures(self):
        assert sniff_image_type(PNG) == "image/png"
        assert sniff_image_type(JPEG) == "image/jpeg"
        assert sniff_image_type(b"GIF89a....") == "image/gif"
        assert sniff_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_unknown(self):
        assert sniff_image_type(b"hello") == "application/octet-stream"

    def test_extension_from_content_type(self):
        assert image_extension("image/png; charset=binary", PNG) == ".png"
        assert image_extension("image/jpeg", JPEG) == ".jpg"

    def test_extension_fallback(self):
        assert image_extension("", b"???") == ".jpg"


class TestDataUrls:
    """Test data URL decoding and saving"""

    def test_decode(self):
        mime, data = decode_image_data_url(data_url("image/png", PNG))
        assert mime == "image/png"
        assert data == PNG

    @pytest.mark.parametrize("bad", [
        "http://example.com/a.png",
        "data:image/png;base64",
        "data:image/png,AAAA",
        "data:text/plain;base64,AAAA",
        "data:image/png;base64,@@not-base64@@",
    ])
    def test_decode_rejects(self, bad):
        with pytest.raises(ValidationError):
            decode_image_data_url(bad)

    def test_save_is_content_addressed(self, store, data_dirs, proxy):
        url = store.save_from_data_url("  " + data_url("image/png", PNG) + "\n")

        filename = hashlib.sha256(PNG).hexdigest() + ".png"
        assert url == proxy.theme_image_url(filename)
        assert (data_dirs.theme_images / filename).read_bytes() == PNG

    def test_save_twice_writes_once(self, store, data_dirs):
        first = store.save_from_data_url(data_url("image/png", PNG))
        with patch("halfbeat.core.theme_images.write_bytes_atomic") as mock_write:
            second = store.save_from_data_url(data_url("image/png", PNG))
        assert first == second
        mock_write.assert_not_called()
        assert len(list(data_dirs.theme_images.iterdir())) == 1

    def test_empty(self, store):
        with pytest.raises(ValidationError):
            store.save_from_data_url("   ")

    def test_oversize(self, store):
        with patch("halfbeat.core.theme_images.MAX_THEME_IMAGE_BYTES", 10):
            with pytest.raises(ValidationError):
                store.save_from_data_url(data_url("image/png", PNG))


class TestRemoteUrls:
    """Test saving from a remote URL"""

    def test_save(self, store, session, data_dirs, fake_response):
        session.get.return_value = fake_response(body=JPEG, headers={"Content-Type": "image/jpeg"})

        url = store.save_from_url(" https://example.com/bg.jpg ")

        filename = hashlib.sha256(JPEG).hexdigest() + ".jpg"
        assert url.endswith(filename)
        assert (data_dirs.theme_images / filename).exists()
        assert session.get.call_args.args[0] == "https://example.com/bg.jpg"
        assert session.get.return_value.closed

    def test_sniffs_missing_content_type(self, store, session, data_dirs, fake_response):
        session.get.return_value = fake_response(body=PNG)

        url = store.save_from_url("https://example.com/bg")

        assert url.endswith(".png")

    def test_rejects_non_image(self, store, session, fake_response):
        session.get.return_value = fake_response(body=b"<html>", headers={"Content-Type": "text/html"})
        with pytest.raises(ValidationError):
            store.save_from_url("https://example.com/page")

    def test_rejects_error_status(self, store, session, fake_response):
        session.get.return_value = fake_response(status_code=404, body=b"")
        with pytest.raises(TransportError):
            store.save_from_url("https://example.com/missing.png")

    def test_rejects_other_schemes(self, store, session):
        with pytest.raises(ValidationError):
            store.save_from_url("file:///etc/passwd")
        session.get.assert_not_called()

    def test_rejects_oversize_stream(self, store, session, fake_response):
        session.get.return_value = fake_response(
            body=PNG * 10, headers={"Content-Type": "image/png"}, chunk_size=8
        )
        with patch("halfbeat.core.theme_images.MAX_THEME_IMAGE_BYTES", 100):
            with pytest.raises(ValidationError):
                store.save_from_url("https://example.com/huge.png")
