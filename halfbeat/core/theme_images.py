"""
Content-addressed storage for theme background images.

Images are stored as ``<sha256 hex><ext>`` under ``theme_images`` and
handed back as ``/theme-image`` proxy URLs, so saving the same bytes twice
yields the same URL and writes nothing the second time.
"""
import base64
import binascii
import hashlib
import logging
import mimetypes
import re

import requests

from halfbeat.core.errors import TransportError, ValidationError
from halfbeat.core.http_client import IMAGE_HEADERS
from halfbeat.utils.file_utils import write_bytes_atomic

logger = logging.getLogger(__name__)

MAX_THEME_IMAGE_BYTES = 20 * 1024 * 1024
THEME_IMAGE_TIMEOUT = 30

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
    "image/avif": ".avif",
}

_EXT_RE = re.compile(r"^\.[a-z0-9]{1,5}$")


def sniff_image_type(data: bytes) -> str:
    """Guess an image MIME type from magic bytes."""
    if data.startswith(b"\xFF\xD8\xFF"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in {b"GIF87a", b"GIF89a"}:
        return "image/gif"
    if data.startswith(b"BM"):
        return "image/bmp"
    if len(data) >= 12 and data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def image_extension(content_type: str, data: bytes) -> str:
    """File extension for an image, ``.jpg`` when nothing better is known."""
    ct = (content_type or "").split(";", 1)[0].strip().lower() or sniff_image_type(data)
    ext = _EXTENSIONS.get(ct) or mimetypes.guess_extension(ct) or ""
    ext = ext.lower()
    if _EXT_RE.match(ext):
        return ext
    for marker, fallback in (("png", ".png"), ("webp", ".webp"), ("gif", ".gif")):
        if marker in ct:
            return fallback
    return ".jpg"


def decode_image_data_url(data_url: str):
    """
    Split a ``data:image/...;base64,...`` URL into (mime type, bytes).

    Raises:
        ValidationError: not a base64 image data URL
    """
    if not data_url.startswith("data:"):
        raise ValidationError("invalid data URL")
    meta, sep, payload = data_url.partition(",")
    if not sep:
        raise ValidationError("invalid data URL format")
    if not meta.endswith(";base64"):
        raise ValidationError("data URL must be base64 encoded")
    mime_type = meta[len("data:"):-len(";base64")]
    if not mime_type.startswith("image/"):
        raise ValidationError(f"invalid mime type: {mime_type}")
    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"invalid base64 payload: {e}") from e
    return mime_type, decoded


class ThemeImageStore:
    """Saves theme images from data URLs or remote URLs."""

    def __init__(self, dirs, session: requests.Session, proxy):
        self.dirs = dirs
        self.session = session
        self.proxy = proxy

    def save_from_data_url(self, data_url: str) -> str:
        if not (data_url or "").strip():
            raise ValidationError("data URL is empty")
        mime_type, data = decode_image_data_url(data_url.strip())
        return self._save_bytes(data, mime_type)

    def save_from_url(self, image_url: str) -> str:
        url = (image_url or "").strip()
        if not url:
            raise ValidationError("image URL is empty")
        if not url.startswith(("http://", "https://")):
            raise ValidationError("unsupported URL scheme")

        try:
            resp = self.session.get(url, headers=IMAGE_HEADERS, stream=True, timeout=THEME_IMAGE_TIMEOUT)
        except requests.RequestException as e:
            raise TransportError(f"download image: {e}") from e
        try:
            if resp.status_code >= 400:
                raise TransportError(f"upstream status: {resp.status_code}")
            data = self._read_limited(resp)
            content_type = resp.headers.get("Content-Type") or ""
        finally:
            resp.close()

        if not content_type:
            content_type = sniff_image_type(data)
        if not content_type.startswith("image/"):
            raise ValidationError(f"invalid content type: {content_type}")
        return self._save_bytes(data, content_type)

    @staticmethod
    def _read_limited(resp) -> bytes:
        buf = bytearray()
        try:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                buf.extend(chunk)
                if len(buf) > MAX_THEME_IMAGE_BYTES:
                    raise ValidationError(f"image exceeds {MAX_THEME_IMAGE_BYTES} bytes")
        except requests.RequestException as e:
            raise TransportError(f"read image: {e}") from e
        return bytes(buf)

    def _save_bytes(self, data: bytes, content_type: str) -> str:
        if not data:
            raise ValidationError("image data is empty")
        if len(data) > MAX_THEME_IMAGE_BYTES:
            raise ValidationError(f"image exceeds {MAX_THEME_IMAGE_BYTES} bytes")

        filename = hashlib.sha256(data).hexdigest() + image_extension(content_type, data)
        path = self.dirs.theme_images / filename
        if path.exists():
            logger.debug(f"Theme image {filename} already stored")
        else:
            write_bytes_atomic(path, data)
            logger.info(f"Stored theme image {filename} ({len(data)} bytes)")
        return self.proxy.theme_image_url(filename)

