"""
Loopback HTTP proxy for upstream audio and images.

The platform CDN refuses requests that lack its Referer and never sends
CORS headers, so the player fetches everything through this listener.
Routes:

- ``/audio?u=<url>[&sid=<song id>]`` relays audio bytes (Range aware)
  and fills the passive cache on full responses when ``sid`` is given
- ``/image?u=<url>`` relays cover images
- ``/local?f=<song id>.m4s`` serves a cached or downloaded file
- ``/theme-image?f=<sha256><ext>`` serves a stored theme image
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import quote, urlparse

import aiohttp
from aiohttp import ClientTimeout, TCPConnector, web
from aiohttp.client_exceptions import ClientConnectionError

from halfbeat.core.errors import IntegrityError
from halfbeat.core.http_client import IMAGE_HEADERS, MEDIA_HEADERS
from halfbeat.utils.file_utils import (
    AUDIO_FILENAME_RE,
    THEME_IMAGE_FILENAME_RE,
    part_path,
    promote_part_file,
    remove_quietly,
)

logger = logging.getLogger(__name__)

DEFAULT_PROXY_HOST = "127.0.0.1"
DEFAULT_PROXY_PORT = 9999

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}

# Upstream response headers copied onto the relayed response
RELAYED_HEADERS = ("Content-Type", "Content-Length", "Content-Range", "Accept-Ranges")


class AudioProxy:
    def __init__(
        self,
        dirs,
        *,
        host: str = DEFAULT_PROXY_HOST,
        port: int = DEFAULT_PROXY_PORT,
        chunk_size: int = 64 * 1024,
        connect_timeout: float = 10,
        read_timeout: float = 30,
    ):
        self._dirs = dirs
        self._host = host
        self._port = int(port)
        self._chunk_size = max(4096, int(chunk_size))
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._started = threading.Event()
        self._start_error: Optional[Exception] = None
        # Song ids currently being teed into the passive cache (event loop only)
        self._teeing: set[str] = set()

    # ------------------------------------------------------------------
    # URL builders (never start the server)
    # ------------------------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    def audio_proxy_url(self, url: str, song_id: Optional[str] = None) -> str:
        if not url:
            raise ValueError("Missing URL for audio proxy")
        proxied = f"{self.base_url}/audio?u={quote(url, safe='')}"
        if song_id:
            proxied += f"&sid={quote(song_id, safe='')}"
        return proxied

    def image_proxy_url(self, url: str) -> str:
        if not url:
            raise ValueError("Missing URL for image proxy")
        return f"{self.base_url}/image?u={quote(url, safe='')}"

    def local_url(self, filename: str) -> str:
        return f"{self.base_url}/local?f={quote(filename, safe='')}"

    def theme_image_url(self, filename: str) -> str:
        return f"{self.base_url}/theme-image?f={quote(filename, safe='')}"

    def is_proxy_url(self, url: str) -> bool:
        """True for any URL pointing back at this listener."""
        if not url:
            return False
        try:
            parsed = urlparse(url)
            port = parsed.port
        except ValueError:
            return False
        return parsed.hostname in {self._host, "localhost", "127.0.0.1"} and port == self._port

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and self._started.is_set()
            and self._start_error is None
        )

    def start(self, timeout_s: float = 3.0) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._started.clear()
        self._start_error = None
        self._thread = threading.Thread(target=self._run, name="audio-proxy", daemon=True)
        self._thread.start()
        if not self._started.wait(timeout_s):
            raise RuntimeError("Audio proxy failed to start (timeout)")
        if self._start_error:
            self._thread.join(timeout_s)
            self._thread = None
            raise self._start_error
        logger.info(f"Audio proxy listening on {self.base_url}")

    def stop(self, timeout_s: float = 3.0) -> None:
        loop = self._loop
        if not loop or loop.is_closed():
            self._thread = None
            self._loop = None
            return
        loop.call_soon_threadsafe(loop.stop)
        if self._thread:
            self._thread.join(timeout_s)
        self._thread = None
        self._loop = None
        logger.info("Audio proxy stopped")

    def build_app(self) -> web.Application:
        """The aiohttp application; its client session lives with the app."""
        app = web.Application()
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        for path, handler in (
            ("/audio", self._handle_audio),
            ("/image", self._handle_image),
            ("/local", self._handle_local),
            ("/theme-image", self._handle_theme_image),
        ):
            app.router.add_get(path, handler)
            app.router.add_route("OPTIONS", path, self._handle_options)
        return app

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._start_async())
            self._loop = loop
        except Exception as exc:
            self._start_error = exc
            # Bind failures still leave the runner and client session open
            try:
                loop.run_until_complete(self._shutdown_async())
            except Exception as e:
                logger.warning(f"Error during proxy cleanup: {e}")
            loop.close()
            return
        finally:
            self._started.set()

        try:
            loop.run_forever()
        finally:
            try:
                loop.run_until_complete(self._shutdown_async())
            except Exception as e:
                logger.warning(f"Error during proxy shutdown: {e}")
            loop.close()

    async def _start_async(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        # Port 0 binds an ephemeral port; report the real one
        server = getattr(self._site, "_server", None)
        if server is not None and server.sockets:
            self._port = int(server.sockets[0].getsockname()[1])

    async def _shutdown_async(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None

    async def _on_startup(self, app: web.Application) -> None:
        connector = TCPConnector(limit=100, limit_per_host=10, ttl_dns_cache=300)
        timeout = ClientTimeout(
            total=None,  # audio streams run as long as the listener keeps reading
            connect=self._connect_timeout,
            sock_read=self._read_timeout,
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            raise_for_status=False,
            auto_decompress=False,
        )

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _error_response(
        status: int,
        error_code: str,
        user_message: str,
        details: Optional[str] = None,
    ) -> web.Response:
        error_body = {
            "error": error_code,
            "user_message": user_message,
        }
        if details:
            error_body["details"] = details

        return web.Response(
            status=status,
            text=json.dumps(error_body),
            content_type="application/json",
            headers=CORS_HEADERS,
        )

    async def _handle_options(self, request: web.Request) -> web.Response:
        return web.Response(status=204, headers=CORS_HEADERS)

    async def _handle_audio(self, request: web.Request) -> web.StreamResponse:
        url, error = self._upstream_url(request)
        if error is not None:
            return error

        song_id = request.query.get("sid", "")
        if song_id:
            filename = f"{song_id}.m4s"
            if not AUDIO_FILENAME_RE.match(filename):
                return self._error_response(
                    400, "INVALID_SONG_ID", "Invalid song identifier.", details=song_id
                )
            local = self._find_audio(filename)
            if local is not None:
                logger.debug(f"Serving {filename} from {local.parent.name}")
                return self._file_response(local, "audio/mp4")

        return await self._relay(request, url, MEDIA_HEADERS, cache_as=song_id or None)

    async def _handle_image(self, request: web.Request) -> web.StreamResponse:
        url, error = self._upstream_url(request)
        if error is not None:
            return error
        return await self._relay(request, url, IMAGE_HEADERS)

    async def _handle_local(self, request: web.Request) -> web.StreamResponse:
        filename = request.query.get("f", "")
        if not AUDIO_FILENAME_RE.match(filename):
            return self._error_response(
                400, "INVALID_FILENAME", "Invalid file name.", details=filename or None
            )
        path = self._find_audio(filename)
        if path is None:
            return self._error_response(404, "NOT_FOUND", "The audio file is not available locally.")
        return self._file_response(path, "audio/mp4")

    async def _handle_theme_image(self, request: web.Request) -> web.StreamResponse:
        filename = request.query.get("f", "")
        if not THEME_IMAGE_FILENAME_RE.match(filename):
            return self._error_response(
                400, "INVALID_FILENAME", "Invalid file name.", details=filename or None
            )
        path = self._dirs.theme_images / filename
        if not path.is_file():
            return self._error_response(404, "NOT_FOUND", "The theme image does not exist.")
        return self._file_response(path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _upstream_url(self, request: web.Request) -> Tuple[str, Optional[web.Response]]:
        url = request.query.get("u", "")
        if not url:
            return "", self._error_response(400, "MISSING_URL", "No URL specified for proxying.")
        scheme = urlparse(url).scheme
        if scheme not in {"http", "https"}:
            return "", self._error_response(
                400,
                "UNSUPPORTED_SCHEME",
                "Only HTTP and HTTPS URLs are supported.",
                details=f"Provided scheme: {scheme}",
            )
        return url, None

    def _find_audio(self, filename: str) -> Optional[Path]:
        for directory in (self._dirs.audio_cache, self._dirs.downloads):
            candidate = directory / filename
            if candidate.is_file():
                return candidate
        return None

    @staticmethod
    def _file_response(path: Path, content_type: Optional[str] = None) -> web.FileResponse:
        headers = dict(CORS_HEADERS)
        if content_type:
            headers["Content-Type"] = content_type
        return web.FileResponse(path, headers=headers)

    async def _relay(
        self,
        request: web.Request,
        url: str,
        base_headers: dict,
        cache_as: Optional[str] = None,
    ) -> web.StreamResponse:
        if self._session is None:
            return self._error_response(
                503,
                "PROXY_NOT_READY",
                "The proxy service is not ready yet. Please try again.",
            )

        request_headers = dict(base_headers)
        range_header = request.headers.get("Range")
        if range_header:
            request_headers["Range"] = range_header
        logger.debug(f"Relaying {range_header or 'full'} for {url[:80]}")

        try:
            origin = await self._session.get(url, headers=request_headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Upstream request failed for {url[:80]}: {e}")
            return self._error_response(
                502,
                "UPSTREAM_UNREACHABLE",
                "Could not reach the media server.",
                details=str(e) or type(e).__name__,
            )

        async with origin:
            resp_headers = dict(CORS_HEADERS)
            for name in RELAYED_HEADERS:
                value = origin.headers.get(name)
                if value:
                    resp_headers[name] = value
            resp_headers.setdefault("Accept-Ranges", "bytes")

            expected = _positive_int(origin.headers.get("Content-Length"))
            tee_path = None
            if (
                cache_as
                and origin.status == 200
                and not range_header
                and expected
                and cache_as not in self._teeing
            ):
                # Claimed before the first await so a second request skips the tee
                self._teeing.add(cache_as)
                tee_path = part_path(self._dirs.audio_cache / f"{cache_as}.m4s")

            try:
                resp = web.StreamResponse(status=origin.status, headers=resp_headers)
                await resp.prepare(request)

                if tee_path is None:
                    try:
                        async for chunk in origin.content.iter_chunked(self._chunk_size):
                            await resp.write(chunk)
                    except (ClientConnectionError, ConnectionResetError, BrokenPipeError) as e:
                        logger.debug(f"Relay interrupted for {url[:80]}: {e}")
                        return resp
                else:
                    completed = await self._relay_and_cache(origin, resp, tee_path, cache_as)
                    if not completed:
                        return resp
            finally:
                if tee_path is not None:
                    self._teeing.discard(cache_as)

        try:
            await resp.write_eof()
        except (ClientConnectionError, ConnectionResetError, BrokenPipeError):
            pass
        return resp

    async def _relay_and_cache(
        self,
        origin: aiohttp.ClientResponse,
        resp: web.StreamResponse,
        tmp: Path,
        song_id: str,
    ) -> bool:
        """
        Stream to the client while writing the passive cache copy.

        A disk error drops the cache copy but keeps the client stream going.
        File I/O runs in worker threads so other streams keep flowing.
        Returns False when the client went away mid-stream.
        """
        expected = int(origin.headers["Content-Length"])
        destination = self._dirs.audio_cache / f"{song_id}.m4s"
        sink = None
        promoted = False
        try:
            try:
                sink = await asyncio.to_thread(_open_part_file, tmp)
            except OSError as e:
                logger.warning(f"Could not open cache copy for {song_id}: {e}")

            try:
                async for chunk in origin.content.iter_chunked(self._chunk_size):
                    await resp.write(chunk)
                    if sink is not None:
                        try:
                            await asyncio.to_thread(sink.write, chunk)
                        except OSError as e:
                            logger.warning(f"Could not write cache copy for {song_id}: {e}")
                            sink.close()
                            sink = None
            except (ClientConnectionError, ConnectionResetError, BrokenPipeError) as e:
                logger.debug(f"Client left before {song_id} finished caching: {e}")
                return False

            if sink is not None:
                try:
                    finished, sink = sink, None
                    await asyncio.to_thread(_finish_part_file, finished, tmp, destination, expected)
                    promoted = True
                    logger.info(f"Cached {destination.name} ({expected} bytes)")
                except (OSError, IntegrityError) as e:
                    logger.warning(f"Discarded cache copy for {song_id}: {e}")
            return True
        finally:
            if sink is not None:
                sink.close()
            if not promoted:
                remove_quietly(tmp)


def _open_part_file(tmp: Path):
    tmp.parent.mkdir(parents=True, exist_ok=True)
    return open(tmp, "wb")


def _finish_part_file(sink, tmp: Path, destination: Path, expected: int) -> None:
    """Flush, fsync and close the sink, then move it into place."""
    try:
        sink.flush()
        os.fsync(sink.fileno())
    finally:
        sink.close()
    promote_part_file(tmp, destination, expected)


def _positive_int(value: Optional[str]) -> Optional[int]:
    try:
        number = int(value) if value is not None else 0
    except ValueError:
        return None
    return number if number > 0 else None
