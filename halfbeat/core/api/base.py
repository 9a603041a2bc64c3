"""
Platform API contract.

Clients return decoded DTOs, never raw dicts. Every JSON endpoint of the
platform answers with an envelope ``{"code": int, "message": str, "data": ...}``;
``_request`` unwraps it and turns a non-zero code into UpstreamAPIError.
"""

from __future__ import annotations

import logging
from abc import ABC
from typing import Any, Dict, Optional, Tuple

import requests

from halfbeat.core.errors import NotFoundError, TransportError, UpstreamAPIError
from halfbeat.core.http_client import API_HEADERS

logger = logging.getLogger(__name__)


class BaseAPIClient(ABC):
    """
    Shared request/envelope handling for platform clients.

    Managers call clients; the presentation layer never does.
    """

    BASE_URL: str  # e.g. https://api.bilibili.com
    PLATFORM: str  # "bilibili"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout: Tuple[float, float] = (10, 30),
    ):
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.BASE_URL}{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        endpoint: Optional[str] = None,
        html_is_missing: bool = False,
    ) -> Any:
        """
        Perform a request and return the envelope's ``data`` member.

        Args:
            method: HTTP method
            path: Path relative to BASE_URL, or an absolute URL
            params: Query parameters
            headers: Extra headers layered over API_HEADERS
            endpoint: Short name used in error messages (e.g. "pagelist")
            html_is_missing: Treat an HTML body as "resource missing or private"

        Raises:
            TransportError: network failure, timeout or undecodable body
            UpstreamAPIError: envelope code != 0
            NotFoundError: HTML body when html_is_missing is set
        """
        payload = self._request_envelope(
            method,
            path,
            params=params,
            headers=headers,
            endpoint=endpoint,
            html_is_missing=html_is_missing,
        )
        code = payload.get("code", 0)
        if code != 0:
            message = payload.get("message") or payload.get("msg") or ""
            logger.warning(f"{self.PLATFORM} {endpoint or path} returned code={code}: {message}")
            raise UpstreamAPIError(code, message, endpoint=endpoint)
        return payload.get("data")

    def _request_envelope(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        endpoint: Optional[str] = None,
        html_is_missing: bool = False,
    ) -> Dict[str, Any]:
        """Perform a request and return the whole decoded envelope."""
        url = self._url(path)
        name = endpoint or path
        logger.info(f"API Request: {method} {url}")
        if params:
            logger.debug(f"Request params: {params}")

        req_headers = dict(API_HEADERS)
        if headers:
            req_headers.update(headers)

        try:
            resp = self.session.request(
                method=method,
                url=url,
                params=params,
                headers=req_headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{name} request error: {e}") from e

        body = resp.text or ""
        if html_is_missing and body.lstrip().startswith("<"):
            raise NotFoundError(f"{name}: resource does not exist or is private")

        try:
            payload = resp.json()
        except ValueError as e:
            raise TransportError(
                f"{name} decode error (HTTP {resp.status_code}): {body[:200]}"
            ) from e

        if not isinstance(payload, dict):
            raise TransportError(f"{name} decode error: unexpected payload type")
        return payload
