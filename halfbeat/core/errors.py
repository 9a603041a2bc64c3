"""
Error taxonomy shared by the core services.

Every failure surfaced to callers derives from PlayerError so the
presentation layer can catch one type and show ``str(exc)``.
"""
from __future__ import annotations

from typing import Optional


class PlayerError(RuntimeError):
    """Base class for all core failures."""


class UpstreamAPIError(PlayerError):
    """The platform answered with a non-zero ``code`` envelope."""

    def __init__(self, code: int, message: str = "", endpoint: Optional[str] = None):
        self.code = int(code)
        self.message = message or ""
        self.endpoint = endpoint
        prefix = f"{endpoint} API error" if endpoint else "API error"
        super().__init__(f"{prefix}: code={self.code}, msg={self.message}")


class TransportError(PlayerError):
    """Network, timeout or undecodable-response failure. Never retried here."""


class NotFoundError(PlayerError):
    """Missing local file, unknown identifier or empty upstream list."""


class NoPlayableTrackError(NotFoundError):
    """The media descriptor carried no usable audio URL."""


class ValidationError(PlayerError):
    """Malformed input, oversized payload or wrong content type."""


class IntegrityError(PlayerError):
    """Declared and actual byte counts disagree during a download."""
