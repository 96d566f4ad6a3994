"""Exception hierarchy for the federation subsystem."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zlog.services.remote_url import RejectionReason


class FederationError(RuntimeError):
    """Base exception raised for federation failures."""


class InvalidInput(FederationError):
    """Raised for malformed input such as missing fields or unparsable payloads."""


class SecurityRejection(FederationError):
    """Raised when a URL is classified as unsafe to contact.

    The ``reason`` is machine readable so callers can render precise errors.
    """

    def __init__(self, reason: RejectionReason, url: str) -> None:
        super().__init__(f"{reason.code}: {url}")
        self.reason = reason
        self.url = url

    @property
    def code(self) -> str:
        return self.reason.code


class TransientNetworkFailure(FederationError):
    """Raised for timeouts, refused connections and non-2xx peer responses."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubscriptionRevoked(FederationError):
    """Raised when a remote instance reports that our subscription was revoked."""


class PermanentPeerFailure(FederationError):
    """Raised when a peer exceeded the consecutive failure threshold."""
