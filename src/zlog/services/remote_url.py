"""Classification of remote URLs as safe or unsafe to contact.

Every URL this instance is asked to call (subscriber callbacks, remote site
roots) passes through :func:`validate_remote_url`. The checks are purely
syntactic: hostnames that are not IP literals are not resolved, so DNS
rebinding remains a known residual risk.

Checks run in order and the first failure wins:

1. absolute, parseable URL           -> ``INVALID_URL_FORMAT``
2. scheme is ``http`` or ``https``   -> ``INVALID_PROTOCOL``
3. localhost / loopback literal      -> ``LOCALHOST_FORBIDDEN``
4. private or link-local IP literal  -> ``PRIVATE_IP_FORBIDDEN``
5. same host and port as this site   -> ``SELF_SUBSCRIPTION_FORBIDDEN``
"""

from __future__ import annotations

import ipaddress
import re
import socket
from dataclasses import dataclass
from enum import Enum
from urllib.parse import SplitResult, urlsplit

from zlog.core.errors import SecurityRejection

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_PORTS = {"http": 80, "https": 443}

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
)

# Hostnames made only of digits, dots and hex prefixes may be legacy IPv4
# spellings such as "2130706433" or "0x7f.1".
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_FORBIDDEN_CHARS_RE = re.compile(r"[\x00-\x20\x7f]")
# One DNS label; \w admits internationalized names, never spaces or controls.
_HOST_LABEL_RE = re.compile(r"^\w([\w-]*\w)?$")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class RejectionReason(str, Enum):
    """Machine readable reasons a URL was rejected."""

    INVALID_URL_FORMAT = "INVALID_URL_FORMAT"
    INVALID_PROTOCOL = "INVALID_PROTOCOL"
    LOCALHOST_FORBIDDEN = "LOCALHOST_FORBIDDEN"
    PRIVATE_IP_FORBIDDEN = "PRIVATE_IP_FORBIDDEN"
    SELF_SUBSCRIPTION_FORBIDDEN = "SELF_SUBSCRIPTION_FORBIDDEN"

    @property
    def code(self) -> str:
        """Error code rendered to API clients, e.g. ``ERR_INVALID_PROTOCOL``."""
        return f"ERR_{self.value}"


@dataclass(frozen=True)
class URLValidation:
    """Outcome of :func:`validate_remote_url`; ``reason`` is None when accepted."""

    url: str
    reason: RejectionReason | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.ok


def parse_host_ip(hostname: str) -> IPAddress | None:
    """Return the IP address a hostname literally denotes, or None for names."""
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        if not _NUMERIC_HOST_RE.match(hostname):
            return None
        try:
            address = ipaddress.IPv4Address(socket.inet_aton(hostname))
        except OSError:
            return None

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def is_loopback_host(hostname: str) -> bool:
    """Return True for ``localhost`` names and loopback or unspecified literals."""
    hostname = hostname.rstrip(".").lower()
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    address = parse_host_ip(hostname)
    return address is not None and (address.is_loopback or address.is_unspecified)


def is_private_host(hostname: str) -> bool:
    """Return True when the hostname is an IP literal inside a private range."""
    address = parse_host_ip(hostname.rstrip(".").lower())
    if address is None:
        return False
    return any(
        address.version == network.version and address in network
        for network in PRIVATE_NETWORKS
    )


def _split(url: str) -> SplitResult | None:
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url or not _SCHEME_RE.match(url) or _FORBIDDEN_CHARS_RE.search(url):
        return None
    try:
        parsed = urlsplit(url)
        # Accessing .port validates it.
        parsed.port  # noqa: B018
    except ValueError:
        return None
    return parsed


def _is_valid_host(hostname: str) -> bool:
    if parse_host_ip(hostname) is not None:
        return True
    return all(_HOST_LABEL_RE.match(label) for label in hostname.split("."))


def _host_and_port(parsed: SplitResult) -> tuple[str, int | None]:
    hostname = (parsed.hostname or "").rstrip(".").lower()
    port = parsed.port
    if port is not None and DEFAULT_PORTS.get(parsed.scheme.lower()) == port:
        port = None
    return hostname, port


def same_origin_host(url: str, other_url: str) -> bool:
    """Return True when both URLs share hostname and port, ignoring the scheme."""
    parsed, other = _split(url), _split(other_url)
    if parsed is None or other is None:
        return False
    host, port = _host_and_port(parsed)
    return bool(host) and (host, port) == _host_and_port(other)


def validate_remote_url(url: str, self_site_url: str | None = None) -> URLValidation:
    """Classify ``url`` as safe to contact or rejected with a reason.

    Args:
        url: Arbitrary user supplied URL.
        self_site_url: This instance's own site URL. When given, URLs that
            point back at this instance are rejected.
    """
    parsed = _split(url)
    if parsed is None:
        return URLValidation(url, RejectionReason.INVALID_URL_FORMAT)

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return URLValidation(url, RejectionReason.INVALID_PROTOCOL)

    hostname, _port = _host_and_port(parsed)
    if not hostname or not _is_valid_host(hostname):
        return URLValidation(url, RejectionReason.INVALID_URL_FORMAT)

    if is_loopback_host(hostname):
        return URLValidation(url, RejectionReason.LOCALHOST_FORBIDDEN)

    if is_private_host(hostname):
        return URLValidation(url, RejectionReason.PRIVATE_IP_FORBIDDEN)

    if self_site_url and same_origin_host(url, self_site_url):
        return URLValidation(url, RejectionReason.SELF_SUBSCRIPTION_FORBIDDEN)

    return URLValidation(url)


def ensure_remote_url(url: str, self_site_url: str | None = None) -> str:
    """Return ``url`` unchanged or raise :class:`SecurityRejection`."""
    result = validate_remote_url(url, self_site_url)
    if result.reason is not None:
        raise SecurityRejection(result.reason, url)
    return url
