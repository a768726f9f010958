"""Outbound URL validation.

Webhook targets are tenant-supplied, so the server must never be turned
into a proxy for its own network. A URL is rejected when it is not
http(s), names localhost, or is a literal address in a loopback, private,
link-local, reserved or unspecified range, in any notation a resolver accepts.
"""

from __future__ import annotations

import ipaddress
import re
import socket
from urllib.parse import urlsplit

ALLOWED_SCHEMES = frozenset({"http", "https"})
BLOCKED_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})

# A host whose last label is numeric is an IPv4 address in some notation
_NUMERIC_LABEL = re.compile(r"(0x[0-9a-f]*|[0-9]+)")


class UnsafeUrlError(ValueError):
    """URL is not allowed as an outbound target."""


def _parse_address(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse a literal address, including shorthand, decimal, hex and octal IPv4.

    Resolvers accept forms like ``127.1``, ``2130706433`` and ``0x7f000001``,
    so they are normalized with ``inet_aton`` before classification.
    Returns None for a host name.
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass

    if not _NUMERIC_LABEL.fullmatch(host.rsplit(".", 1)[-1]):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError as e:
        raise UnsafeUrlError("Invalid IPv4 address") from e


def validate_outbound_url(url: str) -> str:
    """Return ``url`` unchanged when it is a safe outbound target.

    Raises:
        UnsafeUrlError: With a human-readable reason
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError as e:
        raise UnsafeUrlError("Invalid URL") from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeUrlError("Only http and https URLs are allowed")

    host = (parts.hostname or "").rstrip(".").lower()
    if not host:
        raise UnsafeUrlError("URL must include a host")

    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        raise UnsafeUrlError("Localhost URLs are not allowed")

    address = _parse_address(host)
    if address is None:
        return url

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    ):
        raise UnsafeUrlError("Private, loopback and link-local addresses are not allowed")

    return url


def is_safe_outbound_url(url: str) -> bool:
    """Boolean form of ``validate_outbound_url``."""
    try:
        validate_outbound_url(url)
    except UnsafeUrlError:
        return False
    return True
