"""Canonical identifiers for rate limited actors.

Authenticated traffic is limited per user, anonymous traffic per client IP.
Keeping the two namespaces apart stops one abusive anonymous client on a
shared NAT address from draining the budget of signed-in users behind the
same address, and vice versa.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from urllib.parse import quote

from fastapi import Request

# Checked in order; only honoured when proxy headers are trusted
PROXY_IP_HEADERS = (
    "x-real-ip",
    "x-forwarded-for",
    "cf-connecting-ip",
    "x-client-ip",
)

UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """What the limiter needs to know about a request.

    Attributes:
        remote_ip: Client address as seen by the service.
        user_id: Authenticated user id, when the auth layer resolved one.
    """

    remote_ip: str | None
    user_id: str | None = None

    @classmethod
    def from_request(cls, request: Request, *, trust_proxy_headers: bool = False) -> "RequestContext":
        """Build a context from a Starlette/FastAPI request.

        The user id is read from ``request.state.user_id``, which the
        authentication layer sets for signed-in sessions.

        Args:
            request: Incoming request.
            trust_proxy_headers: Read the address from proxy headers before
                falling back to the socket peer.

        Returns:
            RequestContext for the limiter.
        """
        user_id = getattr(request.state, "user_id", None)
        remote_ip = None
        if trust_proxy_headers:
            for header in PROXY_IP_HEADERS:
                value = request.headers.get(header)
                if value:
                    # X-Forwarded-For: client, proxy1, proxy2
                    remote_ip = value.split(",")[0].strip()
                    break
        if not remote_ip and request.client:
            remote_ip = request.client.host
        return cls(remote_ip=remote_ip, user_id=str(user_id) if user_id is not None else None)


def normalize_ip(raw: str | None) -> str:
    """Return the canonical text form of an IP address, or ``unknown``."""
    if not raw:
        return UNKNOWN_IP
    candidate = raw.strip()
    # Bracketed IPv6 with optional port: [2001:db8::1]:443
    if candidate.startswith("["):
        candidate = candidate[1:].split("]", 1)[0]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        # IPv4 with port: 203.0.113.5:8080
        host, sep, _port = candidate.rpartition(":")
        if not sep or ":" in host:
            return UNKNOWN_IP
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return UNKNOWN_IP
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return address.compressed


def resolve_identifier(context: RequestContext) -> str:
    """Derive the canonical identifier for a request.

    The user id is percent-encoded so that no user-chosen value can contain
    the ``:`` separator used in store keys.

    Examples:
        >>> resolve_identifier(RequestContext(remote_ip="203.0.113.5", user_id="42"))
        'user:42'
        >>> resolve_identifier(RequestContext(remote_ip="203.0.113.5"))
        'ip:203.0.113.5'
    """
    if context.user_id is not None and context.user_id.strip():
        return f"user:{quote(context.user_id.strip(), safe='')}"
    return f"ip:{normalize_ip(context.remote_ip)}"
