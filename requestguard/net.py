"""
RequestGuard: Client Address Resolution
=========================================

What:  Resolves the client IP used as the rate limiting key.
How:   Uses the socket peer address, unless the peer is a trusted proxy
       (load balancer, ingress), in which case X-Forwarded-For is walked
       from the right and the first untrusted hop is the client.

Without this, every request behind a proxy would share the proxy's IP and
one noisy client would lock out everyone.
"""

import ipaddress
import logging
from typing import Iterable, Optional, Union

from starlette.requests import Request

logger = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

UNKNOWN_IP = "unknown"


def _parse(address: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(address.strip())
    except ValueError:
        return None


def is_trusted(address: str, trusted_networks: Iterable[Network]) -> bool:
    ip = _parse(address)
    if ip is None:
        return False
    return any(ip.version == net.version and ip in net for net in trusted_networks)


def client_ip(request: Request, trusted_networks: Iterable[Network] = ()) -> str:
    """Best-effort client address for `request`."""
    peer = request.client.host if request.client else None
    if not peer:
        return UNKNOWN_IP

    networks = list(trusted_networks)
    if not networks or not is_trusted(peer, networks):
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if _parse(hop) is None:
            logger.debug("Ignoring malformed X-Forwarded-For hop %r", hop)
            continue
        if not is_trusted(hop, networks):
            return hop
    return peer
