"""Client IP helpers used for lab subnet gating."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable, Optional

from fastapi import Request

SUBNET_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}/\d{1,2}$")

_PROXY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def is_valid_subnet(cidr: str) -> bool:
    """Return True for a well-formed IPv4 CIDR such as `10.1.2.0/24`."""
    if not isinstance(cidr, str) or not SUBNET_PATTERN.match(cidr.strip()):
        return False
    try:
        ipaddress.IPv4Network(cidr.strip(), strict=False)
    except ValueError:
        return False
    return True


def is_ip_in_subnet(ip: Optional[str], cidr: Optional[str]) -> bool:
    """Check whether `ip` belongs to the IPv4 network `cidr`.

    Any malformed input yields False instead of raising.
    """
    if not ip or not cidr:
        return False
    try:
        address = ipaddress.IPv4Address(ip.strip())
        network = ipaddress.IPv4Network(cidr.strip(), strict=False)
    except ValueError:
        return False
    return address in network


def get_client_ip(request: Request, trust_proxy_headers: bool = True) -> Optional[str]:
    """Best-effort client address.

    Proxy headers are consulted first (in order `x-forwarded-for`,
    `x-real-ip`, `cf-connecting-ip`) when `trust_proxy_headers` is set;
    the socket peer is the fallback.
    """
    if trust_proxy_headers:
        for header in _PROXY_HEADERS:
            value = request.headers.get(header)
            if not value:
                continue
            # x-forwarded-for is "client, proxy1, proxy2"
            candidate = value.split(",")[0].strip()
            if candidate:
                return candidate
    if request.client and request.client.host:
        return request.client.host
    return None


def is_client_in_lab_subnets(ip: Optional[str], subnets: Iterable[str]) -> bool:
    subnets = [s for s in subnets if s]
    if not ip or not subnets:
        return False
    return any(is_ip_in_subnet(ip, s) for s in subnets)
