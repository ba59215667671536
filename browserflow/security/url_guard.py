"""
Navigation target validation.

Blocks non-HTTP schemes and hosts that resolve into private, loopback or
link-local networks so a task cannot be pointed at internal services.
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Optional, Union
from urllib.parse import urlsplit

from browserflow.error_handling.exceptions import UrlNotAllowedError

logger = logging.getLogger(__name__)

PRIVATE_NETWORK_MESSAGE = "Access to private network is restricted"

_PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
]


def _parse_ip(value: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(value.strip("[]").split("%", 1)[0])
    except ValueError:
        return None


def is_private_ip(value: str) -> bool:
    """Return True when ``value`` is an IP literal inside a private range."""
    address = _parse_ip(value)
    if address is None:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return any(address in network for network in _PRIVATE_NETWORKS)


async def validate_url(url: Optional[str]) -> None:
    """
    Validate a navigation target.

    Empty URLs are accepted (nothing to navigate to). Hostnames that do not
    resolve are let through; the browser reports the failure itself.

    Args:
        url: URL to validate

    Raises:
        UrlNotAllowedError: If the scheme is not http(s) or the host is private
    """
    if not url:
        return

    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ""
    except ValueError as exc:
        raise UrlNotAllowedError("Invalid URL", url=url, cause=exc) from exc

    if not parts.scheme or not parts.netloc:
        raise UrlNotAllowedError("Invalid URL", url=url)

    if parts.scheme.lower() not in ("http", "https"):
        raise UrlNotAllowedError("Only HTTP and HTTPS protocols are allowed", url=url)

    lower_host = hostname.lower()
    if lower_host == "localhost" or lower_host.endswith(".localhost"):
        raise UrlNotAllowedError(PRIVATE_NETWORK_MESSAGE, url=url)

    if _parse_ip(hostname) is not None:
        if is_private_ip(hostname):
            raise UrlNotAllowedError(PRIVATE_NETWORK_MESSAGE, url=url)
        return

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        logger.debug(f"Could not resolve {hostname}: {exc}")
        return

    for info in infos:
        if is_private_ip(info[4][0]):
            raise UrlNotAllowedError(PRIVATE_NETWORK_MESSAGE, url=url)
