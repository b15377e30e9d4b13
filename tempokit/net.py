"""Network interface address helpers."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable

import psutil

_APIPA_PREFIX = "169.254."

logger = logging.getLogger(__name__)


def _ipv4_of(addr: Any) -> str | None:
    text = str(addr).split("/", 1)[0].split("%", 1)[0]
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None
    if ip.version == 4:
        return str(ip)
    mapped = ip.ipv4_mapped
    return str(mapped) if mapped is not None else None


def filter_ips(addrs: Iterable[Any]) -> str:
    """Return the first IPv4 address that is not automatic private (169.254.x.x).

    An automatic private address is returned only when nothing else is found;
    an empty string means no IPv4 address at all.
    """
    found = ""
    for addr in addrs:
        ip = _ipv4_of(addr)
        if ip is None:
            continue
        found = ip
        if not found.startswith(_APIPA_PREFIX):
            return found
    return found


def get_first_address_of(names: Iterable[str]) -> str:
    """First IPv4 address of the named interfaces, avoiding 169.254.x.x if possible.

    Raises LookupError if none of the interfaces has an IPv4 address.
    """
    names = list(names)
    interfaces = psutil.net_if_addrs()
    ip_addr = ""
    for name in names:
        addrs = interfaces.get(name)
        if addrs is None:
            logger.warning("error getting interface %s", name)
            continue
        if not addrs:
            logger.warning("no addresses found for interface %s", name)
            continue
        ip = filter_ips(a.address for a in addrs)
        if ip:
            ip_addr = ip
        if not ip_addr or ip_addr.startswith(_APIPA_PREFIX):
            continue
        return ip_addr
    if not ip_addr:
        raise LookupError(f"No address found for [{' '.join(names)}]")
    logger.warning("using automatic private ip %s", ip_addr)
    return ip_addr