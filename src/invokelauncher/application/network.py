"""Readiness URL normalization."""

from __future__ import annotations

import ipaddress
import logging as py_logging
import socket
from collections.abc import Callable
from dataclasses import dataclass

import psutil

logger = py_logging.getLogger(__name__)

ALL_INTERFACES = "0.0.0.0"
LOOPBACK = "127.0.0.1"


@dataclass(frozen=True)
class RunningEndpoint:
    url: str
    loopback_url: str
    lan_url: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {"url": self.url, "loopback_url": self.loopback_url}
        if self.lan_url:
            payload["lan_url"] = self.lan_url
        return payload


def _is_usable(address: str) -> bool:
    try:
        parsed = ipaddress.IPv4Address(address)
    except ipaddress.AddressValueError:
        return False
    return not (parsed.is_loopback or parsed.is_link_local or parsed.is_unspecified)


def primary_address() -> str:
    """Return the first non-loopback IPv4 address of an interface that is up."""
    try:
        stats = psutil.net_if_stats()
        for name, addresses in psutil.net_if_addrs().items():
            if name in stats and not stats[name].isup:
                continue
            for address in addresses:
                if address.family == socket.AF_INET and _is_usable(address.address):
                    return address.address
    except (OSError, psutil.Error) as exc:
        logger.debug("interface lookup failed error=%s", exc)
    return LOOPBACK


def normalize_endpoint(url: str, *, address_provider: Callable[[], str] = primary_address) -> RunningEndpoint:
    """Derive loopback and LAN URLs from the URL a server reported."""
    loopback_url = url.replace(ALL_INTERFACES, LOOPBACK)
    lan_url = None
    if ALL_INTERFACES in url:
        lan_url = url.replace(ALL_INTERFACES, address_provider())
    return RunningEndpoint(url=url, loopback_url=loopback_url, lan_url=lan_url)
