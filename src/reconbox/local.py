"""Detection of the local IPv4 networks to offer as default sweep targets."""
from __future__ import annotations

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

FALLBACK_CIDR = "192.168.0.0/24"


def detect_local_networks(max_prefix: int = 24) -> list[ipaddress.IPv4Network]:
    """Return the IPv4 networks of interfaces that are up.

    Loopback and link-local addresses are skipped. Networks wider than
    ``/max_prefix`` are narrowed to the ``/max_prefix`` around the
    interface address so a default sweep stays small.
    """

    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as exc:
        logger.warning("Could not enumerate network interfaces: %s", exc)
        return []

    networks: list[ipaddress.IPv4Network] = []
    for iface, iface_addrs in addrs.items():
        if iface in stats and not stats[iface].isup:
            continue
        for addr in iface_addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
                network = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
            if ip.is_loopback or ip.is_link_local:
                continue
            if network.prefixlen < max_prefix:
                network = ipaddress.IPv4Network(f"{addr.address}/{max_prefix}", strict=False)
            if network not in networks:
                networks.append(network)
    return networks


def default_cidr() -> str:
    """Return the first local network as a CIDR, or ``192.168.0.0/24``."""

    networks = detect_local_networks()
    if not networks:
        logger.info("No local IPv4 network found, falling back to %s", FALLBACK_CIDR)
        return FALLBACK_CIDR
    return str(networks[0])


__all__ = ["FALLBACK_CIDR", "default_cidr", "detect_local_networks"]
