"""
Discovery Provider Module

The scheduler never probes the network itself: it asks a
``DiscoveryProvider`` for a snapshot of the devices currently present on
one interface/subnet pair.  This module defines that contract and ships the
default ARP implementation.

Architecture:
    - DiscoveryProvider:  Abstract ``discover(interface, subnet)`` returning
      a list of ObservedDevice records, raising ProviderError on failure.
    - ArpDiscoveryProvider:  Sends ARP who-has requests to every address in
      the subnet with a single scapy ``srp`` burst (typically < 1 s for a
      /24).  Optionally falls back to the kernel ARP cache when raw sockets
      are not permitted.
    - merge_snapshots:  Combines the per-pair snapshots of one scan into a
      single list keyed by MAC.
"""

import ipaddress
import logging
import socket
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

import psutil
from mac_vendor_lookup import MacLookup
from scapy.all import ARP, Ether, srp

from arpmon.config import ARP_SWEEP_TIMEOUT

from .exceptions import ProviderError
from .models import ObservedDevice

logger = logging.getLogger(__name__)

# Largest subnet a single sweep will accept (a /16)
MAX_SWEEP_HOSTS = 65534
ARP_CACHE_PATH = "/proc/net/arp"

# ---------------------------------------------------------------------------
# OUI / MAC vendor lookup
# ---------------------------------------------------------------------------

_mac_lookup: Optional[MacLookup] = None
_mac_lookup_lock = threading.Lock()


def lookup_vendor(mac: str) -> Optional[str]:
    """Look up vendor from MAC OUI prefix.

    Uses the mac-vendor-lookup library which ships an offline IEEE OUI
    database.  Returns None if the OUI is unknown.
    """
    global _mac_lookup
    with _mac_lookup_lock:
        if _mac_lookup is None:
            _mac_lookup = MacLookup()
        lookup = _mac_lookup
    try:
        return lookup.lookup(mac)
    except Exception as e:
        logger.debug("Vendor lookup failed for %s: %s", mac, e)
        return None


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------

class DiscoveryProvider(ABC):
    """Produces a snapshot of the devices present on a network segment."""

    @abstractmethod
    def discover(self, interface: str, subnet: str) -> List[ObservedDevice]:
        """Discover devices on one interface/subnet pair.

        Args:
            interface: Network interface name (e.g. "eth0").
            subnet: CIDR descriptor (e.g. "192.168.1.0/24").

        Returns:
            List of observed devices.  An empty list is a valid snapshot.

        Raises:
            ProviderError: if discovery could not run.
        """


def merge_snapshots(snapshots: Iterable[Iterable[ObservedDevice]]) -> List[ObservedDevice]:
    """Merge per-pair snapshots into one list keyed by MAC.

    The first observation of a MAC wins; later observations only fill in a
    missing vendor or hostname.  Records whose MAC is not a string are kept
    as-is so the registry can reject and log them.
    """
    merged: Dict[str, ObservedDevice] = {}
    order: List[str] = []
    passthrough: List[ObservedDevice] = []

    for snapshot in snapshots:
        for observed in snapshot:
            if not isinstance(observed.mac, str):
                passthrough.append(observed)
                continue
            key = observed.mac.strip().lower()
            existing = merged.get(key)
            if existing is None:
                merged[key] = observed
                order.append(key)
                continue
            if (not existing.vendor and observed.vendor) or (
                not existing.hostname and observed.hostname
            ):
                merged[key] = replace(
                    existing,
                    vendor=existing.vendor or observed.vendor,
                    hostname=existing.hostname or observed.hostname,
                )

    return [merged[key] for key in order] + passthrough


# ---------------------------------------------------------------------------
# Active ARP provider
# ---------------------------------------------------------------------------

class ArpDiscoveryProvider(DiscoveryProvider):
    """Send ARP who-has to every IP in a subnet.

    Much faster than an nmap ping sweep and uses virtually no CPU because
    it is a single Layer-2 broadcast burst.  Requires root/CAP_NET_RAW
    unless ``allow_cache_fallback`` is set, in which case the kernel ARP
    cache is read instead.
    """

    def __init__(
        self,
        timeout: float = ARP_SWEEP_TIMEOUT,
        allow_cache_fallback: bool = False,
        resolve_hostnames: bool = False,
    ):
        """
        Args:
            timeout: Seconds to wait for ARP replies.
            allow_cache_fallback: Read /proc/net/arp when raw sockets are denied.
            resolve_hostnames: Reverse-resolve hostnames for responding hosts.
        """
        self.timeout = timeout
        self.allow_cache_fallback = allow_cache_fallback
        self.resolve_hostnames = resolve_hostnames

    def discover(self, interface: str, subnet: str) -> List[ObservedDevice]:
        self._check_interface(interface)
        network = self._parse_network(subnet)

        hosts = [str(h) for h in network.hosts()]
        if not hosts:
            return []

        arp_req = Ether(dst="ff:ff:ff:ff:ff:ff") / ARP(pdst=hosts)
        try:
            answered, _ = srp(arp_req, iface=interface, timeout=self.timeout, verbose=0)
        except PermissionError:
            if self.allow_cache_fallback:
                logger.warning(
                    "ARP sweep on %s requires root/CAP_NET_RAW, reading ARP cache", interface
                )
                return self._read_arp_cache(interface, network)
            raise ProviderError(
                ProviderError.PERMISSION_DENIED,
                f"ARP sweep on {interface} requires root/CAP_NET_RAW",
            )
        except OSError as e:
            raise ProviderError(ProviderError.UNREACHABLE, f"{interface}: {e}")

        results: List[ObservedDevice] = []
        for _sent, received in answered:
            mac = received.hwsrc.lower() if received.hwsrc else None
            if not mac or mac == "00:00:00:00:00:00":
                continue
            results.append(self._observe(mac, received.psrc))

        logger.debug("ARP sweep of %s on %s found %d hosts", subnet, interface, len(results))
        return results

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _check_interface(interface: str) -> None:
        stats = psutil.net_if_stats()
        if interface not in stats:
            raise ProviderError(ProviderError.UNREACHABLE, f"Interface {interface} not found")
        if not stats[interface].isup:
            raise ProviderError(ProviderError.UNREACHABLE, f"Interface {interface} is down")

    @staticmethod
    def _parse_network(subnet: str) -> ipaddress.IPv4Network:
        try:
            network = ipaddress.ip_network(subnet, strict=False)
        except ValueError as e:
            raise ProviderError(ProviderError.ERROR, f"Invalid subnet {subnet!r}: {e}")
        if network.version != 4:
            raise ProviderError(ProviderError.ERROR, "ARP discovery supports IPv4 subnets only")
        if network.num_addresses > MAX_SWEEP_HOSTS + 2:
            raise ProviderError(ProviderError.ERROR, f"Subnet {subnet} is too large to sweep")
        return network

    def _observe(self, mac: str, ip: str) -> ObservedDevice:
        return ObservedDevice(
            mac=mac,
            ip=ip,
            vendor=lookup_vendor(mac),
            hostname=self._resolve(ip) if self.resolve_hostnames else None,
        )

    @staticmethod
    def _resolve(ip: str) -> Optional[str]:
        try:
            return socket.gethostbyaddr(ip)[0]
        except (socket.herror, socket.gaierror, OSError):
            return None

    def _read_arp_cache(
        self, interface: str, network: ipaddress.IPv4Network
    ) -> List[ObservedDevice]:
        """Read /proc/net/arp as a zero-privilege fallback."""
        results: List[ObservedDevice] = []
        try:
            with open(ARP_CACHE_PATH, "r") as f:
                lines = f.readlines()[1:]  # skip header
        except OSError as e:
            raise ProviderError(ProviderError.UNREACHABLE, f"Could not read ARP cache: {e}")

        for line in lines:
            parts = line.split()
            if len(parts) < 6:
                continue
            ip, mac, device = parts[0], parts[3].lower(), parts[5]
            if device != interface or mac == "00:00:00:00:00:00":
                continue
            try:
                if ipaddress.IPv4Address(ip) not in network:
                    continue
            except ValueError:
                continue
            results.append(self._observe(mac, ip))

        return results
