"""
Shared fixtures: a scripted discovery provider, a controllable clock and a
fully wired in-memory MonitorService.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, List, Tuple, Union

import pytest

from arpmon.modules.discovery import DiscoveryProvider
from arpmon.modules.models import ObservedDevice
from arpmon.modules.monitor import MonitorService
from arpmon.modules.store import MemoryStore

T0 = datetime(2025, 1, 1, 12, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeProvider(DiscoveryProvider):
    """Returns scripted snapshots per (interface, subnet) pair.

    A scripted Exception is raised instead of returned.  When ``gate`` is
    set, every call blocks until the gate opens.
    """

    def __init__(self):
        self.snapshots: Dict[Tuple[str, str], Union[List[ObservedDevice], Exception]] = {}
        self.default: List[ObservedDevice] = []
        self.calls: List[Tuple[str, str]] = []
        self.gate: threading.Event = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def script(self, devices, interface="eth0", subnet="192.168.1.0/24"):
        self.snapshots[(interface, subnet)] = devices

    def block(self) -> threading.Event:
        self.gate = threading.Event()
        self.entered.clear()
        return self.gate

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()

    def discover(self, interface, subnet):
        with self._lock:
            self.calls.append((interface, subnet))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        result = self.snapshots.get((interface, subnet), self.default)
        if isinstance(result, Exception):
            raise result
        return list(result)


def observed(mac, ip, vendor=None, hostname=None) -> ObservedDevice:
    return ObservedDevice(mac=mac, ip=ip, vendor=vendor, hostname=hostname)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    fake = FakeProvider()
    yield fake
    fake.release()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def monitor(provider, store, clock):
    """In-memory monitor with a short discovery deadline."""
    service = MonitorService(provider, store=store, clock=clock, discovery_timeout=2.0)
    yield service
    provider.release()
    service.scheduler.stop()
