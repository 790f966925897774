"""
Device Registry Module

Authoritative, thread-safe set of known devices keyed by MAC.  A discovery
snapshot is merged in with ``reconcile``, which returns one transition per
observed device plus any ``disappeared`` transitions for devices the job
has stopped seeing.

Locking is per MAC: a short table lock guards key creation and iteration,
and every device mutation happens under that device's own lock, so two
jobs reconciling unrelated devices never wait on each other.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from arpmon.config import STALENESS_MISSED_SCANS

from .exceptions import NotFoundError
from .models import (
    Device,
    DeviceTransition,
    ObservedDevice,
    TRANSITION_CREATED,
    TRANSITION_ADDRESS_CHANGED,
    TRANSITION_REAFFIRMED,
    TRANSITION_DISAPPEARED,
    normalize_ip,
    normalize_mac,
)
from .store import MonitorStore

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Thread-safe device registry with per-job disappearance tracking.

    A device enters a job's scope the first time that job observes it.  It
    is reported ``disappeared`` once the job has missed it on
    ``staleness_scans`` consecutive scans and nobody has seen it for at
    least one cadence interval.
    """

    def __init__(
        self,
        store: Optional[MonitorStore] = None,
        staleness_scans: int = STALENESS_MISSED_SCANS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            store: Optional store to load from and write through to.
            staleness_scans: Consecutive missed scans before a device is
                             reported disappeared.
            clock: Source of "now" when reconcile is not given one.
        """
        self._store = store
        self.staleness_scans = max(1, staleness_scans)
        self._clock = clock

        self._devices: Dict[str, Device] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()

        if store is not None:
            for device in store.load_devices():
                self._devices[device.mac] = device
                self._key_locks[device.mac] = threading.Lock()
            logger.info("Loaded %d devices from store", len(self._devices))

    # -- read helpers --------------------------------------------------------

    @property
    def device_count(self) -> int:
        with self._table_lock:
            return len(self._devices)

    @property
    def online_count(self) -> int:
        return sum(1 for d in self.list_devices() if d.is_online)

    def list_devices(self) -> List[Device]:
        """Point-in-time copies of all devices, most recently seen first."""
        with self._table_lock:
            macs = list(self._devices)
        devices = [d for d in (self.get(mac) for mac in macs) if d is not None]
        devices.sort(key=lambda d: d.last_seen, reverse=True)
        return devices

    def get(self, mac: str) -> Optional[Device]:
        try:
            mac = normalize_mac(mac)
        except ValueError:
            return None
        with self._key_lock(mac):
            device = self._devices.get(mac)
            return device.copy() if device is not None else None

    # -- write helpers -------------------------------------------------------

    def reconcile(
        self,
        job_id: str,
        snapshot: Iterable[ObservedDevice],
        authorized_macs: Iterable[str] = (),
        interval: Optional[timedelta] = None,
        now: Optional[datetime] = None,
        track_missing: bool = True,
    ) -> List[DeviceTransition]:
        """Merge a discovery snapshot into the registry.

        Args:
            job_id: Job that produced the snapshot.
            snapshot: Observed devices.  Malformed records are skipped.
            authorized_macs: The job's allowlist, applied to new devices only.
            interval: The job's cadence, used for the staleness threshold.
            now: Observation time (defaults to the registry clock).
            track_missing: Evaluate disappearance for devices in the job's
                           scope that are absent from the snapshot.

        Returns:
            Transitions in snapshot order, followed by disappearances.
        """
        now = now or self._clock()
        allowlist = self._normalize_allowlist(authorized_macs)

        transitions: List[DeviceTransition] = []
        seen: Set[str] = set()

        for observed in snapshot:
            try:
                mac = normalize_mac(observed.mac)
                ip = normalize_ip(observed.ip)
            except ValueError as e:
                logger.warning("Skipping malformed record from job %s: %s", job_id, e)
                continue
            if mac in seen:
                logger.debug("Duplicate observation of %s in one snapshot ignored", mac)
                continue
            seen.add(mac)
            transitions.append(
                self._observe(job_id, mac, ip, observed, mac in allowlist, now)
            )

        if track_missing:
            transitions.extend(self._sweep_missing(job_id, seen, interval, now))

        return transitions

    def set_authorization(self, mac: str, authorized: bool) -> Device:
        """Explicitly set a device's authorization flag.

        Raises:
            NotFoundError: if the MAC is unknown.
        """
        try:
            mac = normalize_mac(mac)
        except ValueError:
            raise NotFoundError("device", str(mac))
        with self._key_lock(mac):
            device = self._devices.get(mac)
            if device is None:
                raise NotFoundError("device", mac)
            device.is_authorized = authorized
            copy = device.copy()
            self._persist(copy)
        logger.info("Device %s authorization set to %s", mac, authorized)
        return copy

    def forget_job(self, job_id: str) -> None:
        """Drop a deleted job's scope bookkeeping from every device."""
        with self._table_lock:
            macs = list(self._devices)
        for mac in macs:
            with self._key_lock(mac):
                device = self._devices[mac]
                if job_id in device.job_misses:
                    del device.job_misses[job_id]
                    self._persist(device.copy())

    # -- internal helpers ----------------------------------------------------

    def _key_lock(self, mac: str) -> threading.Lock:
        with self._table_lock:
            lock = self._key_locks.get(mac)
            if lock is None:
                lock = self._key_locks[mac] = threading.Lock()
            return lock

    @staticmethod
    def _normalize_allowlist(macs: Iterable[str]) -> Set[str]:
        allowlist: Set[str] = set()
        for mac in macs:
            try:
                allowlist.add(normalize_mac(mac))
            except ValueError:
                logger.warning("Ignoring malformed allowlist entry %r", mac)
        return allowlist

    def _observe(
        self,
        job_id: str,
        mac: str,
        ip: str,
        observed: ObservedDevice,
        authorized: bool,
        now: datetime,
    ) -> DeviceTransition:
        old_ip = None
        with self._key_lock(mac):
            device = self._devices.get(mac)

            if device is None:
                device = Device(
                    mac=mac,
                    ip=ip,
                    vendor=observed.vendor,
                    hostname=observed.hostname,
                    first_seen=now,
                    last_seen=now,
                    is_authorized=authorized,
                )
                with self._table_lock:
                    self._devices[mac] = device
                kind = TRANSITION_CREATED
                logger.info(
                    "New device %s (%s) via job %s, authorized=%s", mac, ip, job_id, authorized
                )
            else:
                if device.ip != ip:
                    old_ip = device.ip
                    if not device.previous_ips or device.previous_ips[0] != old_ip:
                        device.previous_ips.insert(0, old_ip)
                    device.ip = ip
                    kind = TRANSITION_ADDRESS_CHANGED
                    logger.info("Device %s changed IP %s -> %s", mac, old_ip, ip)
                else:
                    kind = TRANSITION_REAFFIRMED
                # Overlapping jobs may finish out of order
                if now > device.last_seen:
                    device.last_seen = now
                if observed.vendor and not device.vendor:
                    device.vendor = observed.vendor
                if observed.hostname:
                    device.hostname = observed.hostname

            device.is_online = True
            device.job_misses[job_id] = 0
            copy = device.copy()
            self._persist(copy)

        return DeviceTransition(
            kind=kind,
            mac=mac,
            device=copy,
            old_ip=old_ip,
            new_ip=ip if kind == TRANSITION_ADDRESS_CHANGED else None,
        )

    def _sweep_missing(
        self,
        job_id: str,
        seen: Set[str],
        interval: Optional[timedelta],
        now: datetime,
    ) -> List[DeviceTransition]:
        with self._table_lock:
            candidates = sorted(mac for mac in self._devices if mac not in seen)

        transitions: List[DeviceTransition] = []
        for mac in candidates:
            with self._key_lock(mac):
                device = self._devices[mac]
                if job_id not in device.job_misses:
                    continue
                device.job_misses[job_id] += 1
                stale = interval is None or now - device.last_seen >= interval
                disappeared = (
                    device.is_online
                    and device.job_misses[job_id] >= self.staleness_scans
                    and stale
                )
                if disappeared:
                    device.is_online = False
                copy = device.copy()
                self._persist(copy)

            if disappeared:
                logger.info(
                    "Device %s (%s) disappeared from job %s after %d missed scans",
                    mac, copy.ip, job_id, copy.job_misses[job_id],
                )
                transitions.append(
                    DeviceTransition(kind=TRANSITION_DISAPPEARED, mac=mac, device=copy)
                )

        return transitions

    def _persist(self, device: Device) -> None:
        if self._store is None:
            return
        try:
            self._store.save_device(device)
        except Exception as e:
            logger.error("Failed to persist device %s: %s", device.mac, e, exc_info=True)
