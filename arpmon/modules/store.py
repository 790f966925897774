"""
Store Module

Abstract persistence contract for the four collections the monitoring
engine owns (jobs, devices, alerts, scan results) and an in-memory
implementation.  Components keep their authoritative state in memory and
write through to a store; on startup they reload from it.

Ordered collections (alerts, scan results) are returned most-recent-first,
in the order they were saved.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List

from .models import Alert, Device, Job, ScanResult


class MonitorStore(ABC):
    """Durable keyed/ordered storage for jobs, devices, alerts and scans."""

    # Jobs

    @abstractmethod
    def load_jobs(self) -> List[Job]:
        """Return all stored jobs."""

    @abstractmethod
    def save_job(self, job: Job) -> None:
        """Insert or replace a job by id."""

    @abstractmethod
    def delete_job(self, job_id: str) -> None:
        """Remove a job; unknown ids are ignored."""

    # Devices

    @abstractmethod
    def load_devices(self) -> List[Device]:
        """Return all stored devices."""

    @abstractmethod
    def save_device(self, device: Device) -> None:
        """Insert or replace a device by MAC."""

    # Alerts

    @abstractmethod
    def load_alerts(self) -> List[Alert]:
        """Return stored alerts, most recent first."""

    @abstractmethod
    def save_alert(self, alert: Alert) -> None:
        """Append a new alert or replace an existing one in place."""

    @abstractmethod
    def delete_alerts(self, alert_ids: Iterable[str]) -> None:
        """Remove the given alerts."""

    @abstractmethod
    def clear_alerts(self) -> None:
        """Remove every alert."""

    # Scan results

    @abstractmethod
    def load_scan_results(self) -> List[ScanResult]:
        """Return stored scan results, most recent first."""

    @abstractmethod
    def save_scan_result(self, result: ScanResult) -> None:
        """Append a scan result."""

    @abstractmethod
    def delete_scan_results(self, result_ids: Iterable[str]) -> None:
        """Remove the given scan results."""

    def close(self) -> None:
        """Release any held resources."""


class MemoryStore(MonitorStore):
    """Process-local store; state is lost on exit."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._devices: Dict[str, Device] = {}
        self._alerts: Dict[str, Alert] = {}  # insertion ordered, oldest first
        self._scan_results: Dict[str, ScanResult] = {}

    def load_jobs(self) -> List[Job]:
        with self._lock:
            return [job.copy() for job in self._jobs.values()]

    def save_job(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job.copy()

    def delete_job(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def load_devices(self) -> List[Device]:
        with self._lock:
            return [device.copy() for device in self._devices.values()]

    def save_device(self, device: Device) -> None:
        with self._lock:
            self._devices[device.mac] = device.copy()

    def load_alerts(self) -> List[Alert]:
        with self._lock:
            return list(reversed(list(self._alerts.values())))

    def save_alert(self, alert: Alert) -> None:
        with self._lock:
            self._alerts[alert.id] = alert

    def delete_alerts(self, alert_ids: Iterable[str]) -> None:
        with self._lock:
            for alert_id in alert_ids:
                self._alerts.pop(alert_id, None)

    def clear_alerts(self) -> None:
        with self._lock:
            self._alerts.clear()

    def load_scan_results(self) -> List[ScanResult]:
        with self._lock:
            return list(reversed(list(self._scan_results.values())))

    def save_scan_result(self, result: ScanResult) -> None:
        with self._lock:
            self._scan_results[result.id] = result

    def delete_scan_results(self, result_ids: Iterable[str]) -> None:
        with self._lock:
            for result_id in result_ids:
                self._scan_results.pop(result_id, None)
