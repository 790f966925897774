"""
Monitor Service Module

Single entry point used by the HTTP layer and the CLI.  Wires the store,
device registry, alert/scan logs, notifier and scheduler together and
exposes the read and mutate commands.  Reads return point-in-time copies
and are safe to call while scans are running.
"""

import logging
from concurrent.futures import Future
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from arpmon.config import (
    DATA_RETENTION_DAYS,
    DISCOVERY_TIMEOUT,
    MAX_ALERT_HISTORY,
    MAX_SCAN_RESULTS,
    SEVERITY_CRITICAL,
    STALENESS_MISSED_SCANS,
)

from .alerts import AlertStore, ScanResultLog
from .discovery import DiscoveryProvider
from .exceptions import NotFoundError
from .models import Alert, Device, Job, ScanResult
from .notifier import Notifier
from .registry import DeviceRegistry
from .scheduler import JobScheduler, ScanListener
from .store import MemoryStore, MonitorStore

logger = logging.getLogger(__name__)


class MonitorService:
    """Facade over the monitoring engine."""

    def __init__(
        self,
        provider: DiscoveryProvider,
        store: Optional[MonitorStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        staleness_scans: int = STALENESS_MISSED_SCANS,
        max_alerts: int = MAX_ALERT_HISTORY,
        max_scan_results: int = MAX_SCAN_RESULTS,
        **scheduler_options,
    ):
        """
        Args:
            provider: Discovery provider used by every job.
            store: Persistence backend (in-memory if None).
            notifier: Notification sink for new alerts.
            clock: Source of "now" for every component.
            discovery_timeout: Per-job discovery deadline in seconds.
            staleness_scans: Missed scans before a device disappears.
            max_alerts: Alert history bound.
            max_scan_results: Scan result history bound.
            **scheduler_options: Passed through to JobScheduler.
        """
        self.store = store if store is not None else MemoryStore()
        self.notifier = notifier
        self._clock = clock

        self.registry = DeviceRegistry(self.store, staleness_scans=staleness_scans, clock=clock)
        self.alerts = AlertStore(self.store, max_alerts=max_alerts)
        self.scan_log = ScanResultLog(self.store, max_results=max_scan_results)
        self.scheduler = JobScheduler(
            provider,
            self.registry,
            self.alerts,
            self.scan_log,
            store=self.store,
            notifier=notifier,
            clock=clock,
            discovery_timeout=discovery_timeout,
            **scheduler_options,
        )

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()
        if self.notifier is not None:
            self.notifier.shutdown(wait=False)
        self.store.close()

    def add_listener(self, callback: ScanListener) -> None:
        self.scheduler.add_listener(callback)

    # -- reads ---------------------------------------------------------------

    def list_jobs(self) -> List[Job]:
        return self.scheduler.list_jobs()

    def get_job(self, job_id: str) -> Job:
        return self.scheduler.get_job(job_id)

    def get_job_state(self, job_id: str) -> str:
        return self.scheduler.get_job_state(job_id)

    def list_devices(self) -> List[Device]:
        return self.registry.list_devices()

    def get_device(self, mac: str) -> Device:
        device = self.registry.get(mac)
        if device is None:
            raise NotFoundError("device", mac)
        return device

    def list_alerts(
        self,
        unacknowledged_only: bool = False,
        severity: Optional[str] = None,
        job_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        return self.alerts.list(
            unacknowledged_only=unacknowledged_only,
            severity=severity,
            job_id=job_id,
            limit=limit,
        )

    def list_scan_results(
        self, job_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[ScanResult]:
        return self.scan_log.list(job_id=job_id, limit=limit)

    def get_stats(self) -> Dict:
        """Dashboard summary counters."""
        jobs = self.list_jobs()
        devices = self.list_devices()
        alerts = self.alerts.list()
        last_scan = self.scan_log.latest()
        return {
            "total_jobs": len(jobs),
            "active_jobs": sum(1 for j in jobs if j.is_active),
            "running_jobs": sum(1 for j in jobs if self.scheduler.is_running(j.id)),
            "total_devices": len(devices),
            "online_devices": sum(1 for d in devices if d.is_online),
            "unauthorized_devices": sum(1 for d in devices if not d.is_authorized),
            "total_alerts": len(alerts),
            "unacknowledged_alerts": sum(1 for a in alerts if not a.acknowledged),
            "critical_alerts": sum(
                1 for a in alerts if a.severity == SEVERITY_CRITICAL and not a.acknowledged
            ),
            "total_scans": len(self.scan_log),
            "last_scan": last_scan.timestamp.isoformat() if last_scan else None,
        }

    # -- commands ------------------------------------------------------------

    def create_job(self, config: Dict) -> Job:
        return self.scheduler.create_job(config)

    def update_job(self, job_id: str, partial: Dict) -> Job:
        return self.scheduler.update_job(job_id, partial)

    def delete_job(self, job_id: str) -> None:
        self.scheduler.delete_job(job_id)

    def acknowledge_alert(self, alert_id: str) -> Alert:
        return self.alerts.acknowledge(alert_id)

    def clear_all_alerts(self) -> int:
        return self.alerts.clear()

    def trigger_scan_now(self, job_id: str) -> Future:
        return self.scheduler.trigger(job_id)

    def set_device_authorization(self, mac: str, authorized: bool) -> Device:
        return self.registry.set_authorization(mac, authorized)

    def cleanup(self, days: int = DATA_RETENTION_DAYS) -> Dict[str, int]:
        """Drop scan results and acknowledged alerts older than ``days``."""
        cutoff = self._clock() - timedelta(days=days)
        stats = {
            "scans_deleted": self.scan_log.prune(cutoff),
            "alerts_deleted": self.alerts.prune_acknowledged(cutoff),
        }
        logger.info(f"Cleanup complete: {stats}")
        return stats
