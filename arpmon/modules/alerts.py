"""
Alerts Module

Bounded, most-recent-first logs for alerts and scan results.  Both are
append-mostly: the only mutations after append are acknowledging an alert,
clearing every alert, and age-based cleanup.  Each log keeps its
authoritative copy in memory and writes through to the MonitorStore.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional

from arpmon.config import MAX_ALERT_HISTORY, MAX_SCAN_RESULTS

from .exceptions import NotFoundError
from .models import Alert, ScanResult
from .store import MonitorStore

logger = logging.getLogger(__name__)


class AlertStore:
    """Most-recent-first alert log, bounded to ``max_alerts`` entries."""

    def __init__(self, store: Optional[MonitorStore] = None, max_alerts: int = MAX_ALERT_HISTORY):
        self._store = store
        self.max_alerts = max_alerts
        self._lock = threading.Lock()
        self._alerts: List[Alert] = store.load_alerts()[:max_alerts] if store else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    def append(self, alerts: Iterable[Alert]) -> List[Alert]:
        """Append alerts in emission order.

        Alerts whose id is already present are ignored.

        Returns:
            The alerts that were actually added.
        """
        added: List[Alert] = []
        dropped: List[Alert] = []
        with self._lock:
            known = {a.id for a in self._alerts}
            for alert in alerts:
                if alert.id in known:
                    continue
                known.add(alert.id)
                self._alerts.insert(0, alert)
                added.append(alert)
            if len(self._alerts) > self.max_alerts:
                dropped = self._alerts[self.max_alerts:]
                del self._alerts[self.max_alerts:]

            # Written under the lock so the store keeps completion order
            if self._store is not None:
                for alert in added:
                    self._store.save_alert(alert)
                if dropped:
                    self._store.delete_alerts(a.id for a in dropped)
        if dropped:
            logger.debug("Alert history full, dropped %d oldest alerts", len(dropped))
        return added

    def list(
        self,
        unacknowledged_only: bool = False,
        severity: Optional[str] = None,
        job_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        """Point-in-time copy of the log, most recent first."""
        with self._lock:
            alerts = list(self._alerts)
        if unacknowledged_only:
            alerts = [a for a in alerts if not a.acknowledged]
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        if job_id:
            alerts = [a for a in alerts if a.job_id == job_id]
        if limit is not None:
            alerts = alerts[:max(0, limit)]
        return alerts

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        return None

    def acknowledge(self, alert_id: str) -> Alert:
        """Mark an alert as acknowledged.

        Raises:
            NotFoundError: if no alert has that id.
        """
        with self._lock:
            for index, alert in enumerate(self._alerts):
                if alert.id == alert_id:
                    updated = replace(alert, acknowledged=True)
                    self._alerts[index] = updated
                    break
            else:
                raise NotFoundError("alert", alert_id)

        if self._store is not None:
            self._store.save_alert(updated)
        logger.info("Alert %s acknowledged", alert_id)
        return updated

    def clear(self) -> int:
        """Remove every alert.  Returns the number removed."""
        with self._lock:
            count = len(self._alerts)
            self._alerts = []
        if self._store is not None:
            self._store.clear_alerts()
        logger.info("Cleared %d alerts", count)
        return count

    def prune_acknowledged(self, older_than: datetime) -> int:
        """Drop acknowledged alerts created before ``older_than``."""
        with self._lock:
            stale = [a for a in self._alerts if a.acknowledged and a.timestamp < older_than]
            if stale:
                stale_ids = {a.id for a in stale}
                self._alerts = [a for a in self._alerts if a.id not in stale_ids]
        if stale and self._store is not None:
            self._store.delete_alerts(a.id for a in stale)
        return len(stale)


class ScanResultLog:
    """Most-recent-first scan audit log, bounded to ``max_results`` entries.

    Results are appended in completion order, not start order.
    """

    def __init__(self, store: Optional[MonitorStore] = None, max_results: int = MAX_SCAN_RESULTS):
        self._store = store
        self.max_results = max_results
        self._lock = threading.Lock()
        self._results: List[ScanResult] = store.load_scan_results()[:max_results] if store else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def append(self, result: ScanResult) -> None:
        with self._lock:
            self._results.insert(0, result)
            dropped = self._results[self.max_results:]
            del self._results[self.max_results:]

            if self._store is not None:
                self._store.save_scan_result(result)
                if dropped:
                    self._store.delete_scan_results(r.id for r in dropped)

    def list(self, job_id: Optional[str] = None, limit: Optional[int] = None) -> List[ScanResult]:
        """Point-in-time copy of the log, most recent first."""
        with self._lock:
            results = list(self._results)
        if job_id:
            results = [r for r in results if r.job_id == job_id]
        if limit is not None:
            results = results[:max(0, limit)]
        return results

    def latest(self, job_id: Optional[str] = None) -> Optional[ScanResult]:
        results = self.list(job_id=job_id, limit=1)
        return results[0] if results else None

    def prune(self, older_than: datetime) -> int:
        """Drop results of scans started before ``older_than``."""
        with self._lock:
            stale = [r for r in self._results if r.timestamp < older_than]
            if stale:
                self._results = [r for r in self._results if r.timestamp >= older_than]
        if stale and self._store is not None:
            self._store.delete_scan_results(r.id for r in stale)
        return len(stale)
