"""
Unit tests for the alert and scan result logs.
"""

from datetime import datetime, timedelta

import pytest

from arpmon.modules.alerts import AlertStore, ScanResultLog
from arpmon.modules.exceptions import NotFoundError
from arpmon.modules.models import Alert, DeviceSnapshot, ScanResult, SCAN_SUCCESS
from arpmon.modules.store import MemoryStore

NOW = datetime(2025, 1, 1, 12, 0, 0)


def make_alert(alert_id, severity="warning", job_id="job1", timestamp=NOW, acknowledged=False):
    return Alert(
        id=alert_id,
        job_id=job_id,
        job_name="Office",
        type="new_device",
        severity=severity,
        title="New Device Detected",
        message="msg",
        device=DeviceSnapshot(mac="aa:bb:cc:dd:ee:ff", ip="10.0.0.1"),
        timestamp=timestamp,
        acknowledged=acknowledged,
    )


def make_result(result_id, job_id="job1", timestamp=NOW):
    return ScanResult(
        id=result_id,
        job_id=job_id,
        job_name="Office",
        timestamp=timestamp,
        devices_found=0,
        new_devices=0,
        alerts=(),
        execution_time=0.1,
        status=SCAN_SUCCESS,
    )


# ---- AlertStore -------------------------------------------------------------


class TestAlertStore:
    """Tests for the alert log."""

    def test_most_recent_first(self):
        alerts = AlertStore()
        alerts.append([make_alert("a1"), make_alert("a2")])
        alerts.append([make_alert("a3")])

        assert [a.id for a in alerts.list()] == ["a3", "a2", "a1"]

    def test_duplicate_ids_ignored(self):
        alerts = AlertStore()
        assert [a.id for a in alerts.append([make_alert("a1")])] == ["a1"]
        assert alerts.append([make_alert("a1")]) == []
        assert len(alerts) == 1

    def test_bounded_drops_oldest(self):
        store = MemoryStore()
        alerts = AlertStore(store, max_alerts=3)
        alerts.append([make_alert(f"a{i}") for i in range(5)])

        assert [a.id for a in alerts.list()] == ["a4", "a3", "a2"]
        assert [a.id for a in store.load_alerts()] == ["a4", "a3", "a2"]

    def test_filters(self):
        alerts = AlertStore()
        alerts.append([
            make_alert("a1", severity="critical", job_id="job1"),
            make_alert("a2", severity="warning", job_id="job2"),
            make_alert("a3", severity="critical", job_id="job2", acknowledged=True),
        ])

        assert [a.id for a in alerts.list(severity="critical")] == ["a3", "a1"]
        assert [a.id for a in alerts.list(job_id="job2")] == ["a3", "a2"]
        assert [a.id for a in alerts.list(unacknowledged_only=True)] == ["a2", "a1"]
        assert [a.id for a in alerts.list(limit=1)] == ["a3"]

    def test_acknowledge(self):
        store = MemoryStore()
        alerts = AlertStore(store)
        alerts.append([make_alert("a1")])

        updated = alerts.acknowledge("a1")

        assert updated.acknowledged is True
        assert alerts.get("a1").acknowledged is True
        assert store.load_alerts()[0].acknowledged is True

    def test_acknowledge_is_idempotent(self):
        alerts = AlertStore()
        alerts.append([make_alert("a1")])
        alerts.acknowledge("a1")

        assert alerts.acknowledge("a1").acknowledged is True

    def test_acknowledge_unknown(self):
        with pytest.raises(NotFoundError):
            AlertStore().acknowledge("missing")

    def test_clear(self):
        store = MemoryStore()
        alerts = AlertStore(store)
        alerts.append([make_alert("a1"), make_alert("a2")])

        assert alerts.clear() == 2
        assert alerts.list() == []
        assert store.load_alerts() == []
        assert alerts.clear() == 0

    def test_prune_acknowledged(self):
        alerts = AlertStore()
        old = NOW - timedelta(days=40)
        alerts.append([
            make_alert("old-ack", timestamp=old, acknowledged=True),
            make_alert("old-open", timestamp=old),
            make_alert("new-ack", acknowledged=True),
        ])

        assert alerts.prune_acknowledged(NOW - timedelta(days=30)) == 1
        assert {a.id for a in alerts.list()} == {"old-open", "new-ack"}

    def test_reload_from_store(self):
        store = MemoryStore()
        AlertStore(store).append([make_alert("a1"), make_alert("a2")])

        assert [a.id for a in AlertStore(store).list()] == ["a2", "a1"]


# ---- ScanResultLog ----------------------------------------------------------


class TestScanResultLog:
    """Tests for the scan result log."""

    def test_completion_order(self):
        log = ScanResultLog()
        # A slow scan that started first completes second
        log.append(make_result("fast", timestamp=NOW + timedelta(seconds=5)))
        log.append(make_result("slow", timestamp=NOW))

        assert [r.id for r in log.list()] == ["slow", "fast"]
        assert log.latest().id == "slow"

    def test_filter_by_job(self):
        log = ScanResultLog()
        log.append(make_result("r1", job_id="job1"))
        log.append(make_result("r2", job_id="job2"))

        assert [r.id for r in log.list(job_id="job1")] == ["r1"]
        assert log.latest("job2").id == "r2"
        assert log.latest("job3") is None

    def test_bounded(self):
        store = MemoryStore()
        log = ScanResultLog(store, max_results=2)
        for i in range(4):
            log.append(make_result(f"r{i}"))

        assert [r.id for r in log.list()] == ["r3", "r2"]
        assert [r.id for r in store.load_scan_results()] == ["r3", "r2"]

    def test_prune(self):
        log = ScanResultLog()
        log.append(make_result("old", timestamp=NOW - timedelta(days=31)))
        log.append(make_result("new"))

        assert log.prune(NOW - timedelta(days=30)) == 1
        assert [r.id for r in log.list()] == ["new"]
        assert len(log) == 1
