"""
Unit tests for the models module: normalization, job validation and
record serialization.
"""

from datetime import datetime, timedelta

import pytest

from arpmon.modules.exceptions import ValidationError
from arpmon.modules.models import (
    Alert,
    AlertConfig,
    Device,
    DeviceSnapshot,
    Job,
    ScanResult,
    ALERT_IP_CHANGE,
    ALERT_NEW_DEVICE,
    ALERT_UNAUTHORIZED_DEVICE,
    SCAN_SUCCESS,
    apply_job_update,
    build_job,
    make_alert_id,
    normalize_ip,
    normalize_mac,
    severity_for,
)

NOW = datetime(2025, 1, 1, 12, 0, 0)


# ─── Normalization ───────────────────────────────────────────────────────────


class TestNormalizeMac:
    """Tests for MAC address normalization."""

    @pytest.mark.parametrize("raw", [
        "AA:BB:CC:DD:EE:FF",
        "aa-bb-cc-dd-ee-ff",
        "aabb.ccdd.eeff",
        "AABBCCDDEEFF",
        "  aa:bb:cc:dd:ee:ff  ",
    ])
    def test_accepted_formats(self, raw):
        assert normalize_mac(raw) == "aa:bb:cc:dd:ee:ff"

    @pytest.mark.parametrize("raw", [
        "",
        "aa:bb:cc:dd:ee",
        "gg:bb:cc:dd:ee:ff",
        "aa:bb:cc:dd:ee:ff:00",
    ])
    def test_malformed_rejected(self, raw):
        with pytest.raises(ValueError):
            normalize_mac(raw)

    def test_zero_and_broadcast_rejected(self):
        with pytest.raises(ValueError):
            normalize_mac("00:00:00:00:00:00")
        with pytest.raises(ValueError):
            normalize_mac("ff:ff:ff:ff:ff:ff")

    def test_non_string_rejected(self):
        with pytest.raises(ValueError):
            normalize_mac(None)


class TestNormalizeIp:
    """Tests for IP normalization."""

    def test_ipv4(self):
        assert normalize_ip(" 192.168.1.10 ") == "192.168.1.10"

    def test_ipv6_canonical(self):
        assert normalize_ip("FE80:0:0:0:0:0:0:1") == "fe80::1"

    def test_invalid(self):
        with pytest.raises(ValueError):
            normalize_ip("192.168.1.300")


# ─── Job Validation ──────────────────────────────────────────────────────────


class TestBuildJob:
    """Tests for build_job()."""

    def test_defaults_match_job_form(self):
        job = build_job({"name": "Office"}, NOW)

        assert job.name == "Office"
        assert job.interfaces == ["eth0"]
        assert job.subnets == ["192.168.1.0/24"]
        assert job.frequency == 5
        assert job.schedule.to_dict() == {"type": "interval", "value": "5m", "timezone": "UTC"}
        assert job.is_active is True
        assert job.alert_config == AlertConfig(
            new_device_alert=True,
            unauthorized_device_alert=True,
            ip_change_alert=True,
            device_disappeared_alert=False,
            alert_level="warning",
        )
        assert job.authorized_macs == []
        assert job.webhook_url is None

    def test_active_job_due_immediately(self):
        job = build_job({"name": "Office"}, NOW)
        assert job.created_at == NOW
        assert job.next_run == NOW
        assert job.last_run is None

    def test_inactive_job_not_scheduled(self):
        job = build_job({"name": "Office", "is_active": False}, NOW)
        assert job.next_run is None

    def test_unique_ids(self):
        assert build_job({"name": "a"}, NOW).id != build_job({"name": "a"}, NOW).id

    def test_subnets_normalized_and_deduplicated(self):
        job = build_job({"name": "x", "subnets": ["192.168.1.5/24", "192.168.1.0/24", "10.0.0.0/8"]}, NOW)
        assert job.subnets == ["192.168.1.0/24", "10.0.0.0/8"]

    def test_comma_separated_strings_accepted(self):
        job = build_job({
            "name": "x",
            "interfaces": "eth0, wlan0",
            "authorized_macs": "AA-BB-CC-DD-EE-FF,\n11:22:33:44:55:66",
        }, NOW)
        assert job.interfaces == ["eth0", "wlan0"]
        assert job.authorized_macs == ["aa:bb:cc:dd:ee:ff", "11:22:33:44:55:66"]

    def test_frequency_sets_schedule(self):
        job = build_job({"name": "x", "frequency": 15}, NOW)
        assert job.schedule.value == "15m"
        assert job.interval == timedelta(minutes=15)

    def test_alert_config_partial_merge(self):
        job = build_job({"name": "x", "alert_config": {"device_disappeared_alert": True}}, NOW)
        assert job.alert_config.device_disappeared_alert is True
        assert job.alert_config.new_device_alert is True

    @pytest.mark.parametrize("config,field", [
        ({}, "name"),
        ({"name": "   "}, "name"),
        ({"name": "x" * 101}, "name"),
        ({"name": "x", "interfaces": []}, "interfaces"),
        ({"name": "x", "interfaces": ["bad name!"]}, "interfaces"),
        ({"name": "x", "subnets": ["not-a-subnet"]}, "subnets"),
        ({"name": "x", "subnets": []}, "subnets"),
        ({"name": "x", "authorized_macs": ["zz:zz"]}, "authorized_macs"),
        ({"name": "x", "frequency": 0}, "frequency"),
        ({"name": "x", "frequency": True}, "frequency"),
        ({"name": "x", "frequency": "5"}, "frequency"),
        ({"name": "x", "is_active": "yes"}, "is_active"),
        ({"name": "x", "schedule": {"type": "cron", "value": "*/5 * * * *"}}, "schedule"),
        ({"name": "x", "alert_config": {"alert_level": "loud"}}, "alert_config"),
        ({"name": "x", "alert_config": {"bogus": True}}, "alert_config"),
        ({"name": "x", "webhook_url": "ftp://example.com"}, "webhook_url"),
        ({"name": "x", "id": "abc"}, "id"),
        ({"name": "x", "next_run": "2025-01-01"}, "next_run"),
        ({"name": "x", "colour": "blue"}, "colour"),
    ])
    def test_rejects_malformed(self, config, field):
        with pytest.raises(ValidationError) as exc_info:
            build_job(config, NOW)
        assert exc_info.value.field == field

    def test_rejects_non_dict(self):
        with pytest.raises(ValidationError):
            build_job(["name"], NOW)


class TestApplyJobUpdate:
    """Tests for apply_job_update()."""

    def test_returns_updated_copy(self):
        job = build_job({"name": "Office"}, NOW)
        updated = apply_job_update(job, {"name": "Lab", "frequency": 10})

        assert updated.name == "Lab"
        assert updated.frequency == 10
        assert updated.schedule.value == "10m"
        assert job.name == "Office"
        assert updated.id == job.id
        assert updated.created_at == job.created_at

    def test_alert_config_merged_with_existing(self):
        job = build_job({"name": "x", "alert_config": {"alert_level": "critical"}}, NOW)
        updated = apply_job_update(job, {"alert_config": {"ip_change_alert": False}})

        assert updated.alert_config.ip_change_alert is False
        assert updated.alert_config.alert_level == "critical"

    def test_invalid_update_leaves_job_untouched(self):
        job = build_job({"name": "x"}, NOW)
        with pytest.raises(ValidationError):
            apply_job_update(job, {"interfaces": []})
        assert job.interfaces == ["eth0"]

    def test_empty_webhook_clears(self):
        job = build_job({"name": "x", "webhook_url": "https://example.com/hook"}, NOW)
        assert apply_job_update(job, {"webhook_url": ""}).webhook_url is None


# ─── Records ─────────────────────────────────────────────────────────────────


class TestRecords:
    """Tests for record copying and serialization."""

    def test_device_copy_is_deep(self):
        device = Device(mac="aa:bb:cc:dd:ee:ff", ip="10.0.0.1", previous_ips=["10.0.0.2"],
                        job_misses={"j": 1})
        copy = device.copy()
        copy.previous_ips.append("10.0.0.3")
        copy.job_misses["j"] = 5

        assert device.previous_ips == ["10.0.0.2"]
        assert device.job_misses == {"j": 1}

    def test_device_to_dict_hides_bookkeeping(self):
        device = Device(mac="aa:bb:cc:dd:ee:ff", ip="10.0.0.1", job_misses={"j": 1})
        assert "job_misses" not in device.to_dict()
        assert device.to_dict(include_internal=True)["job_misses"] == {"j": 1}

    def test_job_round_trip(self):
        job = build_job({
            "name": "Office",
            "interfaces": ["eth0", "eth1"],
            "authorized_macs": ["aa:bb:cc:dd:ee:ff"],
            "alert_config": {"alert_level": "info"},
            "webhook_url": "https://example.com/hook",
        }, NOW)
        assert Job.from_dict(job.to_dict()) == job

    def test_scan_result_round_trip_with_alerts(self):
        snapshot = DeviceSnapshot(mac="aa:bb:cc:dd:ee:ff", ip="10.0.0.1", vendor="Acme")
        alert = Alert(
            id="a1", job_id="j1", job_name="Office", type=ALERT_NEW_DEVICE,
            severity="warning", title="t", message="m", device=snapshot, timestamp=NOW,
        )
        result = ScanResult(
            id="r1", job_id="j1", job_name="Office", timestamp=NOW, devices_found=1,
            new_devices=1, alerts=(alert,), execution_time=0.25, status=SCAN_SUCCESS,
        )
        assert ScanResult.from_dict(result.to_dict()) == result


class TestAlertHelpers:
    """Tests for alert id and severity helpers."""

    def test_alert_id_deterministic(self):
        a = make_alert_id("j1", ALERT_NEW_DEVICE, "aa:bb:cc:dd:ee:ff", NOW)
        b = make_alert_id("j1", ALERT_NEW_DEVICE, "aa:bb:cc:dd:ee:ff", NOW)
        assert a == b

    def test_alert_id_varies_by_type_and_time(self):
        base = make_alert_id("j1", ALERT_NEW_DEVICE, "aa:bb:cc:dd:ee:ff", NOW)
        assert base != make_alert_id("j1", ALERT_UNAUTHORIZED_DEVICE, "aa:bb:cc:dd:ee:ff", NOW)
        assert base != make_alert_id("j1", ALERT_NEW_DEVICE, "aa:bb:cc:dd:ee:ff",
                                     NOW + timedelta(seconds=1))

    def test_severity_rules(self):
        assert severity_for(ALERT_NEW_DEVICE, True, "critical") == "info"
        assert severity_for(ALERT_NEW_DEVICE, False, "critical") == "warning"
        assert severity_for(ALERT_UNAUTHORIZED_DEVICE, False, "info") == "critical"
        assert severity_for(ALERT_IP_CHANGE, True, "info") == "info"
