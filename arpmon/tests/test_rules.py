"""
Unit tests for the rule engine.
"""

import itertools
from datetime import datetime

import pytest

from arpmon.modules.models import (
    AlertConfig,
    Device,
    DeviceTransition,
    ALERT_DEVICE_DISAPPEARED,
    ALERT_IP_CHANGE,
    ALERT_NEW_DEVICE,
    ALERT_UNAUTHORIZED_DEVICE,
    TRANSITION_ADDRESS_CHANGED,
    TRANSITION_CREATED,
    TRANSITION_DISAPPEARED,
    TRANSITION_REAFFIRMED,
)
from arpmon.modules.rules import classify

NOW = datetime(2025, 1, 1, 12, 0, 0)


def _device(authorized=False, ip="192.168.1.50", vendor="Acme", online=True):
    return Device(
        mac="aa:bb:cc:dd:ee:ff",
        ip=ip,
        vendor=vendor,
        first_seen=NOW,
        last_seen=NOW,
        is_authorized=authorized,
        is_online=online,
    )


def _transition(kind, device, old_ip=None):
    return DeviceTransition(
        kind=kind,
        mac=device.mac,
        device=device,
        old_ip=old_ip,
        new_ip=device.ip if kind == TRANSITION_ADDRESS_CHANGED else None,
    )


def _classify(kind, device, config=None, old_ip=None):
    return classify(
        _transition(kind, device, old_ip),
        config or AlertConfig(),
        device,
        "job1",
        "Office",
        NOW,
    )


# ---- New Devices ------------------------------------------------------------


class TestCreatedTransition:
    """Tests for new device classification."""

    def test_unauthorized_new_device_yields_two_alerts(self):
        alerts = _classify(TRANSITION_CREATED, _device(authorized=False))

        assert [a.type for a in alerts] == [ALERT_NEW_DEVICE, ALERT_UNAUTHORIZED_DEVICE]
        assert [a.severity for a in alerts] == ["warning", "critical"]
        assert alerts[0].title == "New Device Detected"
        assert alerts[1].title == "Unauthorized Device"
        assert alerts[0].message == "New device Acme (aa:bb:cc:dd:ee:ff) found at 192.168.1.50"
        assert alerts[1].message == (
            "Unauthorized device Acme (aa:bb:cc:dd:ee:ff) detected at 192.168.1.50"
        )

    def test_authorized_new_device_is_info(self):
        alerts = _classify(TRANSITION_CREATED, _device(authorized=True))

        assert [(a.type, a.severity) for a in alerts] == [(ALERT_NEW_DEVICE, "info")]

    def test_new_device_alert_disabled(self):
        config = AlertConfig(new_device_alert=False)
        alerts = _classify(TRANSITION_CREATED, _device(authorized=False), config)

        assert [a.type for a in alerts] == [ALERT_UNAUTHORIZED_DEVICE]

    def test_unauthorized_alert_disabled(self):
        config = AlertConfig(unauthorized_device_alert=False)
        alerts = _classify(TRANSITION_CREATED, _device(authorized=False), config)

        assert [a.type for a in alerts] == [ALERT_NEW_DEVICE]

    def test_alert_level_does_not_affect_new_device_severity(self):
        config = AlertConfig(alert_level="critical")
        alerts = _classify(TRANSITION_CREATED, _device(authorized=True), config)

        assert alerts[0].severity == "info"

    def test_alert_fields(self):
        alert = _classify(TRANSITION_CREATED, _device())[0]

        assert alert.job_id == "job1"
        assert alert.job_name == "Office"
        assert alert.timestamp == NOW
        assert alert.acknowledged is False
        assert alert.device.mac == "aa:bb:cc:dd:ee:ff"
        assert alert.device.ip == "192.168.1.50"
        assert alert.device.previous_ip is None

    def test_unknown_vendor_in_message(self):
        alert = _classify(TRANSITION_CREATED, _device(vendor=None))[0]

        assert "Unknown" in alert.message


# ---- IP Changes -------------------------------------------------------------


class TestAddressChangedTransition:
    """Tests for IP change classification."""

    @pytest.mark.parametrize("level", ["info", "warning", "critical"])
    def test_uses_job_alert_level(self, level):
        alerts = _classify(
            TRANSITION_ADDRESS_CHANGED,
            _device(ip="192.168.1.60"),
            AlertConfig(alert_level=level),
            old_ip="192.168.1.50",
        )

        assert len(alerts) == 1
        assert alerts[0].type == ALERT_IP_CHANGE
        assert alerts[0].severity == level

    def test_snapshot_carries_both_addresses(self):
        alert = _classify(
            TRANSITION_ADDRESS_CHANGED, _device(ip="192.168.1.60"), old_ip="192.168.1.50"
        )[0]

        assert alert.device.ip == "192.168.1.60"
        assert alert.device.previous_ip == "192.168.1.50"
        assert alert.message == (
            "Device Acme (aa:bb:cc:dd:ee:ff) changed IP from 192.168.1.50 to 192.168.1.60"
        )

    def test_disabled(self):
        alerts = _classify(
            TRANSITION_ADDRESS_CHANGED,
            _device(ip="192.168.1.60"),
            AlertConfig(ip_change_alert=False),
            old_ip="192.168.1.50",
        )

        assert alerts == []


# ---- Disappearance & Reaffirmed ----------------------------------------------


class TestOtherTransitions:
    """Tests for disappeared and reaffirmed transitions."""

    def test_disappeared_off_by_default(self):
        assert _classify(TRANSITION_DISAPPEARED, _device(online=False)) == []

    def test_disappeared_when_enabled(self):
        config = AlertConfig(device_disappeared_alert=True, alert_level="critical")
        alerts = _classify(TRANSITION_DISAPPEARED, _device(online=False), config)

        assert [(a.type, a.severity) for a in alerts] == [(ALERT_DEVICE_DISAPPEARED, "critical")]
        assert alerts[0].title == "Device Disappeared"

    @pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=4)))
    def test_reaffirmed_never_alerts(self, flags):
        config = AlertConfig(
            new_device_alert=flags[0],
            unauthorized_device_alert=flags[1],
            ip_change_alert=flags[2],
            device_disappeared_alert=flags[3],
        )
        for authorized in (True, False):
            assert _classify(TRANSITION_REAFFIRMED, _device(authorized=authorized), config) == []


# ---- Determinism ------------------------------------------------------------


class TestDeterminism:
    """classify is a pure function of its inputs."""

    def test_same_input_same_alerts(self):
        device = _device()
        first = _classify(TRANSITION_CREATED, device)
        second = _classify(TRANSITION_CREATED, device)

        assert first == second
        assert len({a.id for a in first}) == 2

    def test_alert_snapshot_independent_of_later_mutation(self):
        device = _device()
        alert = _classify(TRANSITION_CREATED, device)[0]

        device.ip = "10.9.9.9"
        device.is_authorized = True

        assert alert.device.ip == "192.168.1.50"
        assert alert.device.is_authorized is False
