"""
Rule Engine Module

Turns device transitions into alerts according to a job's alert
configuration.  ``classify`` is a pure function: the timestamp and job
identity are passed in and alert ids are derived from them, so the same
input always yields the same alerts.
"""

from typing import List, Optional

from .models import (
    Alert,
    AlertConfig,
    Device,
    DeviceSnapshot,
    DeviceTransition,
    ALERT_NEW_DEVICE,
    ALERT_UNAUTHORIZED_DEVICE,
    ALERT_IP_CHANGE,
    ALERT_DEVICE_DISAPPEARED,
    TRANSITION_CREATED,
    TRANSITION_ADDRESS_CHANGED,
    TRANSITION_DISAPPEARED,
    make_alert_id,
    severity_for,
)

UNKNOWN_VENDOR = "Unknown"

ALERT_TITLES = {
    ALERT_NEW_DEVICE: "New Device Detected",
    ALERT_UNAUTHORIZED_DEVICE: "Unauthorized Device",
    ALERT_IP_CHANGE: "Device IP Changed",
    ALERT_DEVICE_DISAPPEARED: "Device Disappeared",
}


def _describe(alert_type: str, snapshot: DeviceSnapshot, old_ip: Optional[str]) -> str:
    vendor = snapshot.vendor or UNKNOWN_VENDOR
    if alert_type == ALERT_NEW_DEVICE:
        return f"New device {vendor} ({snapshot.mac}) found at {snapshot.ip}"
    if alert_type == ALERT_UNAUTHORIZED_DEVICE:
        return f"Unauthorized device {vendor} ({snapshot.mac}) detected at {snapshot.ip}"
    if alert_type == ALERT_IP_CHANGE:
        return f"Device {vendor} ({snapshot.mac}) changed IP from {old_ip} to {snapshot.ip}"
    return f"Device {vendor} ({snapshot.mac}) last seen at {snapshot.ip} is no longer responding"


def _make_alert(
    alert_type: str,
    severity: str,
    snapshot: DeviceSnapshot,
    job_id: str,
    job_name: str,
    timestamp,
    old_ip: Optional[str] = None,
) -> Alert:
    detail = f"{old_ip or ''}>{snapshot.ip}"
    return Alert(
        id=make_alert_id(job_id, alert_type, snapshot.mac, timestamp, detail),
        job_id=job_id,
        job_name=job_name,
        type=alert_type,
        severity=severity,
        title=ALERT_TITLES[alert_type],
        message=_describe(alert_type, snapshot, old_ip),
        device=snapshot,
        timestamp=timestamp,
        acknowledged=False,
    )


def classify(
    transition: DeviceTransition,
    alert_config: AlertConfig,
    device: Device,
    job_id: str,
    job_name: str,
    timestamp,
) -> List[Alert]:
    """Map one transition to zero, one or two alerts.

    Args:
        transition: Transition produced by the registry.
        alert_config: The owning job's alert toggles and default level.
        device: Device state after the transition.
        job_id: Owning job id.
        job_name: Owning job name, copied onto each alert.
        timestamp: Alert time (the scan's start time).

    Returns:
        Alerts in emission order.  A new unauthorized device yields the
        ``new_device`` alert first, then ``unauthorized_device``.
    """
    alerts: List[Alert] = []
    level = alert_config.alert_level

    if transition.kind == TRANSITION_CREATED:
        snapshot = device.snapshot()
        if alert_config.new_device_alert:
            alerts.append(_make_alert(
                ALERT_NEW_DEVICE,
                severity_for(ALERT_NEW_DEVICE, device.is_authorized, level),
                snapshot, job_id, job_name, timestamp,
            ))
        if not device.is_authorized and alert_config.unauthorized_device_alert:
            alerts.append(_make_alert(
                ALERT_UNAUTHORIZED_DEVICE,
                severity_for(ALERT_UNAUTHORIZED_DEVICE, device.is_authorized, level),
                snapshot, job_id, job_name, timestamp,
            ))

    elif transition.kind == TRANSITION_ADDRESS_CHANGED:
        if alert_config.ip_change_alert:
            snapshot = device.snapshot(previous_ip=transition.old_ip)
            alerts.append(_make_alert(
                ALERT_IP_CHANGE,
                severity_for(ALERT_IP_CHANGE, device.is_authorized, level),
                snapshot, job_id, job_name, timestamp, old_ip=transition.old_ip,
            ))

    elif transition.kind == TRANSITION_DISAPPEARED:
        if alert_config.device_disappeared_alert:
            alerts.append(_make_alert(
                ALERT_DEVICE_DISAPPEARED,
                severity_for(ALERT_DEVICE_DISAPPEARED, device.is_authorized, level),
                device.snapshot(), job_id, job_name, timestamp,
            ))

    # Reaffirmed never alerts
    return alerts
