"""
Models Module

Domain records for the monitoring engine (devices, jobs, alerts, scan
results, transitions) plus the normalization and validation rules applied
to external input before it reaches the scheduler or the registry.
"""

import ipaddress
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from arpmon.config import (
    DEFAULT_INTERFACE,
    DEFAULT_SUBNET,
    DEFAULT_SCAN_FREQUENCY,
    MIN_SCAN_FREQUENCY,
    MAX_JOB_NAME_LENGTH,
    MAX_JOB_DESCRIPTION_LENGTH,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    SEVERITY_CRITICAL,
    SEVERITY_LEVELS,
)

from .exceptions import ValidationError

# Transition kinds
TRANSITION_CREATED = "created"
TRANSITION_ADDRESS_CHANGED = "address_changed"
TRANSITION_REAFFIRMED = "reaffirmed"
TRANSITION_DISAPPEARED = "disappeared"

# Alert types
ALERT_NEW_DEVICE = "new_device"
ALERT_UNAUTHORIZED_DEVICE = "unauthorized_device"
ALERT_IP_CHANGE = "ip_change"
ALERT_DEVICE_DISAPPEARED = "device_disappeared"
ALERT_TYPES = (
    ALERT_NEW_DEVICE,
    ALERT_UNAUTHORIZED_DEVICE,
    ALERT_IP_CHANGE,
    ALERT_DEVICE_DISAPPEARED,
)

# Scan statuses
SCAN_SUCCESS = "success"
SCAN_ERROR = "error"
SCAN_PARTIAL = "partial"

# Job states
JOB_INACTIVE = "inactive"
JOB_IDLE = "idle"
JOB_RUNNING = "running"

SCHEDULE_INTERVAL = "interval"
SCHEDULE_CRON = "cron"

_MAC_SEPARATORS = re.compile(r"[:\-.]")
_MAC_HEX = re.compile(r"^[0-9a-f]{12}$")
_INTERFACE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]{0,14}$")
_RESERVED_MACS = {"000000000000", "ffffffffffff"}


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def normalize_mac(mac: str) -> str:
    """Normalize a MAC address to lowercase colon-separated form.

    Accepts ``AA:BB:CC:DD:EE:FF``, ``aa-bb-cc-dd-ee-ff``,
    ``aabb.ccdd.eeff`` and bare hex.

    Raises:
        ValueError: if the value is not a usable unicast hardware address.
    """
    if not isinstance(mac, str):
        raise ValueError(f"MAC address must be a string, got {type(mac).__name__}")
    digits = _MAC_SEPARATORS.sub("", mac.strip().lower())
    if not _MAC_HEX.match(digits):
        raise ValueError(f"Malformed MAC address: {mac!r}")
    if digits in _RESERVED_MACS:
        raise ValueError(f"Reserved MAC address: {mac!r}")
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def normalize_ip(ip: str) -> str:
    """Return the canonical text form of an IPv4/IPv6 address."""
    if not isinstance(ip, str):
        raise ValueError(f"IP address must be a string, got {type(ip).__name__}")
    return str(ipaddress.ip_address(ip.strip()))


def _split_values(value: Any, field_name: str) -> List[str]:
    """Accept a list of strings or a comma/newline separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[,\n]", value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        raise ValidationError(f"{field_name} must be a list of strings", field=field_name)

    result: List[str] = []
    for item in items:
        if not isinstance(item, str):
            raise ValidationError(f"{field_name} must contain only strings", field=field_name)
        item = item.strip()
        if item and item not in result:
            result.append(item)
    return result


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Devices and discovery
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ObservedDevice:
    """One device as reported by a discovery call."""
    mac: str
    ip: str
    vendor: Optional[str] = None
    hostname: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "mac": self.mac,
            "ip": self.ip,
            "vendor": self.vendor,
            "hostname": self.hostname,
        }


@dataclass(frozen=True)
class DeviceSnapshot:
    """Point-in-time copy of a device's identifying fields."""
    mac: str
    ip: str
    vendor: Optional[str] = None
    hostname: Optional[str] = None
    is_authorized: bool = False
    previous_ip: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "mac": self.mac,
            "ip": self.ip,
            "vendor": self.vendor,
            "hostname": self.hostname,
            "is_authorized": self.is_authorized,
            "previous_ip": self.previous_ip,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DeviceSnapshot":
        return cls(
            mac=data["mac"],
            ip=data["ip"],
            vendor=data.get("vendor"),
            hostname=data.get("hostname"),
            is_authorized=bool(data.get("is_authorized", False)),
            previous_ip=data.get("previous_ip"),
        )


@dataclass
class Device:
    """A known device, keyed by MAC address."""
    mac: str
    ip: str
    vendor: Optional[str] = None
    hostname: Optional[str] = None
    first_seen: datetime = field(default_factory=datetime.now)
    last_seen: datetime = field(default_factory=datetime.now)
    is_authorized: bool = False
    previous_ips: List[str] = field(default_factory=list)
    is_online: bool = True
    # job id -> consecutive scans of that job that missed this device
    job_misses: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> "Device":
        return replace(
            self,
            previous_ips=list(self.previous_ips),
            job_misses=dict(self.job_misses),
        )

    def snapshot(self, previous_ip: Optional[str] = None) -> DeviceSnapshot:
        return DeviceSnapshot(
            mac=self.mac,
            ip=self.ip,
            vendor=self.vendor,
            hostname=self.hostname,
            is_authorized=self.is_authorized,
            previous_ip=previous_ip,
        )

    def to_dict(self, include_internal: bool = False) -> Dict:
        data = {
            "mac": self.mac,
            "ip": self.ip,
            "vendor": self.vendor,
            "hostname": self.hostname,
            "first_seen": _format_dt(self.first_seen),
            "last_seen": _format_dt(self.last_seen),
            "is_authorized": self.is_authorized,
            "previous_ips": list(self.previous_ips),
            "is_online": self.is_online,
        }
        if include_internal:
            data["job_misses"] = dict(self.job_misses)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Device":
        return cls(
            mac=data["mac"],
            ip=data["ip"],
            vendor=data.get("vendor"),
            hostname=data.get("hostname"),
            first_seen=_parse_dt(data.get("first_seen")) or datetime.now(),
            last_seen=_parse_dt(data.get("last_seen")) or datetime.now(),
            is_authorized=bool(data.get("is_authorized", False)),
            previous_ips=list(data.get("previous_ips") or []),
            is_online=bool(data.get("is_online", True)),
            job_misses={k: int(v) for k, v in (data.get("job_misses") or {}).items()},
        )

    def __repr__(self) -> str:
        return f"<Device {self.mac} ({self.ip}) - {self.hostname or 'Unknown'}>"


@dataclass(frozen=True)
class DeviceTransition:
    """Classified difference between prior and current device state."""
    kind: str
    mac: str
    device: Device
    old_ip: Optional[str] = None
    new_ip: Optional[str] = None


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Schedule:
    type: str = SCHEDULE_INTERVAL
    value: str = f"{DEFAULT_SCAN_FREQUENCY}m"
    timezone: str = "UTC"

    @classmethod
    def from_frequency(cls, minutes: int) -> "Schedule":
        return cls(type=SCHEDULE_INTERVAL, value=f"{minutes}m", timezone="UTC")

    def to_dict(self) -> Dict:
        return {"type": self.type, "value": self.value, "timezone": self.timezone}


@dataclass(frozen=True)
class AlertConfig:
    new_device_alert: bool = True
    unauthorized_device_alert: bool = True
    ip_change_alert: bool = True
    device_disappeared_alert: bool = False
    alert_level: str = SEVERITY_WARNING

    def to_dict(self) -> Dict:
        return {
            "new_device_alert": self.new_device_alert,
            "unauthorized_device_alert": self.unauthorized_device_alert,
            "ip_change_alert": self.ip_change_alert,
            "device_disappeared_alert": self.device_disappeared_alert,
            "alert_level": self.alert_level,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AlertConfig":
        return cls(**{k: data[k] for k in ALERT_CONFIG_FIELDS if k in data})


ALERT_CONFIG_FIELDS = (
    "new_device_alert",
    "unauthorized_device_alert",
    "ip_change_alert",
    "device_disappeared_alert",
    "alert_level",
)


@dataclass
class Job:
    """A named scanning configuration."""
    id: str
    name: str
    description: str = ""
    interfaces: List[str] = field(default_factory=lambda: [DEFAULT_INTERFACE])
    subnets: List[str] = field(default_factory=lambda: [DEFAULT_SUBNET])
    authorized_macs: List[str] = field(default_factory=list)
    frequency: int = DEFAULT_SCAN_FREQUENCY
    schedule: Schedule = field(default_factory=Schedule)
    is_active: bool = True
    alert_config: AlertConfig = field(default_factory=AlertConfig)
    webhook_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.frequency)

    def copy(self) -> "Job":
        return replace(
            self,
            interfaces=list(self.interfaces),
            subnets=list(self.subnets),
            authorized_macs=list(self.authorized_macs),
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "interfaces": list(self.interfaces),
            "subnets": list(self.subnets),
            "authorized_macs": list(self.authorized_macs),
            "frequency": self.frequency,
            "schedule": self.schedule.to_dict(),
            "is_active": self.is_active,
            "alert_config": self.alert_config.to_dict(),
            "webhook_url": self.webhook_url,
            "created_at": _format_dt(self.created_at),
            "last_run": _format_dt(self.last_run),
            "next_run": _format_dt(self.next_run),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Job":
        schedule = data.get("schedule") or {}
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            interfaces=list(data.get("interfaces") or []),
            subnets=list(data.get("subnets") or []),
            authorized_macs=list(data.get("authorized_macs") or []),
            frequency=int(data.get("frequency", DEFAULT_SCAN_FREQUENCY)),
            schedule=Schedule(**schedule) if schedule else Schedule.from_frequency(
                int(data.get("frequency", DEFAULT_SCAN_FREQUENCY))
            ),
            is_active=bool(data.get("is_active", True)),
            alert_config=AlertConfig.from_dict(data.get("alert_config") or {}),
            webhook_url=data.get("webhook_url"),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            last_run=_parse_dt(data.get("last_run")),
            next_run=_parse_dt(data.get("next_run")),
        )

    def __repr__(self) -> str:
        return f"<Job {self.id} '{self.name}' every {self.frequency}m active={self.is_active}>"


# ---------------------------------------------------------------------------
# Alerts and scan results
# ---------------------------------------------------------------------------

_ALERT_NAMESPACE = uuid.UUID("5f1d7c2e-8a41-4c0b-9d57-3e6a2b9f0c11")


def make_alert_id(
    job_id: str,
    alert_type: str,
    mac: str,
    timestamp: datetime,
    detail: str = "",
) -> str:
    """Deterministic alert id, so one transition never yields two records."""
    key = f"{job_id}|{alert_type}|{mac}|{timestamp.isoformat()}|{detail}"
    return str(uuid.uuid5(_ALERT_NAMESPACE, key))


@dataclass(frozen=True)
class Alert:
    id: str
    job_id: str
    job_name: str
    type: str
    severity: str
    title: str
    message: str
    device: DeviceSnapshot
    timestamp: datetime
    acknowledged: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "job_name": self.job_name,
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "device": self.device.to_dict(),
            "timestamp": _format_dt(self.timestamp),
            "acknowledged": self.acknowledged,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Alert":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            job_name=data.get("job_name") or "",
            type=data["type"],
            severity=data["severity"],
            title=data["title"],
            message=data["message"],
            device=DeviceSnapshot.from_dict(data["device"]),
            timestamp=_parse_dt(data["timestamp"]),
            acknowledged=bool(data.get("acknowledged", False)),
        )

    def __repr__(self) -> str:
        return f"<Alert {self.id} [{self.severity}] {self.title}>"


@dataclass(frozen=True)
class ScanResult:
    """Immutable audit record of one job execution."""
    id: str
    job_id: str
    job_name: str
    timestamp: datetime
    devices_found: int
    new_devices: int
    alerts: Tuple[Alert, ...]
    execution_time: float
    status: str
    error_message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "job_name": self.job_name,
            "timestamp": _format_dt(self.timestamp),
            "devices_found": self.devices_found,
            "new_devices": self.new_devices,
            "alerts": [alert.to_dict() for alert in self.alerts],
            "execution_time": round(self.execution_time, 4),
            "status": self.status,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ScanResult":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            job_name=data.get("job_name") or "",
            timestamp=_parse_dt(data["timestamp"]),
            devices_found=int(data.get("devices_found", 0)),
            new_devices=int(data.get("new_devices", 0)),
            alerts=tuple(Alert.from_dict(a) for a in data.get("alerts") or []),
            execution_time=float(data.get("execution_time", 0.0)),
            status=data["status"],
            error_message=data.get("error_message"),
        )

    def __repr__(self) -> str:
        return f"<ScanResult {self.id} job={self.job_id} [{self.status}] {self.devices_found} devices>"


# ---------------------------------------------------------------------------
# Job validation
# ---------------------------------------------------------------------------

JOB_FIELDS = {
    "name",
    "description",
    "interfaces",
    "subnets",
    "authorized_macs",
    "frequency",
    "schedule",
    "is_active",
    "alert_config",
    "webhook_url",
}
READ_ONLY_JOB_FIELDS = {"id", "created_at", "last_run", "next_run"}


def _check_fields(config: Dict) -> None:
    if not isinstance(config, dict):
        raise ValidationError("Job configuration must be an object")
    read_only = READ_ONLY_JOB_FIELDS & set(config)
    if read_only:
        field_name = sorted(read_only)[0]
        raise ValidationError(f"Field '{field_name}' is read-only", field=field_name)
    unknown = set(config) - JOB_FIELDS
    if unknown:
        field_name = sorted(unknown)[0]
        raise ValidationError(f"Unknown job field '{field_name}'", field=field_name)


def _validate_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Job name is required", field="name")
    value = value.strip()
    if len(value) > MAX_JOB_NAME_LENGTH:
        raise ValidationError(
            f"Job name exceeds {MAX_JOB_NAME_LENGTH} characters", field="name"
        )
    return value


def _validate_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Description must be a string", field="description")
    if len(value) > MAX_JOB_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description exceeds {MAX_JOB_DESCRIPTION_LENGTH} characters",
            field="description",
        )
    return value


def _validate_interfaces(value: Any) -> List[str]:
    interfaces = _split_values(value, "interfaces")
    if not interfaces:
        raise ValidationError("At least one interface is required", field="interfaces")
    for name in interfaces:
        if not _INTERFACE_NAME.match(name):
            raise ValidationError(f"Invalid interface name: {name!r}", field="interfaces")
    return interfaces


def _validate_subnets(value: Any) -> List[str]:
    subnets: List[str] = []
    for raw in _split_values(value, "subnets"):
        try:
            network = str(ipaddress.ip_network(raw, strict=False))
        except ValueError:
            raise ValidationError(f"Invalid subnet: {raw!r}", field="subnets")
        if network not in subnets:
            subnets.append(network)
    if not subnets:
        raise ValidationError("At least one subnet is required", field="subnets")
    return subnets


def _validate_macs(value: Any) -> List[str]:
    macs: List[str] = []
    for raw in _split_values(value, "authorized_macs"):
        try:
            mac = normalize_mac(raw)
        except ValueError as e:
            raise ValidationError(str(e), field="authorized_macs")
        if mac not in macs:
            macs.append(mac)
    return macs


def _validate_frequency(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Frequency must be an integer number of minutes", field="frequency")
    if value < MIN_SCAN_FREQUENCY:
        raise ValidationError(
            f"Frequency must be at least {MIN_SCAN_FREQUENCY} minute(s)", field="frequency"
        )
    return value


def _validate_schedule(value: Any) -> None:
    """Only interval schedules are evaluated; the value is derived from frequency."""
    if value is None:
        return
    if isinstance(value, Schedule):
        value = value.to_dict()
    if not isinstance(value, dict):
        raise ValidationError("Schedule must be an object", field="schedule")
    schedule_type = value.get("type", SCHEDULE_INTERVAL)
    if schedule_type == SCHEDULE_CRON:
        raise ValidationError("Cron schedules are not supported", field="schedule")
    if schedule_type != SCHEDULE_INTERVAL:
        raise ValidationError(f"Unknown schedule type: {schedule_type!r}", field="schedule")


def _validate_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a boolean", field=field_name)
    return value


def _validate_alert_config(value: Any, base: AlertConfig) -> AlertConfig:
    if value is None:
        return base
    if isinstance(value, AlertConfig):
        value = value.to_dict()
    if not isinstance(value, dict):
        raise ValidationError("alert_config must be an object", field="alert_config")
    unknown = set(value) - set(ALERT_CONFIG_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown alert_config field '{sorted(unknown)[0]}'", field="alert_config"
        )
    merged = base.to_dict()
    for key, item in value.items():
        if key == "alert_level":
            if item not in SEVERITY_LEVELS:
                raise ValidationError(
                    f"alert_level must be one of {', '.join(SEVERITY_LEVELS)}",
                    field="alert_config",
                )
        else:
            _validate_bool(item, f"alert_config.{key}")
        merged[key] = item
    return AlertConfig(**merged)


def _validate_webhook(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        raise ValidationError("webhook_url must be a string", field="webhook_url")
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid webhook URL: {value!r}", field="webhook_url")
    return value


def build_job(config: Dict, now: datetime, job_id: Optional[str] = None) -> Job:
    """Validate a full job configuration and build a new Job.

    Missing optional fields take the job form defaults. Active jobs are
    scheduled to run promptly (``next_run = now``).

    Raises:
        ValidationError: if any field is malformed.
    """
    _check_fields(config)
    if "name" not in config:
        raise ValidationError("Job name is required", field="name")
    _validate_schedule(config.get("schedule"))

    frequency = _validate_frequency(config.get("frequency", DEFAULT_SCAN_FREQUENCY))
    is_active = _validate_bool(config.get("is_active", True), "is_active")

    return Job(
        id=job_id or str(uuid.uuid4()),
        name=_validate_name(config["name"]),
        description=_validate_description(config.get("description")),
        interfaces=_validate_interfaces(config.get("interfaces", [DEFAULT_INTERFACE])),
        subnets=_validate_subnets(config.get("subnets", [DEFAULT_SUBNET])),
        authorized_macs=_validate_macs(config.get("authorized_macs")),
        frequency=frequency,
        schedule=Schedule.from_frequency(frequency),
        is_active=is_active,
        alert_config=_validate_alert_config(config.get("alert_config"), AlertConfig()),
        webhook_url=_validate_webhook(config.get("webhook_url")),
        created_at=now,
        last_run=None,
        next_run=now if is_active else None,
    )


def apply_job_update(job: Job, partial: Dict) -> Job:
    """Validate a partial update and return the updated copy of ``job``.

    Run timestamps are left for the scheduler to adjust.

    Raises:
        ValidationError: if any supplied field is malformed.
    """
    _check_fields(partial)
    _validate_schedule(partial.get("schedule"))

    updated = job.copy()
    if "name" in partial:
        updated.name = _validate_name(partial["name"])
    if "description" in partial:
        updated.description = _validate_description(partial["description"])
    if "interfaces" in partial:
        updated.interfaces = _validate_interfaces(partial["interfaces"])
    if "subnets" in partial:
        updated.subnets = _validate_subnets(partial["subnets"])
    if "authorized_macs" in partial:
        updated.authorized_macs = _validate_macs(partial["authorized_macs"])
    if "frequency" in partial:
        updated.frequency = _validate_frequency(partial["frequency"])
        updated.schedule = Schedule.from_frequency(updated.frequency)
    if "is_active" in partial:
        updated.is_active = _validate_bool(partial["is_active"], "is_active")
    if "alert_config" in partial:
        updated.alert_config = _validate_alert_config(partial["alert_config"], job.alert_config)
    if "webhook_url" in partial:
        updated.webhook_url = _validate_webhook(partial["webhook_url"])
    return updated


def severity_for(alert_type: str, is_authorized: bool, default_level: str) -> str:
    """Severity rule shared by the rule engine and its tests."""
    if alert_type == ALERT_NEW_DEVICE:
        return SEVERITY_INFO if is_authorized else SEVERITY_WARNING
    if alert_type == ALERT_UNAUTHORIZED_DEVICE:
        return SEVERITY_CRITICAL
    return default_level
