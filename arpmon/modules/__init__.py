"""
ArpMon Modules Package

Core monitoring engine: discovery, device registry, rule engine,
scheduler, alert logs, persistence and notifications.
"""

from .exceptions import (
    MonitorError, ProviderError, ValidationError,
    NotFoundError, ConcurrentRunError,
)
from .models import (
    Device, DeviceSnapshot, DeviceTransition, ObservedDevice,
    Job, Schedule, AlertConfig, Alert, ScanResult,
    normalize_mac, normalize_ip,
)
from .store import MonitorStore, MemoryStore
from .database import init_database, DatabaseStore
from .discovery import (
    DiscoveryProvider, ArpDiscoveryProvider,
    merge_snapshots, lookup_vendor,
)
from .registry import DeviceRegistry
from .rules import classify
from .alerts import AlertStore, ScanResultLog
from .notifier import (
    Notifier, NotifierBackend,
    WebhookBackend, EmailBackend,
)
from .scheduler import JobScheduler
from .monitor import MonitorService

__all__ = [
    "MonitorError",
    "ProviderError",
    "ValidationError",
    "NotFoundError",
    "ConcurrentRunError",
    "Device",
    "DeviceSnapshot",
    "DeviceTransition",
    "ObservedDevice",
    "Job",
    "Schedule",
    "AlertConfig",
    "Alert",
    "ScanResult",
    "normalize_mac",
    "normalize_ip",
    "MonitorStore",
    "MemoryStore",
    "init_database",
    "DatabaseStore",
    "DiscoveryProvider",
    "ArpDiscoveryProvider",
    "merge_snapshots",
    "lookup_vendor",
    "DeviceRegistry",
    "classify",
    "AlertStore",
    "ScanResultLog",
    "Notifier",
    "NotifierBackend",
    "WebhookBackend",
    "EmailBackend",
    "JobScheduler",
    "MonitorService",
]
