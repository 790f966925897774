"""
ArpMon Configuration Module

Contains all configuration constants and default values for the application.
"""

import os
from pathlib import Path
from typing import List


# Environment Variable Overrides
def get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable with fallback to default."""
    try:
        return int(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_float(key: str, default: float) -> float:
    """Get float from environment variable with fallback to default."""
    try:
        return float(os.getenv(key, default))
    except (ValueError, TypeError):
        return default

def get_env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable with fallback to default."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")

def get_env_str(key: str, default: str) -> str:
    """Get string from environment variable with fallback to default."""
    value = os.getenv(key)
    return value.strip() if value else default

def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get list from comma-separated environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


APP_NAME = "ArpMon"
APP_VERSION = "1.0.0"

# Project Paths
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(get_env_str("ARPMON_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = Path(get_env_str("ARPMON_LOGS_DIR", str(PROJECT_ROOT / "logs")))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Database Configuration
DATABASE_URL = get_env_str("ARPMON_DATABASE_URL", f"sqlite:///{DATA_DIR}/arpmon.db")
DB_ECHO = False  # Set to True for SQL query debugging

# Web Server Configuration
DEFAULT_WEB_PORT = 5000
DEFAULT_HOST = "127.0.0.1"
WEBSOCKET_BROADCAST_INTERVAL = 0.5  # seconds between broadcasts of one type

# Scheduler Configuration
SCHEDULER_MAX_TICK = 30.0  # seconds, upper bound on loop sleep
SCAN_THREAD_POOL_SIZE = 4
DISCOVERY_TIMEOUT = 60.0  # seconds, per-job deadline for all discovery calls
ARP_SWEEP_TIMEOUT = 2.0  # seconds, scapy srp answer window
SHUTDOWN_TIMEOUT = 10.0  # seconds

# Device Tracking
STALENESS_MISSED_SCANS = 2  # consecutive missed scans before "disappeared"

# Job Defaults
DEFAULT_INTERFACE = "eth0"
DEFAULT_SUBNET = "192.168.1.0/24"
DEFAULT_SCAN_FREQUENCY = 5  # minutes
MIN_SCAN_FREQUENCY = 1  # minutes
MAX_JOB_NAME_LENGTH = 100
MAX_JOB_DESCRIPTION_LENGTH = 2000

# Alert Severity Levels
SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"
SEVERITY_LEVELS = (SEVERITY_INFO, SEVERITY_WARNING, SEVERITY_CRITICAL)

# History Retention
MAX_ALERT_HISTORY = 1000
MAX_SCAN_RESULTS = 100
DATA_RETENTION_DAYS = 30
CLEANUP_INTERVAL_SECONDS = 6 * 60 * 60  # 6 hours

# Notification Configuration
NOTIFY_WEBHOOK_URL = ""
WEBHOOK_TIMEOUT = 10  # seconds
NOTIFICATION_POOL_SIZE = 2
SMTP_HOST = ""
SMTP_PORT = 587
SMTP_USERNAME = ""
SMTP_PASSWORD = ""
SMTP_USE_TLS = True
EMAIL_RECIPIENTS: List[str] = []

# Logging Configuration
LOG_FILE = LOGS_DIR / "arpmon.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Apply environment overrides
WEB_HOST = get_env_str("ARPMON_HOST", DEFAULT_HOST)
WEB_PORT = get_env_int("ARPMON_PORT", DEFAULT_WEB_PORT)
DEBUG_MODE = get_env_bool("ARPMON_DEBUG", False)
DISCOVERY_TIMEOUT = get_env_float("ARPMON_DISCOVERY_TIMEOUT", DISCOVERY_TIMEOUT)
SCHEDULER_MAX_TICK = get_env_float("ARPMON_SCHEDULER_TICK", SCHEDULER_MAX_TICK)
STALENESS_MISSED_SCANS = get_env_int("ARPMON_STALENESS_MISSED_SCANS", STALENESS_MISSED_SCANS)
MAX_ALERT_HISTORY = get_env_int("ARPMON_MAX_ALERT_HISTORY", MAX_ALERT_HISTORY)
MAX_SCAN_RESULTS = get_env_int("ARPMON_MAX_SCAN_RESULTS", MAX_SCAN_RESULTS)
DATA_RETENTION_DAYS = get_env_int("ARPMON_RETENTION_DAYS", DATA_RETENTION_DAYS)
NOTIFY_WEBHOOK_URL = get_env_str("ARPMON_WEBHOOK_URL", NOTIFY_WEBHOOK_URL)
SMTP_HOST = get_env_str("ARPMON_SMTP_HOST", SMTP_HOST)
SMTP_PORT = get_env_int("ARPMON_SMTP_PORT", SMTP_PORT)
SMTP_USERNAME = get_env_str("ARPMON_SMTP_USERNAME", SMTP_USERNAME)
SMTP_PASSWORD = get_env_str("ARPMON_SMTP_PASSWORD", SMTP_PASSWORD)
SMTP_USE_TLS = get_env_bool("ARPMON_SMTP_USE_TLS", SMTP_USE_TLS)
EMAIL_RECIPIENTS = get_env_list("ARPMON_EMAIL_RECIPIENTS", EMAIL_RECIPIENTS)
ALLOWED_ORIGINS = get_env_list(
    "ARPMON_ALLOWED_ORIGINS",
    [
        f"http://localhost:{WEB_PORT}",
        f"http://127.0.0.1:{WEB_PORT}",
    ],
)
