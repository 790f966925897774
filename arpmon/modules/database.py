"""
Database Module

SQLAlchemy models and the database-backed MonitorStore for ArpMon.
"""

import json
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from sqlalchemy import create_engine, Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from arpmon.config import DATABASE_URL, DB_ECHO

from .models import Alert, Device, Job, ScanResult
from .store import MonitorStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class JobRecord(Base):
    """Scanning job configuration."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, nullable=False)
    next_run = Column(DateTime, nullable=True)
    data = Column(Text, nullable=False)  # JSON of Job.to_dict()

    def __repr__(self) -> str:
        return f"<JobRecord {self.id} '{self.name}'>"


class DeviceRecord(Base):
    """Network device model."""

    __tablename__ = "devices"

    mac = Column(String(17), primary_key=True)  # MAC address as primary key
    ip = Column(String(45), nullable=False)  # IPv4 or IPv6
    last_seen = Column(DateTime, nullable=False)
    is_authorized = Column(Boolean, default=False)
    data = Column(Text, nullable=False)  # JSON of Device.to_dict(include_internal=True)

    def __repr__(self) -> str:
        return f"<DeviceRecord {self.mac} ({self.ip})>"


class AlertRecord(Base):
    """Alert raised by the rule engine."""

    __tablename__ = "alerts"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # append order
    id = Column(String(36), nullable=False, unique=True, index=True)
    job_id = Column(String(36), nullable=False, index=True)
    severity = Column(String(20), nullable=False)  # 'critical', 'warning', 'info'
    acknowledged = Column(Boolean, default=False)
    timestamp = Column(DateTime, nullable=False)
    data = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<AlertRecord {self.id} [{self.severity}]>"


class ScanResultRecord(Base):
    """Audit record of one job execution."""

    __tablename__ = "scan_results"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), nullable=False, unique=True, index=True)
    job_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    data = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<ScanResultRecord {self.id} [{self.status}]>"


class DatabaseStore(MonitorStore):
    """MonitorStore backed by a SQLAlchemy database."""

    def __init__(self, database_url: str = DATABASE_URL, echo: bool = DB_ECHO):
        """
        Initialize database store.

        Args:
            database_url: SQLAlchemy database URL
            echo: Enable SQL query logging
        """
        self.database_url = database_url
        is_sqlite = "sqlite" in database_url
        engine_kwargs = {"echo": echo}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        # SQLite shares one connection across threads
        self._lock = threading.RLock()

        # Create tables
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialized successfully")

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        with self._lock:
            session = self.get_session()
            try:
                yield session
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Error during {action}: {e}")
                raise
            finally:
                session.close()

    # Job operations

    def load_jobs(self) -> List[Job]:
        with self._transaction("loading jobs") as session:
            records = session.query(JobRecord).order_by(JobRecord.created_at.asc()).all()
            return [Job.from_dict(json.loads(r.data)) for r in records]

    def save_job(self, job: Job) -> None:
        with self._transaction(f"saving job {job.id}") as session:
            record = session.get(JobRecord, job.id)
            if record is None:
                record = JobRecord(id=job.id)
                session.add(record)
            record.name = job.name
            record.is_active = job.is_active
            record.created_at = job.created_at
            record.next_run = job.next_run
            record.data = json.dumps(job.to_dict())
        logger.debug(f"Saved job: {job.id}")

    def delete_job(self, job_id: str) -> None:
        with self._transaction(f"deleting job {job_id}") as session:
            session.query(JobRecord).filter(JobRecord.id == job_id).delete()
        logger.debug(f"Deleted job: {job_id}")

    # Device operations

    def load_devices(self) -> List[Device]:
        with self._transaction("loading devices") as session:
            records = session.query(DeviceRecord).order_by(DeviceRecord.last_seen.desc()).all()
            return [Device.from_dict(json.loads(r.data)) for r in records]

    def save_device(self, device: Device) -> None:
        with self._transaction(f"saving device {device.mac}") as session:
            record = session.get(DeviceRecord, device.mac)
            if record is None:
                record = DeviceRecord(mac=device.mac)
                session.add(record)
            record.ip = device.ip
            record.last_seen = device.last_seen
            record.is_authorized = device.is_authorized
            record.data = json.dumps(device.to_dict(include_internal=True))

    # Alert operations

    def load_alerts(self) -> List[Alert]:
        with self._transaction("loading alerts") as session:
            records = session.query(AlertRecord).order_by(AlertRecord.seq.desc()).all()
            return [Alert.from_dict(json.loads(r.data)) for r in records]

    def save_alert(self, alert: Alert) -> None:
        with self._transaction(f"saving alert {alert.id}") as session:
            record = session.query(AlertRecord).filter(AlertRecord.id == alert.id).first()
            if record is None:
                record = AlertRecord(
                    id=alert.id,
                    job_id=alert.job_id,
                    severity=alert.severity,
                    timestamp=alert.timestamp,
                )
                session.add(record)
            record.acknowledged = alert.acknowledged
            record.data = json.dumps(alert.to_dict())

    def delete_alerts(self, alert_ids: Iterable[str]) -> None:
        ids = list(alert_ids)
        if not ids:
            return
        with self._transaction("deleting alerts") as session:
            session.query(AlertRecord).filter(
                AlertRecord.id.in_(ids)
            ).delete(synchronize_session=False)
        logger.debug(f"Deleted {len(ids)} alerts")

    def clear_alerts(self) -> None:
        with self._transaction("clearing alerts") as session:
            count = session.query(AlertRecord).delete()
        logger.info(f"Cleared {count} alerts")

    # Scan result operations

    def load_scan_results(self) -> List[ScanResult]:
        with self._transaction("loading scan results") as session:
            records = session.query(ScanResultRecord).order_by(ScanResultRecord.seq.desc()).all()
            return [ScanResult.from_dict(json.loads(r.data)) for r in records]

    def save_scan_result(self, result: ScanResult) -> None:
        with self._transaction(f"recording scan {result.id}") as session:
            session.add(ScanResultRecord(
                id=result.id,
                job_id=result.job_id,
                status=result.status,
                timestamp=result.timestamp,
                data=json.dumps(result.to_dict()),
            ))
        logger.debug(f"Recorded scan: {result.id} ({result.devices_found} devices)")

    def delete_scan_results(self, result_ids: Iterable[str]) -> None:
        ids = list(result_ids)
        if not ids:
            return
        with self._transaction("deleting scan results") as session:
            session.query(ScanResultRecord).filter(
                ScanResultRecord.id.in_(ids)
            ).delete(synchronize_session=False)

    # Maintenance operations

    def get_database_info(self) -> Dict[str, int]:
        """Row counts per table."""
        with self._transaction("reading database info") as session:
            return {
                "jobs": session.query(JobRecord).count(),
                "devices": session.query(DeviceRecord).count(),
                "alerts": session.query(AlertRecord).count(),
                "scan_results": session.query(ScanResultRecord).count(),
            }

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database connection closed")


def init_database(database_url: str = DATABASE_URL) -> DatabaseStore:
    """
    Initialize database and return the store.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        DatabaseStore instance
    """
    return DatabaseStore(database_url)
