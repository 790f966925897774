"""
Job Scheduler Module

Owns the job table and drives periodic discovery.

Each job is ``inactive``, ``idle`` or ``running``.  One background thread
wakes at the earliest pending ``next_run`` (or when a CRUD call or manual
trigger pokes it), moves due jobs to ``running`` and hands them to a scan
pool.  A scan runs each of the job's interface x subnet pairs on its own
discovery thread under a single per-job deadline; a pair whose earlier
call is still hung is skipped rather than called again.  It then
reconciles the merged snapshot into the device registry, classifies every
transition and records the alerts and a ScanResult.

Per-scan failures are contained in that scan's ScanResult; nothing a
provider does can stop the loop or affect another job.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from arpmon.config import (
    DISCOVERY_TIMEOUT,
    SCAN_THREAD_POOL_SIZE,
    SCHEDULER_MAX_TICK,
    SHUTDOWN_TIMEOUT,
)

from .alerts import AlertStore, ScanResultLog
from .discovery import DiscoveryProvider, merge_snapshots
from .exceptions import ConcurrentRunError, NotFoundError, ProviderError
from .models import (
    Alert,
    Job,
    ObservedDevice,
    ScanResult,
    JOB_IDLE,
    JOB_INACTIVE,
    JOB_RUNNING,
    SCAN_ERROR,
    SCAN_PARTIAL,
    SCAN_SUCCESS,
    TRANSITION_CREATED,
    TRANSITION_DISAPPEARED,
    apply_job_update,
    build_job,
)
from .notifier import Notifier
from .registry import DeviceRegistry
from .rules import classify
from .store import MonitorStore

logger = logging.getLogger(__name__)

ScanListener = Callable[[str, object], None]


def next_run_after(next_run: datetime, interval: timedelta, now: datetime) -> datetime:
    """Advance a due ``next_run`` by one interval, skipping missed slots."""
    advanced = next_run + interval
    if advanced <= now:
        advanced = now + interval
    return advanced


class JobScheduler:
    """Interval scheduler and scan executor for monitoring jobs."""

    def __init__(
        self,
        provider: DiscoveryProvider,
        registry: DeviceRegistry,
        alert_store: AlertStore,
        scan_log: ScanResultLog,
        store: Optional[MonitorStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        max_tick: float = SCHEDULER_MAX_TICK,
        scan_workers: int = SCAN_THREAD_POOL_SIZE,
    ):
        """
        Args:
            provider: Discovery provider used for every scan.
            registry: Shared device registry.
            alert_store: Destination for alerts.
            scan_log: Destination for scan results.
            store: Optional store for job persistence.
            notifier: Optional notification sink for new alerts.
            clock: Source of "now".
            discovery_timeout: Per-job deadline in seconds for all discovery calls.
            max_tick: Upper bound on loop sleep in seconds.
            scan_workers: Concurrent scans.
        """
        self.provider = provider
        self.registry = registry
        self.alert_store = alert_store
        self.scan_log = scan_log
        self.notifier = notifier
        self.discovery_timeout = discovery_timeout
        self.max_tick = max_tick
        self._store = store
        self._clock = clock

        self._lock = threading.RLock()
        self._jobs: Dict[str, Job] = {}
        self._in_flight: Set[str] = set()
        # (job id, interface, subnet) with a provider call still running
        self._active_calls: Set[Tuple[str, str, str]] = set()
        self._persist_lock = threading.Lock()
        self._listeners: List[ScanListener] = []

        self._scan_executor = ThreadPoolExecutor(
            max_workers=scan_workers, thread_name_prefix="scan"
        )

        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started = False

        if store is not None:
            for job in store.load_jobs():
                self._jobs[job.id] = job
            logger.info("Loaded %d jobs from store", len(self._jobs))

    # -- job table -----------------------------------------------------------

    def list_jobs(self) -> List[Job]:
        """Point-in-time copies of all jobs, oldest first."""
        with self._lock:
            jobs = [job.copy() for job in self._jobs.values()]
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            return job.copy()

    def get_job_state(self, job_id: str) -> str:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            if job_id in self._in_flight:
                return JOB_RUNNING
            return JOB_IDLE if job.is_active else JOB_INACTIVE

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._in_flight

    def create_job(self, config: Dict) -> Job:
        """Validate and add a job.  Active jobs are due immediately.

        Raises:
            ValidationError: if the configuration is malformed.
        """
        job = build_job(config, self._clock())
        with self._persist_lock, self._lock:
            if self._store is not None:
                self._store.save_job(job)
            self._jobs[job.id] = job
            created = job.copy()
        logger.info(f"Created job {job.id} '{job.name}' every {job.frequency}m")
        self._wake()
        return created

    def update_job(self, job_id: str, partial: Dict) -> Job:
        """Apply a partial update.

        Deactivation clears ``next_run`` without aborting an in-flight
        scan; reactivation makes the job due immediately.

        Raises:
            NotFoundError: if the job does not exist.
            ValidationError: if any supplied field is malformed.
        """
        with self._persist_lock, self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            updated = apply_job_update(job, partial)
            now = self._clock()

            if not updated.is_active:
                updated.next_run = None
            elif not job.is_active:
                updated.next_run = now
            elif updated.frequency != job.frequency:
                updated.next_run = (
                    updated.last_run + updated.interval if updated.last_run else now
                )

            if self._store is not None:
                self._store.save_job(updated)
            self._jobs[job_id] = updated
            result = updated.copy()

        logger.info(f"Updated job {job_id}: {', '.join(sorted(partial)) or 'no changes'}")
        self._wake()
        return result

    def delete_job(self, job_id: str) -> None:
        """Remove a job.  A running scan completes and keeps the orphaned id.

        Raises:
            NotFoundError: if the job does not exist.
        """
        with self._persist_lock, self._lock:
            if job_id not in self._jobs:
                raise NotFoundError("job", job_id)
            if self._store is not None:
                self._store.delete_job(job_id)
            job = self._jobs.pop(job_id)
        self.registry.forget_job(job_id)
        logger.info(f"Deleted job {job_id} '{job.name}'")
        self._wake()

    # -- listeners -----------------------------------------------------------

    def add_listener(self, callback: ScanListener) -> None:
        """Register ``callback(event, payload)`` for ``scan_complete`` and ``alert``."""
        with self._lock:
            self._listeners.append(callback)

    def _emit(self, event: str, payload: object) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(event, payload)
            except Exception as e:
                logger.error("Listener error for %s: %s", event, e)

    # -- scheduling ----------------------------------------------------------

    def run_pending(self, now: Optional[datetime] = None) -> List[Future]:
        """Start every due job that is not already running.

        Returns:
            Futures resolving to each started scan's ScanResult.
        """
        now = now or self._clock()
        due: List[Job] = []
        with self._lock:
            for job in self._jobs.values():
                if not job.is_active or job.next_run is None or now < job.next_run:
                    continue
                if job.id in self._in_flight:
                    logger.debug("Job %s is due but still running", job.id)
                    continue
                job.next_run = next_run_after(job.next_run, job.interval, now)
                self._in_flight.add(job.id)
                due.append(job.copy())

        for job in due:
            self._persist_job(job.id)
        return [self._submit(job) for job in due]

    def trigger(self, job_id: str) -> Future:
        """Run a job now, outside its interval clock.

        Allowed for inactive jobs; does not move ``next_run``.

        Raises:
            NotFoundError: if the job does not exist.
            ConcurrentRunError: if the job is already running.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("job", job_id)
            if job_id in self._in_flight:
                raise ConcurrentRunError(job_id)
            self._in_flight.add(job_id)
            snapshot = job.copy()
        logger.info(f"Manual scan triggered for job {job_id} '{snapshot.name}'")
        return self._submit(snapshot)

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        """Loop sleep until the earliest pending run, capped at ``max_tick``."""
        now = now or self._clock()
        with self._lock:
            pending = [
                job.next_run
                for job in self._jobs.values()
                if job.is_active and job.next_run is not None and job.id not in self._in_flight
            ]
        if not pending:
            return self.max_tick
        delay = (min(pending) - now).total_seconds()
        return min(max(delay, 0.0), self.max_tick)

    def start(self) -> None:
        """Start the background scheduling thread."""
        if self._started:
            return
        self._started = True
        self._wake_event.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="job-scheduler"
        )
        self._thread.start()
        logger.info(f"Job scheduler started with {len(self._jobs)} jobs")

    def stop(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Stop the loop and wait for in-flight scans to record their results."""
        if self._started:
            self._started = False
            self._wake_event.set()
            if self._thread is not None and self._thread.is_alive():
                self._thread.join(timeout=timeout)
            self._thread = None
        self._scan_executor.shutdown(wait=True)
        logger.info("Job scheduler stopped")

    def _wake(self) -> None:
        self._wake_event.set()

    def _loop(self) -> None:
        while self._started:
            try:
                self.run_pending()
            except Exception as e:
                logger.error("Scheduler tick failed: %s", e, exc_info=True)

            self._wake_event.wait(timeout=self.seconds_until_next())
            if not self._started:
                break
            self._wake_event.clear()

    def _submit(self, job: Job) -> Future:
        try:
            return self._scan_executor.submit(self._run_job, job)
        except RuntimeError:
            # Executor already shut down
            with self._lock:
                self._in_flight.discard(job.id)
            raise

    def _run_job(self, job: Job) -> ScanResult:
        try:
            return self.execute_scan(job)
        finally:
            with self._lock:
                self._in_flight.discard(job.id)
            self._wake()

    # -- scan execution ------------------------------------------------------

    def execute_scan(self, job: Job) -> ScanResult:
        """Run one scan of ``job`` and record its alerts and ScanResult."""
        started = self._clock()
        timer = time.monotonic()
        alerts: List[Alert] = []
        devices_found = 0
        new_devices = 0
        status = SCAN_SUCCESS
        error_message: Optional[str] = None

        logger.info(
            f"Starting scan for job {job.id} '{job.name}' "
            f"({len(job.interfaces)} interfaces x {len(job.subnets)} subnets)"
        )

        try:
            snapshots, failures, timed_out = self._discover(job)

            if timed_out:
                status = SCAN_ERROR
                error_message = f"Discovery timed out after {self.discovery_timeout:g}s"
            elif not snapshots:
                status = SCAN_ERROR
                error_message = "; ".join(failures)
            else:
                if failures:
                    status = SCAN_PARTIAL
                    error_message = "; ".join(failures)

                transitions = self.registry.reconcile(
                    job.id,
                    merge_snapshots(snapshots),
                    authorized_macs=job.authorized_macs,
                    interval=job.interval,
                    now=started,
                    track_missing=status == SCAN_SUCCESS,
                )
                devices_found = sum(1 for t in transitions if t.kind != TRANSITION_DISAPPEARED)
                new_devices = sum(1 for t in transitions if t.kind == TRANSITION_CREATED)

                for transition in transitions:
                    alerts.extend(classify(
                        transition, job.alert_config, transition.device,
                        job.id, job.name, started,
                    ))

        except Exception as e:
            logger.error(f"Scan for job {job.id} failed: {e}", exc_info=True)
            status = SCAN_ERROR
            error_message = str(e) or type(e).__name__

        return self._record(
            job, started, time.monotonic() - timer,
            devices_found, new_devices, alerts, status, error_message,
        )

    def _discover(self, job: Job) -> Tuple[List[List[ObservedDevice]], List[str], bool]:
        """Run every interface x subnet pair under one deadline.

        A pair whose call from an earlier scan of this job is still running
        is not called again and counts as a failed pair.

        Returns:
            (successful snapshots, failure descriptions, deadline expired)
        """
        futures: Dict[Future, Tuple[str, str]] = {}
        failures: List[str] = []
        for interface in job.interfaces:
            for subnet in job.subnets:
                key = (job.id, interface, subnet)
                with self._lock:
                    busy = key in self._active_calls
                    if not busy:
                        self._active_calls.add(key)
                if busy:
                    logger.warning(f"Discovery on {interface} {subnet} for job {job.id} still running, skipped")
                    failures.append(f"{interface} {subnet}: previous discovery call still running")
                    continue
                futures[self._spawn_discovery(key)] = (interface, subnet)

        if futures:
            _done, pending = wait(futures, timeout=self.discovery_timeout)
            if pending:
                logger.warning(
                    f"Discovery for job {job.id} exceeded {self.discovery_timeout:g}s "
                    f"({len(pending)} of {len(futures)} calls unfinished)"
                )
                return [], [], True

        snapshots: List[List[ObservedDevice]] = []
        for future, (interface, subnet) in futures.items():
            try:
                snapshots.append(list(future.result()))
            except ProviderError as e:
                logger.warning(f"Discovery on {interface} {subnet} failed: {e}")
                failures.append(f"{interface} {subnet}: {e}")
            except Exception as e:
                logger.error(f"Unexpected discovery error on {interface} {subnet}: {e}", exc_info=True)
                failures.append(f"{interface} {subnet}: {e}")
        return snapshots, failures, False

    def _spawn_discovery(self, key: Tuple[str, str, str]) -> Future:
        """Run one provider call on its own daemon thread.

        A hung call holds only its own thread and keeps ``key`` in
        ``_active_calls`` until it returns.
        """
        _job_id, interface, subnet = key
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def run():
            snapshot, error = None, None
            try:
                snapshot = self.provider.discover(interface, subnet)
            except Exception as e:
                error = e
            with self._lock:
                self._active_calls.discard(key)
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(snapshot)

        threading.Thread(target=run, daemon=True, name=f"discover-{interface}").start()
        return future

    def _record(
        self,
        job: Job,
        started: datetime,
        elapsed: float,
        devices_found: int,
        new_devices: int,
        alerts: List[Alert],
        status: str,
        error_message: Optional[str],
    ) -> ScanResult:
        added: List[Alert] = []
        try:
            added = self.alert_store.append(alerts)
        except Exception as e:
            logger.error(f"Failed to store {len(alerts)} alerts for job {job.id}: {e}", exc_info=True)

        result = ScanResult(
            id=str(uuid.uuid4()),
            job_id=job.id,
            job_name=job.name,
            timestamp=started,
            devices_found=devices_found,
            new_devices=new_devices,
            alerts=tuple(alerts),
            execution_time=elapsed,
            status=status,
            error_message=error_message,
        )
        try:
            self.scan_log.append(result)
        except Exception as e:
            logger.error(f"Failed to record scan {result.id}: {e}", exc_info=True)

        webhook_url = job.webhook_url
        with self._lock:
            current = self._jobs.get(job.id)
            if current is not None:
                current.last_run = started
                webhook_url = current.webhook_url
        if current is not None:
            self._persist_job(job.id)
        else:
            # Deleted mid-scan; reconcile may have re-added its scope entries
            self.registry.forget_job(job.id)

        if self.notifier is not None:
            for alert in added:
                self.notifier.notify_alert(alert, webhook_url)
        for alert in added:
            self._emit("alert", alert)
        self._emit("scan_complete", result)

        log = logger.info if status == SCAN_SUCCESS else logger.warning
        log(
            f"Scan for job {job.id} finished [{status}] in {elapsed:.2f}s: "
            f"{devices_found} devices, {new_devices} new, {len(alerts)} alerts"
            + (f" ({error_message})" if error_message else "")
        )
        return result

    def _persist_job(self, job_id: str) -> None:
        """Write a job's current run times without holding the scheduler lock.

        Writes are serialized and each copies the job after acquiring
        ``_persist_lock``, so a later write never carries older state.
        """
        if self._store is None:
            return
        with self._persist_lock:
            with self._lock:
                job = self._jobs.get(job_id)
                snapshot = job.copy() if job is not None else None
            if snapshot is None:
                return
            try:
                self._store.save_job(snapshot)
            except Exception as e:
                logger.error(f"Failed to persist run times for job {job_id}: {e}")
