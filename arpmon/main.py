#!/usr/bin/env python3
"""
ArpMon - Scheduled Network Presence Monitor

Entry point.  One process runs:

    JobScheduler   background thread; sweeps each due job's interfaces and
                   subnets, reconciles the registry and raises alerts
    HTTP API       FastAPI + uvicorn; job CRUD, manual scans, devices,
                   alerts, and a WebSocket feed of scans and alerts
    Cleanup task   prunes old scan results and acknowledged alerts
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import uvicorn

from arpmon.config import (
    APP_NAME,
    APP_VERSION,
    ARP_SWEEP_TIMEOUT,
    CLEANUP_INTERVAL_SECONDS,
    DATA_RETENTION_DAYS,
    DATABASE_URL,
    DB_ECHO,
    DEBUG_MODE,
    LOG_FILE,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_BYTES,
    LOG_BACKUP_COUNT,
    WEB_HOST,
    WEB_PORT,
)

from arpmon.modules import (
    ArpDiscoveryProvider,
    DatabaseStore,
    MemoryStore,
    MonitorService,
    Notifier,
)

from arpmon.dashboard import create_app
from arpmon.dashboard.websocket import publish

QUIET_LOGGERS = ("urllib3", "scapy.runtime", "sqlalchemy.engine")


def setup_logging(verbose: bool = False) -> None:
    """Rotating file log at DEBUG plus console at INFO (DEBUG with --verbose)."""
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
    file_handler.setLevel(logging.DEBUG)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging to {LOG_FILE}")


logger = logging.getLogger(__name__)


class ArpMon:
    """Wires store, discovery, notifier and MonitorService behind the API."""

    def __init__(
        self,
        host: str = WEB_HOST,
        port: int = WEB_PORT,
        database_url: str = DATABASE_URL,
        in_memory: bool = False,
        arp_cache_fallback: bool = False,
        resolve_hostnames: bool = False,
        verbose: bool = False,
    ):
        """
        Args:
            host: Web server bind address
            port: Web server port
            database_url: SQLAlchemy database URL
            in_memory: Keep all state in memory instead of the database
            arp_cache_fallback: Read the kernel ARP cache when raw sockets are denied
            resolve_hostnames: Reverse-resolve hostnames of discovered devices
            verbose: Debug logging on the console
        """
        self.host = host
        self.port = port
        self.running = False
        self.cleanup_task: Optional[asyncio.Task] = None
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None

        setup_logging(verbose or DEBUG_MODE)
        logger.info("%s v%s starting", APP_NAME, APP_VERSION)

        self.store = MemoryStore() if in_memory else DatabaseStore(database_url, echo=DB_ECHO)
        logger.info("Store: %s", "in-memory" if in_memory else database_url)

        self.provider = ArpDiscoveryProvider(
            timeout=ARP_SWEEP_TIMEOUT,
            allow_cache_fallback=arp_cache_fallback,
            resolve_hostnames=resolve_hostnames,
        )
        self.notifier = Notifier.from_config()
        self.monitor = MonitorService(self.provider, store=self.store, notifier=self.notifier)
        self.monitor.add_listener(self._on_monitor_event)
        logger.info(
            "Loaded %d jobs and %d devices",
            len(self.monitor.list_jobs()),
            len(self.monitor.list_devices()),
        )

        self.app = self._build_app()

    # ------------------------------------------------------------------
    # Lifespan
    # ------------------------------------------------------------------

    def _build_app(self):
        @asynccontextmanager
        async def lifespan(app):
            await self._startup()
            yield
            await self._shutdown()

        return create_app(monitor=self.monitor, lifespan=lifespan)

    async def _startup(self) -> None:
        self.running = True
        self._event_loop = asyncio.get_running_loop()
        self.monitor.start()
        self.cleanup_task = asyncio.create_task(self.cleanup_loop())
        logger.info("Scheduler and cleanup task started")

    async def _shutdown(self) -> None:
        self.running = False
        if self.cleanup_task is not None:
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
        # Blocks until in-flight scans finish
        await asyncio.get_running_loop().run_in_executor(None, self.monitor.stop)
        logger.info("Scheduler and cleanup task stopped")

    # ------------------------------------------------------------------
    # Scheduler events -> WebSocket (called on scan threads)
    # ------------------------------------------------------------------

    def _on_monitor_event(self, event: str, payload) -> None:
        if self._event_loop is None or not self.running:
            return
        asyncio.run_coroutine_threadsafe(publish(event, payload.to_dict()), self._event_loop)

    # ------------------------------------------------------------------
    # Periodic cleanup
    # ------------------------------------------------------------------

    async def cleanup_loop(self) -> None:
        """Prune scan results and acknowledged alerts older than DATA_RETENTION_DAYS."""
        loop = asyncio.get_running_loop()
        while self.running:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            try:
                removed = await loop.run_in_executor(None, self.monitor.cleanup, DATA_RETENTION_DAYS)
                logger.info(f"Cleanup removed {removed['scans_deleted']} scans, {removed['alerts_deleted']} alerts")
            except Exception as e:
                logger.error(f"Cleanup failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Serve until uvicorn receives SIGINT/SIGTERM."""
        logger.info(f"Serving API on http://{self.host}:{self.port}/api/jobs")
        try:
            uvicorn.run(self.app, host=self.host, port=self.port, log_level="info")
        finally:
            self.running = False
            logger.info(f"{APP_NAME} shut down")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arpmon",
        description=f"{APP_NAME} - Scheduled Network Presence Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  arpmon --host 0.0.0.0 --port 8080\n"
            "  arpmon --database sqlite:////var/lib/arpmon/arpmon.db -v\n"
            "  arpmon --memory --arp-cache-fallback\n"
        ),
    )
    parser.add_argument("--host", default=WEB_HOST, help=f"bind address (default: {WEB_HOST})")
    parser.add_argument("-p", "--port", type=int, default=WEB_PORT, help=f"port (default: {WEB_PORT})")
    parser.add_argument("--database", default=DATABASE_URL, help="SQLAlchemy database URL")
    parser.add_argument("--memory", action="store_true", help="keep all state in memory")
    parser.add_argument(
        "--arp-cache-fallback", action="store_true",
        help="read the kernel ARP cache when raw sockets are not permitted",
    )
    parser.add_argument(
        "--resolve-hostnames", action="store_true",
        help="reverse-resolve hostnames of discovered devices",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging on the console")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        ArpMon(
            host=args.host,
            port=args.port,
            database_url=args.database,
            in_memory=args.memory,
            arp_cache_fallback=args.arp_cache_fallback,
            resolve_hostnames=args.resolve_hostnames,
            verbose=args.verbose,
        ).run()
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
