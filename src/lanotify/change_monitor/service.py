"""
Presence monitoring service.
"""

import asyncio
import logging
import os
import signal
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from lanotify.core.config import AppConfig, ConfigError, load_config
from lanotify.core.exceptions import ExitCode, ScanError, StorageError
from lanotify.inventory.models import utc_now
from lanotify.inventory.registry import format_status_table
from lanotify.inventory.scanner import ArpScanAdapter, ScanAdapter
from lanotify.inventory.store import RegistryStore
from lanotify.notifications.dispatcher import NotificationDispatcher
from lanotify.notifications.providers import build_providers

from .analyzer import PresenceAnalyzer
from .models import PresenceEvent

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Where the monitor loop currently is."""

    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    NOTIFYING = "notifying"
    PERSISTING = "persisting"
    STOPPED = "stopped"


class PresenceMonitorService:
    """
    Service for continuous presence monitoring.

    Each cycle:
    1. Scan the network
    2. Diff the observations against the registry
    3. Hand the events to the notification dispatcher
    4. Persist the registry

    Cycles never overlap. Transient scan failures back off exponentially;
    a missing discovery tool or missing privileges stop the loop.
    """

    def __init__(
        self,
        adapter: ScanAdapter,
        analyzer: PresenceAnalyzer,
        dispatcher: NotificationDispatcher,
        store: RegistryStore,
        interval: float = 30.0,
        timeout: float = 20.0,
        max_backoff: float = 300.0,
        interface: Optional[str] = None,
        device_names: Optional[Dict[str, str]] = None,
        quiet_first_scan: bool = False,
        offload_notifications: bool = True,
        shutdown_grace: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize presence monitor service.

        Loads the registry and the notification state from the store.

        Args:
            adapter: Discovery scan adapter
            analyzer: Presence analyzer
            dispatcher: Notification dispatcher
            store: Registry store
            interval: Seconds between scans
            timeout: Seconds before a scan is abandoned
            max_backoff: Upper bound for the retry delay in seconds
            interface: Network interface to scan (None: tool default)
            device_names: Friendly names keyed by MAC address
            quiet_first_scan: Do not notify for the first scan of an empty registry
            offload_notifications: Deliver notifications on a worker thread
            shutdown_grace: Seconds to wait for pending notifications on shutdown
            clock: Source of the current time
        """
        self.adapter = adapter
        self.analyzer = analyzer
        self.dispatcher = dispatcher
        self.store = store
        self.interval = interval
        self.timeout = timeout
        self.max_backoff = max_backoff
        self.interface = interface
        self.device_names = dict(device_names or {})
        self.offload_notifications = offload_notifications
        self.shutdown_grace = shutdown_grace
        self.clock = clock

        state = store.load_or_empty()
        self.registry = state.registry
        dispatcher.load_state(state.notifications)
        self._quiet_pending = quiet_first_scan and len(self.registry) == 0

        self.phase = Phase.IDLE
        self.running = False
        self.cycles = 0
        self.consecutive_failures = 0
        self.next_delay = interval
        self.last_scan_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

        self._stop_event = asyncio.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lanotify-notify")
        self._pending: Set[asyncio.Future] = set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run_once(self) -> bool:
        """
        Run one scan cycle.

        Returns:
            True if the scan succeeded and the registry was updated

        Raises:
            ScanError: If the scan failed with a fatal configuration error
        """
        if self.stop_requested:
            return False

        self.phase = Phase.SCANNING
        try:
            result = await self.adapter.scan(self.interface, self.timeout)
        except ScanError as e:
            self.phase = Phase.IDLE
            self.last_error = str(e)
            if e.fatal:
                raise
            self._record_failure(e)
            # held departures still expire while scans are failing
            await self._notify([], self.clock())
            self.persist()
            return False

        if self.stop_requested:
            logger.info("Shutdown requested, discarding scan result")
            self.phase = Phase.IDLE
            return False

        # A cycle that reached the diff always runs through notify and persist
        self.phase = Phase.DIFFING
        now = self.clock()
        events = self.analyzer.diff(result.observations, self.registry, now)
        self._record_success(now)

        self.phase = Phase.NOTIFYING
        if self._quiet_pending:
            self._quiet_pending = False
            logger.info(
                f"First scan recorded {len(self.registry)} devices without notifying"
            )
            events = []
        await self._notify(events, now)

        self.phase = Phase.PERSISTING
        self.persist()

        self.phase = Phase.IDLE
        stats = self.registry.get_stats()
        logger.info(
            f"Scan complete: {stats['present_devices']} present, "
            f"{stats['absent_devices']} absent, {len(events)} change(s)"
        )
        if logger.isEnabledFor(logging.DEBUG):
            for line in format_status_table(self.registry.records(), self.device_names):
                logger.debug(line)
        return True

    async def run(self) -> ExitCode:
        """
        Run the monitor loop until stopped or a fatal error occurs.

        Returns:
            Process exit code
        """
        self.running = True
        exit_code = ExitCode.OK
        logger.info(
            f"Starting presence monitor (interval: {self.interval:g}s, "
            f"timeout: {self.timeout:g}s, max backoff: {self.max_backoff:g}s, "
            f"interface: {self.interface or 'default'})"
        )

        try:
            while not self.stop_requested:
                self.cycles += 1
                logger.debug(f"Monitor iteration {self.cycles}")

                try:
                    await self.run_once()
                except ScanError as e:
                    logger.error(f"{e}. {e.remediation}")
                    exit_code = e.exit_code
                    break

                await self._idle(self.next_delay)
        except Exception as e:
            logger.error(f"Fatal error in monitor loop: {e}", exc_info=True)
            exit_code = ExitCode.FATAL
        finally:
            await self._shutdown()

        return exit_code

    def stop(self) -> None:
        """Request a clean shutdown; observed between phases."""
        if not self.stop_requested:
            logger.info("Stopping presence monitor")
        self.running = False
        self._stop_event.set()

    def persist(self) -> bool:
        """
        Write the registry and notification state to the store.

        Returns:
            True if the state was written; failures are logged and retried
            on the next cycle
        """
        try:
            self.store.save(self.registry, self.dispatcher.export_state())
            return True
        except StorageError as e:
            logger.error(f"Failed to persist registry (will retry next cycle): {e}")
            return False

    async def wait_for_notifications(self, timeout: Optional[float] = None) -> None:
        """Wait until queued notification deliveries have finished."""
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=timeout)

    def status(self) -> Dict[str, Any]:
        """Snapshot of the loop state for status queries."""
        return {
            "phase": self.phase.value,
            "running": self.running,
            "cycles": self.cycles,
            "consecutive_failures": self.consecutive_failures,
            "next_delay_seconds": self.next_delay,
            "last_scan_at": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "last_error": self.last_error,
            "pending_departures": self.dispatcher.pending_departures(),
            **self.registry.get_stats(),
        }

    def _record_failure(self, error: ScanError) -> None:
        self.consecutive_failures += 1
        self.next_delay = min(
            self.interval * (2 ** self.consecutive_failures), self.max_backoff
        )
        logger.warning(
            f"Scan failed ({self.consecutive_failures} in a row): {error}; "
            f"retrying in {self.next_delay:g}s"
        )

    def _record_success(self, now: datetime) -> None:
        if self.consecutive_failures:
            logger.info(f"Scan recovered after {self.consecutive_failures} failure(s)")
        self.consecutive_failures = 0
        self.next_delay = self.interval
        self.last_scan_at = now
        self.last_error = None

    async def _notify(self, events: List[PresenceEvent], now: datetime) -> None:
        """
        Debounce events on the loop, then deliver them (in the background
        if offloading).

        The debounce state is settled before this returns, so the persist
        that follows always saves it.
        """
        accepted = self.dispatcher.debounce(events, now)
        if not accepted:
            return
        if not self.offload_notifications:
            self.dispatcher.deliver(accepted)
            return

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self.dispatcher.deliver, accepted)
        self._pending.add(future)
        future.add_done_callback(self._notification_done)

    def _notification_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Notification dispatch failed: {future.exception()}")

    async def _idle(self, delay: float) -> None:
        """Sleep until the next cycle or until stop() is called."""
        self.phase = Phase.IDLE
        logger.debug(f"Waiting {delay:g}s until next scan")
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _shutdown(self) -> None:
        """Flush pending notifications and persist state."""
        self.running = False
        if self._pending:
            logger.info(f"Waiting for {len(self._pending)} pending notification batch(es)")
            await self.wait_for_notifications(timeout=self.shutdown_grace)
        self.persist()
        self._executor.shutdown(wait=False)
        self.phase = Phase.STOPPED
        logger.info("Presence monitor stopped")


def build_service(config: AppConfig, adapter: Optional[ScanAdapter] = None) -> PresenceMonitorService:
    """
    Wire a monitor service from configuration.

    Args:
        config: Application configuration
        adapter: Scan adapter (default: arp-scan as configured)

    Returns:
        Ready to run service
    """
    if adapter is None:
        adapter = ArpScanAdapter(command=config.scan.command, extra_args=config.scan.extra_args)

    dispatcher = NotificationDispatcher(
        providers=build_providers(config.notify),
        debounce_window=config.debounce_window,
        device_names=config.devices,
        notify_unknown=config.notify.notify_unknown,
    )

    return PresenceMonitorService(
        adapter=adapter,
        analyzer=PresenceAnalyzer(),
        dispatcher=dispatcher,
        store=RegistryStore(config.storage.path),
        interval=config.scan.interval_seconds,
        timeout=config.scan.timeout_seconds,
        max_backoff=config.scan.max_backoff_seconds,
        interface=config.scan.interface,
        device_names=config.devices,
        quiet_first_scan=config.notify.quiet_first_scan,
    )


async def run_service(
    config: AppConfig, service: Optional[PresenceMonitorService] = None
) -> ExitCode:
    """
    Run the monitor (and the status API if enabled) until shutdown.

    SIGINT and SIGTERM request a clean shutdown. A status API that cannot
    start is logged and the monitor runs without it.

    Args:
        config: Application configuration
        service: Monitor service to run (default: built from config)

    Returns:
        Process exit code
    """
    if service is None:
        service = build_service(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except NotImplementedError:
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    api_server = None
    api_task = None
    if config.api.enabled:
        from lanotify.ui.http_server import create_server, serve_api

        api_server = create_server(service, config.api.host, config.api.port)
        api_task = asyncio.create_task(serve_api(api_server))

    try:
        return await service.run()
    finally:
        if api_server is not None:
            api_server.should_exit = True
            await api_task


def main() -> None:
    """Main entry point for the presence monitor service."""
    try:
        config = load_config(os.getenv("LANOTIFY_CONFIG"))
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(ExitCode.FATAL)

    logging.getLogger().setLevel(config.log_level)

    logger.info("=" * 60)
    logger.info("lanotify - LAN Presence Monitor")
    logger.info("=" * 60)
    logger.info(f"Interface: {config.scan.interface or 'default'}")
    logger.info(f"Scan Interval: {config.scan.interval_seconds:g}s")
    logger.info(f"Debounce Window: {config.debounce_window.total_seconds():g}s")
    logger.info(f"State File: {config.storage.path}")
    logger.info(f"Known Devices: {len(config.devices)}")
    logger.info("=" * 60)

    sys.exit(asyncio.run(run_service(config)))


if __name__ == "__main__":
    main()
