"""
Notification dispatcher - debounces presence events and sends them via all
enabled providers.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from lanotify.change_monitor.models import EventKind, PresenceEvent
from lanotify.core.exceptions import NotifyError
from lanotify.inventory.models import utc_now
from lanotify.notifications.formatters import event_to_notification
from lanotify.notifications.models import DebounceEntry
from lanotify.notifications.providers import LogProvider, NotificationProvider

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Turns presence events into notifications.

    Debounce policy: a departure is held for the debounce window before it
    is announced. If the device comes back while its departure is still
    held, both transitions are dropped, so a device flapping
    joined -> left -> joined produces no extra notifications. A notification
    of the same kind as the last one delivered for a device is never
    repeated.

    Delivery is best effort: provider failures are logged and never
    propagate.

    debounce() decides and records what to announce; deliver() does the
    slow sending and may run on a worker thread. The per-device state is
    guarded by a lock.
    """

    def __init__(
        self,
        providers: Optional[List[NotificationProvider]] = None,
        debounce_window: timedelta = timedelta(seconds=30),
        device_names: Optional[Dict[str, str]] = None,
        notify_unknown: bool = True,
    ):
        """
        Initialize notification dispatcher.

        Args:
            providers: Providers to deliver to (default: log only)
            debounce_window: How long a departure is held back
            device_names: Friendly names keyed by MAC address
            notify_unknown: Deliver notifications for unnamed devices
        """
        if providers is None:
            providers = [LogProvider()]

        self.providers = providers
        self.debounce_window = debounce_window
        self.device_names = dict(device_names or {})
        self.notify_unknown = notify_unknown
        self._state: Dict[str, DebounceEntry] = {}
        self._lock = threading.Lock()

        enabled = [p.__class__.__name__ for p in providers if p.is_enabled()]
        logger.info(
            f"NotificationDispatcher initialized with providers: {enabled} "
            f"(debounce {debounce_window.total_seconds():g}s)"
        )

    def dispatch(
        self, events: Iterable[PresenceEvent], now: Optional[datetime] = None
    ) -> List[PresenceEvent]:
        """
        Debounce events and deliver the ones that should be announced.

        Also releases held departures whose window has expired, so it should
        be called once per scan cycle even when there are no new events.

        Args:
            events: Presence events from one scan, in order
            now: Current time (default: now)

        Returns:
            Events that were handed to the providers
        """
        return self.deliver(self.debounce(events, now))

    def debounce(
        self, events: Iterable[PresenceEvent], now: Optional[datetime] = None
    ) -> List[PresenceEvent]:
        """
        Apply the debounce policy and record the outcome, without sending.

        The per-device state is updated before this returns, so the result
        of export_state() already reflects it.

        Args:
            events: Presence events from one scan, in order
            now: Current time (default: now)

        Returns:
            Events to be announced, in order
        """
        if now is None:
            now = utc_now()

        accepted: List[PresenceEvent] = []

        with self._lock:
            for event in events:
                entry = self._state.setdefault(event.mac, DebounceEntry())

                if event.kind == EventKind.LEFT:
                    if entry.pending_left is None:
                        entry.pending_left = event
                    continue

                pending = entry.pending_left
                if pending is not None:
                    entry.pending_left = None
                    if event.timestamp - pending.timestamp <= self.debounce_window:
                        logger.info(
                            f"Suppressed flap for {event.mac}: left and rejoined within "
                            f"{self.debounce_window.total_seconds():g}s"
                        )
                        continue
                    self._accept(entry, pending, accepted)

                self._accept(entry, event, accepted)

            for mac in sorted(self._state):
                entry = self._state[mac]
                pending = entry.pending_left
                if pending is not None and now - pending.timestamp >= self.debounce_window:
                    entry.pending_left = None
                    self._accept(entry, pending, accepted)

        return accepted

    def deliver(self, events: Iterable[PresenceEvent]) -> List[PresenceEvent]:
        """
        Send already debounced events via all enabled providers.

        Returns:
            Events that were handed to the providers
        """
        return [event for event in events if self._deliver(event)]

    def pending_departures(self) -> List[str]:
        """MAC addresses whose departure is currently held back."""
        with self._lock:
            return sorted(mac for mac, e in self._state.items() if e.pending_left is not None)

    def export_state(self) -> Dict[str, Any]:
        """
        Per-device debounce state as JSON-compatible data.

        Returns:
            Mapping of MAC address to serialized DebounceEntry
        """
        with self._lock:
            return {
                mac: entry.model_dump(mode="json")
                for mac, entry in sorted(self._state.items())
            }

    def load_state(self, data: Dict[str, Any]) -> None:
        """
        Restore state produced by export_state().

        Invalid entries are logged and dropped.

        Args:
            data: Mapping of MAC address to serialized DebounceEntry
        """
        state: Dict[str, DebounceEntry] = {}
        for mac, raw in data.items():
            try:
                state[mac] = DebounceEntry.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Dropping invalid notification state for {mac}: {e}")

        with self._lock:
            self._state = state

        logger.debug(f"Restored notification state for {len(state)} devices")

    def _accept(
        self, entry: DebounceEntry, event: PresenceEvent, accepted: List[PresenceEvent]
    ) -> None:
        """Record an event as announced unless it repeats the last announcement."""
        if entry.last_kind == event.kind:
            logger.debug(f"Not repeating {event.kind.value} notification for {event.mac}")
            return
        entry.last_kind = event.kind
        entry.last_notified_at = event.timestamp
        accepted.append(event)

    def _deliver(self, event: PresenceEvent) -> bool:
        """
        Send one event via all enabled providers.

        Returns:
            False if the event was filtered out, True otherwise
        """
        if not self.notify_unknown and event.mac not in self.device_names:
            logger.info(f"Not notifying for unknown device: {event.summary()}")
            return False

        notification = event_to_notification(event, self.device_names)
        success_count = 0
        enabled_count = 0

        for provider in self.providers:
            if not provider.is_enabled():
                continue

            enabled_count += 1

            try:
                provider.send(notification)
                success_count += 1
            except NotifyError as e:
                logger.warning(f"Provider {provider.__class__.__name__} failed: {e}")
            except Exception as e:
                logger.error(
                    f"Provider {provider.__class__.__name__} failed: {e}",
                    exc_info=True
                )

        if enabled_count == 0:
            logger.warning("No notification providers enabled")
        else:
            logger.debug(
                f"Notification sent via {success_count}/{enabled_count} providers: "
                f"{notification.subject}"
            )

        return True
