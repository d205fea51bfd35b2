"""
Presence change analysis.
"""

import logging
from datetime import datetime
from typing import Iterable, List

from lanotify.inventory.models import DeviceRecord, Observation, PresenceStatus
from lanotify.inventory.registry import Registry

from .models import EventKind, PresenceEvent

logger = logging.getLogger(__name__)


class PresenceAnalyzer:
    """
    Compares a scan's observations with the registry to detect changes.
    """

    def diff(
        self, observations: Iterable[Observation], registry: Registry, now: datetime
    ) -> List[PresenceEvent]:
        """
        Reconcile one scan with the registry and generate presence events.

        The registry is updated in place. Identity is the MAC address only,
        so a device that changes IP is never reported as joined.

        Events come out in a fixed order: joined devices in ascending MAC
        order, then departed devices in ascending MAC order. Identical scans
        therefore give identical events whatever order the tool reported
        hosts in.

        Args:
            observations: Devices seen by the scan
            registry: Registry to reconcile (mutated)
            now: Timestamp of this scan

        Returns:
            List of detected presence events
        """
        joined: List[PresenceEvent] = []
        left: List[PresenceEvent] = []
        observed = set()

        for obs in sorted(observations, key=lambda o: o.mac):
            if obs.mac in observed:
                continue
            observed.add(obs.mac)

            record = registry.get(obs.mac)
            if record is None:
                record = DeviceRecord(
                    mac=obs.mac,
                    ip=obs.ip,
                    vendor=obs.vendor,
                    first_seen=now,
                    last_seen=now,
                    status=PresenceStatus.PRESENT,
                )
                registry.upsert(record)
                logger.info(f"New device {record.mac} at {record.ip}")
                joined.append(self._event(record, EventKind.JOINED, now))
                continue

            was_present = record.is_present
            if record.ip != obs.ip:
                logger.info(f"Device {record.mac} moved from {record.ip} to {obs.ip}")
            record.ip = obs.ip
            if obs.vendor:
                record.vendor = obs.vendor
            record.last_seen = now
            record.status = PresenceStatus.PRESENT

            if not was_present:
                logger.info(f"Device {record.mac} is back at {record.ip}")
                joined.append(self._event(record, EventKind.JOINED, now))

        for record in registry.present():
            if record.mac in observed:
                continue
            record.status = PresenceStatus.ABSENT
            logger.info(f"Device {record.mac} ({record.ip}) is gone")
            left.append(self._event(record, EventKind.LEFT, now))

        if joined or left:
            logger.info(f"Detected {len(joined)} joined and {len(left)} left device(s)")

        return joined + left

    def _event(self, record: DeviceRecord, kind: EventKind, now: datetime) -> PresenceEvent:
        return PresenceEvent(
            mac=record.mac,
            kind=kind,
            timestamp=now,
            device=record.model_copy(deep=True),
        )
