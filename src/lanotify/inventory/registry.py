"""
In-memory device registry.
"""

from typing import Dict, Iterable, Iterator, List, Optional

from .models import DeviceRecord, PresenceStatus


class Registry:
    """
    Mapping from MAC address to DeviceRecord, iterated in ascending MAC order.

    The registry is owned by the monitor loop, which is its only writer.
    Readers running elsewhere must work on snapshot() copies.
    """

    def __init__(self, records: Optional[Iterable[DeviceRecord]] = None):
        """
        Initialize registry.

        Args:
            records: Initial device records; later duplicates replace earlier ones
        """
        self._records: Dict[str, DeviceRecord] = {}
        for record in records or []:
            self._records[record.mac] = record

    def get(self, mac: str) -> Optional[DeviceRecord]:
        return self._records.get(mac)

    def upsert(self, record: DeviceRecord) -> None:
        self._records[record.mac] = record

    def records(self) -> List[DeviceRecord]:
        """All records sorted by MAC address."""
        return [self._records[mac] for mac in sorted(self._records)]

    def present(self) -> List[DeviceRecord]:
        return [r for r in self.records() if r.status == PresenceStatus.PRESENT]

    def snapshot(self) -> "Registry":
        """Deep copy that stays consistent while the live registry changes."""
        return Registry(r.model_copy(deep=True) for r in self._records.values())

    def get_stats(self) -> Dict[str, int]:
        """Get registry statistics."""
        present = sum(1 for r in self._records.values() if r.is_present)
        return {
            "total_devices": len(self._records),
            "present_devices": present,
            "absent_devices": len(self._records) - present,
        }

    def __contains__(self, mac: object) -> bool:
        return mac in self._records

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Registry):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"Registry({len(self._records)} devices)"


def format_status_table(
    records: Iterable[DeviceRecord], names: Optional[Dict[str, str]] = None
) -> List[str]:
    """
    Render device records as aligned text lines, one per device.

    Args:
        records: Records to render, in display order
        names: Friendly names keyed by MAC address

    Returns:
        Lines of the table (without header)
    """
    names = names or {}
    lines = []
    for record in records:
        marker = "up  " if record.is_present else "down"
        lines.append(
            f"{marker}  {record.last_seen.strftime('%Y-%m-%d %H:%M:%S')}  "
            f"{record.mac}  {record.ip:<15}  {names.get(record.mac, '(unknown)'):<20}  "
            f"{record.vendor or ''}"
        )
    return lines
