"""
Notification formatters - convert presence events to human-readable notifications.
"""

from typing import Dict, Optional

from lanotify.change_monitor.models import EventKind, PresenceEvent
from lanotify.notifications.models import Notification


def event_to_notification(
    event: PresenceEvent, device_names: Optional[Dict[str, str]] = None
) -> Notification:
    """
    Convert a presence event to a notification.

    Args:
        event: Event to convert
        device_names: Friendly names keyed by MAC address

    Returns:
        Notification instance
    """
    device = event.device
    name = device.display_name(device_names)
    status = "connected" if event.kind == EventKind.JOINED else "disconnected"

    message = f"Device {name} with IP {device.ip} and MAC {device.mac} is {status}"
    if device.vendor and device.vendor != name:
        message += f" (vendor: {device.vendor})"

    return Notification(
        subject=f"Device {name} {status}",
        message=message,
        mac=event.mac,
        kind=event.kind,
        timestamp=event.timestamp,
        metadata={
            "ip": device.ip,
            "vendor": device.vendor,
            "known": bool(device_names and event.mac in device_names),
            "first_seen": device.first_seen.isoformat(),
        },
    )
