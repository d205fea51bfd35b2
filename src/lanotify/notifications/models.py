"""
Notification data models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from lanotify.change_monitor.models import EventKind, PresenceEvent


@dataclass
class Notification:
    """
    Notification message to be sent via providers.

    Attributes:
        subject: Notification subject/title
        message: Notification body/content
        mac: MAC address of the device concerned
        kind: Presence transition being reported
        timestamp: When the transition happened
        metadata: Additional notification data
    """
    subject: str
    message: str
    mac: str
    kind: EventKind
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "subject": self.subject,
            "message": self.message,
            "mac": self.mac,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class DebounceEntry(BaseModel):
    """
    What the dispatcher remembers about one device.

    last_kind/last_notified_at describe the last notification actually
    delivered; pending_left holds a departure waiting out the debounce window.
    """

    last_kind: Optional[EventKind] = None
    last_notified_at: Optional[datetime] = None
    pending_left: Optional[PresenceEvent] = None
