"""
Presence change data models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from lanotify.inventory.models import DeviceRecord


class EventKind(str, Enum):
    """Presence transitions that can be detected."""

    JOINED = "joined"
    LEFT = "left"


class PresenceEvent(BaseModel):
    """
    A device joined or left the network.

    Produced once per transition; the device field is a copy of the record
    taken when the event was created.
    """

    mac: str
    kind: EventKind
    timestamp: datetime
    device: DeviceRecord = Field(..., description="Device state at event time")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "mac": "aa:bb:cc:dd:ee:01",
                "kind": "joined",
                "timestamp": "2025-01-15T10:30:00Z",
                "device": {
                    "mac": "aa:bb:cc:dd:ee:01",
                    "ip": "192.168.1.10",
                    "vendor": None,
                    "first_seen": "2025-01-01T00:00:00Z",
                    "last_seen": "2025-01-15T10:30:00Z",
                    "status": "present",
                },
            }
        }
    )

    def summary(self) -> str:
        return f"{self.kind.value} {self.mac} ({self.device.ip})"
