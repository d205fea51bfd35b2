"""
Device inventory data models.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MAC_RE = re.compile(r"^[0-9a-f]{2}([:-])(?:[0-9a-f]{2}\1){4}[0-9a-f]{2}$")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_mac(value: str) -> Optional[str]:
    """
    Convert a hardware address to canonical form.

    Accepts colon- or dash-separated octets in any case.

    Returns:
        Lowercase colon-separated MAC (aa:bb:cc:dd:ee:ff), or None if the
        value is not a MAC address
    """
    candidate = value.strip().lower()
    if not _MAC_RE.match(candidate):
        return None
    return candidate.replace("-", ":")


def _canonical_mac(value: str) -> str:
    canonical = normalize_mac(value)
    if canonical is None:
        raise ValueError(f"Invalid MAC address: {value!r}")
    return canonical


class PresenceStatus(str, Enum):
    """Whether a device was seen in the latest scan."""

    PRESENT = "present"
    ABSENT = "absent"


class DeviceRecord(BaseModel):
    """
    Last-known state of a device, keyed by hardware address.

    The IP address is informational: it may change between scans without
    creating a new record.
    """

    mac: str = Field(..., description="Canonical MAC address (identity)")
    ip: str = Field(..., description="Most recent IP address")
    vendor: Optional[str] = Field(None, description="Vendor reported by the discovery tool")
    first_seen: datetime = Field(..., description="When the device was first observed")
    last_seen: datetime = Field(..., description="When the device was last observed")
    status: PresenceStatus = Field(
        default=PresenceStatus.PRESENT,
        description="Present if seen in the latest scan",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "mac": "aa:bb:cc:dd:ee:01",
                "ip": "192.168.1.10",
                "vendor": "Raspberry Pi Trading Ltd",
                "first_seen": "2025-01-01T00:00:00Z",
                "last_seen": "2025-01-15T12:00:00Z",
                "status": "present",
            }
        }
    )

    @field_validator("mac")
    @classmethod
    def validate_mac(cls, v: str) -> str:
        return _canonical_mac(v)

    @property
    def is_present(self) -> bool:
        return self.status == PresenceStatus.PRESENT

    def display_name(self, names: Optional[Dict[str, str]] = None) -> str:
        """Friendly name if one is configured, else the vendor or MAC."""
        if names and self.mac in names:
            return names[self.mac]
        return self.vendor or self.mac


class Observation(BaseModel):
    """A single device sighting produced by one discovery scan."""

    mac: str
    ip: str
    vendor: Optional[str] = None
    observed_at: datetime = Field(default_factory=utc_now)

    @field_validator("mac")
    @classmethod
    def validate_mac(cls, v: str) -> str:
        return _canonical_mac(v)


class ScanResult(BaseModel):
    """
    Outcome of one successful discovery scan.
    """

    observations: List[Observation] = Field(default_factory=list)
    skipped_lines: int = Field(default=0, description="Malformed output lines ignored")
    exit_code: int = 0
