"""
Device registry persistent storage.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from lanotify.core.exceptions import StorageError, StorageErrorKind

from .models import DeviceRecord, utc_now
from .registry import Registry

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


@dataclass
class StoredState:
    """
    Everything kept in the state file.

    Attributes:
        registry: Device registry
        notifications: Per-device notification memory, as exported by the
            notification dispatcher
    """
    registry: Registry = field(default_factory=Registry)
    notifications: Dict[str, Any] = field(default_factory=dict)


class RegistryStore:
    """
    Persistent storage for the device registry using a JSON file.

    The file holds a keyed record list that is easy to inspect by hand:

        {
          "version": 1,
          "saved_at": "...",
          "devices": [{"mac": ..., "ip": ..., ...}],
          "notifications": {"aa:bb:...": {...}}
        }
    """

    def __init__(self, path: str = "lanotify-state.json"):
        """
        Initialize registry store.

        Args:
            path: Path to the JSON state file
        """
        self.path = Path(path)

    def load(self) -> StoredState:
        """
        Load state from disk.

        Returns:
            Stored state; empty if the file does not exist

        Raises:
            StorageError: READ_FAILURE if unreadable, CORRUPT_FORMAT if the
                content is not a valid state document
        """
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting with an empty registry")
            return StoredState()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise StorageError(
                StorageErrorKind.READ_FAILURE, f"Cannot read state file {self.path}: {e}"
            ) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(
                StorageErrorKind.CORRUPT_FORMAT, f"State file {self.path} is not valid JSON: {e}"
            ) from e

        if not isinstance(data, dict) or not isinstance(data.get("devices", []), list):
            raise StorageError(
                StorageErrorKind.CORRUPT_FORMAT,
                f"State file {self.path} does not contain a device list",
            )

        version = data.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise StorageError(
                StorageErrorKind.CORRUPT_FORMAT,
                f"Unsupported state file version {version!r} in {self.path}",
            )

        try:
            records = [DeviceRecord.model_validate(d) for d in data.get("devices", [])]
        except ValidationError as e:
            raise StorageError(
                StorageErrorKind.CORRUPT_FORMAT, f"Invalid device record in {self.path}: {e}"
            ) from e

        notifications = data.get("notifications") or {}
        if not isinstance(notifications, dict):
            raise StorageError(
                StorageErrorKind.CORRUPT_FORMAT,
                f"State file {self.path} has an invalid notifications section",
            )

        registry = Registry(records)
        logger.info(f"Loaded {len(registry)} devices from {self.path}")
        return StoredState(registry=registry, notifications=notifications)

    def load_or_empty(self) -> StoredState:
        """
        Load state, falling back to an empty registry on any storage error.

        A corrupt file is moved aside to <name>.corrupt so the next save does
        not destroy it.
        """
        try:
            return self.load()
        except StorageError as e:
            logger.warning(f"{e}; starting with an empty registry")
            if e.kind == StorageErrorKind.CORRUPT_FORMAT:
                self._quarantine()
            return StoredState()

    def save(self, registry: Registry, notifications: Optional[Dict[str, Any]] = None) -> None:
        """
        Atomically write state to disk.

        Args:
            registry: Registry to save
            notifications: Notification dispatcher state

        Raises:
            StorageError: WRITE_FAILURE if the file cannot be written
        """
        document = {
            "version": STATE_FORMAT_VERSION,
            "saved_at": utc_now().isoformat(),
            "devices": [r.model_dump(mode="json") for r in registry.records()],
            "notifications": notifications or {},
        }

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(
                StorageErrorKind.WRITE_FAILURE, f"Cannot write state file {self.path}: {e}"
            ) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError as e:
                    logger.debug(f"Could not remove temporary file {tmp_name}: {e}")

        logger.debug(f"Saved {len(registry)} devices to {self.path}")

    def _quarantine(self) -> None:
        """Rename a corrupt state file so it can be inspected later."""
        target = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, target)
            logger.warning(f"Moved corrupt state file to {target}")
        except OSError as e:
            logger.error(f"Could not move corrupt state file {self.path} aside: {e}")
