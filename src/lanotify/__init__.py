"""
lanotify - LAN presence monitor

Periodically discovers devices on the local network segment with arp-scan,
keeps a registry of which devices are present, and notifies when a device
joins or leaves.

Main modules:
- inventory: Device records, scan adapter, registry and state file
- change_monitor: Presence diffing and the scan scheduler service
- notifications: Debounced notification dispatch and providers
- ui: Read-only status API
- cli: Operator CLI (lanotifyctl)
"""

__version__ = "0.1.0"
__author__ = "lanotify contributors"

__all__ = ["__version__", "__author__"]
