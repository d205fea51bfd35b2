"""
Device inventory module.

Discovers devices with arp-scan and keeps the registry of known devices.
"""

__all__ = ["models", "scanner", "registry", "store"]
