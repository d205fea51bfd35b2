"""
Change monitoring module for detecting devices joining and leaving.

Compares each scan with the registry and drives the periodic scan loop.
"""

__all__ = ["models", "analyzer", "service"]
