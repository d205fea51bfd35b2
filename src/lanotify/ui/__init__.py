"""
User interface module.

Read-only HTTP status API for a running monitor.
"""

__all__ = ["http_server"]
