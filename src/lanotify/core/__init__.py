"""
Core module for lanotify.

Contains configuration and the error taxonomy shared across all modules.
"""

from lanotify.core.exceptions import (
    ExitCode,
    LanotifyError,
    NotifyError,
    ProcessNotFoundError,
    ScanError,
    ScanParseError,
    ScanPermissionError,
    ScanTimeoutError,
    SinkRejectedError,
    SinkUnavailableError,
    StorageError,
    StorageErrorKind,
)

__all__ = [
    "ExitCode",
    "LanotifyError",
    "NotifyError",
    "ProcessNotFoundError",
    "ScanError",
    "ScanParseError",
    "ScanPermissionError",
    "ScanTimeoutError",
    "SinkRejectedError",
    "SinkUnavailableError",
    "StorageError",
    "StorageErrorKind",
]
