"""
Exception taxonomy and process exit codes.
"""

from enum import Enum, IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit statuses reported by the monitor."""

    OK = 0
    FATAL = 1
    TOOL_UNAVAILABLE = 3
    PERMISSION_DENIED = 4


class LanotifyError(Exception):
    """Base class for all lanotify errors."""
    pass


class ScanError(LanotifyError):
    """
    Raised when a discovery scan fails.

    Attributes:
        fatal: True for configuration problems that retrying cannot fix
        remediation: Operator-facing hint on how to fix the problem
        exit_code: Exit status used when the error stops the monitor
    """

    fatal = False
    remediation = ""
    exit_code = ExitCode.FATAL

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(message)
        self.stderr = stderr


class ScanTimeoutError(ScanError):
    """The discovery subprocess exceeded its timeout and was killed."""

    def __init__(self, timeout: float, stderr: Optional[str] = None):
        super().__init__(f"Discovery scan timed out after {timeout:g}s", stderr)
        self.timeout = timeout


class ScanParseError(ScanError):
    """The discovery tool exited non-zero without producing any usable line."""
    pass


class ProcessNotFoundError(ScanError):
    """The discovery tool is not installed or not on PATH."""

    fatal = True
    remediation = (
        "Install arp-scan (e.g. 'apt install arp-scan') or point "
        "scan.command / SCAN_COMMAND at the binary"
    )
    exit_code = ExitCode.TOOL_UNAVAILABLE


class ScanPermissionError(ScanError):
    """The discovery tool lacks the privilege to open a raw socket."""

    fatal = True
    remediation = (
        "Run with elevated privileges (sudo) or grant the capability: "
        "'setcap cap_net_raw,cap_net_admin+eip $(which arp-scan)'"
    )
    exit_code = ExitCode.PERMISSION_DENIED


class NotifyError(LanotifyError):
    """Raised by a notification provider when delivery fails."""
    pass


class SinkUnavailableError(NotifyError):
    """The notification transport could not be reached."""
    pass


class SinkRejectedError(NotifyError):
    """The notification transport refused the notification."""
    pass


class StorageErrorKind(str, Enum):
    """Kinds of state file failures."""

    READ_FAILURE = "read_failure"
    WRITE_FAILURE = "write_failure"
    CORRUPT_FORMAT = "corrupt_format"


class StorageError(LanotifyError):
    """Raised when the state file cannot be read, parsed or written."""

    def __init__(self, kind: StorageErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
