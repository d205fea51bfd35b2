"""
Device discovery through the arp-scan command line tool.

The tool's output format is an external contract; everything that depends on
it lives in this module behind the ScanAdapter interface.
"""

import asyncio
import ipaddress
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from lanotify.core.exceptions import (
    ProcessNotFoundError,
    ScanParseError,
    ScanPermissionError,
    ScanTimeoutError,
)

from .models import Observation, ScanResult, normalize_mac, utc_now

logger = logging.getLogger(__name__)

# Tab separated ip, mac, vendor; arp-scan expands the \t escapes itself
ARP_SCAN_FORMAT = "--format=${ip}\\t${mac}\\t${vendor}"

_PERMISSION_RE = re.compile(r"permission|not permitted|be root", re.IGNORECASE)


class ScanAdapter(ABC):
    """Capability that performs one discovery scan."""

    @abstractmethod
    async def scan(self, interface: Optional[str], timeout: float) -> ScanResult:
        """
        Discover devices on the local segment.

        Args:
            interface: Network interface to scan, or None for the default
            timeout: Seconds before the scan is abandoned

        Returns:
            Scan result with the parsed observations

        Raises:
            ScanError: On timeout, missing tool, missing privilege or an
                unusable failed run
        """
        pass


def parse_arp_scan_line(line: str, observed_at: datetime) -> Optional[Observation]:
    """
    Parse one line of arp-scan output.

    Args:
        line: Output line ("<ip>\\t<mac>\\t<vendor>")
        observed_at: Timestamp assigned to the observation

    Returns:
        Observation, or None if the line is not a host line
    """
    fields = line.strip().split("\t")
    if len(fields) < 2:
        fields = line.split(None, 2)
    if len(fields) < 2:
        return None

    ip_text, mac_text = fields[0].strip(), fields[1].strip()
    try:
        ip = str(ipaddress.ip_address(ip_text))
    except ValueError:
        return None

    mac = normalize_mac(mac_text)
    if mac is None:
        return None

    vendor = "\t".join(fields[2:]).strip() or None
    if vendor is not None and vendor.startswith("(Unknown"):
        vendor = None

    return Observation(mac=mac, ip=ip, vendor=vendor, observed_at=observed_at)


def parse_arp_scan_output(
    output: str, observed_at: Optional[datetime] = None
) -> Tuple[List[Observation], int]:
    """
    Parse arp-scan output into observations.

    Malformed lines are skipped and counted. When a MAC answers more than
    once (arp-scan reports duplicates), the first reply wins.

    Args:
        output: Captured standard output
        observed_at: Timestamp for all observations (default: now)

    Returns:
        (observations in output order, number of skipped lines)
    """
    if observed_at is None:
        observed_at = utc_now()

    observations: List[Observation] = []
    seen = set()
    skipped = 0

    for line in output.splitlines():
        if not line.strip():
            continue

        observation = parse_arp_scan_line(line, observed_at)
        if observation is None:
            skipped += 1
            logger.debug(f"Skipping unparseable scan line: {line!r}")
            continue

        if observation.mac in seen:
            logger.debug(f"Ignoring duplicate reply from {observation.mac}")
            continue

        seen.add(observation.mac)
        observations.append(observation)

    return observations, skipped


class ArpScanAdapter(ScanAdapter):
    """
    Scans the local network by running arp-scan as a subprocess.

    arp-scan needs raw socket access, so it normally runs as root or with
    CAP_NET_RAW.
    """

    def __init__(self, command: str = "arp-scan", extra_args: Sequence[str] = ()):
        """
        Initialize arp-scan adapter.

        Args:
            command: arp-scan executable
            extra_args: Additional command line arguments
        """
        self.command = command
        self.extra_args = list(extra_args)

    def build_command(self, interface: Optional[str]) -> List[str]:
        """Build the argument vector for one scan."""
        args = [self.command, "--plain", ARP_SCAN_FORMAT]
        if interface:
            args.append(f"--interface={interface}")
        args.append("--localnet")
        args.extend(self.extra_args)
        return args

    async def scan(self, interface: Optional[str], timeout: float) -> ScanResult:
        args = self.build_command(interface)
        logger.debug(f"Starting network scan: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProcessNotFoundError(f"Discovery tool '{self.command}' not found") from e
        except PermissionError as e:
            raise ScanPermissionError(
                f"Discovery tool '{self.command}' cannot be executed: {e}"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise ScanTimeoutError(timeout)

        output = stdout.decode("utf-8", errors="replace")
        errors = stderr.decode("utf-8", errors="replace").strip()
        exit_code = process.returncode

        if exit_code != 0 and _PERMISSION_RE.search(errors):
            raise ScanPermissionError(
                f"Discovery tool '{self.command}' lacks privileges: {errors}", errors
            )

        observations, skipped = parse_arp_scan_output(output)

        if not observations and exit_code != 0:
            raise ScanParseError(
                f"Discovery tool '{self.command}' exited with status {exit_code} "
                f"and produced no usable output: {errors or 'no error output'}",
                errors,
            )

        if skipped:
            logger.info(f"Skipped {skipped} unparseable line(s) in scan output")
        if exit_code != 0:
            logger.warning(
                f"Discovery tool exited with status {exit_code}, "
                f"keeping {len(observations)} parsed device(s)"
            )

        logger.debug(f"Scan found {len(observations)} devices")
        return ScanResult(observations=observations, skipped_lines=skipped, exit_code=exit_code)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate a scan that overran its timeout and reap it."""
        try:
            process.kill()
        except ProcessLookupError:
            pass  # exited on its own
        await process.wait()
