#!/usr/bin/env python3
"""
lanotifyctl - lanotify operational CLI

- Run the presence monitor (lanotifyctl run)
- One-shot network scan (lanotifyctl scan)
- Show known devices (lanotifyctl status)
- Version info (lanotifyctl version)
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

import httpx

from lanotify import __version__
from lanotify.core.config import AppConfig, ConfigError, load_config
from lanotify.core.exceptions import ExitCode, ScanError, StorageError
from lanotify.inventory.models import DeviceRecord
from lanotify.inventory.registry import format_status_table
from lanotify.inventory.scanner import ArpScanAdapter
from lanotify.inventory.store import RegistryStore


class Colors:
    """ANSI color codes for terminal output."""

    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def colorize(text: str, color: str) -> str:
    """Colorize text if stdout is a TTY."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.RESET}"
    return text


def print_error(message: str) -> None:
    print(colorize(f"✗ {message}", Colors.RED), file=sys.stderr)


def config_from_args(args) -> AppConfig:
    """Load configuration, applying command line overrides."""
    overrides: Dict[str, Any] = {
        "log_level": getattr(args, "log_level", None),
        "scan": {
            "interface": getattr(args, "interface", None),
            "interval_seconds": getattr(args, "interval", None),
        },
        "notify": {"debounce_seconds": getattr(args, "debounce", None)},
        "storage": {"path": getattr(args, "state_file", None)},
    }
    if getattr(args, "api", False):
        overrides["api"] = {"enabled": True}
    return load_config(args.config, overrides)


def print_device_table(records: List[DeviceRecord], names: Dict[str, str]) -> None:
    present = sum(1 for r in records if r.is_present)
    print(colorize(f"Status of {len(records)} devices ({present} present)", Colors.BOLD))
    for line in format_status_table(records, names):
        color = Colors.GREEN if line.startswith("up") else Colors.YELLOW
        print(colorize(line, color))


def cmd_run(args) -> int:
    """
    Run the presence monitor until interrupted.

    Returns:
        Exit code of the monitor
    """
    from lanotify.change_monitor.service import run_service

    config = config_from_args(args)
    logging.getLogger().setLevel(config.log_level)
    return int(asyncio.run(run_service(config)))


def cmd_scan(args) -> int:
    """
    Run a single scan and print what was found.

    Returns:
        Exit code (0 on success, the fatal error's code otherwise)
    """
    config = config_from_args(args)
    adapter = ArpScanAdapter(command=config.scan.command, extra_args=config.scan.extra_args)

    try:
        result = asyncio.run(adapter.scan(config.scan.interface, config.scan.timeout_seconds))
    except ScanError as e:
        print_error(str(e))
        if e.remediation:
            print(f"  {e.remediation}", file=sys.stderr)
        return int(e.exit_code)

    for obs in result.observations:
        name = config.devices.get(obs.mac, "(unknown)")
        print(f"{obs.mac}  {obs.ip:<15}  {name:<20}  {obs.vendor or ''}")

    summary = f"✓ {len(result.observations)} device(s) found"
    if result.skipped_lines:
        summary += f", {result.skipped_lines} line(s) skipped"
    print(colorize(summary, Colors.GREEN))
    return 0


def cmd_status(args) -> int:
    """
    Show known devices from the state file or a running monitor's API.

    Returns:
        Exit code (0 on success, 1 on failure)
    """
    config = config_from_args(args)

    if args.url:
        try:
            response = httpx.get(f"{args.url.rstrip('/')}/devices", timeout=args.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            print_error(f"Cannot query {args.url}: {e}")
            return 1
        records = [DeviceRecord.model_validate(d) for d in response.json()]
    else:
        try:
            state = RegistryStore(config.storage.path).load()
        except StorageError as e:
            print_error(str(e))
            return 1
        records = state.registry.records()

    print_device_table(records, config.devices)
    return 0


def cmd_version(args) -> int:
    """
    Print version information.

    Returns:
        Exit code (always 0)
    """
    print(f"lanotifyctl version {__version__}")
    print("lanotify - LAN presence monitor")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for lanotifyctl."""
    parser = argparse.ArgumentParser(
        description="lanotify LAN presence monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo lanotifyctl run -i eth0       # Monitor eth0 and notify on changes
  sudo lanotifyctl scan              # Scan once and print devices
  lanotifyctl status                 # Show devices from the state file
  lanotifyctl status --url http://127.0.0.1:8765

Exit codes:
  0 clean shutdown, 1 fatal error, 3 arp-scan missing, 4 permission denied
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", help="YAML config file (default: ./config.yaml)")
    common.add_argument("--state-file", help="Registry state file")
    common.add_argument("-i", "--interface", help="Network interface to scan")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run the presence monitor")
    run_parser.add_argument("--interval", type=float, help="Seconds between scans")
    run_parser.add_argument("--debounce", type=float, help="Flap suppression window in seconds")
    run_parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    run_parser.add_argument("--api", action="store_true", help="Serve the status API")

    subparsers.add_parser("scan", parents=[common], help="Scan once and print devices")

    status_parser = subparsers.add_parser("status", parents=[common], help="Show known devices")
    status_parser.add_argument("--url", help="Query a running monitor's status API instead")
    status_parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Timeout for API requests in seconds (default: 5.0)"
    )

    subparsers.add_parser("version", help="Show version information")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for lanotifyctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    handlers = {
        "run": cmd_run,
        "scan": cmd_scan,
        "status": cmd_status,
        "version": cmd_version,
    }

    try:
        return handlers[args.command](args)
    except ConfigError as e:
        print_error(str(e))
        return int(ExitCode.FATAL)


if __name__ == "__main__":
    sys.exit(main())
