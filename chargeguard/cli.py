#!/usr/bin/env python3
"""Command-line interface for chargeguard battery charge control."""

import argparse
import asyncio
import json
import logging
import sys

from chargeguard.config import Config
from chargeguard.core.device import BatteryDevice
from chargeguard.core.manager import DeviceManager


def _device_status(device: BatteryDevice) -> dict:
    thresholds = device.get_thresholds()
    status = {
        "name": device.name,
        "battery": device.battery_name,
        "start_threshold": thresholds.start,
        "end_threshold": thresholds.end,
        "has_start_threshold": device.has_start_threshold,
        "battery_level": device.get_battery_level(),
        "health": device.get_health(),
        "needs_helper": device.needs_helper,
        "supports_force_discharge": device.supports_force_discharge,
    }
    if device.supports_force_discharge:
        status["force_discharge"] = device.get_force_discharge()
    return status


def _print_status(device: BatteryDevice, as_json: bool) -> None:
    status = _device_status(device)
    if as_json:
        print(json.dumps(status))
        return

    health = f"{status['health']}%" if status["health"] is not None else "N/A"
    print(f"{status['name']}")
    if status["has_start_threshold"]:
        print(f"  Thresholds:      {status['start_threshold']}-{status['end_threshold']}%")
    else:
        print(f"  Stop threshold:  {status['end_threshold']}%")
    print(f"  Level:           {status['battery_level']}%")
    print(f"  Health:          {health}")
    if device.supports_force_discharge:
        print(f"  Force discharge: {'on' if status['force_discharge'] else 'off'}")
    if device.needs_helper:
        print("  (read-only: charge control helper not installed)")


async def _watch(device: BatteryDevice) -> None:
    device.threshold_changed.connect(
        lambda start, end: print(f"threshold-changed {start} {end}", flush=True))
    device.force_discharge_changed.connect(
        lambda enabled: print(f"force-discharge-changed {'on' if enabled else 'off'}", flush=True))
    device.partial_failure.connect(
        lambda primary, failed: print(f"partial-failure {primary}: {failed}", flush=True))
    await asyncio.Event().wait()


async def _run(args, config: Config) -> int:
    manager = DeviceManager(config=config, use_mock=True if args.mock else None)
    device = await manager.get_device()
    if device is None:
        print("Error: No battery with charge threshold control found.")
        return 1

    try:
        if args.command == "set":
            if not await device.set_thresholds(args.start, args.end):
                print(f"Error: Could not set thresholds to {args.start}-{args.end}%.")
                return 1
            _print_status(device, args.json)
        elif args.command == "force-discharge":
            if not device.supports_force_discharge:
                print("Error: Force discharge is not supported on this battery.")
                return 1
            if not await device.set_force_discharge(args.state == "on"):
                print(f"Error: Could not turn force discharge {args.state}.")
                return 1
            _print_status(device, args.json)
        elif args.command == "watch":
            print(f"Watching {device.name} (Ctrl+C to stop)...", flush=True)
            await _watch(device)
        else:
            _print_status(device, args.json)
    finally:
        device.destroy()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="chargeguard - battery charge threshold control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  %(prog)s status            Show thresholds, level and health
  %(prog)s set 75 80         Charge to 80%%, resume charging below 75%%
  %(prog)s force-discharge on
  %(prog)s watch             Print changes made by other tools
""",
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--mock", action="store_true", help="Use the in-memory mock battery")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("status", help="Show battery status (default)")
    set_parser = sub.add_parser("set", help="Set charge thresholds")
    set_parser.add_argument("start", type=int, help="Start charging below this percentage")
    set_parser.add_argument("end", type=int, help="Stop charging at this percentage")
    fd_parser = sub.add_parser("force-discharge", help="Toggle force discharge")
    fd_parser.add_argument("state", choices=("on", "off"))
    sub.add_parser("watch", help="Print external changes until interrupted")

    args = parser.parse_args(argv)
    config = Config()

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
