"""
USB Gatekeeper Command Line Interface.

Provides commands for managing the USB admission policy:
- scan: List attached devices by classification
- block / unblock: Toggle one VID:PID
- block-all / unblock-all: Bulk toggle
- whitelist: Manage the whitelist
- serve: Run the REST API
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import yaml

from gatekeeper import __version__
from gatekeeper.config import GatekeeperConfig, load_config, setup_logging, validate_config
from gatekeeper.devices.identity import DeviceKey
from gatekeeper.errors import GatekeeperError
from gatekeeper.policy.engine import BulkResult, PolicyEngine
from gatekeeper.policy.store import PolicyStore

logger = logging.getLogger(__name__)


def device_key(text: str) -> DeviceKey:
    """argparse type for VID:PID arguments."""
    try:
        return DeviceKey.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="usb-gatekeeper",
        description="USB device admission policy",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scan_parser = subparsers.add_parser("scan", help="List attached USB devices")
    scan_parser.set_defaults(func=cmd_scan)

    block_parser = subparsers.add_parser("block", help="Block a device")
    block_parser.add_argument("key", type=device_key, help="Device as VID:PID")
    block_parser.set_defaults(func=cmd_block)

    unblock_parser = subparsers.add_parser("unblock", help="Unblock a device")
    unblock_parser.add_argument("key", type=device_key, help="Device as VID:PID")
    unblock_parser.set_defaults(func=cmd_unblock)

    block_all_parser = subparsers.add_parser(
        "block-all", help="Block every device that is not whitelisted"
    )
    block_all_parser.set_defaults(func=cmd_block_all)

    unblock_all_parser = subparsers.add_parser("unblock-all", help="Unblock every blocked device")
    unblock_all_parser.set_defaults(func=cmd_unblock_all)

    # whitelist command
    whitelist_parser = subparsers.add_parser("whitelist", help="Manage the whitelist")
    whitelist_sub = whitelist_parser.add_subparsers(dest="whitelist_cmd")

    whitelist_sub.add_parser("list", help="Show whitelisted devices")

    add_parser = whitelist_sub.add_parser("add", help="Whitelist a device")
    add_parser.add_argument("key", type=device_key, help="Device as VID:PID")
    add_parser.add_argument("--description", default="", help="Device description")
    add_parser.add_argument("--manufacturer", default="", help="Device manufacturer")

    remove_parser = whitelist_sub.add_parser("remove", help="Remove a device from the whitelist")
    remove_parser.add_argument("key", type=device_key, help="Device as VID:PID")

    whitelist_sub.add_parser("clear", help="Remove all whitelist entries")

    backup_parser = whitelist_sub.add_parser("backup", help="Back up the whitelist")
    backup_parser.add_argument("path", help="Destination file")

    restore_parser = whitelist_sub.add_parser("restore", help="Restore the whitelist")
    restore_parser.add_argument("path", help="Backup file")

    whitelist_parser.set_defaults(func=cmd_whitelist)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the REST API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except (OSError, TypeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    errors = validate_config(config)
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    if args.verbose:
        config.logging.level = "debug"
    setup_logging(config.logging.level, config.logging.file)

    try:
        return args.func(args, config)
    except GatekeeperError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def get_engine(config: GatekeeperConfig) -> PolicyEngine:
    """Build the policy engine from config."""
    return PolicyEngine.from_config(config)


def get_store(config: GatekeeperConfig) -> PolicyStore:
    """Open the whitelist store without any device backends."""
    return PolicyStore.from_config(config)


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        print(data)


def print_bulk(result: BulkResult, args: argparse.Namespace) -> int:
    """Print a bulk result; non-zero exit if anything failed."""
    if getattr(args, "json", False):
        output(result.to_dict(), args)
    else:
        verb = "Blocked" if result.action == "block" else "Unblocked"
        print(f"{verb} {len(result.succeeded)} of {result.attempted} devices ({result.status})")
        for record in result.succeeded:
            print(f"  ok    {record.display_name}")
        for failure in result.failed:
            print(f"  FAIL  {failure.record.display_name}: {failure.reason}")
    return 0 if result.ok else 1


def cmd_scan(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Scan and classify attached devices."""
    engine = get_engine(config)
    classification = engine.classify(engine.scan())

    if getattr(args, "json", False):
        output(classification.to_dict(), args)
        return 0

    sections = [
        ("Whitelisted", classification.whitelisted),
        ("Blocked", classification.blocked),
        ("Available", classification.available),
    ]
    print(f"USB Devices ({classification.total} total)")
    print("=" * 70)
    for title, records in sections:
        print(f"{title} ({len(records)})")
        print("-" * 70)
        if not records:
            print("  (none)")
        for record in records:
            print(
                f"  {str(record.key):<10} "
                f"{record.description[:30]:<30} "
                f"{record.manufacturer[:24]}"
            )
        print()
    return 0


def cmd_block(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Block one device key."""
    engine = get_engine(config)
    engine.block_key(args.key)
    print(f"Blocked {args.key}")
    return 0


def cmd_unblock(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Unblock one device key."""
    engine = get_engine(config)
    engine.unblock_key(args.key)
    print(f"Unblocked {args.key}")
    return 0


def cmd_block_all(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Block every available device."""
    engine = get_engine(config)
    return print_bulk(engine.block_all(), args)


def cmd_unblock_all(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Unblock every blocked device."""
    engine = get_engine(config)
    return print_bulk(engine.unblock_all(), args)


def cmd_whitelist(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Manage the whitelist."""
    if args.whitelist_cmd == "add":
        return whitelist_add(args, config)

    store = get_store(config)

    if args.whitelist_cmd == "list" or args.whitelist_cmd is None:
        entries = store.entries
        if getattr(args, "json", False):
            output([entry.to_dict() for entry in entries], args)
        else:
            print(f"Whitelisted Devices ({len(entries)})")
            print("=" * 70)
            if not entries:
                print("No devices whitelisted.")
            for entry in entries:
                print(
                    f"  {str(entry.key):<10} "
                    f"{entry.description[:30]:<30} "
                    f"{entry.manufacturer[:24]}"
                )

    elif args.whitelist_cmd == "remove":
        if store.remove(args.key):
            print(f"Removed {args.key} from whitelist")
        else:
            print(f"Not whitelisted: {args.key}")

    elif args.whitelist_cmd == "clear":
        store.clear()
        print("Whitelist cleared")

    elif args.whitelist_cmd == "backup":
        destination = store.backup(args.path)
        print(f"Whitelist backed up to: {destination}")

    elif args.whitelist_cmd == "restore":
        store.restore(args.path)
        print(f"Whitelist restored: {len(store)} entries")

    return 0


def whitelist_add(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Whitelist a key, unblocking an attached blocked device."""
    engine = get_engine(config)
    outcome = engine.whitelist_key(
        args.key,
        description=args.description,
        manufacturer=args.manufacturer,
    )
    if getattr(args, "json", False):
        output(outcome.to_dict(), args)
    elif outcome.added:
        print(f"Whitelisted {outcome.entry.display_name}")
    else:
        print(f"Already whitelisted: {outcome.entry.display_name}")

    if outcome.unblock_error is not None:
        print(
            f"Warning: device is whitelisted but still blocked: {outcome.unblock_error}",
            file=sys.stderr,
        )
        return 1
    return 0


def cmd_serve(args: argparse.Namespace, config: GatekeeperConfig) -> int:
    """Run the REST API with uvicorn."""
    import uvicorn

    from gatekeeper.api import configure_services, create_app

    config.api.enabled = True
    if args.host:
        config.api.host = args.host
    if args.port:
        config.api.port = args.port

    errors = validate_config(config)
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    engine = get_engine(config)
    app = create_app()
    configure_services(engine, auth_mode=config.api.auth_mode, api_key=config.api.api_key)

    logger.info("Starting API on %s:%d", config.api.host, config.api.port)
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_level=config.logging.level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
