"""
GeoProfile Command Line Interface.

Provides commands for managing GeoProfile:
- start: Start the daemon
- status: Show store and configuration status
- policy: List, inspect, import and test policies
- connect: Reconcile one device now
- apply: Force-apply a policy to a device
- history: Show reconciliation history
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from geoprofile import __version__
from geoprofile.config import GeoProfileConfig, load_config
from geoprofile.core.processor import ConnectionProcessor, create_processor
from geoprofile.mdm.client import SimpleMDMClient
from geoprofile.policy.models import find_default_policy
from geoprofile.policy.parser import (
    PolicyParseError,
    dump_policies,
    load_policies,
    validate_policies,
)
from geoprofile.policy.selector import resolve_policy
from geoprofile.store.database import PolicyStore


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="geoprofile",
        description="Location-aware configuration profile management",
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

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Start the daemon")
    start_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    start_parser.set_defaults(func=cmd_start)

    # status command
    status_parser = subparsers.add_parser("status", help="Show status")
    status_parser.set_defaults(func=cmd_status)

    # policy command
    policy_parser = subparsers.add_parser("policy", help="Manage policies")
    policy_sub = policy_parser.add_subparsers(dest="policy_cmd")

    policy_sub.add_parser("list", help="List stored policies")

    show_parser = policy_sub.add_parser("show", help="Show policy details")
    show_parser.add_argument("policy_id", help="Policy ID")

    validate_parser = policy_sub.add_parser("validate", help="Validate policies")
    validate_parser.add_argument(
        "file",
        nargs="?",
        help="Policy YAML file (default: stored policies)",
    )

    import_parser = policy_sub.add_parser("import", help="Import policies from YAML")
    import_parser.add_argument("file", help="Policy YAML file")
    import_parser.add_argument(
        "--replace",
        action="store_true",
        help="Replace all stored policies instead of merging",
    )

    export_parser = policy_sub.add_parser("export", help="Export policies as YAML")
    export_parser.add_argument(
        "-o", "--output",
        help="Output file (default: stdout)",
    )

    test_parser = policy_sub.add_parser("test", help="Show which policy applies to a device")
    test_parser.add_argument("device_id", help="Device ID")
    test_parser.add_argument("--ip", help="Observed IP address")

    policy_parser.set_defaults(func=cmd_policy)

    # connect command
    connect_parser = subparsers.add_parser("connect", help="Reconcile a device now")
    connect_parser.add_argument("device_id", help="Device ID")
    connect_parser.add_argument("--ip", help="Observed IP address")
    connect_parser.set_defaults(func=cmd_connect)

    # apply command
    apply_parser = subparsers.add_parser("apply", help="Force-apply a policy to a device")
    apply_parser.add_argument("policy_id", help="Policy ID")
    apply_parser.add_argument("device_id", help="Device ID")
    apply_parser.add_argument("--ip", help="Observed IP address to record")
    apply_parser.set_defaults(func=cmd_apply)

    # history command
    history_parser = subparsers.add_parser("history", help="Show reconciliation history")
    history_parser.add_argument(
        "-d", "--device",
        help="Filter by device ID",
    )
    history_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=20,
        help="Number of entries to show",
    )
    history_parser.set_defaults(func=cmd_history)

    # Parse arguments
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def get_store(config: GeoProfileConfig) -> PolicyStore:
    """Open the policy store from config."""
    return PolicyStore(
        config.store.path,
        wal_mode=config.store.wal_mode,
        history_limit=config.store.history_limit,
    )


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                for key, value in item.items():
                    print(f"  {key}: {value}")
                print()
            else:
                print(f"  {item}")
    else:
        print(data)


def run_with_processor(
    config: GeoProfileConfig,
    store: PolicyStore,
    action: Callable[[ConnectionProcessor], Awaitable[Any]],
) -> Any:
    """Run an async processor action against the configured Device API."""

    async def _run() -> Any:
        async with SimpleMDMClient.from_config(config.device_api) as client:
            processor = create_processor(config, client, store)
            return await action(processor)

    return asyncio.run(_run())


def cmd_start(args: argparse.Namespace) -> int:
    """Start the daemon."""
    from geoprofile.daemon import main as daemon_main

    daemon_args = []
    if args.config:
        daemon_args.extend(["-c", args.config])
    if args.verbose:
        daemon_args.append("-v")

    return daemon_main(daemon_args)


def cmd_status(args: argparse.Namespace) -> int:
    """Show store and configuration status."""
    config = load_config(args.config)
    store = get_store(config)

    try:
        policies = store.load_policies()
        history_count = store.count_history()
    finally:
        store.close()

    default = find_default_policy(policies)
    status_data = {
        "version": __version__,
        "config_file": args.config or "default",
        "store": config.store.path,
        "policies": len(policies),
        "default_policy": default.name if default else None,
        "history_entries": history_count,
        "history_limit": config.store.history_limit,
        "device_api": config.device_api.base_url,
        "api_key_configured": bool(config.device_api.api_key),
        "poll_interval": config.daemon.poll_interval,
    }

    if getattr(args, "json", False):
        output(status_data, args)
    else:
        print("GeoProfile Status")
        print("=" * 50)
        print(f"Version:        {status_data['version']}")
        print(f"Config:         {status_data['config_file']}")
        print(f"Store:          {status_data['store']}")
        print(f"Device API:     {status_data['device_api']}")
        print(f"API Key:        {'configured' if status_data['api_key_configured'] else 'missing'}")
        print(f"Poll Interval:  {status_data['poll_interval']:.0f}s")
        print()
        print("Policies:")
        print(f"  Total:          {status_data['policies']}")
        print(f"  Default:        {status_data['default_policy'] or 'none'}")
        print(f"  History:        {history_count}/{config.store.history_limit} entries")

    return 0


def cmd_policy(args: argparse.Namespace) -> int:
    """Manage policies."""
    config = load_config(args.config)

    if args.policy_cmd == "validate" and args.file:
        try:
            policies = load_policies(args.file)
        except PolicyParseError as e:
            print(f"Policy validation failed: {e}")
            return 1
        return _report_validation(policies, args)

    store = get_store(config)
    try:
        if args.policy_cmd == "list" or args.policy_cmd is None:
            policies = store.load_policies()

            if getattr(args, "json", False):
                output([p.to_dict() for p in policies], args)
            else:
                print(f"Policies ({len(policies)} total)")
                print("=" * 70)
                if not policies:
                    print("No policies found.")
                else:
                    print(f"{'ID':<38} {'Name':<20} {'Ranges':<7} {'Profiles':<8}")
                    print("-" * 70)
                    for policy in policies:
                        name = policy.name[:18] + (" *" if policy.is_default else "")
                        print(
                            f"{policy.id[:38]:<38} "
                            f"{name:<20} "
                            f"{len(policy.ip_ranges):<7} "
                            f"{len(policy.profiles):<8}"
                        )

        elif args.policy_cmd == "show":
            policy = store.get_policy(args.policy_id)
            if policy is None:
                print(f"Policy not found: {args.policy_id}")
                return 1

            if getattr(args, "json", False):
                output(policy.to_dict(), args)
            else:
                print("Policy Details")
                print("=" * 50)
                print(f"ID:           {policy.id}")
                print(f"Name:         {policy.name}")
                print(f"Default:      {'yes' if policy.is_default else 'no'}")
                if policy.description:
                    print(f"Description:  {policy.description}")
                print(f"IP Ranges:    {len(policy.ip_ranges)}")
                for ip_range in policy.ip_ranges:
                    label = f" ({ip_range.display_name})" if ip_range.display_name else ""
                    print(f"  - {ip_range.address_specifier}{label}")
                print(f"Devices:      {len(policy.devices)}")
                for device_id in policy.devices:
                    print(f"  - {device_id}")
                print(f"Profiles:     {len(policy.profiles)}")
                for profile in policy.profiles:
                    print(f"  - {profile.label}")

        elif args.policy_cmd == "validate":
            return _report_validation(store.load_policies(), args)

        elif args.policy_cmd == "import":
            try:
                policies = load_policies(args.file)
            except PolicyParseError as e:
                print(f"Import failed: {e}")
                return 1

            if args.replace:
                count = store.replace_policies(policies)
            else:
                for policy in policies:
                    store.save_policy(policy)
                count = len(policies)
            default = store.ensure_default_policy()
            print(f"Imported {count} policies (default: {default.name})")

        elif args.policy_cmd == "export":
            text = dump_policies(store.load_policies())
            if args.output:
                Path(args.output).write_text(text)
                print(f"Exported to: {args.output}")
            else:
                print(text, end="")

        elif args.policy_cmd == "test":
            selection = resolve_policy(args.device_id, args.ip, store.load_policies())
            result = {
                "device": args.device_id,
                "ip_address": args.ip,
                "policy": selection.policy.name if selection else None,
                "reason": selection.reason.value if selection else None,
                "matched_range": selection.matched_range if selection else None,
            }

            if getattr(args, "json", False):
                output(result, args)
            else:
                print(f"Testing policy for device {args.device_id} ({args.ip or 'no IP'})")
                print("=" * 40)
                if selection is None:
                    print("Policy:  none (no default policy)")
                else:
                    print(f"Policy:  {selection.policy.name}")
                    print(f"Reason:  {selection.reason.value}")
                    if selection.matched_range:
                        print(f"Range:   {selection.matched_range}")

        return 0

    finally:
        store.close()


def _report_validation(policies: list, args: argparse.Namespace) -> int:
    warnings = validate_policies(policies)

    if getattr(args, "json", False):
        output({"valid": not warnings, "policies": len(policies), "warnings": warnings}, args)
    else:
        print(f"{len(policies)} policies loaded")
        if warnings:
            print("\nWarnings:")
            for w in warnings:
                print(f"  - {w}")
        else:
            print("No problems found.")

    return 1 if warnings else 0


def cmd_connect(args: argparse.Namespace) -> int:
    """Reconcile one device against its active policy."""
    config = load_config(args.config)
    store = get_store(config)

    try:
        result = run_with_processor(
            config,
            store,
            lambda processor: processor.process_device_connection(args.device_id, args.ip),
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.close()

    if getattr(args, "json", False):
        output(result.to_dict(), args)
    else:
        print(result.summary())
        if result.match_reason:
            print(f"Matched by:  {result.match_reason.value}")

    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    """Force-apply a policy to a device."""
    config = load_config(args.config)
    store = get_store(config)

    try:
        if store.get_policy(args.policy_id) is None:
            print(f"Policy not found: {args.policy_id}")
            return 1

        result = run_with_processor(
            config,
            store,
            lambda processor: processor.force_apply_policy(
                args.policy_id, args.device_id, observed_ip=args.ip
            ),
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.close()

    if getattr(args, "json", False):
        output(result.to_dict(), args)
    else:
        state = "applied" if result.success else "partially applied"
        print(
            f"Policy '{result.policy_name}' {state} to device {args.device_id}: "
            f"{result.profiles_pushed} profile(s) pushed"
        )

    return 0 if result.success else 1


def cmd_history(args: argparse.Namespace) -> int:
    """Show reconciliation history, newest first."""
    config = load_config(args.config)
    store = get_store(config)

    try:
        if args.device:
            entries = store.device_history(args.device, limit=args.limit)
        else:
            entries = list(reversed(store.load_history()))[: args.limit]
        total = store.count_history()
    finally:
        store.close()

    if getattr(args, "json", False):
        output([e.to_dict() for e in entries], args)
    else:
        print(f"Reconciliation History ({len(entries)} of {total} entries)")
        print("=" * 80)
        if not entries:
            print("No history found.")
        else:
            print(f"{'Time':<20} {'Device':<16} {'Policy':<28} {'IP':<15}")
            print("-" * 80)
            for entry in entries:
                time_str = entry.applied_at.strftime("%Y-%m-%d %H:%M:%S")
                print(
                    f"{time_str:<20} "
                    f"{entry.device_id[:16]:<16} "
                    f"{entry.policy_id[:28]:<28} "
                    f"{entry.ip_address or '-':<15}"
                )

    return 0


if __name__ == "__main__":
    sys.exit(main())
