#!/usr/bin/env python3
"""
Package CLI entrypoint used by the 'inbound-guard' console script.
"""

import argparse
import json
import sys
from dataclasses import asdict

from inbound_guard.config.defaults import DEFAULT_CONFIG_FILE
from inbound_guard.exceptions import ConfigError
from inbound_guard.utils.logger import configure, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inbound-guard", description="Per-client source IP limit enforcement"
    )
    parser.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_FILE, help="Configuration file path"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the check on its configured interval")
    sub.add_parser("run-once", help="Run a single check and print its report")
    snaps = sub.add_parser("snapshots", help="Print the last observed IPs per client")
    snaps.add_argument("identity", nargs="?", help="Only show this client")
    sub.add_parser("validate-config", help="Validate configuration and exit")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure()

    if args.command == "validate-config":
        from inbound_guard.config.config import GuardConfig

        try:
            config = GuardConfig(args.config)
        except ConfigError as e:
            print(f"Configuration validation failed: {e.message}")
            for key, value in e.details.items():
                print(f"  - {key}: {value}")
            return 1
        print("Configuration is valid")
        print(json.dumps(config.get_config_summary(), indent=2))
        return 0

    from inbound_guard.main import GuardManager

    try:
        manager = GuardManager(args.config)
    except ConfigError as e:
        logger.error("Could not start inbound-guard", error=e.message, **e.details)
        return 1

    if args.command == "run-once":
        report = manager.run_once()
        print(json.dumps(asdict(report), indent=2, default=str))
        return 1 if report.failed else 0
    if args.command == "snapshots":
        if args.identity:
            data = {args.identity: manager.snapshots.get_ips(args.identity)}
        else:
            data = manager.snapshots.list_all()
        print(json.dumps(data, indent=2))
        return 0
    return 0 if manager.start() else 1


if __name__ == "__main__":
    sys.exit(main())
