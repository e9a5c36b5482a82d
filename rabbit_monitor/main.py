from __future__ import annotations

import argparse
from dataclasses import replace
import json
import logging
import sys

import uvicorn

from rabbit_monitor import __version__
from rabbit_monitor.config import apply_cli_overrides, load_config
from rabbit_monitor.discovery import LISTINGS, print_listing
from rabbit_monitor.facts import PlatformFacts
from rabbit_monitor.logging_utils import configure_logging, resolve_log_level
from rabbit_monitor.monitor import Monitor
from rabbit_monitor.scheduler import RefreshScheduler, probe_energy
from rabbit_monitor.schema import snapshot_to_dict, validate_payload
from rabbit_monitor.server import create_app
from rabbit_monitor.store import SnapshotStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rabbit Monitor host metrics exporter")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        help="Path to an optional CFG configuration file",
    )
    parser.add_argument("-a", "--address", help="Bind the server to a specific address")
    parser.add_argument("-p", "--port", type=int, help="Bind the server to a specific port")
    parser.add_argument("-c", "--cache", type=int, help="Seconds between refresh cycles")
    parser.add_argument(
        "-t",
        "--token",
        help="Require 'Authorization: Bearer <token>' on /metrics and disable /",
    )
    parser.add_argument(
        "-i", "--interfaces", help="Comma separated network interfaces to monitor (default all)"
    )
    parser.add_argument(
        "-m", "--mounts", help="Comma separated mount points to monitor (default all)"
    )
    parser.add_argument(
        "-C", "--components", help="Comma separated thermal components to monitor (default all)"
    )
    parser.add_argument(
        "-P", "--processes", help="Comma separated PIDs or process names to track"
    )
    parser.add_argument("-u", "--ups", help="Comma separated NUT UPS names to monitor")
    parser.add_argument("--batteries", action="store_true", help="Monitor batteries")
    parser.add_argument("--cpu-details", action="store_true", help="Export per-thread CPU metrics")
    parser.add_argument(
        "--memory-details", action="store_true", help="Export absolute memory byte counts"
    )
    parser.add_argument(
        "--swap-details", action="store_true", help="Export absolute swap byte counts"
    )
    parser.add_argument(
        "--storage-details", action="store_true", help="Export absolute storage byte counts"
    )
    parser.add_argument(
        "--network-details", action="store_true", help="Export network packet and error counters"
    )
    parser.add_argument("--all-details", action="store_true", help="Enable every detail flag")
    parser.add_argument(
        "--energy-timeout",
        type=float,
        help="Seconds before a slow IPMI power read is abandoned",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh cycle, print the snapshot as JSON and exit",
    )
    parser.add_argument(
        "--dump-json",
        help="With --once, also write the JSON snapshot to this file",
    )
    for kind in LISTINGS:
        parser.add_argument(
            f"--list-{kind}",
            action="store_true",
            help=f"List available {kind} and exit",
        )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = apply_cli_overrides(load_config(args.config), args)
    level = resolve_log_level(args.verbose, args.log_level or config.log_level)
    configure_logging(level)
    logger = logging.getLogger("rabbit_monitor")

    facts = PlatformFacts()

    for kind in LISTINGS:
        if getattr(args, f"list_{kind}"):
            print_listing(kind, facts, sys.stdout)
            return 0

    settings = replace(config.monitor, energy=probe_energy(facts, config.monitor))
    store = SnapshotStore()
    monitor = Monitor(store, settings, facts)
    scheduler = RefreshScheduler(monitor)

    if args.once:
        scheduler.run_cycle()
        payload = store.with_read(snapshot_to_dict)
        schema_errors = validate_payload(payload)
        if schema_errors:
            logger.warning("Schema validation failed with %s errors.", len(schema_errors))
            logger.debug("Schema errors: %s", schema_errors)
        payload_json = json.dumps(payload, indent=2)
        if args.dump_json:
            with open(args.dump_json, "w", encoding="utf-8") as handle:
                handle.write(payload_json)
        print(payload_json)
        return 1 if schema_errors else 0

    app = create_app(store, settings, token=config.server.token)
    scheduler.start()
    logger.info(
        "Rabbit Monitor %s listening on %s:%s.",
        __version__,
        config.server.address,
        config.server.port,
    )
    try:
        uvicorn.run(
            app,
            host=config.server.address,
            port=config.server.port,
            log_config=None,
        )
    finally:
        scheduler.stop()
        logger.info("Rabbit Monitor stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
