from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterator, List, TextIO

from .aggregators.base import AggregatorError, BaseAggregator
from .aggregators.registry import load_aggregators
from .config.config_parser import check_configuration, cli_overrides, load_configuration
from .config.config_schema import ConfigError, validate_config
from .config.logging_config import init_logging
from .influx import DeliveryError, InfluxWriter
from .pipeline import run_pipeline
from .records import ResourceRecord, canonical_name
from .resolver import Resolver
from .sources import SourceError
from .sources.axfr import transfer_zone
from .sources.zonefile import read_zone_file

logger = logging.getLogger("zonestats.main")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_SOURCE = 2
EXIT_AGGREGATOR = 3
EXIT_DELIVERY = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zonestats",
        description="Collect statistics about a DNS zone and send them to InfluxDB",
    )
    parser.add_argument("--config", help="YAML file to read configuration from")
    parser.add_argument(
        "--no-default-config",
        action="store_true",
        help="Do not read ~/.zonestats and ./.zonestats",
    )
    parser.add_argument("--zone", help="Zone to analyse (origin of --infile, name for --axfr)")
    parser.add_argument("--infile", help="Zone file to read")
    parser.add_argument("--axfr", help="Server address to request an AXFR from")
    parser.add_argument("--port", type=int, help="Port for AXFR (default 53)")
    parser.add_argument(
        "--resolver",
        action="append",
        help="Resolver name or address (repeatable; default: system resolvers)",
    )
    parser.add_argument("--influx-server", help="Server with InfluxDB running")
    parser.add_argument("--influx-port", type=int, help="InfluxDB HTTP port (default 8086)")
    parser.add_argument("--influx-db", help="Name of InfluxDB database")
    parser.add_argument("--influx-user", help="Name of InfluxDB user")
    parser.add_argument("--influx-password", help="InfluxDB user password")
    parser.add_argument(
        "--dryrun",
        action="store_true",
        help="Print results instead of writing to InfluxDB",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print a human readable summary of the statistics",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warn", "error", "crit"],
        help="Override logging.level from the configuration",
    )
    return parser


def open_source(cfg: Dict[str, Any]) -> Iterator[ResourceRecord]:
    """Brief: Record iterator for the configured source (zone file or AXFR)."""

    zone = cfg["zone"]
    if cfg["source"] == "file":
        logger.info("Reading %s from file %s", zone, cfg["infile"])
        return read_zone_file(cfg["infile"], zone)
    logger.info("Transferring %s from %s port %d", zone, cfg["axfr"], cfg["port"])
    return transfer_zone(
        zone, cfg["axfr"], cfg["port"], timeout=float(cfg["limits"]["timeout"])
    )


def build_resolver(cfg: Dict[str, Any]) -> Resolver:
    limits = cfg["limits"]
    return Resolver(
        cfg["resolvers"],
        timeout=float(limits["timeout"]),
        resolve_limit=int(limits["resolve"]),
        probe_limit=int(limits["probe"]),
    )


def build_writer(cfg: Dict[str, Any]) -> InfluxWriter:
    influx = cfg["influx"]
    kwargs: Dict[str, Any] = {
        "port": int(influx["port"]),
        "scheme": influx["scheme"],
        "user": influx.get("user"),
        "password": influx.get("password"),
    }
    if "timeout" in influx:
        kwargs["timeout"] = float(influx["timeout"])
    return InfluxWriter(influx["server"], influx["database"], **kwargs)


def print_summary(aggregators: List[BaseAggregator], out: TextIO) -> None:
    for agg in aggregators:
        text = agg.summary()
        if text:
            out.write(text)


def main(argv: List[str] | None = None) -> int:
    """
    Command-line entry point: read a zone, aggregate statistics, deliver them.

    Args:
        argv: Command-line arguments (default: sys.argv[1:]).

    Returns:
        0 on success, 1 for configuration errors, 2 when the zone could not
        be read or transferred, 3 when an aggregator rejected the zone data
        and 4 when the metrics could not be delivered.

    Example use:
        CLI:
            zonestats --zone se --infile se.zone --resolver 9.9.9.9 --dryrun
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        merged = load_configuration(
            args.config,
            cli_overrides(args),
            use_defaults=not args.no_default_config,
        )
        validate_config(merged, config_path=args.config or "<merged config>")
        cfg = check_configuration(merged)
    except ConfigError as exc:
        print(str(exc))
        return EXIT_CONFIG

    init_logging(cfg.get("logging"), level=args.log_level)
    zone = canonical_name(cfg["zone"])

    try:
        resolver = build_resolver(cfg)
        aggregators = load_aggregators(
            cfg.get("aggregators"),
            zone=zone,
            resolver=resolver,
            defaults={"probe": cfg["probe"]},
        )
        writer = build_writer(cfg)
    except (ValueError, KeyError, TypeError, ImportError) as exc:
        print(str(exc))
        return EXIT_CONFIG

    limits = cfg["limits"]
    try:
        body = run_pipeline(
            open_source(cfg),
            aggregators,
            zone=zone,
            source=cfg["source"],
            max_workers=limits.get("workers"),
            max_in_flight=limits.get("in_flight"),
        )
    except SourceError as exc:
        logger.error("Could not read zone %s: %s", zone, exc)
        return EXIT_SOURCE
    except AggregatorError as exc:
        logger.error("Aggregation of %s failed: %s", zone, exc)
        return EXIT_AGGREGATOR

    if args.stats:
        print_summary(aggregators, sys.stdout)

    try:
        writer.deliver(body, dryrun=cfg["dryrun"], out=sys.stdout)
    except DeliveryError as exc:
        logger.error("%s", exc)
        return EXIT_DELIVERY
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
