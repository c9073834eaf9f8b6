#!/usr/bin/env python3
"""
Runs an OSPF-lite network on a virtual clock and prints the resulting routing tables.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import ConfigError, DEFAULT_LOOPBACK_PREFIX, OspfTimers, load_topology
from .scheduler import VirtualClock
from .simulation import build_grid, build_network
from .topology import ShortestPathAlgorithm


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ospflite", description="OSPF-lite link state routing simulator.")
    parser.add_argument("--time", type=int, default=30000, help="Virtual time to run, in milliseconds")
    parser.add_argument("--algorithm", default=ShortestPathAlgorithm.DIJKSTRA.value,
                        choices=[algorithm.value for algorithm in ShortestPathAlgorithm])
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    sub = parser.add_subparsers(dest="command", required=True)

    grid = sub.add_parser("grid", help="Run a grid of routers")
    grid.add_argument("rows", type=int)
    grid.add_argument("columns", type=int)
    grid.add_argument("--loopback-prefix", default=DEFAULT_LOOPBACK_PREFIX)
    grid.add_argument("--delay", type=int, default=1, help="Link delay, in milliseconds")

    topology = sub.add_parser("topology", help="Run a topology described in a YAML file")
    topology.add_argument("file")
    return parser.parse_args(argv)


def setup_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging(args.log_level)

    clock = VirtualClock()
    timers = None
    try:
        if args.command == "grid":
            network = build_grid(args.rows, args.columns, clock, args.loopback_prefix, args.delay)
        else:
            config = load_topology(args.file)
            network = build_network(config, clock)
            timers = config.timers
    except (ConfigError, OSError, ValueError) as e:
        print("ospflite: %s" % e, file=sys.stderr)
        return 2

    network.start(ShortestPathAlgorithm(args.algorithm), timers or OspfTimers())
    clock.advance(args.time)
    print(network.routing_tables())
    network.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
