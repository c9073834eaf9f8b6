#!/usr/bin/env python3

# Used for type hints
from __future__ import annotations
from typing import Dict, List, Optional

import logging

from .config import DEFAULT_LOOPBACK_PREFIX, OspfTimers, TopologyConfig
from .router import AddressPool, Link, Router
from .routing import OspfRouting
from .scheduler import Scheduler
from .topology import ShortestPathAlgorithm

log = logging.getLogger(__name__)


# A set of routers on shared links, all running OSPF on the same scheduler
class Network:
    def __init__(self, scheduler: Scheduler, routers: Dict[str, Router], links: Dict[str, Link]):
        self.scheduler = scheduler
        self.routers = routers
        self.links = links

    def start(self, algorithm: ShortestPathAlgorithm = ShortestPathAlgorithm.DIJKSTRA,
              timers: Optional[OspfTimers] = None):
        for router in self.routers.values():
            router.set_dynamic_routing(OspfRouting(self.scheduler, algorithm, timers))

    def stop(self):
        for router in self.routers.values():
            router.set_dynamic_routing(None)

    def routing_tables(self) -> str:
        tables = []
        for name, router in self.routers.items():
            tables.append("%s (%s)\n%s" % (name, router.router_id, router.routing_table))
        return "\n\n".join(tables)


# This function builds a network from a topology file
def build_network(config: TopologyConfig, scheduler: Scheduler) -> Network:
    links = {link.name: Link(link.prefix, scheduler, link.delay, link.name) for link in config.links}
    pool = AddressPool(config.loopback_prefix)
    routers = {}
    for entry in config.routers:
        router_links = [links[name] for name in entry.links]
        costs = {links[name]: cost for name, cost in entry.costs.items()}
        routers[entry.name] = Router(router_links,
                                     router_id=entry.router_id,
                                     address_pool=pool,
                                     costs=costs,
                                     name=entry.name)
    return Network(scheduler, routers, links)


# This function builds a rows x columns grid of routers. Router (i, j) sits between the horizontal links
# 10.i.j.0/24 and 10.i.(j+1).0/24, and the vertical links 20.i.j.0/24 and 20.(i+1).j.0/24.
def build_grid(rows: int, columns: int, scheduler: Scheduler, loopback_prefix: str = DEFAULT_LOOPBACK_PREFIX,
               delay: int = 0) -> Network:
    if rows < 1 or columns < 1:
        raise ValueError("the grid needs at least one row and one column")
    if rows > 255 or columns > 254:
        raise ValueError("the grid is too large for its link prefixes")

    h_links: List[List[Link]] = [[Link("10.%d.%d.0/24" % (i, j), scheduler, delay) for j in range(columns + 1)]
                                 for i in range(rows)]
    v_links: List[List[Link]] = [[Link("20.%d.%d.0/24" % (i, j), scheduler, delay) for j in range(columns)]
                                 for i in range(rows + 1)]

    pool = AddressPool(loopback_prefix)
    routers = {}
    for i in range(rows):
        for j in range(columns):
            name = "r%d.%d" % (i, j)
            routers[name] = Router([h_links[i][j], h_links[i][j + 1], v_links[i][j], v_links[i + 1][j]],
                                   address_pool=pool, name=name)

    links = {link.name: link for row in h_links + v_links for link in row}
    log.info("Grid: built %d routers on %d links", len(routers), len(links))
    return Network(scheduler, routers, links)
