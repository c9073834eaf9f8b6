#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Dict, Hashable, Iterable, List, NamedTuple, Optional, Tuple

# Used for the link state and route records
from dataclasses import dataclass

# Used for the shortest path algorithm selection
from enum import Enum

# Used for guarding the network map
from threading import Lock

# Used in the implementation of the djikstra algorithm
import heapq

# Used for addresses and prefixes
import ipaddress

import logging

log = logging.getLogger(__name__)

#################################
#---------- Constants ----------#
#################################

# Graph node kinds. Router nodes sort before prefix nodes.
ROUTER_NODE = 0
PREFIX_NODE = 1

# Cost of a link when none is given
DEFAULT_COST = 1


class ShortestPathAlgorithm(Enum):
    DIJKSTRA = "dijkstra"
    BELLMAN_FORD = "bellman-ford"
    FLOYD_WARSHALL = "floyd-warshall"


##############################################
#---------- Link State / Route Info ----------#
##############################################

@dataclass(frozen=True)
class LinkStateInfo:
    """One attachment of a router to a link: its address there, the link prefix and the cost of using it."""

    address: ipaddress.IPv4Address
    prefix: ipaddress.IPv4Network
    cost: int = DEFAULT_COST

    @classmethod
    def from_interface(cls, interface, cost: int = DEFAULT_COST) -> LinkStateInfo:
        interface = ipaddress.IPv4Interface(interface)
        return cls(interface.ip, interface.network, cost)


@dataclass(frozen=True)
class RouteInfo:
    """A computed route. ``next_hop`` is None for directly attached prefixes."""

    destination: ipaddress.IPv4Network
    next_hop: Optional[ipaddress.IPv4Address]
    interface_address: ipaddress.IPv4Address
    cost: int = 0


# This class defines a directed edge of the network graph. The address is the router's address on the prefix
# at either end of the edge.
class Edge(NamedTuple):
    dst: Tuple[int, Hashable]
    weight: int
    address: ipaddress.IPv4Address


def router_node(router) -> Tuple[int, ipaddress.IPv4Address]:
    return (ROUTER_NODE, ipaddress.IPv4Address(router))


def prefix_node(prefix) -> Tuple[int, ipaddress.IPv4Network]:
    return (PREFIX_NODE, ipaddress.IPv4Network(prefix))


#######################################
#---------- Shortest Paths ----------#
#######################################

# This function runs the djikstra algorithm from source, returning the distances and the edge each node was
# reached by
def dijkstra(graph: Dict[Tuple, List[Edge]], source) -> Tuple[Dict, Dict]:
    dist = {source: 0}
    prev = {}
    nodes_heap = [(0, source)]

    while nodes_heap:
        # Get the node with the current minimal distance
        d_u, u = heapq.heappop(nodes_heap)
        # Skip outdated heap entries
        if d_u != dist.get(u):
            continue

        for edge in graph.get(u, ()):
            alt = d_u + edge.weight
            if edge.dst not in dist or alt < dist[edge.dst]:
                dist[edge.dst] = alt
                prev[edge.dst] = (u, edge)
                heapq.heappush(nodes_heap, (alt, edge.dst))

    return dist, prev


# This function computes the same result as dijkstra() by repeated edge relaxation
def bellman_ford(graph: Dict[Tuple, List[Edge]], source) -> Tuple[Dict, Dict]:
    dist = {source: 0}
    prev = {}

    for _ in range(max(len(graph) - 1, 1)):
        changed = False
        for u in sorted(graph):
            if u not in dist:
                continue
            for edge in graph[u]:
                alt = dist[u] + edge.weight
                if edge.dst not in dist or alt < dist[edge.dst]:
                    dist[edge.dst] = alt
                    prev[edge.dst] = (u, edge)
                    changed = True
        # Converged early
        if not changed:
            break

    return dist, prev


# This function computes all pairs shortest paths and keeps the distances and edges seen from source. For each
# pair it remembers the last edge of the path, so the path can be walked back like the single source results.
def floyd_warshall(graph: Dict[Tuple, List[Edge]], source) -> Tuple[Dict, Dict]:
    nodes = sorted(set(graph) | {edge.dst for edges in graph.values() for edge in edges})
    dist = {u: {u: 0} for u in nodes}
    prev = {u: {} for u in nodes}

    for u in nodes:
        for edge in graph.get(u, ()):
            if edge.dst not in dist[u] or edge.weight < dist[u][edge.dst]:
                dist[u][edge.dst] = edge.weight
                prev[u][edge.dst] = (u, edge)

    for k in nodes:
        for i in nodes:
            if k not in dist[i]:
                continue
            d_ik = dist[i][k]
            for j, d_kj in list(dist[k].items()):
                alt = d_ik + d_kj
                if j not in dist[i] or alt < dist[i][j]:
                    dist[i][j] = alt
                    prev[i][j] = prev[k][j]

    return dist[source], prev[source]


_ALGORITHMS = {
    ShortestPathAlgorithm.DIJKSTRA: dijkstra,
    ShortestPathAlgorithm.BELLMAN_FORD: bellman_ford,
    ShortestPathAlgorithm.FLOYD_WARSHALL: floyd_warshall,
}


#####################################
#---------- Network Map ----------#
#####################################

class NetworkMap:
    """The topology as this router sees it.

    Each router contributes its link states. The graph built from them is
    bipartite: router nodes and prefix nodes, with an edge router -> prefix
    weighted by the link cost and an edge prefix -> router of weight zero.
    Both edges are labelled with the router's address on the prefix, which
    is how routes recover their outgoing interface and next hop.
    """

    def __init__(self, algorithm: ShortestPathAlgorithm = ShortestPathAlgorithm.DIJKSTRA):
        self.algorithm = ShortestPathAlgorithm(algorithm)

        # A dictionary with router ID as keys, and the router's link states as values
        self.link_states: Dict[ipaddress.IPv4Address, Tuple[LinkStateInfo, ...]] = {}

        # A lock for accessing the link states
        self.map_lock = Lock()

    def add_link_state(self, node, links: Iterable[LinkStateInfo]) -> None:
        node = ipaddress.IPv4Address(node)
        with self.map_lock:
            if node in self.link_states:
                raise ValueError("node %s already exists in the network map" % node)
            self.link_states[node] = tuple(links)

    def remove_link_state(self, node) -> None:
        with self.map_lock:
            self.link_states.pop(ipaddress.IPv4Address(node), None)

    def clear(self) -> None:
        with self.map_lock:
            self.link_states.clear()

    def nodes(self) -> List[ipaddress.IPv4Address]:
        with self.map_lock:
            return sorted(self.link_states)

    def graph(self) -> Dict[Tuple, List[Edge]]:
        """Return a fresh adjacency list of the current topology."""
        with self.map_lock:
            link_states = list(self.link_states.items())

        graph: Dict[Tuple, List[Edge]] = {}
        for router, links in link_states:
            r_node = router_node(router)
            graph.setdefault(r_node, [])
            for link in links:
                p_node = prefix_node(link.prefix)
                graph[r_node].append(Edge(p_node, link.cost, link.address))
                graph.setdefault(p_node, []).append(Edge(r_node, 0, link.address))
        return graph

    def get_routes(self, root) -> List[RouteInfo]:
        """Compute a route to every prefix reachable from ``root``.

        The outgoing interface is the root's address on the first prefix of
        the path; the next hop is the address of the second router on that
        prefix, or None when the destination is directly attached.
        """
        graph = self.graph()
        source = router_node(root)
        if source not in graph:
            return []

        dist, prev = _ALGORITHMS[self.algorithm](graph, source)

        routes = []
        for node in sorted(dist):
            kind, destination = node
            if kind != PREFIX_NODE:
                continue
            # Walk back to the root, collecting the edges of the path
            path = []
            while node != source:
                node, edge = prev[node]
                path.append(edge)
            path.reverse()
            next_hop = path[1].address if len(path) > 1 else None
            routes.append(RouteInfo(destination, next_hop, path[0].address, dist[(kind, destination)]))
        return routes
