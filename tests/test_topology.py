"""
Unit tests for NetworkMap and the shortest path algorithms.
"""

from ipaddress import IPv4Address, IPv4Network

import pytest

from ospflite.topology import (
    LinkStateInfo,
    NetworkMap,
    RouteInfo,
    ShortestPathAlgorithm,
    prefix_node,
    router_node,
)


def lsi(interface, cost=1):
    return LinkStateInfo.from_interface(interface, cost)


def two_routers(algorithm=ShortestPathAlgorithm.DIJKSTRA):
    network_map = NetworkMap(algorithm)
    network_map.add_link_state("10.0.0.1", [lsi("10.0.0.1/24"), lsi("10.1.0.1/24")])
    network_map.add_link_state("10.0.0.2", [lsi("10.0.0.2/24")])
    return network_map


def triangle(algorithm):
    # R1 - R2 - R3 with cheap links, and an expensive direct R1 - R3 link; R3 has a stub prefix
    network_map = NetworkMap(algorithm)
    network_map.add_link_state("1.1.1.1", [lsi("10.12.0.1/24"), lsi("10.13.0.1/24", cost=5)])
    network_map.add_link_state("2.2.2.2", [lsi("10.12.0.2/24"), lsi("10.23.0.1/24")])
    network_map.add_link_state("3.3.3.3", [lsi("10.23.0.2/24"), lsi("10.13.0.2/24", cost=6), lsi("10.3.0.1/24")])
    return network_map


def route_to(routes, destination):
    for route in routes:
        if route.destination == IPv4Network(destination):
            return route
    return None


def test_link_state_from_interface():
    link = lsi("10.1.0.7/24", cost=3)

    assert link.address == IPv4Address("10.1.0.7")
    assert link.prefix == IPv4Network("10.1.0.0/24")
    assert link.cost == 3


def test_directly_attached_routes_have_no_next_hop():
    network_map = NetworkMap()
    network_map.add_link_state("10.0.0.1", [lsi("10.0.0.1/24"), lsi("10.1.0.1/24")])

    routes = network_map.get_routes("10.0.0.1")

    assert routes == [
        RouteInfo(IPv4Network("10.0.0.0/24"), None, IPv4Address("10.0.0.1"), 1),
        RouteInfo(IPv4Network("10.1.0.0/24"), None, IPv4Address("10.1.0.1"), 1),
    ]


@pytest.mark.parametrize("algorithm", list(ShortestPathAlgorithm))
def test_remote_prefix_goes_through_neighbor(algorithm):
    routes = two_routers(algorithm).get_routes("10.0.0.2")

    assert routes == [
        RouteInfo(IPv4Network("10.0.0.0/24"), None, IPv4Address("10.0.0.2"), 1),
        RouteInfo(IPv4Network("10.1.0.0/24"), IPv4Address("10.0.0.1"), IPv4Address("10.0.0.2"), 2),
    ]


@pytest.mark.parametrize("algorithm", list(ShortestPathAlgorithm))
def test_cheaper_path_wins(algorithm):
    routes = triangle(algorithm).get_routes("1.1.1.1")

    stub = route_to(routes, "10.3.0.0/24")
    assert stub.next_hop == IPv4Address("10.12.0.2")
    assert stub.interface_address == IPv4Address("10.12.0.1")
    assert stub.cost == 3


@pytest.mark.parametrize("algorithm", [ShortestPathAlgorithm.BELLMAN_FORD, ShortestPathAlgorithm.FLOYD_WARSHALL])
def test_algorithms_agree(algorithm):
    dijkstra = triangle(ShortestPathAlgorithm.DIJKSTRA)
    other = triangle(algorithm)

    for root in ("1.1.1.1", "2.2.2.2", "3.3.3.3"):
        assert dijkstra.get_routes(root) == other.get_routes(root)


def test_floyd_warshall_walks_back_full_paths():
    # A line of four routers, the far prefix is three hops away
    network_map = NetworkMap(ShortestPathAlgorithm.FLOYD_WARSHALL)
    network_map.add_link_state("1.1.1.1", [lsi("10.1.0.1/24"), lsi("10.12.0.1/24")])
    network_map.add_link_state("2.2.2.2", [lsi("10.12.0.2/24"), lsi("10.23.0.1/24")])
    network_map.add_link_state("3.3.3.3", [lsi("10.23.0.2/24"), lsi("10.34.0.1/24")])
    network_map.add_link_state("4.4.4.4", [lsi("10.34.0.2/24"), lsi("10.4.0.1/24")])

    far = route_to(network_map.get_routes("1.1.1.1"), "10.4.0.0/24")

    assert far == RouteInfo(IPv4Network("10.4.0.0/24"), IPv4Address("10.12.0.2"), IPv4Address("10.12.0.1"), 4)


def test_unreachable_prefix_is_omitted():
    network_map = two_routers()
    network_map.add_link_state("10.9.9.9", [lsi("10.9.0.1/24")])

    routes = network_map.get_routes("10.0.0.2")

    assert route_to(routes, "10.9.0.0/24") is None
    assert len(routes) == 2


def test_unknown_root_has_no_routes():
    assert two_routers().get_routes("192.168.0.1") == []


def test_add_twice_is_an_error():
    network_map = two_routers()

    with pytest.raises(ValueError):
        network_map.add_link_state("10.0.0.1", [])


def test_remove_and_clear():
    network_map = two_routers()

    network_map.remove_link_state("10.0.0.1")
    assert network_map.nodes() == [IPv4Address("10.0.0.2")]
    assert route_to(network_map.get_routes("10.0.0.2"), "10.1.0.0/24") is None

    # Removing an absent node is a no-op
    network_map.remove_link_state("10.0.0.1")

    network_map.clear()
    assert network_map.nodes() == []


def test_graph_is_bipartite_and_labelled():
    graph = two_routers().graph()

    router_edges = graph[router_node("10.0.0.1")]
    assert [(edge.dst, edge.weight, edge.address) for edge in router_edges] == [
        (prefix_node("10.0.0.0/24"), 1, IPv4Address("10.0.0.1")),
        (prefix_node("10.1.0.0/24"), 1, IPv4Address("10.1.0.1")),
    ]
    shared = graph[prefix_node("10.0.0.0/24")]
    assert sorted((edge.dst, edge.weight) for edge in shared) == [
        (router_node("10.0.0.1"), 0),
        (router_node("10.0.0.2"), 0),
    ]
