#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional

# Used for the routing table entries
from dataclasses import dataclass

# Used for guarding the routing table, the address pools and the links
from threading import Lock

# Used for addresses and prefixes
import ipaddress

# Used for "layers" - the packets the routers exchange
from scapy.layers.inet import IP
from scapy.packet import Raw

# Used for putting packets on the wire
from scapy.compat import raw

import logging

from .headers import BROADCAST_ADDR
from .routing import DynamicRouting, DynamicRoutingInterface
from .scheduler import Scheduler
from .topology import DEFAULT_COST, LinkStateInfo, RouteInfo

log = logging.getLogger(__name__)

# The default TTL of datagrams sent by the routers
DEFAULT_TTL = 64


#######################################
#---------- Address Pools ----------#
#######################################

class AddressPoolExhausted(ValueError):
    pass


# This class hands out the host addresses of a prefix, in order. Used for router IDs and for the addresses of
# the interfaces on a link.
class AddressPool:
    def __init__(self, prefix):
        self.prefix = ipaddress.IPv4Network(prefix)
        self.hosts: Iterator[ipaddress.IPv4Address] = self.prefix.hosts()
        self.lock = Lock()

    def next_address(self) -> ipaddress.IPv4Address:
        with self.lock:
            try:
                return next(self.hosts)
            except StopIteration:
                raise AddressPoolExhausted("no addresses left in %s" % self.prefix) from None

    def next_interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface("%s/%d" % (self.next_address(), self.prefix.prefixlen))


##############################################
#---------- Links and Interfaces ----------#
##############################################

# This class defines an interface, the attachment of a router to a link
class NetInterface:
    def __init__(self, link: Link, address: ipaddress.IPv4Interface, router: Router, cost: int = DEFAULT_COST):
        # The link the interface is attached to
        self.link = link

        # The address (and prefix) of the interface
        self.address = address

        # The router owning the interface
        self.router = router

        # The cost of sending out of this interface
        self.cost = cost

    def __repr__(self):
        return "NetInterface(%s)" % self.address

    # This function returns the link state advertised for this interface
    def link_state(self) -> LinkStateInfo:
        return LinkStateInfo(self.address.ip, self.address.network, self.cost)

    def send(self, pkt: IP, next_hop=None):
        self.link.transmit(self, pkt, next_hop)

    def receive(self, pkt: IP):
        self.router.process_received_packet(self, pkt)


# This class defines a shared link (a broadcast segment). A packet sent to a next hop reaches the interface owning
# that address, any other packet reaches every other interface attached to the link.
class Link:
    def __init__(self, prefix, scheduler: Optional[Scheduler] = None, delay: int = 0, name: Optional[str] = None):
        self.prefix = ipaddress.IPv4Network(prefix)
        self.name = name if name is not None else str(self.prefix)

        # Interface addresses are allocated from the link prefix
        self.pool = AddressPool(self.prefix)

        # Transmission delay, in milliseconds. With a scheduler every delivery is a scheduled task, even with no
        # delay. Without one delivery is immediate.
        self.scheduler = scheduler
        self.delay = delay

        self.interfaces: List[NetInterface] = []
        self.lock = Lock()

    def __repr__(self):
        return "Link(%s)" % self.name

    def attach(self, router: Router, cost: int = DEFAULT_COST) -> NetInterface:
        interface = NetInterface(self, self.pool.next_interface(), router, cost)
        with self.lock:
            self.interfaces.append(interface)
        return interface

    def transmit(self, sender: NetInterface, pkt: IP, next_hop=None):
        data = raw(pkt)
        with self.lock:
            receivers = [interface for interface in self.interfaces if interface is not sender]
        if next_hop is not None:
            next_hop = ipaddress.IPv4Address(next_hop)
            receivers = [interface for interface in receivers if interface.address.ip == next_hop]
            if not receivers:
                log.debug("%r: no interface with address %s, dropping", self, next_hop)
        for interface in receivers:
            if self.scheduler is not None:
                self.scheduler.after(self.delay, lambda i=interface: i.receive(IP(data)))
            else:
                interface.receive(IP(data))


#####################################
#---------- Routing Table ----------#
#####################################

@dataclass(frozen=True)
class Route:
    destination: ipaddress.IPv4Network
    next_hop: Optional[ipaddress.IPv4Address]
    interface: NetInterface


# This class defines the routing table of a router. The dynamic routing protocol replaces it as a whole.
class RoutingTable:
    def __init__(self):
        self.routes: List[Route] = []
        self.table_lock = Lock()

    def __len__(self):
        with self.table_lock:
            return len(self.routes)

    def __iter__(self):
        with self.table_lock:
            return iter(list(self.routes))

    def add(self, route: Route):
        with self.table_lock:
            self.routes.append(route)

    def remove(self, destination) -> None:
        destination = ipaddress.IPv4Network(destination)
        with self.table_lock:
            self.routes = [route for route in self.routes if route.destination != destination]

    def replace_all(self, routes: Iterable[Route]):
        routes = list(routes)
        with self.table_lock:
            self.routes = routes

    # This function returns the route with the longest prefix matching the address, or None
    def lookup(self, address) -> Optional[Route]:
        address = ipaddress.IPv4Address(address)
        best = None
        with self.table_lock:
            for route in self.routes:
                if address in route.destination:
                    if best is None or route.destination.prefixlen > best.destination.prefixlen:
                        best = route
        return best

    def __str__(self):
        lines = ["destination\tnext-hop\tinterface"]
        for route in self:
            lines.append("%s\t%s\t%s" % (route.destination,
                                         route.next_hop if route.next_hop is not None else "-",
                                         route.interface.address.ip))
        return "\n".join(lines)


##############################
#---------- Router ----------#
##############################

class Router(DynamicRoutingInterface):
    """An IPv4 router with interfaces on shared links.

    Received packets go through the dynamic routing protocol first; what it
    does not consume is delivered locally or forwarded according to the
    routing table.
    """

    def __init__(self,
                 links: Iterable[Link],
                 router_id=None,
                 address_pool: Optional[AddressPool] = None,
                 costs: Optional[Dict[Link, int]] = None,
                 name: Optional[str] = None):
        if router_id is None:
            if address_pool is None:
                raise ValueError("either a router ID or an address pool is required")
            router_id = address_pool.next_address()
        self.router_id = ipaddress.IPv4Address(router_id)
        self.name = name if name is not None else str(self.router_id)

        costs = costs or {}
        self.interfaces = [link.attach(self, costs.get(link, DEFAULT_COST)) for link in links]
        self.routing_table = RoutingTable()
        self.dynamic_routing: Optional[DynamicRouting] = None

        # A paused router neither sends nor receives
        self.paused = False

        # Packets delivered to this router
        self.received: List[IP] = []

    def __repr__(self):
        return "Router(%s)" % self.name

    # This function starts running a dynamic routing protocol, stopping the previous one
    def set_dynamic_routing(self, dynamic_routing: Optional[DynamicRouting]):
        if self.dynamic_routing is not None:
            self.dynamic_routing.disconnect(self.router_id)
        self.dynamic_routing = dynamic_routing
        if dynamic_routing is not None:
            dynamic_routing.connect(self.router_id,
                                    [interface.link_state() for interface in self.interfaces],
                                    self)

    def pause(self, paused: bool = True):
        log.info("Router[%s]: %s", self.name, "paused" if paused else "resumed")
        self.paused = paused

    def has_address(self, address) -> bool:
        address = ipaddress.IPv4Address(address)
        if address == self.router_id:
            return True
        return any(interface.address.ip == address for interface in self.interfaces)

    def get_interface(self, address) -> Optional[NetInterface]:
        address = ipaddress.IPv4Address(address)
        for interface in self.interfaces:
            if interface.address.ip == address:
                return interface
        return None

    # This function installs the routes computed by the dynamic routing protocol, replacing the current ones
    def update_routing(self, routes: List[RouteInfo]) -> None:
        table = []
        for route in routes:
            interface = self.get_interface(route.interface_address)
            if interface is None:
                log.warning("Router[%s]: no interface with address %s for route to %s", self.name,
                            route.interface_address, route.destination)
                continue
            table.append(Route(route.destination, route.next_hop, interface))
        self.routing_table.replace_all(table)
        log.debug("Router[%s]: installed %d routes", self.name, len(table))

    # This function sends a packet of the dynamic routing protocol. Broadcasts go out of every interface.
    def send_packet(self, pkt: IP) -> None:
        if self.paused:
            return
        if pkt[IP].dst == BROADCAST_ADDR:
            for interface in self.interfaces:
                interface.send(pkt)
        else:
            self.route_out(pkt)

    # This function sends a datagram originated by this router
    def send_datagram(self, dst, payload: bytes = b"", ttl: int = DEFAULT_TTL) -> bool:
        src = self.interfaces[0].address.ip if self.interfaces else self.router_id
        pkt = IP(src=str(src), dst=str(dst), ttl=ttl) / Raw(load=payload)
        if self.has_address(dst):
            self.received.append(pkt)
            return True
        if self.paused:
            return False
        return self.route_out(pkt)

    def route_out(self, pkt: IP) -> bool:
        route = self.routing_table.lookup(pkt[IP].dst)
        if route is None:
            log.info("Router[%s]: no route to %s, dropping", self.name, pkt[IP].dst)
            return False
        # Directly attached destinations are their own next hop
        next_hop = route.next_hop if route.next_hop is not None else pkt[IP].dst
        route.interface.send(pkt, next_hop)
        return True

    def process_received_packet(self, interface: NetInterface, pkt: IP):
        if self.paused:
            return
        if self.dynamic_routing is not None:
            pkt = self.dynamic_routing.process_received_packet(self.router_id, pkt)
            if pkt is None:
                return

        ip_pkt = pkt[IP]
        if ip_pkt.dst == BROADCAST_ADDR or self.has_address(ip_pkt.dst):
            log.debug("Router[%s]: received packet from %s on %s", self.name, ip_pkt.src, interface)
            self.received.append(pkt)
            return

        if ip_pkt.ttl <= 1:
            log.info("Router[%s]: TTL expired for packet from %s to %s, dropping", self.name, ip_pkt.src, ip_pkt.dst)
            return
        ip_pkt.ttl -= 1
        # Recompute the header checksum
        del ip_pkt.chksum
        self.route_out(ip_pkt)
