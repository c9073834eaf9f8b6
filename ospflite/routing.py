#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Tuple

# Used for guarding the link state cache
from threading import Lock

# Used for router IDs and link prefixes
import ipaddress

# Used for "layers" - the IP header carrying the OSPF packets
from scapy.layers.inet import IP

# Used for getting the wire bytes of the received OSPF packets
from scapy.compat import raw

import logging

from .config import OspfTimers
from .headers import (AREA_ID, AUTHENTICATION_TYPE, AUTHENTICATION_VALUE, LINK_TYPE_TRANSIT, LSU_TYPE,
                      OSPF_PROT_NUM, VERSION_NUM, LinkStateUpdate, LsaLink, OspfPacket, RouterLsa,
                      build_lsu_packet, build_router_lsa, to_ip_packet, try_decode_ospf_packet)
from .scheduler import RealTimeScheduler, Scheduler, TimerHandle
from .topology import Edge, LinkStateInfo, NetworkMap, RouteInfo, ShortestPathAlgorithm

log = logging.getLogger(__name__)


class RoutingStateError(RuntimeError):
    pass


###########################################
#---------- Routing Contracts ----------#
###########################################

# The interface a router offers to its dynamic routing protocol
class DynamicRoutingInterface:
    # This function replaces the whole set of dynamic routes
    def update_routing(self, routes: List[RouteInfo]) -> None:
        raise NotImplementedError

    # This function transmits a packet built by the routing protocol
    def send_packet(self, pkt: IP) -> None:
        raise NotImplementedError


# A dynamic routing protocol, as seen by the router running it
class DynamicRouting:
    def connect(self, node_id, local_links: Iterable[LinkStateInfo], routing_interface: DynamicRoutingInterface):
        raise NotImplementedError

    def disconnect(self, node_id) -> None:
        raise NotImplementedError

    # This function returns the packet if the router should keep processing it, or None if it was consumed
    def process_received_packet(self, node_id, pkt: IP) -> Optional[IP]:
        raise NotImplementedError


#######################################
#---------- Link State Cache ----------#
#######################################

# This class defines an entry of the link state cache: the latest accepted LSA of a router and the last time
# it was heard of
class LinkStateEntry:
    def __init__(self, lsa: RouterLsa, last_seen: int):
        # The latest accepted Router-LSA
        self.lsa = lsa

        # The time the LSA (or an identical copy of it) was last received, in milliseconds
        self.last_seen = last_seen

    @property
    def sequence_number(self) -> int:
        return self.lsa.sequenceNumber


# This function converts local link states into the LSA links advertising them
def lsa_links(local_links: Iterable[LinkStateInfo]) -> List[LsaLink]:
    return [LsaLink(linkAddress=str(link.address),
                    linkMask=str(link.prefix.netmask),
                    type=LINK_TYPE_TRANSIT,
                    metric=link.cost)
            for link in local_links]


# This function extracts the link states advertised by a Router-LSA
def link_state_info(lsa: RouterLsa) -> List[LinkStateInfo]:
    return [LinkStateInfo.from_interface(link.address_prefix(), link.metric) for link in lsa.links]


# This function checks the OSPF header fields this implementation does not interpret, which must hold their
# fixed values
def check_ospf_pkt_validity(pkt: OspfPacket) -> bool:
    # Check version
    if pkt.version != VERSION_NUM:
        return False
    # Check area ID
    if pkt.areaId != AREA_ID:
        return False
    # Check authentication type and authentication
    if pkt.authType != AUTHENTICATION_TYPE or pkt.authentication != AUTHENTICATION_VALUE:
        return False
    return True


###################################
#---------- OSPF Routing ----------#
###################################

class OspfRouting(DynamicRouting):
    """Lite OSPF: link state flooding of Router-LSAs and shortest path first routing.

    Every ``update_time`` the engine advertises its links in a fresh
    Router-LSA. LSAs received from other routers are cached and re-flooded
    when they are newer than the cached one. Every ``refresh_time`` the
    network map is rebuilt from the non-expired cache entries and the whole
    route set is pushed to the router through ``update_routing``.
    """

    def __init__(self,
                 scheduler: Optional[Scheduler] = None,
                 algorithm: ShortestPathAlgorithm = ShortestPathAlgorithm.DIJKSTRA,
                 timers: Optional[OspfTimers] = None):
        self.scheduler = scheduler if scheduler is not None else RealTimeScheduler()
        self.timers = timers if timers is not None else OspfTimers()
        self.network_map = NetworkMap(algorithm)

        # The connection state
        self.node_id: Optional[ipaddress.IPv4Address] = None
        self.local_links: Tuple[LinkStateInfo, ...] = ()
        self.routing_interface: Optional[DynamicRoutingInterface] = None

        # Bumped on every connect and disconnect, timers of an older connection do nothing
        self.generation = 0
        self.update_timer: Optional[TimerHandle] = None
        self.refresh_timer: Optional[TimerHandle] = None

        # LS sequence number of the next self-originated LSA
        self.ls_sqn = 0

        # The link state cache (advertising router -> LinkStateEntry)
        self.cache: Dict[ipaddress.IPv4Address, LinkStateEntry] = {}

        # A lock for the cache and the connection state
        self.lock = Lock()

    def __repr__(self):
        return "OspfRouting[%s]" % self.node_id

    # This function attaches the engine to a router and starts the update and refresh timers
    def connect(self, node_id, local_links: Iterable[LinkStateInfo], routing_interface: DynamicRoutingInterface):
        node_id = ipaddress.IPv4Address(node_id)
        local_links = tuple(local_links)
        with self.lock:
            if self.node_id is not None:
                raise RoutingStateError("%r: already connected" % self)
            self.node_id = node_id
            self.local_links = local_links
            self.routing_interface = routing_interface
            self.generation += 1
            generation = self.generation

            # Add this node to the graph
            self.network_map.add_link_state(node_id, local_links)

            self.update_timer = self.scheduler.after(self.timers.start_time,
                                                     lambda: self.on_update_timeout(generation))
            self.refresh_timer = self.scheduler.after(2 * self.timers.start_time + self.timers.update_time,
                                                      lambda: self.on_refresh_timeout(generation))
        log.info("OspfRouting[%s]: connected with links %s", node_id,
                 ", ".join("%s/%d" % (link.address, link.prefix.prefixlen) for link in local_links))

    def disconnect(self, node_id) -> None:
        node_id = ipaddress.IPv4Address(node_id)
        with self.lock:
            if self.node_id != node_id:
                log.debug("OspfRouting[%s]: ignoring disconnect of %s", self.node_id, node_id)
                return
            for timer in (self.update_timer, self.refresh_timer):
                if timer is not None:
                    timer.cancel()
            self.update_timer = None
            self.refresh_timer = None
            self.generation += 1
            self.node_id = None
            self.routing_interface = None
            self.network_map.remove_link_state(node_id)
        log.info("OspfRouting[%s]: disconnected", node_id)

    # This function builds and floods a new LSA for this router, then reschedules itself
    def on_update_timeout(self, generation: int):
        with self.lock:
            if generation != self.generation:
                return
            node_id = self.node_id
            routing_interface = self.routing_interface

            lsa = build_router_lsa(node_id, self.ls_sqn, lsa_links(self.local_links))
            self.ls_sqn += 1
            self.cache[node_id] = LinkStateEntry(lsa, self.scheduler.now())

            if self.timers.update_time > 0:
                self.update_timer = self.scheduler.after(self.timers.update_time,
                                                         lambda: self.on_update_timeout(generation))

        log.debug("OspfRouting[%s]: sending LSU sqn=%d", node_id, lsa.sequenceNumber)
        self.send_packet(routing_interface, to_ip_packet(build_lsu_packet(node_id, [lsa]), src=node_id))

    # This function rebuilds the network map from the live cache entries, and pushes the resulting routes to the
    # router
    def on_refresh_timeout(self, generation: int):
        now = self.scheduler.now()
        with self.lock:
            if generation != self.generation:
                return
            node_id = self.node_id
            routing_interface = self.routing_interface

            live = {}
            for router, entry in self.cache.items():
                if router == node_id or now - entry.last_seen < self.timers.expire_time:
                    live[router] = link_state_info(entry.lsa)
                else:
                    log.debug("OspfRouting[%s]: link state of %s expired", node_id, router)
            # Nothing was originated yet
            live.setdefault(node_id, list(self.local_links))

            self.network_map.clear()
            for router, links in live.items():
                self.network_map.add_link_state(router, links)

            if self.timers.refresh_time > 0:
                self.refresh_timer = self.scheduler.after(self.timers.refresh_time,
                                                          lambda: self.on_refresh_timeout(generation))

        routes = self.network_map.get_routes(node_id)
        log.debug("OspfRouting[%s]: refreshed network map of %d routers, %d routes", node_id, len(live), len(routes))
        routing_interface.update_routing(routes)

    def process_received_packet(self, node_id, pkt: IP) -> Optional[IP]:
        # Let the router handle anything that is not OSPF
        if IP not in pkt or pkt[IP].proto != OSPF_PROT_NUM:
            return pkt
        ip_pkt = pkt[IP]

        result = try_decode_ospf_packet(raw(ip_pkt.payload))
        if not result.ok:
            log.warning("OspfRouting[%s]: dropping malformed OSPF packet from %s: %s", node_id, ip_pkt.src,
                        result.error)
            return None
        ospf_pkt = result.value

        # Check packet validity
        if not check_ospf_pkt_validity(ospf_pkt):
            log.debug("OspfRouting[%s]: invalid OSPF packet from %s, dropping", node_id, ip_pkt.src)
            return None
        if ospf_pkt.type != LSU_TYPE:
            log.debug("OspfRouting[%s]: ignoring OSPF packet of type %d from %s", node_id, ospf_pkt.type, ip_pkt.src)
            return None

        now = self.scheduler.now()
        reflood = False
        with self.lock:
            if self.node_id is None or self.node_id != ipaddress.IPv4Address(node_id):
                log.debug("OspfRouting[%s]: not connected, dropping OSPF packet", node_id)
                return None
            routing_interface = self.routing_interface

            for lsa in ospf_pkt[LinkStateUpdate].lsas:
                if not isinstance(lsa, RouterLsa):
                    continue
                router = ipaddress.IPv4Address(lsa.advertisingRouter)
                sqn = lsa.sequenceNumber
                entry = self.cache.get(router)
                prev_sqn = entry.sequence_number if entry is not None else -1

                if sqn > prev_sqn:
                    # New information: replace the cached LSA and pass it on
                    self.cache[router] = LinkStateEntry(lsa, now)
                    reflood = True
                elif sqn == prev_sqn:
                    # Same LSA again, the router is still alive
                    entry.last_seen = now
                else:
                    log.debug("OspfRouting[%s]: stale LSA of %s (sqn=%d < %d), dropping", node_id, router, sqn,
                              prev_sqn)

        if reflood:
            log.debug("OspfRouting[%s]: flooding LSU from %s", node_id, ip_pkt.src)
            self.send_packet(routing_interface, to_ip_packet(ospf_pkt, src=ip_pkt.src, dst=ip_pkt.dst))
        return None

    def send_packet(self, routing_interface: Optional[DynamicRoutingInterface], pkt: IP):
        if routing_interface is not None:
            routing_interface.send_packet(pkt)

    # This function returns the graph the last refresh computed the routes on
    def network_graph(self) -> Dict[Tuple, List[Edge]]:
        return self.network_map.graph()

    # This function returns the sequence number and last seen time of every cached LSA
    def link_state_database(self) -> Dict[ipaddress.IPv4Address, Tuple[int, int]]:
        with self.lock:
            return {router: (entry.sequence_number, entry.last_seen) for router, entry in self.cache.items()}
