from .headers import FormatError, LinkStateUpdate, Lsa, LsaLink, OspfPacket, RouterLsa
from .routing import DynamicRouting, DynamicRoutingInterface, OspfRouting, RoutingStateError
from .router import AddressPool, Link, NetInterface, Router, RoutingTable
from .scheduler import RealTimeScheduler, Scheduler, VirtualClock
from .topology import LinkStateInfo, NetworkMap, RouteInfo, ShortestPathAlgorithm

__version__ = "0.1.0"
