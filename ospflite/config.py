#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional

# Used for the configuration records
from dataclasses import dataclass, field, fields

# Used for validating prefixes and addresses
import ipaddress

# Used for reading topology files
import yaml

#################################
#---------- Constants ----------#
#################################

# Time before the first LS update is sent, in milliseconds
START_TIME = 500

# LS update retransmission interval, in milliseconds
UPDATE_TIME = 5000

# Routing table re-calculation interval, in milliseconds
REFRESH_TIME = 20000

# LS expiration time, in milliseconds
EXPIRE_TIME = 2 * UPDATE_TIME

# Prefix the router IDs (loopback addresses) are allocated from
DEFAULT_LOOPBACK_PREFIX = "172.31.0.0/16"


class ConfigError(ValueError):
    pass


# This class groups the timers of the routing engine. A non-positive update or refresh time makes the timer fire
# only once.
@dataclass
class OspfTimers:
    start_time: int = START_TIME
    update_time: int = UPDATE_TIME
    refresh_time: int = REFRESH_TIME
    expire_time: Optional[int] = None

    def __post_init__(self):
        if self.expire_time is None:
            self.expire_time = 2 * self.update_time

    # This function builds the timers from a mapping, e.g. the "timers" section of a topology file
    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> OspfTimers:
        if mapping is None:
            return cls()
        if not isinstance(mapping, Mapping):
            raise ConfigError("timers must be a mapping")
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise ConfigError("unknown timers: %s" % ", ".join(sorted(unknown)))
        for name, value in mapping.items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigError("timer %s must be an integer number of milliseconds" % name)
        return cls(**mapping)


#########################################
#---------- Topology Files ----------#
#########################################

@dataclass
class LinkConfig:
    name: str
    prefix: ipaddress.IPv4Network
    delay: int = 0


@dataclass
class RouterConfig:
    name: str
    links: List[str]
    router_id: Optional[ipaddress.IPv4Address] = None
    costs: Dict[str, int] = field(default_factory=dict)


@dataclass
class TopologyConfig:
    links: List[LinkConfig]
    routers: List[RouterConfig]
    timers: OspfTimers = field(default_factory=OspfTimers)
    loopback_prefix: ipaddress.IPv4Network = ipaddress.IPv4Network(DEFAULT_LOOPBACK_PREFIX)


def _require(entry: Mapping, key: str, where: str):
    if key not in entry:
        raise ConfigError("%s: missing '%s'" % (where, key))
    return entry[key]


def _parse_link(entry: Any, index: int) -> LinkConfig:
    where = "links[%d]" % index
    if not isinstance(entry, Mapping):
        raise ConfigError("%s must be a mapping" % where)
    name = str(_require(entry, "name", where))
    try:
        prefix = ipaddress.IPv4Network(str(_require(entry, "prefix", where)))
    except ValueError as e:
        raise ConfigError("%s: bad prefix: %s" % (where, e)) from e
    delay = entry.get("delay", 0)
    if not isinstance(delay, int) or delay < 0:
        raise ConfigError("%s: delay must be a non-negative integer" % where)
    return LinkConfig(name, prefix, delay)


def _parse_router(entry: Any, index: int, link_names: set) -> RouterConfig:
    where = "routers[%d]" % index
    if not isinstance(entry, Mapping):
        raise ConfigError("%s must be a mapping" % where)
    name = str(_require(entry, "name", where))

    links = _require(entry, "links", where)
    if not isinstance(links, list) or not links:
        raise ConfigError("%s: links must be a non-empty list" % where)
    links = [str(link) for link in links]
    for link in links:
        if link not in link_names:
            raise ConfigError("%s: unknown link '%s'" % (where, link))

    router_id = entry.get("router_id")
    if router_id is not None:
        try:
            router_id = ipaddress.IPv4Address(str(router_id))
        except ValueError as e:
            raise ConfigError("%s: bad router_id: %s" % (where, e)) from e

    costs = entry.get("costs") or {}
    if not isinstance(costs, Mapping):
        raise ConfigError("%s: costs must be a mapping" % where)
    for link, cost in costs.items():
        if link not in links:
            raise ConfigError("%s: cost given for unattached link '%s'" % (where, link))
        if not isinstance(cost, int) or not 0 < cost <= 0xFFFF:
            raise ConfigError("%s: cost of '%s' must be in 1..65535" % (where, link))
    return RouterConfig(name, links, router_id, dict(costs))


# This function validates a parsed topology document
def parse_topology(document: Any) -> TopologyConfig:
    if not isinstance(document, Mapping):
        raise ConfigError("topology must be a mapping")

    raw_links = _require(document, "links", "topology")
    raw_routers = _require(document, "routers", "topology")
    if not isinstance(raw_links, list) or not isinstance(raw_routers, list):
        raise ConfigError("topology: links and routers must be lists")

    links = [_parse_link(entry, i) for i, entry in enumerate(raw_links)]
    link_names = {link.name for link in links}
    if len(link_names) != len(links):
        raise ConfigError("topology: duplicate link names")

    routers = [_parse_router(entry, i, link_names) for i, entry in enumerate(raw_routers)]
    if len({router.name for router in routers}) != len(routers):
        raise ConfigError("topology: duplicate router names")

    try:
        loopback_prefix = ipaddress.IPv4Network(str(document.get("loopback_prefix", DEFAULT_LOOPBACK_PREFIX)))
    except ValueError as e:
        raise ConfigError("topology: bad loopback_prefix: %s" % e) from e

    return TopologyConfig(links, routers, OspfTimers.from_mapping(document.get("timers")), loopback_prefix)


# This function reads and validates a YAML topology file
def load_topology(path) -> TopologyConfig:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh)
    except yaml.YAMLError as e:
        raise ConfigError("%s: invalid YAML: %s" % (path, e)) from e
    return parse_topology(document)
