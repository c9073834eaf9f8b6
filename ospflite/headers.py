#!/usr/bin/env python3

###############################
#---------- Imports ----------#
###############################

# Used for type hints
from __future__ import annotations
from typing import Iterable, List, NamedTuple, Optional, Tuple

# Used for patching the length and checksum fields after a packet is built
import struct

# Used for converting router IDs and link prefixes
import ipaddress

# Used for "layers" - the IP header carrying the OSPF packets
from scapy.layers.inet import IP

# Used for packets and to bind all the headers into the packet
from scapy.packet import Packet, bind_layers

# Used to parse the different fields in each header in the packet
from scapy.fields import (ByteField, ByteEnumField, ShortField, XShortField, IntField, LongField, IPField,
                          FieldLenField, FlagsField, PacketListField, StrLenField)

# Used for computing the OSPF checksum (16-bit one's complement, like the IP header)
from scapy.utils import checksum

# Used for getting the wire bytes of a packet
from scapy.compat import raw


#################################
#---------- Constants ----------#
#################################

# OSPF IP protocol number
OSPF_PROT_NUM = 89

# OSPF protocol version number
VERSION_NUM = 2

# The type codes of OSPF packets. Only LSU packets are produced and consumed.
HELLO_TYPE = 1
DBD_TYPE = 2
LSR_TYPE = 3
LSU_TYPE = 4
LSACK_TYPE = 5

OSPF_TYPES = {
    HELLO_TYPE: "Hello",
    DBD_TYPE: "DBD",
    LSR_TYPE: "LSR",
    LSU_TYPE: "LSU",
    LSACK_TYPE: "LSAck",
}

# The type codes of LSAs
ROUTER_LSA_TYPE = 1
NETWORK_LSA_TYPE = 2
SUMMARY_NETWORK_LSA_TYPE = 3
SUMMARY_AS_LSA_TYPE = 4
AS_EXTERNAL_LSA_TYPE = 5

LSA_TYPES = {
    ROUTER_LSA_TYPE: "Router",
    NETWORK_LSA_TYPE: "Network",
    SUMMARY_NETWORK_LSA_TYPE: "Summary-Network",
    SUMMARY_AS_LSA_TYPE: "Summary-AS",
    AS_EXTERNAL_LSA_TYPE: "AS-External",
}

# The type codes of router links
LINK_TYPE_PTP = 1
LINK_TYPE_TRANSIT = 2
LINK_TYPE_STUB = 3
LINK_TYPE_VIRTUAL = 4

LINK_TYPES = {
    LINK_TYPE_PTP: "point-to-point",
    LINK_TYPE_TRANSIT: "transit",
    LINK_TYPE_STUB: "stub",
    LINK_TYPE_VIRTUAL: "virtual",
}

# Fixed sizes of the wire records, in bytes
OSPF_HEADER_LEN = 24
LSA_HEADER_LEN = 20
ROUTER_LSA_MIN_LEN = LSA_HEADER_LEN + 4
LSA_LINK_LEN = 12
TOS_METRIC_LEN = 4
LSU_COUNT_LEN = 4

# For simplicity the entire network is one area with the same (backbone) area ID
AREA_ID = "0.0.0.0"

# The constant and unused authentication type and authentication value for all network routers and packets
AUTHENTICATION_TYPE = 0
AUTHENTICATION_VALUE = 0

# The destination of flooded LSU packets, and their TTL (only direct neighbors receive them)
BROADCAST_ADDR = "255.255.255.255"
OSPF_TTL = 1


##################################
#---------- Exceptions ----------#
##################################

# Raised when bytes on the wire do not form a well formed OSPF packet, LSA or LSA link
class FormatError(ValueError):
    pass


# The outcome of a decode that does not raise: either a value or the reason it failed
class DecodeResult(NamedTuple):
    value: Optional[Packet]
    error: Optional[FormatError]

    @property
    def ok(self) -> bool:
        return self.error is None


######################################
#---------- Packet Headers ----------#
######################################

# Per-TOS metric of a router link
class TosMetric(Packet):
    name = "TosMetric"
    fields_desc = [
        # Type of service
        ByteField("tos", 0),
        # Padding
        ByteField("reserved", 0),
        # The cost of the link for this type of service
        ShortField("metric", 0)
    ]

    def extract_padding(self, s):
        return b"", s


# A router link, as carried inside a Router-LSA
class LsaLink(Packet):
    name = "LsaLink"
    fields_desc = [
        # The address of the router on the link
        IPField("linkAddress", "0.0.0.0"),
        # The mask of the link prefix
        IPField("linkMask", "255.255.255.0"),
        # Link type
        ByteEnumField("type", LINK_TYPE_TRANSIT, LINK_TYPES),
        # Number of TOS metrics following the metric
        FieldLenField("tosCount", None, fmt="B", count_of="tosMetrics"),
        # The cost of using the link
        ShortField("metric", 1),
        # TOS metrics - carried on the wire, never used for route computation
        PacketListField("tosMetrics", [], TosMetric, count_from=lambda pkt: pkt.tosCount)
    ]

    # This function returns the link address together with its prefix length
    def address_prefix(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface("%s/%s" % (self.linkAddress, self.linkMask))

    def extract_padding(self, s):
        return b"", s


# Generic LSA. The body is kept opaque, only Router-LSAs are interpreted.
class Lsa(Packet):
    name = "LSA"
    fields_desc = [
        # Time in seconds since the LSA was originated
        ShortField("age", 0),
        # Optional capabilities
        ByteField("options", 0),
        # LSA type
        ByteEnumField("type", 0, LSA_TYPES),
        # Link-State ID
        IPField("linkStateId", "0.0.0.0"),
        # The router that originated the LSA
        IPField("advertisingRouter", "0.0.0.0"),
        # LS sequence number
        IntField("sequenceNumber", 0),
        # LSA checksum - written as zero, never verified
        XShortField("lsaChecksum", 0),
        # The length of the LSA, header included
        ShortField("length", None),
        # LSA body
        StrLenField("body", b"", length_from=lambda pkt: max(pkt.length - LSA_HEADER_LEN, 0))
    ]

    def post_build(self, p, pay):
        if self.length is None:
            p = p[:18] + struct.pack("!H", len(p)) + p[20:]
        return p + pay

    def extract_padding(self, s):
        return b"", s


# Router-LSA: a router's statement of its links and their costs
class RouterLsa(Lsa):
    name = "RouterLSA"
    fields_desc = [
        ShortField("age", 0),
        ByteField("options", 0),
        ByteEnumField("type", ROUTER_LSA_TYPE, LSA_TYPES),
        IPField("linkStateId", "0.0.0.0"),
        IPField("advertisingRouter", "0.0.0.0"),
        IntField("sequenceNumber", 0),
        XShortField("lsaChecksum", 0),
        ShortField("length", None),
        # V (virtual link endpoint), E (external) and B (border) bits
        FlagsField("flags", 0, 8, "BEV"),
        # Padding
        ByteField("reserved", 0),
        # Number of links
        FieldLenField("linkCount", None, fmt="H", count_of="links"),
        # The router links
        PacketListField("links", [], LsaLink,
                        count_from=lambda pkt: pkt.linkCount,
                        length_from=lambda pkt: max(pkt.length - ROUTER_LSA_MIN_LEN, 0))
    ]


# This function picks the LSA class matching the type byte of an encoded LSA
def _guess_lsa_class(p, **kargs):
    if len(p) >= 4 and p[3] == ROUTER_LSA_TYPE:
        return RouterLsa(p, **kargs)
    return Lsa(p, **kargs)


# OSPF header + payload
class OspfPacket(Packet):
    name = "OSPF"
    fields_desc = [
        # Protocol version number
        ByteField("version", VERSION_NUM),
        # Type of OSPF packet
        ByteEnumField("type", LSU_TYPE, OSPF_TYPES),
        # The length of the packet, header included
        ShortField("length", None),
        # The source router ID
        IPField("routerId", "0.0.0.0"),
        # The source area ID - carried, never interpreted
        IPField("areaId", AREA_ID),
        # Checksum over the whole packet
        XShortField("checksum", None),
        # Authentication type
        ShortField("authType", AUTHENTICATION_TYPE),
        # Authentication - carried, never checked
        LongField("authentication", AUTHENTICATION_VALUE)
    ]

    def post_build(self, p, pay):
        p += pay
        if self.length is None:
            p = p[:2] + struct.pack("!H", len(p)) + p[4:]
        if self.checksum is None:
            # The checksum field is still zero here
            p = p[:12] + struct.pack("!H", checksum(p)) + p[14:]
        return p

    def extract_padding(self, s):
        if self.length is None:
            return s, b""
        body_len = max(self.length - OSPF_HEADER_LEN, 0)
        return s[:body_len], s[body_len:]


# Link State Update body: a count followed by the LSAs
class LinkStateUpdate(Packet):
    name = "LinkStateUpdate"
    fields_desc = [
        # Number of LSAs
        FieldLenField("lsaCount", None, fmt="!I", count_of="lsas"),
        # The LSAs
        PacketListField("lsas", [], _guess_lsa_class, count_from=lambda pkt: pkt.lsaCount)
    ]


bind_layers(IP, OspfPacket, proto=OSPF_PROT_NUM)
bind_layers(OspfPacket, LinkStateUpdate, type=LSU_TYPE)


#####################################
#---------- Packet Builders --------#
#####################################

# This function builds a Router-LSA advertising the given links
def build_router_lsa(router, sequence_number: int, links: Iterable[LsaLink], age: int = 0) -> RouterLsa:
    return RouterLsa(age=age,
                     advertisingRouter=str(router),
                     sequenceNumber=sequence_number,
                     links=list(links))


# This function builds an LSU packet carrying the given LSAs
def build_lsu_packet(router_id, lsas: Iterable[Lsa], area_id: str = AREA_ID) -> OspfPacket:
    return OspfPacket(type=LSU_TYPE, routerId=str(router_id), areaId=str(area_id)) / LinkStateUpdate(lsas=list(lsas))


# This function wraps an OSPF packet into an IP packet that only reaches directly attached neighbors
def to_ip_packet(ospf_pkt: OspfPacket, src, dst=BROADCAST_ADDR) -> IP:
    return IP(src=str(src), dst=str(dst), ttl=OSPF_TTL, proto=OSPF_PROT_NUM) / ospf_pkt


######################################
#---------- Encode / Decode ----------#
######################################

# This function returns the wire bytes of any of the headers above
def encode(entity: Packet) -> bytes:
    return raw(entity)


# This function checks a recomputed checksum. One's complement zero has two representations.
def is_valid_checksum(value: int) -> bool:
    return value in (0x0000, 0xFFFF)


# This function decodes an LSA link starting at offset, and returns it with the number of bytes consumed
def decode_lsa_link(data: bytes, offset: int = 0) -> Tuple[LsaLink, int]:
    buf = bytes(data[offset:])
    if len(buf) < LSA_LINK_LEN:
        raise FormatError("LSA link too short: %d bytes" % len(buf))
    link_len = LSA_LINK_LEN + buf[9] * TOS_METRIC_LEN
    if len(buf) < link_len:
        raise FormatError("LSA link truncated: %d TOS metrics declared, %d bytes available" % (buf[9], len(buf)))
    return LsaLink(buf[:link_len]), link_len


# This function decodes an LSA starting at offset, and returns it with the number of bytes consumed (its
# self-declared length)
def decode_lsa(data: bytes, offset: int = 0) -> Tuple[Lsa, int]:
    buf = bytes(data[offset:])
    if len(buf) < LSA_HEADER_LEN:
        raise FormatError("LSA too short: %d bytes" % len(buf))
    (lsa_len,) = struct.unpack_from("!H", buf, 18)
    if lsa_len < LSA_HEADER_LEN or lsa_len > len(buf):
        raise FormatError("wrong LSA length: declared %d, available %d" % (lsa_len, len(buf)))
    buf = buf[:lsa_len]

    if buf[3] != ROUTER_LSA_TYPE:
        return Lsa(buf), lsa_len

    # Walk the links one by one, so a malformed link is reported rather than swallowed
    if lsa_len < ROUTER_LSA_MIN_LEN:
        raise FormatError("Router-LSA too short: %d bytes" % lsa_len)
    (link_count,) = struct.unpack_from("!H", buf, 22)
    link_offset = ROUTER_LSA_MIN_LEN
    for _ in range(link_count):
        _, link_len = decode_lsa_link(buf, link_offset)
        link_offset += link_len
    if link_offset != lsa_len:
        raise FormatError("Router-LSA length %d does not match its %d links" % (lsa_len, link_count))
    return RouterLsa(buf), lsa_len


# This function decodes an LSU body: the LSA count, then exactly that many LSAs back to back
def decode_link_state_update(data: bytes, offset: int = 0) -> Tuple[LinkStateUpdate, int]:
    buf = bytes(data[offset:])
    if len(buf) < LSU_COUNT_LEN:
        raise FormatError("LSU body too short: %d bytes" % len(buf))
    (lsa_count,) = struct.unpack_from("!I", buf, 0)
    lsa_offset = LSU_COUNT_LEN
    lsas: List[Lsa] = []
    for _ in range(lsa_count):
        lsa, lsa_len = decode_lsa(buf, lsa_offset)
        lsas.append(lsa)
        lsa_offset += lsa_len
    return LinkStateUpdate(lsaCount=lsa_count, lsas=lsas), lsa_offset


# This function decodes an OSPF packet occupying the rest of the buffer. The declared length must match the
# actual length, and the checksum over the whole packet must verify.
def decode_ospf_packet(data: bytes, offset: int = 0) -> Tuple[OspfPacket, int]:
    buf = bytes(data[offset:])
    if len(buf) < OSPF_HEADER_LEN:
        raise FormatError("OSPF packet too short: %d bytes" % len(buf))
    (pkt_len,) = struct.unpack_from("!H", buf, 2)
    if pkt_len != len(buf):
        raise FormatError("wrong OSPF packet length: declared %d, actual %d" % (pkt_len, len(buf)))
    computed = checksum(buf)
    if not is_valid_checksum(computed):
        raise FormatError("wrong OSPF checksum: 0x%04x" % computed)

    if buf[1] == LSU_TYPE:
        _, body_len = decode_link_state_update(buf, OSPF_HEADER_LEN)
        if OSPF_HEADER_LEN + body_len != pkt_len:
            raise FormatError("LSU packet has %d trailing bytes" % (pkt_len - OSPF_HEADER_LEN - body_len))
    return OspfPacket(buf), pkt_len


# This function decodes an OSPF packet without raising
def try_decode_ospf_packet(data: bytes, offset: int = 0) -> DecodeResult:
    try:
        pkt, _ = decode_ospf_packet(data, offset)
    except FormatError as e:
        return DecodeResult(None, e)
    return DecodeResult(pkt, None)
