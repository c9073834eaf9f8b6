"""
Unit tests for the OSPF wire layers and their codecs.
"""

import struct

import pytest
from scapy.compat import raw
from scapy.layers.inet import IP
from scapy.packet import Raw
from scapy.utils import checksum

from ospflite import headers
from ospflite.headers import (
    LINK_TYPE_STUB,
    LSA_LINK_LEN,
    LSU_TYPE,
    OSPF_PROT_NUM,
    TOS_METRIC_LEN,
    FormatError,
    LinkStateUpdate,
    Lsa,
    LsaLink,
    OspfPacket,
    RouterLsa,
    TosMetric,
    build_lsu_packet,
    build_router_lsa,
    decode_link_state_update,
    decode_lsa,
    decode_lsa_link,
    decode_ospf_packet,
    encode,
    is_valid_checksum,
    to_ip_packet,
    try_decode_ospf_packet,
)


def make_links():
    return [
        LsaLink(linkAddress="10.0.0.1", linkMask="255.255.255.0", metric=1),
        LsaLink(linkAddress="10.1.0.1", linkMask="255.255.255.0", type=LINK_TYPE_STUB, metric=10,
                tosMetrics=[TosMetric(tos=4, metric=7)]),
    ]


def make_lsu(sqn=5):
    return build_lsu_packet("10.0.0.1", [build_router_lsa("10.0.0.1", sqn, make_links())])


def test_lsa_link_wire_layout():
    data = encode(LsaLink(linkAddress="10.0.0.1", linkMask="255.255.255.0", metric=3))

    assert data == bytes([10, 0, 0, 1, 255, 255, 255, 0, 2, 0, 0, 3])


def test_lsa_link_with_tos_metrics():
    link = make_links()[1]
    data = encode(link)
    assert len(data) == LSA_LINK_LEN + TOS_METRIC_LEN

    decoded, consumed = decode_lsa_link(data)

    assert consumed == len(data)
    assert decoded.linkAddress == "10.1.0.1"
    assert decoded.linkMask == "255.255.255.0"
    assert decoded.type == LINK_TYPE_STUB
    assert decoded.metric == 10
    assert decoded.tosCount == 1
    assert decoded.tosMetrics[0].tos == 4
    assert decoded.tosMetrics[0].metric == 7
    assert str(decoded.address_prefix()) == "10.1.0.1/24"
    assert encode(decoded) == data


def test_lsa_link_truncated_tos_metrics():
    data = encode(make_links()[1])

    with pytest.raises(FormatError):
        decode_lsa_link(data[:-1])


def test_router_lsa_wire_layout():
    lsa = build_router_lsa("10.0.0.1", 7, [LsaLink(linkAddress="10.0.0.1", linkMask="255.255.255.0")])
    data = encode(lsa)

    assert len(data) == 36
    # age, options, type
    assert data[:4] == b"\x00\x00\x00\x01"
    assert data[8:12] == bytes([10, 0, 0, 1])
    assert struct.unpack("!I", data[12:16])[0] == 7
    # LSA checksum is written as zero
    assert data[16:18] == b"\x00\x00"
    assert struct.unpack("!H", data[18:20])[0] == 36
    # flags, reserved, link count
    assert data[20:24] == b"\x00\x00\x00\x01"


def test_router_lsa_flags():
    data = encode(RouterLsa(advertisingRouter="1.1.1.1", flags="BV"))

    assert data[20] == 0x05
    lsa, _ = decode_lsa(data)
    assert lsa.flags.B and lsa.flags.V
    assert not lsa.flags.E


def test_decode_lsa_at_offset():
    data = encode(build_router_lsa("10.0.0.1", 7, make_links()))

    lsa, consumed = decode_lsa(b"\xff\xff" + data, 2)

    assert isinstance(lsa, RouterLsa)
    assert consumed == len(data)
    assert lsa.advertisingRouter == "10.0.0.1"
    assert lsa.sequenceNumber == 7
    assert [link.linkAddress for link in lsa.links] == ["10.0.0.1", "10.1.0.1"]


def test_unknown_lsa_type_keeps_opaque_body():
    data = encode(Lsa(type=5, advertisingRouter="1.2.3.4", body=b"abcd"))

    lsa, consumed = decode_lsa(data)

    assert type(lsa) is Lsa
    assert consumed == 24
    assert lsa.body == b"abcd"


def test_router_lsa_link_count_mismatch():
    data = bytearray(encode(build_router_lsa("10.0.0.1", 1, make_links())))
    # Claim a third link
    data[22:24] = struct.pack("!H", 3)

    with pytest.raises(FormatError):
        decode_lsa(bytes(data))


def test_lsa_length_beyond_buffer():
    data = encode(build_router_lsa("10.0.0.1", 1, make_links()))

    with pytest.raises(FormatError):
        decode_lsa(data[:-4])


def test_link_state_update_reads_exactly_count_lsas():
    first = build_router_lsa("10.0.0.1", 1, make_links())
    second = build_router_lsa("10.0.0.2", 9, [])
    data = encode(LinkStateUpdate(lsas=[first, second]))

    lsu, consumed = decode_link_state_update(data + b"extra")

    assert consumed == len(data)
    assert lsu.lsaCount == 2
    assert [lsa.advertisingRouter for lsa in lsu.lsas] == ["10.0.0.1", "10.0.0.2"]


def test_ospf_packet_header():
    data = encode(make_lsu())

    assert data[0] == 2
    assert data[1] == LSU_TYPE
    assert struct.unpack("!H", data[2:4])[0] == len(data) == 80
    assert data[4:8] == bytes([10, 0, 0, 1])
    # area, authentication type and authentication are zero
    assert data[8:12] == b"\x00" * 4
    assert data[14:24] == b"\x00" * 10
    assert checksum(data) == 0


def test_ospf_packet_round_trip():
    data = encode(make_lsu())

    pkt, consumed = decode_ospf_packet(data)

    assert consumed == len(data)
    assert pkt.routerId == "10.0.0.1"
    assert pkt.type == LSU_TYPE
    lsu = pkt[LinkStateUpdate]
    assert lsu.lsaCount == 1
    lsa = lsu.lsas[0]
    assert isinstance(lsa, RouterLsa)
    assert lsa.sequenceNumber == 5
    assert [link.metric for link in lsa.links] == [1, 10]
    assert lsa.links[1].tosMetrics[0].metric == 7
    assert encode(pkt) == data


def test_decode_ospf_packet_at_offset():
    data = encode(make_lsu())

    pkt, consumed = decode_ospf_packet(b"\x00\x00\x00" + data, 3)

    assert consumed == len(data)
    assert encode(pkt) == data


def test_ospf_packet_too_short():
    with pytest.raises(FormatError):
        decode_ospf_packet(encode(make_lsu())[:20])


@pytest.mark.parametrize("mangle", [lambda d: d + b"\x00\x00", lambda d: d[:-4]])
def test_ospf_packet_length_mismatch(mangle):
    with pytest.raises(FormatError, match="length"):
        decode_ospf_packet(mangle(encode(make_lsu())))


def test_ospf_packet_bad_checksum():
    data = bytearray(encode(make_lsu()))
    data[30] ^= 0xFF

    with pytest.raises(FormatError, match="checksum"):
        decode_ospf_packet(bytes(data))


def test_checksum_accepts_both_zero_representations(monkeypatch):
    data = encode(make_lsu())

    monkeypatch.setattr(headers, "checksum", lambda buf: 0xFFFF)
    assert decode_ospf_packet(data)[1] == len(data)

    monkeypatch.setattr(headers, "checksum", lambda buf: 0x0000)
    assert decode_ospf_packet(data)[1] == len(data)

    monkeypatch.setattr(headers, "checksum", lambda buf: 0x0001)
    with pytest.raises(FormatError):
        decode_ospf_packet(data)


def test_checksum_field_holding_ffff_for_zero():
    data = bytearray(encode(make_lsu()))
    data[12:14] = b"\x00\x00"
    # Fill the unchecked LSA checksum so the OSPF checksum works out to zero
    data[44:46] = struct.pack("!H", checksum(bytes(data)))
    assert checksum(bytes(data)) == 0
    assert decode_ospf_packet(bytes(data))[1] == len(data)

    data[12:14] = b"\xff\xff"
    packet, consumed = decode_ospf_packet(bytes(data))
    assert consumed == len(data)
    assert packet.checksum == 0xFFFF


def test_is_valid_checksum():
    assert is_valid_checksum(0x0000)
    assert is_valid_checksum(0xFFFF)
    assert not is_valid_checksum(0xFFFE)


def test_lsu_with_missing_lsa():
    lsa = build_router_lsa("10.0.0.1", 1, make_links())
    data = encode(OspfPacket(routerId="10.0.0.1") / LinkStateUpdate(lsaCount=2, lsas=[lsa]))

    with pytest.raises(FormatError):
        decode_ospf_packet(data)


def test_lsu_with_trailing_bytes():
    lsa = build_router_lsa("10.0.0.1", 1, make_links())
    data = encode(OspfPacket(routerId="10.0.0.1") / LinkStateUpdate(lsas=[lsa]) / Raw(b"\x00" * 4))

    with pytest.raises(FormatError, match="trailing"):
        decode_ospf_packet(data)


def test_try_decode_reports_errors():
    good = try_decode_ospf_packet(encode(make_lsu()))
    bad = try_decode_ospf_packet(b"\x02\x04")

    assert good.ok and good.error is None
    assert good.value.routerId == "10.0.0.1"
    assert not bad.ok and bad.value is None
    assert isinstance(bad.error, FormatError)


def test_ip_packet_carries_ospf_with_ttl_one():
    wire = raw(to_ip_packet(make_lsu(), src="10.0.0.1"))

    ip = IP(wire)

    assert ip.proto == OSPF_PROT_NUM
    assert ip.ttl == 1
    assert ip.src == "10.0.0.1"
    assert ip.dst == "255.255.255.255"
    assert OspfPacket in ip
    assert ip[LinkStateUpdate].lsas[0].sequenceNumber == 5
    assert raw(ip[OspfPacket]) == encode(make_lsu())
