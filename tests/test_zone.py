import ipaddress

import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.IN.A
import dns.rdtypes.IN.AAAA
import pytest

from mdnslite.zone import (
    DEFAULT_TTL,
    MDNSService,
    Question,
    Record,
    trim_dot,
    validate_fqdn,
)

IPV6 = "2620:0:1000:1900:b0c2:d0b2:c411:18bc"


def make_service(service="_http._tcp"):
    return MDNSService(
        "hostname",
        service,
        "local.",
        "testhost.",
        80,
        [bytes([192, 168, 0, 42]), IPV6],
        ["Local web server"],
    )


def types(records):
    return [r.rtype for r in records]


@pytest.mark.parametrize(
    "host_name, domain",
    [("hostname", "local."), ("hostname.", "local")],
)
def test_bad_params(host_name, domain):
    with pytest.raises(ValueError):
        MDNSService(
            "instance name",
            "_http._tcp",
            domain,
            host_name,
            80,
            [bytes([192, 168, 0, 42])],
            ["Local web server"],
        )


@pytest.mark.parametrize(
    "instance, service, port",
    [("", "_http._tcp", 80), ("x", "", 80), ("x", "_http._tcp", 0)],
)
def test_missing_required(instance, service, port):
    with pytest.raises(ValueError):
        MDNSService(instance, service, "local.", "h.", port, ["10.0.0.1"], [])


def test_invalid_ip():
    with pytest.raises(ValueError):
        MDNSService("x", "_http._tcp", "local.", "h.", 80, [b"\x01\x02"], [])


def test_default_domain():
    s = MDNSService("x", "_http._tcp", "", "h.", 80, ["10.0.0.1"], [])
    assert s.domain == "local."
    assert s.service_addr == "_http._tcp.local."
    assert s.instance_addr == "x._http._tcp.local."
    assert s.enum_addr == "_services._dns-sd._udp.local."


def test_bad_addr():
    s = make_service()
    assert s.records(Question("random", dns.rdatatype.ANY)) == []


def test_service_addr():
    s = make_service()
    recs = s.records(Question("_http._tcp.local.", dns.rdatatype.ANY))
    assert types(recs) == [
        dns.rdatatype.PTR,
        dns.rdatatype.SRV,
        dns.rdatatype.A,
        dns.rdatatype.AAAA,
        dns.rdatatype.TXT,
    ]
    assert recs[0].rdata.target == dns.name.from_text("hostname._http._tcp.local.")
    assert s.records(Question("_http._tcp.local.", dns.rdatatype.PTR)) == recs


def test_service_addr_other_type():
    s = make_service()
    assert s.records(Question("_http._tcp.local.", dns.rdatatype.TXT)) == []


def test_instance_addr_any():
    s = make_service()
    recs = s.records(Question("hostname._http._tcp.local.", dns.rdatatype.ANY))
    assert types(recs) == [
        dns.rdatatype.SRV,
        dns.rdatatype.A,
        dns.rdatatype.AAAA,
        dns.rdatatype.TXT,
    ]


def test_instance_addr_srv():
    s = make_service()
    recs = s.records(Question("hostname._http._tcp.local.", dns.rdatatype.SRV))
    assert types(recs) == [dns.rdatatype.SRV, dns.rdatatype.A, dns.rdatatype.AAAA]
    srv = recs[0].rdata
    assert srv.port == 80
    assert srv.priority == 10
    assert srv.weight == 1
    assert srv.target == dns.name.from_text("testhost.")


def test_instance_addr_a():
    s = make_service()
    recs = s.records(Question("hostname._http._tcp.local.", dns.rdatatype.A))
    assert len(recs) == 1
    assert recs[0].rtype == dns.rdatatype.A
    assert recs[0].rdata.address == "192.168.0.42"
    assert recs[0].name == "testhost."


def test_instance_addr_aaaa():
    s = make_service()
    recs = s.records(Question("hostname._http._tcp.local.", dns.rdatatype.AAAA))
    assert len(recs) == 1
    assert recs[0].rtype == dns.rdatatype.AAAA
    assert ipaddress.ip_address(recs[0].rdata.address) == ipaddress.ip_address(IPV6)


def test_instance_addr_txt():
    s = make_service()
    recs = s.records(Question("hostname._http._tcp.local.", dns.rdatatype.TXT))
    assert len(recs) == 1
    assert recs[0].rtype == dns.rdatatype.TXT
    assert [t.decode() for t in recs[0].rdata.strings] == s.txt


def test_host_name_query():
    s = make_service()
    expected_a = Record(
        "testhost.",
        dns.rdtypes.IN.A.A(dns.rdataclass.IN, dns.rdatatype.A, "192.168.0.42"),
        120,
    )
    expected_aaaa = Record(
        "testhost.",
        dns.rdtypes.IN.AAAA.AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, IPV6),
        120,
    )
    assert s.records(Question("testhost.", dns.rdatatype.A)) == [expected_a]
    assert s.records(Question("testhost.", dns.rdatatype.AAAA)) == [expected_aaaa]


def test_host_name_other_type():
    s = make_service()
    assert s.records(Question("testhost.", dns.rdatatype.TXT)) == []


def test_service_enum_ptr():
    s = make_service()
    recs = s.records(Question("_services._dns-sd._udp.local.", dns.rdatatype.PTR))
    assert len(recs) == 1
    assert recs[0].rtype == dns.rdatatype.PTR
    assert recs[0].rdata.target == dns.name.from_text("_http._tcp.local.")
    assert recs[0].ttl == DEFAULT_TTL


def test_ipv4_mapped_counts_as_a():
    s = MDNSService("x", "_http._tcp", "local.", "h.", 80, ["::ffff:10.1.2.3"], [])
    a = s.records(Question("h.", dns.rdatatype.A))
    aaaa = s.records(Question("h.", dns.rdatatype.AAAA))
    assert [r.rdata.address for r in a] == ["10.1.2.3"]
    assert aaaa == []


def test_wants_unicast():
    assert Question("a.", dns.rdatatype.PTR, 0x8001).wants_unicast is True
    assert Question("a.", dns.rdatatype.PTR).wants_unicast is False


@pytest.mark.parametrize(
    "value, expected",
    [("..local..", "local"), ("_http._tcp.", "_http._tcp"), ("", "")],
)
def test_trim_dot(value, expected):
    assert trim_dot(value) == expected


def test_validate_fqdn():
    validate_fqdn("local.")
    with pytest.raises(ValueError):
        validate_fqdn("")
    with pytest.raises(ValueError):
        validate_fqdn("local")