"""Service zones that answer mDNS questions with resource records."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Iterable, Protocol, Union

import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.A
import dns.rdtypes.IN.AAAA
import dns.rdtypes.IN.SRV

DEFAULT_TTL = 120
UNICAST_RESPONSE_BIT = 1 << 15

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class Question:
    """A single DNS question: a name, a record type and a class."""

    name: str
    qtype: int
    qclass: int = dns.rdataclass.IN

    @property
    def wants_unicast(self) -> bool:
        """True when the top bit of the class asks for a unicast reply."""
        return bool(self.qclass & UNICAST_RESPONSE_BIT)


@dataclass(frozen=True)
class Record:
    """A resource record: an owner name, its data and a TTL."""

    name: str
    rdata: dns.rdata.Rdata
    ttl: int = DEFAULT_TTL

    @property
    def rtype(self) -> int:
        return self.rdata.rdtype

    @property
    def rclass(self) -> int:
        return self.rdata.rdclass


class Zone(Protocol):
    """Anything that can answer a DNS question with records."""

    def records(self, question: Question) -> list[Record]:
        """Return the records that answer ``question``."""


def trim_dot(s: str) -> str:
    """Strip leading and trailing dots."""
    return s.strip(".")


def validate_fqdn(s: str) -> None:
    """Raise ValueError unless ``s`` is a non-empty name ending in a dot."""
    if not s:
        raise ValueError("FQDN must not be empty")
    if not s.endswith("."):
        raise ValueError(f"FQDN must end with a dot: {s}")


def _coerce_ip(value) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(value)
    except ValueError as err:
        raise ValueError(f"invalid IP address: {value!r}") from err


def _as_ipv4(ip: IPAddress) -> ipaddress.IPv4Address | None:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


def _lookup_ips(host: str) -> list[IPAddress]:
    infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_UDP)
    found: dict[IPAddress, None] = {}
    for info in infos:
        found.setdefault(ipaddress.ip_address(info[4][0]), None)
    if not found:
        raise OSError(f"no addresses for {host}")
    return list(found)


def _ptr(name: str, target: str) -> Record:
    rdata = dns.rdtypes.ANY.PTR.PTR(
        dns.rdataclass.IN, dns.rdatatype.PTR, dns.name.from_text(target)
    )
    return Record(name, rdata)


class MDNSService:
    """A service published over mDNS; answers questions as a zone."""

    def __init__(
        self,
        instance: str,
        service: str,
        domain: str = "",
        host_name: str = "",
        port: int = 0,
        ips: Iterable | None = None,
        txt: Iterable[str] | None = None,
    ):
        if not instance:
            raise ValueError("missing service instance name")
        if not service:
            raise ValueError("missing service name")
        if port == 0:
            raise ValueError("missing service port")

        if not domain:
            domain = "local."
        try:
            validate_fqdn(domain)
        except ValueError as err:
            raise ValueError(f"domain {domain!r} is not a fully-qualified domain name: {err}") from err

        if not host_name:
            try:
                host_name = socket.gethostname()
            except OSError as err:
                raise ValueError(f"could not determine host name: {err}") from err
            host_name = f"{host_name}."
        try:
            validate_fqdn(host_name)
        except ValueError as err:
            raise ValueError(
                f"hostname {host_name!r} is not a fully-qualified domain name: {err}"
            ) from err

        ip_list = list(ips) if ips is not None else []
        if not ip_list:
            try:
                ip_list = _lookup_ips(host_name)
            except OSError:
                try:
                    ip_list = _lookup_ips(f"{host_name}{domain}")
                except OSError as err:
                    raise ValueError(f"could not determine host IP addresses for {host_name}") from err

        self.instance = instance
        self.service = service
        self.domain = domain
        self.host_name = host_name
        self.port = port
        self.ips: list[IPAddress] = [_coerce_ip(ip) for ip in ip_list]
        self.txt: list[str] = list(txt) if txt is not None else []

        self.service_addr = f"{trim_dot(service)}.{trim_dot(domain)}."
        self.instance_addr = f"{instance}.{trim_dot(service)}.{trim_dot(domain)}."
        self.enum_addr = f"_services._dns-sd._udp.{trim_dot(domain)}."

    def records(self, question: Question) -> list[Record]:
        """Return the records answering ``question``, or an empty list."""
        name = question.name
        if name == self.enum_addr:
            return self._service_enum(question)
        if name == self.service_addr:
            return self._service_records(question)
        if name == self.instance_addr:
            return self._instance_records(question.qtype, name)
        if name == self.host_name and question.qtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
            return self._instance_records(question.qtype, name)
        return []

    def _service_enum(self, question: Question) -> list[Record]:
        if question.qtype in (dns.rdatatype.ANY, dns.rdatatype.PTR):
            return [_ptr(question.name, self.service_addr)]
        return []

    def _service_records(self, question: Question) -> list[Record]:
        if question.qtype not in (dns.rdatatype.ANY, dns.rdatatype.PTR):
            return []
        pointer = _ptr(question.name, self.instance_addr)
        return [pointer, *self._instance_records(dns.rdatatype.ANY, self.instance_addr)]

    def _instance_records(self, qtype: int, name: str) -> list[Record]:
        if qtype == dns.rdatatype.ANY:
            return [
                *self._instance_records(dns.rdatatype.SRV, self.instance_addr),
                *self._instance_records(dns.rdatatype.TXT, self.instance_addr),
            ]
        if qtype == dns.rdatatype.A:
            return [
                Record(self.host_name, dns.rdtypes.IN.A.A(dns.rdataclass.IN, dns.rdatatype.A, str(ip4)))
                for ip4 in map(_as_ipv4, self.ips)
                if ip4 is not None
            ]
        if qtype == dns.rdatatype.AAAA:
            return [
                Record(
                    self.host_name,
                    dns.rdtypes.IN.AAAA.AAAA(
                        dns.rdataclass.IN,
                        dns.rdatatype.AAAA,
                        str(ipaddress.IPv6Address(int(ip))),
                    ),
                )
                for ip in self.ips
                if _as_ipv4(ip) is None
            ]
        if qtype == dns.rdatatype.SRV:
            srv = dns.rdtypes.IN.SRV.SRV(
                dns.rdataclass.IN,
                dns.rdatatype.SRV,
                10,
                1,
                self.port & 0xFFFF,
                dns.name.from_text(self.host_name),
            )
            return [
                Record(name, srv),
                *self._instance_records(dns.rdatatype.A, self.instance_addr),
                *self._instance_records(dns.rdatatype.AAAA, self.instance_addr),
            ]
        if qtype == dns.rdatatype.TXT:
            strings = self.txt or [""]
            txt = dns.rdtypes.ANY.TXT.TXT(dns.rdataclass.IN, dns.rdatatype.TXT, strings)
            return [Record(name, txt)]
        return []