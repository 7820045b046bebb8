"""mDNS service discovery: send PTR queries and collect the answers."""

from __future__ import annotations

import ipaddress
import logging
import queue
import socket
import struct
import threading
import time
from dataclasses import dataclass, field

import dns.exception
import dns.flags
import dns.message
import dns.rdataclass
import dns.rdatatype

from .server import IPV4_MDNS, IPV6_MDNS, MDNS_PORT, _open_ipv4, _open_ipv6
from .zone import UNICAST_RESPONSE_BIT, trim_dot

_BUFFER_SIZE = 65536
_POLL_INTERVAL = 0.05
_MESSAGE_QUEUE_SIZE = 32


@dataclass
class ServiceEntry:
    """A service found on the network."""

    name: str
    host: str = ""
    addr_v4: ipaddress.IPv4Address | None = None
    addr_v6: ipaddress.IPv6Address | None = None
    port: int = 0
    info: str = ""
    info_fields: list[str] = field(default_factory=list)
    addr: ipaddress.IPv4Address | ipaddress.IPv6Address | None = None
    has_txt: bool = field(default=False, repr=False)
    sent: bool = field(default=False, repr=False)

    def complete(self) -> bool:
        """True once an address, a port and TXT data have all been seen."""
        has_addr = self.addr_v4 is not None or self.addr_v6 is not None or self.addr is not None
        return has_addr and self.port != 0 and self.has_txt


@dataclass
class QueryParam:
    """Settings for a service query."""

    service: str
    domain: str = "local"
    timeout: float = 1.0
    interface: str | None = None
    entries: queue.Queue = field(default_factory=queue.Queue)
    want_unicast_response: bool = False
    disable_ipv4: bool = False
    disable_ipv6: bool = False
    logger: logging.Logger | None = None


def default_params(service: str) -> QueryParam:
    """Return query settings with the default domain, timeout and families."""
    return QueryParam(service=service)


def build_query(name: str, want_unicast_response: bool = False) -> dns.message.Message:
    """Build a non-recursive PTR question for ``name``."""
    rdclass = dns.rdataclass.IN
    if want_unicast_response:
        rdclass = dns.rdataclass.IN | UNICAST_RESPONSE_BIT
    msg = dns.message.make_query(name, dns.rdatatype.PTR, rdclass)
    msg.flags &= ~dns.flags.RD
    return msg


def _needs_zone(ip: ipaddress.IPv6Address) -> bool:
    link_local_multicast = ip.is_multicast and (ip.packed[1] & 0x0F) == 0x02
    return ip.is_link_local or link_local_multicast


class ResponseTracker:
    """Assembles service entries from the records of successive responses."""

    def __init__(self):
        self._in_progress: dict[str, ServiceEntry] = {}

    def _ensure(self, name: str) -> ServiceEntry:
        entry = self._in_progress.get(name)
        if entry is None:
            entry = ServiceEntry(name=name)
            self._in_progress[name] = entry
        return entry

    def _alias(self, src: str, dst: str) -> None:
        self._in_progress[dst] = self._ensure(src)

    def process(
        self, message: dns.message.Message, source_zone: str = ""
    ) -> tuple[ServiceEntry | None, str | None]:
        """Fold a message in.

        Returns ``(entry, None)`` when an entry has just become complete,
        ``(None, name)`` when the last touched entry is still incomplete and
        ``name`` should be queried again, and ``(None, None)`` otherwise.
        """
        current: ServiceEntry | None = None
        for rrset in [*message.answer, *message.additional]:
            owner = rrset.name.to_text()
            for rdata in rrset:
                rdtype = rrset.rdtype
                if rdtype == dns.rdatatype.PTR:
                    current = self._ensure(rdata.target.to_text())
                elif rdtype == dns.rdatatype.SRV:
                    target = rdata.target.to_text()
                    if target != owner:
                        self._alias(owner, target)
                    current = self._ensure(owner)
                    current.host = target
                    current.port = int(rdata.port)
                elif rdtype == dns.rdatatype.TXT:
                    current = self._ensure(owner)
                    fields = [s.decode("utf-8", errors="replace") for s in rdata.strings]
                    current.info = "|".join(fields)
                    current.info_fields = fields
                    current.has_txt = True
                elif rdtype == dns.rdatatype.A:
                    current = self._ensure(owner)
                    ip4 = ipaddress.IPv4Address(rdata.address)
                    current.addr = ip4
                    current.addr_v4 = ip4
                elif rdtype == dns.rdatatype.AAAA:
                    current = self._ensure(owner)
                    ip6 = ipaddress.IPv6Address(rdata.address)
                    if source_zone and _needs_zone(ip6):
                        ip6 = ipaddress.IPv6Address(f"{rdata.address}%{source_zone}")
                    current.addr = ip6
                    current.addr_v6 = ip6

        if current is None:
            return None, None
        if current.complete():
            if current.sent:
                return None, None
            current.sent = True
            return current, None
        return None, current.name


def _open_unicast(family: int) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind(("::", 0))
        else:
            sock.bind(("0.0.0.0", 0))
        sock.settimeout(_POLL_INTERVAL)
    except OSError:
        sock.close()
        raise
    return sock


def _source_zone(source) -> str:
    if len(source) < 4:
        return ""
    host, _, zone = str(source[0]).partition("%")
    if zone:
        return zone
    scope_id = source[3]
    if not scope_id:
        return ""
    try:
        return socket.if_indextoname(scope_id)
    except OSError:
        return str(scope_id)


class _Client:
    """Unicast and multicast sockets for both address families."""

    def __init__(self, use_ipv4: bool, use_ipv6: bool, logger: logging.Logger):
        if not use_ipv4 and not use_ipv6:
            raise ValueError("must enable at least one of IPv4 and IPv6 querying")
        self._log = logger
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self.messages: queue.Queue = queue.Queue(maxsize=_MESSAGE_QUEUE_SIZE)

        uni4 = self._try(lambda: _open_unicast(socket.AF_INET), "udp4") if use_ipv4 else None
        uni6 = self._try(lambda: _open_unicast(socket.AF_INET6), "udp6") if use_ipv6 else None
        if uni4 is None and uni6 is None:
            raise OSError("failed to bind to any unicast UDP port")

        multi4 = self._try(lambda: _open_ipv4(None), "multicast udp4") if use_ipv4 else None
        multi6 = self._try(lambda: _open_ipv6(None), "multicast udp6") if use_ipv6 else None
        if multi4 is None and multi6 is None:
            self._close_all(uni4, uni6)
            raise OSError("failed to bind to any multicast UDP port")

        if uni4 is None or multi4 is None:
            self._log.info("mdns: failed to listen to both unicast and multicast on IPv4")
            self._close_all(uni4, multi4)
            uni4 = multi4 = None
        if uni6 is None or multi6 is None:
            self._log.info("mdns: failed to listen to both unicast and multicast on IPv6")
            self._close_all(uni6, multi6)
            uni6 = multi6 = None
        if uni4 is None and uni6 is None:
            raise OSError("at least one of IPv4 and IPv6 must be available")

        self.ipv4_unicast = uni4
        self.ipv6_unicast = uni6
        for sock in (multi4, multi6):
            if sock is not None:
                sock.settimeout(_POLL_INTERVAL)
        self.ipv4_multicast = multi4
        self.ipv6_multicast = multi6

    def _try(self, opener, label: str) -> socket.socket | None:
        try:
            return opener()
        except OSError as err:
            self._log.error("mdns: failed to bind to %s port: %s", label, err)
            return None

    @staticmethod
    def _close_all(*socks) -> None:
        for sock in socks:
            if sock is not None:
                sock.close()

    def _sockets(self) -> list[socket.socket]:
        return [
            sock
            for sock in (
                self.ipv4_unicast,
                self.ipv4_multicast,
                self.ipv6_unicast,
                self.ipv6_multicast,
            )
            if sock is not None
        ]

    def __enter__(self) -> _Client:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
        self._log.info("mdns: closing client")
        for thread in self._threads:
            thread.join(timeout=1.0)
        self._close_all(*self._sockets())

    def set_interface(self, interface: str) -> None:
        index = socket.if_nametoindex(interface)
        any_addr = socket.inet_aton("0.0.0.0")
        for sock in (self.ipv4_unicast, self.ipv4_multicast):
            if sock is not None:
                sock.setsockopt(
                    socket.IPPROTO_IP,
                    socket.IP_MULTICAST_IF,
                    struct.pack("4s4si", any_addr, any_addr, index),
                )
        for sock in (self.ipv6_unicast, self.ipv6_multicast):
            if sock is not None:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, index)

    def start(self) -> None:
        self._threads = [
            threading.Thread(target=self._recv, args=(sock,), daemon=True)
            for sock in self._sockets()
        ]
        for thread in self._threads:
            thread.start()

    def send(self, message: dns.message.Message) -> None:
        wire = message.to_wire()
        if self.ipv4_unicast is not None:
            self.ipv4_unicast.sendto(wire, (IPV4_MDNS, MDNS_PORT))
        if self.ipv6_unicast is not None:
            self.ipv6_unicast.sendto(wire, (IPV6_MDNS, MDNS_PORT, 0, 0))

    def _recv(self, sock: socket.socket) -> None:
        while not self._closed.is_set():
            try:
                data, source = sock.recvfrom(_BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError as err:
                if self._closed.is_set():
                    return
                self._log.error("mdns: failed to read packet: %s", err)
                continue
            if self._closed.is_set():
                return
            try:
                message = dns.message.from_wire(data)
            except dns.exception.DNSException as err:
                self._log.error("mdns: failed to unpack packet: %s", err)
                continue
            item = (message, _source_zone(source))
            while not self._closed.is_set():
                try:
                    self.messages.put(item, timeout=_POLL_INTERVAL)
                    break
                except queue.Full:
                    continue


def query(params: QueryParam, stop: threading.Event | None = None) -> None:
    """Query for a service, putting complete entries on ``params.entries``.

    Runs until the timeout elapses or ``stop`` is set.
    """
    logger = params.logger or logging.getLogger(__name__)
    domain = params.domain or "local"
    timeout = params.timeout or 1.0

    with _Client(not params.disable_ipv4, not params.disable_ipv6, logger) as client:
        if params.interface is not None:
            client.set_interface(params.interface)
        client.start()

        service_addr = f"{trim_dot(params.service)}.{trim_dot(domain)}."
        client.send(build_query(service_addr, params.want_unicast_response))

        tracker = ResponseTracker()
        deadline = time.monotonic() + timeout
        while stop is None or not stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            try:
                message, zone = client.messages.get(timeout=min(remaining, _POLL_INTERVAL))
            except queue.Empty:
                continue
            ready, requery = tracker.process(message, zone)
            if ready is not None:
                try:
                    params.entries.put_nowait(ready)
                except queue.Full:
                    pass
            elif requery is not None:
                try:
                    client.send(build_query(requery, False))
                except OSError as err:
                    logger.error("mdns: failed to query instance %s: %s", requery, err)


def lookup(service: str, entries: queue.Queue) -> None:
    """Query for ``service`` with default settings, delivering to ``entries``."""
    params = default_params(service)
    params.entries = entries
    query(params)