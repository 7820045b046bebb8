"""An mDNS responder that answers multicast questions from a zone."""

from __future__ import annotations

import logging
import socket
import struct
import threading
from dataclasses import dataclass

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode

from .zone import Question, Record, Zone

IPV4_MDNS = "224.0.0.251"
IPV6_MDNS = "ff02::fb"
MDNS_PORT = 5353
FORCE_UNICAST_RESPONSES = False

_BUFFER_SIZE = 65536
_POLL_INTERVAL = 0.25


@dataclass
class Config:
    """Settings for an mDNS server."""

    zone: Zone
    interface: str | None = None
    log_empty_responses: bool = False
    logger: logging.Logger | None = None


def handle_question(zone: Zone, question: Question) -> tuple[list[Record], list[Record]]:
    """Answer one question, returning (multicast records, unicast records)."""
    records = zone.records(question)
    if not records:
        return [], []
    if question.wants_unicast or FORCE_UNICAST_RESPONSES:
        return [], list(records)
    return list(records), []


def _response(answers: list[Record], message_id: int) -> dns.message.Message | None:
    if not answers:
        return None
    msg = dns.message.Message(id=message_id)
    msg.flags = dns.flags.QR | dns.flags.AA
    for record in answers:
        rrset = msg.find_rrset(
            msg.answer,
            dns.name.from_text(record.name),
            record.rclass,
            record.rtype,
            create=True,
        )
        rrset.add(record.rdata, record.ttl)
    return msg


def build_responses(
    zone: Zone, query: dns.message.Message
) -> tuple[dns.message.Message | None, dns.message.Message | None]:
    """Build the (multicast, unicast) responses to a query; either may be None."""
    if query.opcode() != dns.opcode.QUERY:
        raise ValueError(f"mdns: received query with non-zero opcode {query.opcode()}")
    if query.rcode() != dns.rcode.NOERROR:
        raise ValueError(f"mdns: received query with non-zero rcode {query.rcode()}")
    if query.flags & dns.flags.TC:
        raise ValueError("mdns: support for DNS requests with the truncated flag is not implemented")

    multicast: list[Record] = []
    unicast: list[Record] = []
    for rrset in query.question:
        question = Question(rrset.name.to_text(), int(rrset.rdtype), int(rrset.rdclass))
        mrecs, urecs = handle_question(zone, question)
        multicast.extend(mrecs)
        unicast.extend(urecs)

    return _response(multicast, 0), _response(unicast, query.id)


def _set_reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            pass


def _open_ipv4(interface: str | None) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        _set_reuse(sock)
        sock.bind(("", MDNS_PORT))
        group = socket.inet_aton(IPV4_MDNS)
        any_addr = socket.inet_aton("0.0.0.0")
        if interface is None:
            mreq = struct.pack("4s4s", group, any_addr)
        else:
            mreq = struct.pack("4s4si", group, any_addr, socket.if_nametoindex(interface))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        sock.settimeout(_POLL_INTERVAL)
    except OSError:
        sock.close()
        raise
    return sock


def _open_ipv6(interface: str | None) -> socket.socket:
    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        _set_reuse(sock)
        sock.bind(("::", MDNS_PORT))
        index = socket.if_nametoindex(interface) if interface else 0
        mreq = socket.inet_pton(socket.AF_INET6, IPV6_MDNS) + struct.pack("@I", index)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1)
        sock.settimeout(_POLL_INTERVAL)
    except OSError:
        sock.close()
        raise
    return sock


class Server:
    """Listens on the mDNS multicast groups and answers from the configured zone."""

    def __init__(self, config: Config):
        if config.logger is None:
            config.logger = logging.getLogger(__name__)
        self.config = config
        self._stopped = threading.Event()
        self._lock = threading.Lock()

        self._ipv4 = self._try_open(_open_ipv4, "udp4")
        self._ipv6 = self._try_open(_open_ipv6, "udp6")
        if self._ipv4 is None and self._ipv6 is None:
            raise OSError("no multicast listeners could be started")

        self._threads = [
            threading.Thread(target=self._recv, args=(sock,), daemon=True)
            for sock in (self._ipv4, self._ipv6)
            if sock is not None
        ]
        for thread in self._threads:
            thread.start()

    def _try_open(self, opener, label: str) -> socket.socket | None:
        try:
            return opener(self.config.interface)
        except OSError as err:
            self.config.logger.debug("mdns: failed to listen on %s: %s", label, err)
            return None

    def shutdown(self) -> None:
        """Stop listening; calling it again does nothing."""
        with self._lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=2 * _POLL_INTERVAL + 1)
        for sock in (self._ipv4, self._ipv6):
            if sock is not None:
                sock.close()

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()

    def _recv(self, sock: socket.socket) -> None:
        while not self._stopped.is_set():
            try:
                data, source = sock.recvfrom(_BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError:
                if self._stopped.is_set():
                    return
                continue
            try:
                query = dns.message.from_wire(data)
                self.handle_query(query, source)
            except (dns.exception.DNSException, ValueError, OSError) as err:
                self.config.logger.error("mdns: failed to handle query: %s", err)

    def handle_query(self, query: dns.message.Message, source) -> None:
        """Answer ``query`` by sending responses back to ``source``."""
        multicast, unicast = build_responses(self.config.zone, query)

        if self.config.log_empty_responses and multicast is None and unicast is None:
            names = ", ".join(rrset.name.to_text() for rrset in query.question)
            self.config.logger.info("no responses for query with questions: %s", names)

        if multicast is not None:
            try:
                self._send(multicast, source)
            except OSError as err:
                raise OSError(f"mdns: error sending multicast response: {err}") from err
        if unicast is not None:
            try:
                self._send(unicast, source)
            except OSError as err:
                raise OSError(f"mdns: error sending unicast response: {err}") from err

    def _send(self, response: dns.message.Message, source) -> None:
        wire = response.to_wire()
        sock = self._ipv4 if len(source) == 2 else self._ipv6
        if sock is None:
            raise OSError(f"no listener for address family of {source[0]}")
        sock.sendto(wire, source)