"""Rate-limited DNS query client used for nameserver resolution and probing.

Brief:
  Resolver.resolve() looks up the A and AAAA addresses of a hostname through
  a randomly selected recursive resolver. Resolver.probe_capabilities() sends
  a CHAOS version.bind query straight to a nameserver address and records
  EDNS0, NSID and DNS Cookie support.

  Each query kind passes through its own AdmissionGate, a bounded semaphore
  that caps how many queries are on the wire at once. Network failures are
  soft: resolve() returns an empty list and probe_capabilities() returns a
  result with every capability absent.

Inputs:
  - List of resolver addresses (IPv4/IPv6 literals or host names).

Outputs:
  - Resolver instances shared by all resolution/probe threads of a run.
"""

from __future__ import annotations

import ipaddress
import logging
import random
import socket
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import dns.edns
import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.query
import dns.resolver

from .records import IPAddress, canonical_name

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_RESOLVE_LIMIT = 200
DEFAULT_PROBE_LIMIT = 100
EDNS0_PAYLOAD = 4096
VERSION_BIND = "version.bind."

# Signature of dns.query.udp(q, where, timeout=..., port=...).
QueryFunc = Callable[..., dns.message.Message]


class ResolverConfigError(ValueError):
    """Brief: No usable resolver address could be determined."""

    pass


class AdmissionGate:
    """Brief: Bounded admission gate for outgoing queries.

    Inputs:
      - limit: Maximum number of concurrently admitted queries (>= 1).
      - name: Label used in log messages.

    Outputs:
      - Context manager; entering blocks until a slot is free and leaving
        always releases the slot, including when the body raises.

    Example:
      >>> gate = AdmissionGate(2, name="demo")
      >>> with gate:
      ...     gate.in_flight
      1
      >>> gate.peak
      1
    """

    def __init__(self, limit: int, name: str = "queries") -> None:
        if int(limit) < 1:
            raise ValueError(f"admission limit for {name} must be >= 1, got {limit!r}")
        self.limit = int(limit)
        self.name = name
        self._slots = threading.BoundedSemaphore(self.limit)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0
        self._admitted = 0

    def acquire(self) -> None:
        self._slots.acquire()
        with self._lock:
            self._in_flight += 1
            self._admitted += 1
            if self._in_flight > self._peak:
                self._peak = self._in_flight

    def release(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._slots.release()

    def __enter__(self) -> "AdmissionGate":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak

    @property
    def admitted(self) -> int:
        with self._lock:
            return self._admitted


@dataclass(frozen=True)
class CapabilityProbeResult:
    """Brief: Protocol capabilities observed for one nameserver address.

    Inputs:
      - address: probed address.
      - edns0: an OPT record was present in the reply.
      - nsid: rendered NSID payload when the server returned the option.
      - cookies: the reply carried a DNS Cookie option.
      - version: CHAOS version.bind TXT content when answered.
    """

    address: IPAddress
    edns0: bool = False
    nsid: Optional[str] = None
    cookies: bool = False
    version: Optional[str] = None


def decode_nsid(payload: bytes | str) -> str:
    """Brief: Render an NSID option payload as printable text.

    Inputs:
      - payload: raw option bytes, or the same bytes written as hex pairs.

    Outputs:
      - str: payload decoded byte by byte; printable ASCII is kept as-is and
        every other byte is written as a ``\\xNN`` escape.

    Example:
      >>> decode_nsid("676e73312e6578")
      'gns1.ex'
      >>> decode_nsid(b"ns\\x01")
      'ns\\\\x01'
    """

    if isinstance(payload, str):
        raw = bytes.fromhex(payload)
    else:
        raw = bytes(payload)
    out: List[str] = []
    for b in raw:
        if 0x20 <= b < 0x7F and b != 0x5C:
            out.append(chr(b))
        else:
            out.append(f"\\x{b:02x}")
    return "".join(out)


def make_cookie() -> bytes:
    """Brief: Return a random 8-byte client cookie (16 hex digits)."""

    return bytes.fromhex(f"{random.getrandbits(64):016x}")


def build_probe_query() -> dns.message.Message:
    """Brief: Build the CHAOS TXT version.bind probe with NSID and Cookie options.

    Outputs:
      - dns.message.Message with EDNS0 payload 4096, RD cleared and AD set.
    """

    options = [
        dns.edns.GenericOption(dns.edns.OptionType.NSID, b""),
        dns.edns.GenericOption(dns.edns.OptionType.COOKIE, make_cookie()),
    ]
    query = dns.message.make_query(
        VERSION_BIND,
        dns.rdatatype.TXT,
        rdclass=dns.rdataclass.CH,
        use_edns=0,
        payload=EDNS0_PAYLOAD,
        options=options,
    )
    query.flags &= ~int(dns.flags.RD)
    query.flags |= dns.flags.AD
    return query


def parse_probe_response(
    address: IPAddress, response: dns.message.Message
) -> CapabilityProbeResult:
    """Brief: Extract capabilities from a version.bind probe reply.

    Inputs:
      - address: probed address (copied into the result).
      - response: reply message.

    Outputs:
      - CapabilityProbeResult; a NOTIMP reply yields a result with every
        capability absent.
    """

    if response.rcode() == dns.rcode.NOTIMP:
        return CapabilityProbeResult(address=address)

    version: Optional[str] = None
    for rrset in response.answer:
        if rrset.rdtype != dns.rdatatype.TXT:
            continue
        for rdata in rrset:
            version = b"".join(rdata.strings).decode("utf-8", errors="replace")

    if response.edns < 0:
        return CapabilityProbeResult(address=address, version=version)

    nsid: Optional[str] = None
    cookies = False
    for option in response.options:
        if option.otype == dns.edns.OptionType.NSID:
            nsid = decode_nsid(option.to_wire())
        elif option.otype == dns.edns.OptionType.COOKIE:
            cookies = True

    return CapabilityProbeResult(
        address=address, edns0=True, nsid=nsid, cookies=cookies, version=version
    )


def system_resolvers(filename: str = "/etc/resolv.conf") -> List[str]:
    """Brief: Return the nameserver addresses configured for this host.

    Inputs:
      - filename: resolv.conf style file read through dnspython.

    Outputs:
      - list[str]: nameserver addresses; empty when none are configured or
        the file is unreadable.
    """

    try:
        res = dns.resolver.Resolver(filename=filename, configure=True)
    except (dns.resolver.NoResolverConfiguration, OSError) as exc:
        logger.debug("No system resolver configuration in %s: %s", filename, exc)
        return []
    # Entries are str or dns.nameserver.Nameserver depending on dnspython version.
    return [str(getattr(ns, "address", ns)) for ns in res.nameservers]


def _expand_resolver(entry: str) -> List[str]:
    """Brief: Turn one configured resolver (address or host name) into addresses."""

    text = str(entry).strip()
    if not text:
        return []
    try:
        return [str(ipaddress.ip_address(text))]
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(text, 53, socket.AF_UNSPEC, socket.SOCK_DGRAM)
    except (socket.gaierror, OSError) as exc:
        logger.warning("Cannot resolve configured resolver %r: %s", text, exc)
        return []
    seen: List[str] = []
    for _family, _socktype, _proto, _canonname, sockaddr in infos:
        ip = str(sockaddr[0])
        if ip not in seen:
            seen.append(ip)
    return seen


class Resolver:
    """Brief: Rate-limited resolver/prober shared by one pipeline run.

    Inputs:
      - servers: resolver addresses or host names; empty means the system
        resolvers.
      - timeout: per-query timeout in seconds.
      - resolve_limit: admission limit for address resolution queries.
      - probe_limit: admission limit for capability probes.
      - query: callable with the dns.query.udp signature; injectable so tests
        can answer without a network.
      - rng: random.Random used for server selection.

    Outputs:
      - Resolver exposing resolve() and probe_capabilities().

    Raises:
      - ResolverConfigError when no resolver address is available.
    """

    def __init__(
        self,
        servers: Sequence[str] | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        resolve_limit: int = DEFAULT_RESOLVE_LIMIT,
        probe_limit: int = DEFAULT_PROBE_LIMIT,
        query: QueryFunc | None = None,
        rng: random.Random | None = None,
    ) -> None:
        addresses: List[str] = []
        for entry in servers or system_resolvers():
            for addr in _expand_resolver(entry):
                if addr not in addresses:
                    addresses.append(addr)
        if not addresses:
            raise ResolverConfigError("No resolver(s) found.")

        self.servers: List[str] = addresses
        self.timeout = float(timeout)
        self.resolve_gate = AdmissionGate(resolve_limit, name="resolve")
        self.probe_gate = AdmissionGate(probe_limit, name="probe")
        self._query: QueryFunc = query or dns.query.udp
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

    def choose_server(self) -> str:
        with self._rng_lock:
            return self._rng.choice(self.servers)

    def _exchange(
        self, gate: AdmissionGate, query: dns.message.Message, where: str
    ) -> Optional[dns.message.Message]:
        """Brief: Send one query through gate; None on any network failure."""

        with gate:
            try:
                return self._query(query, where, timeout=self.timeout)
            except (dns.exception.DNSException, OSError, EOFError) as exc:
                logger.debug(
                    "%s query %s to %s failed: %s",
                    gate.name,
                    query.question[0].to_text() if query.question else "?",
                    where,
                    exc,
                )
                return None

    def _lookup(self, hostname: str, rdtype: int, server: str) -> List[IPAddress]:
        query = dns.message.make_query(hostname, rdtype)
        query.flags |= dns.flags.RD
        response = self._exchange(self.resolve_gate, query, server)
        if response is None:
            return []
        if response.rcode() != dns.rcode.NOERROR:
            logger.debug(
                "%s %s: %s (server %s)",
                hostname,
                dns.rdatatype.to_text(rdtype),
                dns.rcode.to_text(response.rcode()),
                server,
            )
            return []
        found: List[IPAddress] = []
        for rrset in response.answer:
            if rrset.rdtype != rdtype:
                continue
            for rdata in rrset:
                found.append(ipaddress.ip_address(rdata.address))
        return found

    def resolve(self, hostname: str) -> List[IPAddress]:
        """Brief: Resolve hostname to its A and AAAA addresses.

        Inputs:
          - hostname: name to resolve (relative names are made absolute).

        Outputs:
          - list of addresses; empty when nothing could be resolved.
        """

        name = canonical_name(hostname)
        server = self.choose_server()
        addresses = self._lookup(name, dns.rdatatype.A, server)
        addresses.extend(self._lookup(name, dns.rdatatype.AAAA, server))
        return addresses

    def probe_capabilities(self, address: IPAddress | str) -> CapabilityProbeResult:
        """Brief: Probe one nameserver address for EDNS0/NSID/Cookie/version.bind.

        Inputs:
          - address: nameserver address to query directly.

        Outputs:
          - CapabilityProbeResult; every capability absent when the server
            did not answer.
        """

        addr = ipaddress.ip_address(str(address))
        response = self._exchange(self.probe_gate, build_probe_query(), str(addr))
        if response is None:
            return CapabilityProbeResult(address=addr)
        return parse_probe_response(addr, response)
