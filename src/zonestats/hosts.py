"""
Thread-safe nameserver host bookkeeping for delegation analysis.

A HostRegistry is owned by one pipeline run (one nsstats aggregator). Record
delivery threads and resolution threads share it; every HostEntry has its
own lock and the registry lock only guards insert-or-fetch and enumeration.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Set, Tuple

from .records import IPAddress, canonical_name


@dataclass(frozen=True)
class HostSnapshot:
    """Brief: Point-in-time copy of a HostEntry taken under its lock."""

    name: str
    in_bailiwick: bool
    domains: FrozenSet[str]
    glue: FrozenSet[IPAddress]
    addresses: FrozenSet[IPAddress]

    @property
    def glue_mismatch(self) -> bool:
        """True when glue and resolved address sets differ in either direction."""
        return self.glue != self.addresses


@dataclass
class HostEntry:
    """Brief: Mutable record of everything known about one nameserver host.

    Inputs:
      - name: canonical hostname.
      - in_bailiwick: True when the host is the zone apex or below it; fixed
        at creation time.

    Outputs:
      - HostEntry whose add_* methods may be called from any thread.
    """

    name: str
    in_bailiwick: bool
    domains: Set[str] = field(default_factory=set)
    glue: Set[IPAddress] = field(default_factory=set)
    addresses: Set[IPAddress] = field(default_factory=set)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def add_domain(self, domain: str) -> None:
        with self._lock:
            self.domains.add(domain)

    def add_glue(self, address: IPAddress) -> None:
        with self._lock:
            self.glue.add(address)

    def add_addresses(self, addresses: Iterable[IPAddress]) -> None:
        with self._lock:
            self.addresses.update(addresses)

    def snapshot(self) -> HostSnapshot:
        with self._lock:
            return HostSnapshot(
                name=self.name,
                in_bailiwick=self.in_bailiwick,
                domains=frozenset(self.domains),
                glue=frozenset(self.glue),
                addresses=frozenset(self.addresses),
            )


class HostRegistry:
    """Brief: Mapping of hostname -> HostEntry with idempotent creation.

    Inputs:
      - origin: zone apex used to decide in-bailiwick status.

    Outputs:
      - HostRegistry; get_or_create() guarantees exactly one entry per name
        regardless of how many threads race on the first sighting.

    Example:
      >>> reg = HostRegistry("se")
      >>> entry, created = reg.get_or_create("ns1.example.se")
      >>> created, entry.in_bailiwick
      (True, True)
      >>> reg.get_or_create("NS1.EXAMPLE.SE.")[1]
      False
    """

    def __init__(self, origin: str) -> None:
        self.origin = canonical_name(origin)
        self._lock = threading.Lock()
        self._hosts: Dict[str, HostEntry] = {}

    def is_in_bailiwick(self, hostname: str) -> bool:
        name = canonical_name(hostname)
        if self.origin == ".":
            return True
        return name == self.origin or name.endswith("." + self.origin)

    def get(self, hostname: str) -> HostEntry | None:
        with self._lock:
            return self._hosts.get(canonical_name(hostname))

    def get_or_create(self, hostname: str) -> Tuple[HostEntry, bool]:
        """Brief: Fetch the entry for hostname, creating it on first sight.

        Outputs:
          - (entry, created): created is True for exactly one caller per name.
        """

        name = canonical_name(hostname)
        with self._lock:
            entry = self._hosts.get(name)
            if entry is not None:
                return entry, False
            entry = HostEntry(name=name, in_bailiwick=self.is_in_bailiwick(name))
            self._hosts[name] = entry
            return entry, True

    def hostnames(self) -> List[str]:
        with self._lock:
            return list(self._hosts)

    def entries(self) -> List[HostEntry]:
        with self._lock:
            return list(self._hosts.values())

    def snapshots(self) -> List[HostSnapshot]:
        return [entry.snapshot() for entry in self.entries()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)

    def __contains__(self, hostname: object) -> bool:
        if not isinstance(hostname, str):
            return False
        with self._lock:
            return canonical_name(hostname) in self._hosts
