"""Resource record model shared by record sources and aggregators.

Brief:
  Record sources (zone file, AXFR) turn dnspython rdata into ResourceRecord
  instances. Aggregators only read them, so the type is frozen.
"""

from __future__ import annotations

import functools
import ipaddress
from dataclasses import dataclass
from typing import Any, Optional, Union

import dns.name
import dns.rdatatype

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@functools.lru_cache(maxsize=65536)
def canonical_name(name: Union[str, dns.name.Name]) -> str:
    """Brief: Normalize a DNS name to lower-case absolute text form.

    Inputs:
      - name: dns.name.Name or text (with or without trailing dot).

    Outputs:
      - str: lower-case name ending in a single dot ("." for the root).

    Example:
      >>> canonical_name("NS1.Example.SE")
      'ns1.example.se.'
    """

    if isinstance(name, dns.name.Name):
        text = name.to_text()
    else:
        text = str(name).strip()
    text = text.rstrip(".").lower()
    return text + "."


def zone_label(zone: str) -> str:
    """Brief: Render a zone name the way it appears in metric tags (no trailing dot)."""

    return canonical_name(zone).rstrip(".") or "."


@dataclass(frozen=True)
class ResourceRecord:
    """Brief: Immutable view of one resource record of the zone.

    Inputs:
      - owner: canonical owner name.
      - rdtype: numeric record type.
      - rdata: dnspython rdata object holding the type-specific fields.
      - ttl: record TTL in seconds.

    Outputs:
      - ResourceRecord with typed accessors for NS, A/AAAA and DS fields.
    """

    owner: str
    rdtype: int
    rdata: Any
    ttl: int = 0

    @classmethod
    def from_rdata(
        cls, name: Union[str, dns.name.Name], ttl: int, rdata: Any
    ) -> "ResourceRecord":
        return cls(
            owner=canonical_name(name),
            rdtype=int(rdata.rdtype),
            rdata=rdata,
            ttl=int(ttl),
        )

    @property
    def type_name(self) -> str:
        return dns.rdatatype.to_text(self.rdtype)

    @property
    def target(self) -> Optional[str]:
        """NS target host, or None for other record types."""
        if self.rdtype != dns.rdatatype.NS:
            return None
        return canonical_name(self.rdata.target)

    @property
    def address(self) -> Optional[IPAddress]:
        """A/AAAA address, or None for other record types."""
        if self.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            return None
        return ipaddress.ip_address(self.rdata.address)

    @property
    def algorithm(self) -> Optional[int]:
        if self.rdtype != dns.rdatatype.DS:
            return None
        return int(self.rdata.algorithm)

    @property
    def digest_type(self) -> Optional[int]:
        if self.rdtype != dns.rdatatype.DS:
            return None
        return int(self.rdata.digest_type)

    def __str__(self) -> str:
        return f"{self.owner} {self.ttl} {self.type_name} {self.rdata.to_text()}"
