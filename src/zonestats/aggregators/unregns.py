from __future__ import annotations

import logging
from typing import List, Set

import dns.rdatatype

from ..influx import format_line
from ..records import ResourceRecord, zone_label
from .base import BaseAggregator

logger = logging.getLogger(__name__)


class UnRegNS(BaseAggregator):
    """Brief: Find in-zone nameserver hosts that no delegation in the zone covers.

    A host such as ``ns1.gone.se.`` used as an NS target but with no NS
    records for ``gone.se.`` (or any other ancestor below the apex) points
    at a name nobody has registered. Not enabled by default.

    Outputs:
      - report(): ``UnRegNS,tld=<zone>,source=<source> value=<n>i``
    """

    aliases = ("unregns", "unregistered_ns")

    def setup(self) -> None:
        self._domains: Set[str] = set()
        self._hosts: Set[str] = set()
        self.unregistered: List[str] = []

    def receive(self, rr: ResourceRecord) -> None:
        if rr.rdtype != dns.rdatatype.NS:
            return
        host = rr.target
        with self._lock:
            if rr.owner != self.zone:
                self._domains.add(rr.owner)
            if host != self.zone and host.endswith("." + self.zone):
                self._hosts.add(host)

    def _is_delegated(self, host: str) -> bool:
        labels = host.split(".")
        # Walk from the host itself up to (but excluding) the apex.
        for i in range(len(labels) - 1):
            candidate = ".".join(labels[i:])
            if candidate == self.zone:
                break
            if candidate in self._domains:
                return True
        return False

    def finalize(self) -> None:
        with self._lock:
            self.unregistered = sorted(h for h in self._hosts if not self._is_delegated(h))
        for host in self.unregistered:
            logger.info("UNREGNS %s", host)
        super().finalize()

    def report(self, zone: str, source: str) -> str:
        return format_line(
            "UnRegNS",
            {"tld": zone_label(zone), "source": source},
            {"value": len(self.unregistered)},
        )

    def summary(self) -> str:
        return "".join(f"UNREGNS  {host}\n" for host in self.unregistered)
