"""
Nameserver and glue analysis for a zone.

NS targets and A/AAAA owners are collected into a HostRegistry. The first
sighting of a hostname schedules one background resolution of that host
through the shared Resolver; every newly resolved address is probed once
for EDNS0/NSID/Cookie/version.bind support. finalize() waits for all of
that background work and then classifies each host:

  in-bailiwick, no glue      -> InTldNoGlue (+ InTldNoGlueNoIp when unresolved)
  in-bailiwick, glue         -> InTldGlue
                                  unresolved -> InTldGlueNoIp
                                  resolved   -> InTldGlueIp
                                                (+ InTldGlueIpMismatch when the
                                                glue and resolved sets differ)
  out-of-bailiwick           -> ExTld (+ ExTldNoIp when unresolved)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import astuple, dataclass, fields
from typing import Dict, Iterable, List, Set

import dns.rdatatype

from ..hosts import HostEntry, HostRegistry, HostSnapshot
from ..influx import format_line
from ..records import IPAddress, ResourceRecord, zone_label
from ..resolver import CapabilityProbeResult
from .base import BaseAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelegationStats:
    """Brief: Delegation health counters computed once from the host registry."""

    InTld: int = 0
    InTldNoGlue: int = 0
    InTldNoGlueNoIp: int = 0
    InTldGlue: int = 0
    InTldGlueNoIp: int = 0
    InTldGlueIp: int = 0
    InTldGlueIpMismatch: int = 0
    ExTld: int = 0
    ExTldNoIp: int = 0

    @classmethod
    def from_hosts(cls, hosts: Iterable[HostSnapshot]) -> "DelegationStats":
        """Brief: Classify every host snapshot and return the totals.

        Inputs:
          - hosts: snapshots of all registry entries.

        Outputs:
          - DelegationStats where InTldNoGlue + InTldGlue == InTld and
            InTld + ExTld == number of hosts.
        """

        c: Dict[str, int] = {f.name: 0 for f in fields(cls)}
        for host in hosts:
            resolved = bool(host.addresses)
            if not host.in_bailiwick:
                c["ExTld"] += 1
                if not resolved:
                    c["ExTldNoIp"] += 1
                continue

            c["InTld"] += 1
            if not host.glue:
                c["InTldNoGlue"] += 1
                if not resolved:
                    c["InTldNoGlueNoIp"] += 1
                continue

            c["InTldGlue"] += 1
            if not resolved:
                c["InTldGlueNoIp"] += 1
                continue
            c["InTldGlueIp"] += 1
            if host.glue_mismatch:
                c["InTldGlueIpMismatch"] += 1
        return cls(**c)

    def as_fields(self) -> Dict[str, int]:
        return {f.name: v for f, v in zip(fields(self), astuple(self))}


def _pct(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return 100.0 * part / whole


class NameserverStats(BaseAggregator):
    """Brief: Delegation health and nameserver capability statistics.

    Inputs (config):
      - probe: bool, probe every resolved nameserver address (default True).

    Outputs:
      - report(): a ``Hosts`` line with the nine DelegationStats counters and,
        when probing, one ``NSCapability`` line per address plus an
        ``NSCapabilities`` totals line.
    """

    aliases = ("nsstats", "hosts")

    def setup(self) -> None:
        if self.resolver is None:
            raise ValueError("nsstats needs a resolver")
        self.probe = bool(self.config.get("probe", True))
        self.registry = HostRegistry(self.zone)
        self.stats: DelegationStats = DelegationStats()
        self.capabilities: List[CapabilityProbeResult] = []

        self._tasks_lock = threading.Lock()
        self._resolve_futures: List[Future] = []
        self._probe_futures: List[Future] = []
        self._probed: Set[IPAddress] = set()
        self._resolve_pool = ThreadPoolExecutor(
            max_workers=self.resolver.resolve_gate.limit,
            thread_name_prefix="zonestats-resolve",
        )
        self._probe_pool = ThreadPoolExecutor(
            max_workers=self.resolver.probe_gate.limit,
            thread_name_prefix="zonestats-probe",
        )

    def receive(self, rr: ResourceRecord) -> None:
        if rr.rdtype == dns.rdatatype.NS:
            self._host(rr.target).add_domain(rr.owner)
        elif rr.rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
            self._host(rr.owner).add_glue(rr.address)

    def _host(self, hostname: str) -> HostEntry:
        entry, created = self.registry.get_or_create(hostname)
        if created:
            fut = self._resolve_pool.submit(self._resolve_host, entry)
            with self._tasks_lock:
                self._resolve_futures.append(fut)
        return entry

    def _resolve_host(self, entry: HostEntry) -> None:
        addresses = self.resolver.resolve(entry.name)
        if not addresses:
            logger.debug("%s did not resolve", entry.name)
        entry.add_addresses(addresses)
        if self.probe:
            for addr in addresses:
                self._schedule_probe(addr)

    def _schedule_probe(self, address: IPAddress) -> None:
        with self._tasks_lock:
            if address in self._probed:
                return
            self._probed.add(address)
            self._probe_futures.append(
                self._probe_pool.submit(self._probe_address, address)
            )

    def _probe_address(self, address: IPAddress) -> None:
        result = self.resolver.probe_capabilities(address)
        with self._lock:
            self.capabilities.append(result)

    def _wait(self, attr: str) -> None:
        with self._tasks_lock:
            pending = list(getattr(self, attr))
        for fut in pending:
            fut.result()

    def finalize(self) -> None:
        """Brief: Wait for resolution and probe tasks, then classify hosts.

        Raises:
          - Any unexpected exception from a background task.
        """

        try:
            # Resolution tasks schedule probes, so probes are only complete
            # once every resolution has returned.
            self._wait("_resolve_futures")
            self._wait("_probe_futures")
        finally:
            self.close()
        self.stats = DelegationStats.from_hosts(self.registry.snapshots())
        logger.info(
            "nsstats: %d hosts, %d probed addresses", len(self.registry), len(self.capabilities)
        )
        super().finalize()

    def close(self) -> None:
        self._resolve_pool.shutdown(wait=False, cancel_futures=True)
        self._probe_pool.shutdown(wait=False, cancel_futures=True)

    def report(self, zone: str, source: str) -> str:
        tld = zone_label(zone)
        lines = [
            format_line("Hosts", {"tld": tld, "source": source}, self.stats.as_fields())
        ]
        if not self.probe:
            return "".join(lines)

        with self._lock:
            results = sorted(self.capabilities, key=lambda r: (r.address.version, r.address))
        for res in results:
            lines.append(
                format_line(
                    "NSCapability",
                    {"tld": tld, "source": source, "ip": str(res.address)},
                    {
                        "edns0": int(res.edns0),
                        "cookies": int(res.cookies),
                        "nsid": res.nsid,
                        "bindversion": res.version,
                    },
                )
            )
        lines.append(
            format_line(
                "NSCapabilities",
                {"tld": tld, "source": source},
                {
                    "addresses": len(results),
                    "edns0": sum(1 for r in results if r.edns0),
                    "nsid": sum(1 for r in results if r.nsid is not None),
                    "cookies": sum(1 for r in results if r.cookies),
                    "bindversion": sum(1 for r in results if r.version is not None),
                },
            )
        )
        return "".join(lines)

    def summary(self) -> str:
        s = self.stats
        return (
            f"InTld hosts                               {s.InTld:5d}\n"
            f"InTld no glue           / no ip :         {s.InTldNoGlue:5d} / {s.InTldNoGlueNoIp:5d}"
            f"  ({_pct(s.InTldNoGlueNoIp, s.InTldNoGlue):5.1f})\n"
            f"InTld glue              / no ip :         {s.InTldGlue:5d} / {s.InTldGlueNoIp:5d}"
            f"  ({_pct(s.InTldGlueNoIp, s.InTldGlue):5.1f})\n"
            f"InTld glue and ip       / not matching :  {s.InTldGlueIp:5d} / {s.InTldGlueIpMismatch:5d}"
            f"  ({_pct(s.InTldGlueIpMismatch, s.InTldGlueIp):5.1f})\n"
            f"ExTld hosts             / no ip :         {s.ExTld:5d} / {s.ExTldNoIp:5d}"
            f"  ({_pct(s.ExTldNoIp, s.ExTld):5.1f})\n"
        )
