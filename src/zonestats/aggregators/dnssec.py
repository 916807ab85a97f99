from __future__ import annotations

from collections import Counter
from typing import Dict, Set, Tuple

import dns.dnssectypes
import dns.rdatatype

from ..influx import format_line
from ..records import ResourceRecord, zone_label
from .base import BaseAggregator


def algorithm_name(alg: int) -> str:
    """Brief: DNSSEC algorithm mnemonic, or the decimal number when unknown.

    Example:
      >>> algorithm_name(8), algorithm_name(200)
      ('RSASHA256', '200')
    """

    try:
        return dns.dnssectypes.Algorithm(alg).name
    except ValueError:
        return str(alg)


def digest_type_name(digest: int) -> str:
    """Brief: DS digest type mnemonic, or the decimal number when unknown."""

    try:
        return dns.dnssectypes.DSDigest(digest).name
    except ValueError:
        return str(digest)


class DNSSEC(BaseAggregator):
    """Brief: Tally DS records by (algorithm, digest type) and count signed domains.

    Every DS record increments the count of its (algorithm, digest type) pair
    and adds its owner to the set of signed domains.

    Outputs:
      - report(): one ``CountDS`` line per pair plus ``CountDomSigned``.
    """

    aliases = ("dnssec", "ds")

    def setup(self) -> None:
        self._pairs: Counter[Tuple[int, int]] = Counter()
        self._signed: Set[str] = set()
        self.count_ds: Dict[Tuple[int, int], int] = {}
        self.signed_domains = 0

    def receive(self, rr: ResourceRecord) -> None:
        if rr.rdtype != dns.rdatatype.DS:
            return
        key = (rr.algorithm, rr.digest_type)
        with self._lock:
            self._pairs[key] += 1
            self._signed.add(rr.owner)

    def finalize(self) -> None:
        with self._lock:
            self.count_ds = dict(self._pairs)
            self.signed_domains = len(self._signed)
        super().finalize()

    def report(self, zone: str, source: str) -> str:
        tld = zone_label(zone)
        lines = []
        for alg, digest in sorted(self.count_ds):
            lines.append(
                format_line(
                    "CountDS",
                    {
                        "tld": tld,
                        "source": source,
                        "algorithm": algorithm_name(alg),
                        "digesttype": digest_type_name(digest),
                    },
                    {"count": self.count_ds[(alg, digest)]},
                )
            )
        lines.append(
            format_line(
                "CountDomSigned",
                {"tld": tld, "source": source},
                {"value": self.signed_domains},
            )
        )
        return "".join(lines)

    def summary(self) -> str:
        out = []
        for alg, digest in sorted(self.count_ds):
            out.append(
                f"Dnssec\t{algorithm_name(alg):<25}\t{digest_type_name(digest):<10}"
                f"\t{self.count_ds[(alg, digest)]}\n"
            )
        out.append(f"CountSigned\t{self.signed_domains}\n")
        return "".join(out)
