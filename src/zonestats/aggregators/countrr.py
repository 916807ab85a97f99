from __future__ import annotations

from collections import Counter
from typing import Dict, Optional

import dns.rdatatype

from ..influx import format_line
from ..records import ResourceRecord, zone_label
from .base import AggregatorError, BaseAggregator


class UnknownRecordTypeError(AggregatorError):
    """Brief: A record carried a type code with no known mnemonic."""

    pass


def type_mnemonic(rdtype: int) -> Optional[str]:
    """Brief: Registered mnemonic of a record type, or None for bare codes.

    Example:
      >>> type_mnemonic(1), type_mnemonic(65280)
      ('A', None)
    """

    try:
        text = dns.rdatatype.to_text(rdtype)
    except ValueError:
        return None
    if text.startswith("TYPE") and text[4:].isdigit():
        return None
    return text


class CountRR(BaseAggregator):
    """Brief: Count records per record type.

    A type code that dnspython has no mnemonic for means record decoding
    went wrong upstream, so it aborts the run instead of being counted as
    ``TYPEnnn``.

    Outputs:
      - report(): ``CountRR,tld=<zone>,source=<source> A=<n>i,NS=<n>i,...``
        with types sorted by name.
    """

    aliases = ("countrr", "rrtypes")

    def setup(self) -> None:
        self._counts: Counter[str] = Counter()

    def receive(self, rr: ResourceRecord) -> None:
        rrtype = type_mnemonic(rr.rdtype)
        if rrtype is None:
            raise UnknownRecordTypeError(f"Unknown RRTYPE {rr.rdtype}: {rr}")
        with self._lock:
            self._counts[rrtype] += 1

    @property
    def counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def report(self, zone: str, source: str) -> str:
        counts = self.counts
        return format_line(
            "CountRR",
            {"tld": zone_label(zone), "source": source},
            {name: counts[name] for name in sorted(counts)},
        )

    def summary(self) -> str:
        counts = self.counts
        return "".join(f"CountRR\t{name:<10}\t{counts[name]:7d}\n" for name in sorted(counts))
