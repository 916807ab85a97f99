from __future__ import annotations

from typing import Set

from ..influx import format_line
from ..records import ResourceRecord, zone_label
from .base import BaseAggregator


class CountDom(BaseAggregator):
    """Brief: Count distinct owner names in the zone.

    Outputs:
      - report(): ``CountDom,tld=<zone>,source=<source> value=<n>i``
    """

    aliases = ("countdom", "domains")

    def setup(self) -> None:
        self._owners: Set[str] = set()

    def receive(self, rr: ResourceRecord) -> None:
        with self._lock:
            self._owners.add(rr.owner)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._owners)

    def report(self, zone: str, source: str) -> str:
        return format_line(
            "CountDom",
            {"tld": zone_label(zone), "source": source},
            {"value": self.count},
        )

    def summary(self) -> str:
        return f"CountDom\t{self.count:7d}\n"
