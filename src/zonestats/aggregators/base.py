from __future__ import annotations

import logging
import threading
from typing import ClassVar, Sequence, final

from ..records import ResourceRecord, canonical_name

logger = logging.getLogger(__name__)


class AggregatorError(Exception):
    """Brief: Fatal data error raised by an aggregator while receiving records."""

    pass


class BaseAggregator:
    """Brief: Base class for all zone statistics aggregators.

    Lifecycle of one run:
      - receive(rr) is called once per record, concurrently from dispatcher
        worker threads and in no particular order.
      - finalize() is called exactly once after every receive() returned.
      - report(zone, source) renders line-protocol text from the finalized
        state; summary() renders the same numbers for humans.

    Inputs:
      - zone: zone apex being analysed.
      - resolver: shared zonestats.resolver.Resolver (only needed by
        aggregators that perform lookups).
      - **config: aggregator-specific options from the YAML config.

    Outputs:
      - Initialized aggregator with ``self.config`` and a private lock.

    Example use:
        >>> from zonestats.aggregators.base import BaseAggregator
        >>> class Counter(BaseAggregator):
        ...     def receive(self, rr):
        ...         with self._lock:
        ...             self.n = getattr(self, "n", 0) + 1
        ...     def report(self, zone, source):
        ...         return ""
        >>> Counter(zone="se").zone
        'se.'
    """

    aliases: ClassVar[Sequence[str]] = ()

    @classmethod
    def get_aliases(cls) -> Sequence[str]:
        return tuple(getattr(cls, "aliases", ()))

    @final
    def __init__(self, zone: str = ".", resolver=None, **config: object) -> None:
        self.zone = canonical_name(zone)
        self.resolver = resolver
        self.config = config
        self._lock = threading.Lock()
        self._finalized = False
        logger.debug("loading %s", self)
        self.setup()

    def setup(self) -> None:
        """Brief: Hook for subclass state initialisation (called from __init__)."""

        return None

    def receive(self, rr: ResourceRecord) -> None:
        raise NotImplementedError

    def finalize(self) -> None:
        """Brief: Compute derived statistics; default marks the aggregator final."""

        self._finalized = True

    def report(self, zone: str, source: str) -> str:
        raise NotImplementedError

    def summary(self) -> str:
        return ""

    def close(self) -> None:
        """Brief: Release background resources; safe to call more than once."""

        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(zone={self.zone!r})"
