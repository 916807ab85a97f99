"""
Record dispatch: fan every ResourceRecord out to every aggregator.

Deliveries run on a bounded worker pool; no ordering is guaranteed between
deliveries to different aggregators or of different records. The first
exception raised by an aggregator stops the run, and finalize() is only
called once every delivery has completed successfully.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from .aggregators.base import BaseAggregator
from .records import ResourceRecord

logger = logging.getLogger(__name__)

IN_FLIGHT_PER_WORKER = 64


def default_workers() -> int:
    """Brief: Default dispatcher pool size, ``min(32, cpu_count + 4)``."""

    return min(32, (os.cpu_count() or 1) + 4)


class Dispatcher:
    """Brief: Deliver records to aggregators concurrently, then finalize them.

    Inputs (constructor):
      - aggregators: aggregator instances receiving every record.
      - max_workers: worker threads running deliveries (default
        default_workers()).
      - max_in_flight: cap on submitted but unfinished deliveries (default
        max_workers * 64). Record consumption pauses while the cap is reached.

    Outputs:
      - Dispatcher instance; call process() once per run.
    """

    def __init__(
        self,
        aggregators: Iterable[BaseAggregator],
        *,
        max_workers: Optional[int] = None,
        max_in_flight: Optional[int] = None,
    ) -> None:
        self.aggregators: List[BaseAggregator] = list(aggregators)
        self.max_workers = int(max_workers or default_workers())
        self.max_in_flight = int(max_in_flight or self.max_workers * IN_FLIGHT_PER_WORKER)
        if self.max_workers < 1 or self.max_in_flight < 1:
            raise ValueError("max_workers and max_in_flight must be >= 1")
        self.records = 0
        self.deliveries = 0
        self._stats_lock = threading.Lock()

    def process(self, records: Iterable[ResourceRecord]) -> None:
        """Brief: Dispatch all records, wait for every delivery, then finalize.

        Inputs:
          - records: any iterable of ResourceRecord; consumed lazily.

        Outputs:
          - None once every aggregator has been finalized.

        Raises:
          - The first exception raised by an aggregator's receive(), or by the
            record iterable itself. Queued deliveries are cancelled and no
            aggregator is finalized in that case.
        """

        slots = threading.BoundedSemaphore(self.max_in_flight)
        stop = threading.Event()
        failures: List[BaseException] = []

        def _done(fut: Future) -> None:
            try:
                if fut.cancelled():
                    return
                exc = fut.exception()
                with self._stats_lock:
                    if exc is None:
                        self.deliveries += 1
                        return
                    if not failures:
                        failures.append(exc)
                stop.set()
            finally:
                slots.release()

        pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="zonestats-dispatch"
        )
        try:
            for rr in records:
                if stop.is_set():
                    break
                self.records += 1
                for agg in self.aggregators:
                    slots.acquire()
                    if stop.is_set():
                        slots.release()
                        break
                    pool.submit(agg.receive, rr).add_done_callback(_done)
        except BaseException:
            stop.set()
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=stop.is_set())

        if failures:
            logger.error("Aggregator failed, aborting run: %s", failures[0])
            raise failures[0]

        logger.debug(
            "Dispatched %d records as %d deliveries", self.records, self.deliveries
        )
        for agg in self.aggregators:
            agg.finalize()


def run_pipeline(
    records: Iterable[ResourceRecord],
    aggregators: Sequence[BaseAggregator],
    *,
    zone: str,
    source: str,
    max_workers: Optional[int] = None,
    max_in_flight: Optional[int] = None,
) -> str:
    """Brief: Process records through aggregators and collect their reports.

    Inputs:
      - records: record iterable from a source.
      - aggregators: configured aggregator instances.
      - zone: zone apex used in the ``tld`` tag.
      - source: ``file`` or ``axfr``, used in the ``source`` tag.
      - max_workers / max_in_flight: Dispatcher limits.

    Outputs:
      - Line-protocol body: every aggregator's report(), in aggregator order.
    """

    dispatcher = Dispatcher(
        aggregators, max_workers=max_workers, max_in_flight=max_in_flight
    )
    try:
        dispatcher.process(records)
    finally:
        for agg in aggregators:
            agg.close()
    logger.info("Processed %d records of %s", dispatcher.records, zone)
    return "".join(agg.report(zone, source) for agg in aggregators)
