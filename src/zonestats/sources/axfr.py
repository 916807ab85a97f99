from __future__ import annotations

import logging
from typing import Iterator

import dns.exception
import dns.query
import dns.rdatatype

from ..records import ResourceRecord, canonical_name
from . import SourceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class AXFRError(SourceError):
    """Brief: DNS AXFR (full zone transfer) error.

    Inputs:
      - message: Short description of the failure.

    Outputs:
      - Exception instance indicating an AXFR-specific failure.
    """

    pass


def transfer_zone(
    zone: str,
    server: str,
    port: int = 53,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    lifetime: float | None = None,
) -> Iterator[ResourceRecord]:
    """Brief: Perform an AXFR for zone and yield every transferred record.

    Inputs:
      - zone: Zone apex to transfer (with or without trailing dot).
      - server: Primary server IPv4/IPv6 address.
      - port: Server TCP port (usually 53).
      - timeout: Per-read timeout in seconds.
      - lifetime: Optional limit on the whole transfer in seconds.

    Outputs:
      - Iterator of ResourceRecord in transfer order, including the opening
        and closing SOA records. Records are yielded while the transfer is
        still running.

    Raises:
      - AXFRError: connect/read failure, refused transfer or malformed
        message. Raised from within iteration, so consumers see it mid-stream.
    """

    zone_qname = canonical_name(zone)
    count = 0
    try:
        for message in dns.query.xfr(
            server,
            zone_qname,
            rdtype=dns.rdatatype.AXFR,
            timeout=timeout,
            port=int(port),
            lifetime=lifetime,
            relativize=False,
        ):
            for rrset in message.answer:
                for rdata in rrset:
                    count += 1
                    yield ResourceRecord.from_rdata(rrset.name, rrset.ttl, rdata)
    except (dns.exception.DNSException, OSError, EOFError) as exc:
        raise AXFRError(
            f"AXFR from {server}:{port} for {zone_qname!r} failed: {exc}"
        ) from exc

    if count == 0:
        raise AXFRError(f"AXFR from {server}:{port} for {zone_qname!r} returned no data")
    logger.info("Transferred %d records of %s from %s:%s", count, zone_qname, server, port)
