from __future__ import annotations

import logging
from typing import Iterator

import dns.exception
import dns.zone

from ..records import ResourceRecord, canonical_name
from . import SourceError

logger = logging.getLogger(__name__)


class ZoneFileError(SourceError):
    """Brief: The zone file is missing, unreadable or malformed."""

    pass


def read_zone_file(path: str, zone: str) -> Iterator[ResourceRecord]:
    """Brief: Parse a master-format zone file and yield its records.

    Inputs:
      - path: zone file path.
      - zone: zone apex; relative owner names are made absolute against it.

    Outputs:
      - Iterator of ResourceRecord with canonical owner names. Parsing
        happens on the first next() call.

    Raises:
      - ZoneFileError: file cannot be opened or fails to parse.
    """

    origin = canonical_name(zone)
    try:
        with open(path, "r", encoding="utf-8") as f:
            parsed = dns.zone.from_file(
                f,
                origin=origin,
                relativize=False,
                check_origin=False,
                filename=path,
            )
    except OSError as exc:
        raise ZoneFileError(f"cannot open zone file {path}: {exc}") from exc
    except (dns.exception.DNSException, UnicodeDecodeError, ValueError) as exc:
        raise ZoneFileError(f"{path}: {exc}") from exc

    count = 0
    for name, ttl, rdata in parsed.iterate_rdatas():
        count += 1
        yield ResourceRecord.from_rdata(name, ttl, rdata)
    logger.info("Read %d records from %s", count, path)
