"""Record sources: lazily yield ResourceRecord objects from a zone file or AXFR."""

from __future__ import annotations


class SourceError(Exception):
    """Brief: Zone data could not be acquired; the whole run must be aborted."""

    pass
