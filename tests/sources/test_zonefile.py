"""
Brief: Tests for the zone file record source.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from zonestats.sources import SourceError
from zonestats.sources.zonefile import ZoneFileError, read_zone_file

ZONE_TEXT = """\
$TTL 3600
@           IN SOA  a.ns.se. hostmaster.se. 2024010101 1800 600 864000 300
@           IN NS   a.ns.se.
example     IN NS   ns1.example
example     IN NS   ns.example.net.
example     IN DS   12345 8 2 {digest}
ns1.example IN A    192.0.2.1
ns1.example IN AAAA 2001:db8::1
""".format(digest="AB" * 32)


def test_reads_records_with_absolute_names(tmp_path):
    """
    Brief: Relative owners and targets are made absolute and lower-case.

    Inputs:
      - tmp_path: pytest fixture

    Outputs:
      - None
    """
    path = tmp_path / "se.zone"
    path.write_text(ZONE_TEXT)

    records = list(read_zone_file(str(path), "SE"))
    assert len(records) == 7
    owners = {rr.owner for rr in records}
    assert owners == {"se.", "example.se.", "ns1.example.se."}
    targets = sorted(rr.target for rr in records if rr.target)
    assert targets == ["a.ns.se.", "ns.example.net.", "ns1.example.se."]
    assert {rr.ttl for rr in records} == {3600}


def test_read_is_lazy(tmp_path):
    """
    Brief: Calling read_zone_file does no I/O until iteration starts.

    Inputs:
      - tmp_path: pytest fixture

    Outputs:
      - None
    """
    gen = read_zone_file(str(tmp_path / "missing.zone"), "se")
    with pytest.raises(ZoneFileError):
        next(gen)


def test_syntax_error_is_source_error(tmp_path):
    """
    Brief: A malformed zone file raises ZoneFileError, a SourceError.

    Inputs:
      - tmp_path: pytest fixture

    Outputs:
      - None
    """
    path = tmp_path / "broken.zone"
    path.write_text("@ IN SOA a.ns.se. hostmaster.se. 1 2 3 4 5\nfoo IN A not-an-address\n")
    with pytest.raises(SourceError) as excinfo:
        list(read_zone_file(str(path), "se"))
    assert isinstance(excinfo.value, ZoneFileError)
    assert "broken.zone" in str(excinfo.value)
