"""
Brief: Tests for zonestats.resolver: admission gates, address resolution and
the version.bind capability probe, using an injected query callable.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress
import threading
import time

import dns.edns
import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import pytest

import zonestats.resolver as resolver_mod
from zonestats.resolver import (
    AdmissionGate,
    CapabilityProbeResult,
    Resolver,
    ResolverConfigError,
    build_probe_query,
    decode_nsid,
    parse_probe_response,
    system_resolvers,
)

NSID_HEX = "676e73312e6578"


def _response(query, rdtype=None, *values, rcode=dns.rcode.NOERROR):
    """
    Brief: Build a reply to query with an optional answer RRset.

    Inputs:
      - query: dns.message.Message being answered
      - rdtype: answer type mnemonic (None for an empty answer)
      - values: rdata texts
      - rcode: response code

    Outputs:
      - dns.message.Message
    """
    resp = dns.message.make_response(query)
    if rdtype is not None and values:
        q = query.question[0]
        resp.answer.append(
            dns.rrset.from_text(
                q.name, 300, dns.rdataclass.to_text(q.rdclass), rdtype, *values
            )
        )
    resp.set_rcode(rcode)
    return resp


def _probe_reply(query, *, nsid=NSID_HEX, cookie=True, edns=True, version='"BIND 9.16"'):
    resp = _response(query, "TXT", version) if version else _response(query)
    if not edns:
        resp.use_edns(False)
        return resp
    options = []
    if nsid is not None:
        options.append(dns.edns.GenericOption(dns.edns.OptionType.NSID, bytes.fromhex(nsid)))
    if cookie:
        options.append(dns.edns.GenericOption(dns.edns.OptionType.COOKIE, b"\x01" * 24))
    resp.use_edns(0, 0, 4096, options=options)
    return resp


class ZoneAnswers:
    """
    Brief: Fake dns.query.udp answering A/AAAA from a dict.

    Inputs:
      - table: mapping (qname, type mnemonic) -> list of rdata texts

    Outputs:
      - Callable recording every call as (qname, type, where)
    """

    def __init__(self, table, rcode=dns.rcode.NOERROR):
        self.table = table
        self.rcode = rcode
        self.calls = []

    def __call__(self, query, where, timeout=None, **kwargs):
        q = query.question[0]
        rdtype = dns.rdatatype.to_text(q.rdtype)
        self.calls.append((q.name.to_text(), rdtype, where))
        values = self.table.get((q.name.to_text(), rdtype), [])
        return _response(query, rdtype, *values, rcode=self.rcode)


def test_admission_gate_rejects_bad_limit():
    """
    Brief: A gate needs at least one slot.

    Inputs:
      - None

    Outputs:
      - None
    """
    with pytest.raises(ValueError):
        AdmissionGate(0)


def test_admission_gate_caps_concurrency():
    """
    Brief: No more than limit holders are ever inside the gate at once.

    Inputs:
      - None

    Outputs:
      - None
    """
    gate = AdmissionGate(3, name="test")

    def worker():
        with gate:
            time.sleep(0.01)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert gate.admitted == 20
    assert 1 <= gate.peak <= 3
    assert gate.in_flight == 0


def test_admission_gate_releases_on_exception():
    """
    Brief: Leaving the gate through an exception frees the slot.

    Inputs:
      - None

    Outputs:
      - None
    """
    gate = AdmissionGate(1)
    with pytest.raises(RuntimeError):
        with gate:
            raise RuntimeError("boom")
    with gate:
        assert gate.in_flight == 1
    assert gate.in_flight == 0


def test_resolve_returns_ipv4_then_ipv6():
    """
    Brief: resolve() queries A then AAAA on one resolver and merges the results.

    Inputs:
      - None

    Outputs:
      - None
    """
    fake = ZoneAnswers(
        {
            ("ns1.example.se.", "A"): ["192.0.2.1"],
            ("ns1.example.se.", "AAAA"): ["2001:db8::1"],
        }
    )
    res = Resolver(["192.0.2.53"], query=fake)
    addrs = res.resolve("NS1.example.se")
    assert addrs == [ipaddress.ip_address("192.0.2.1"), ipaddress.ip_address("2001:db8::1")]
    assert [c[1] for c in fake.calls] == ["A", "AAAA"]
    assert {c[2] for c in fake.calls} == {"192.0.2.53"}


def test_resolve_soft_failures_return_empty():
    """
    Brief: Timeouts, socket errors and error rcodes yield an empty list.

    Inputs:
      - None

    Outputs:
      - None
    """

    def timeout(query, where, timeout=None, **kwargs):
        raise dns.exception.Timeout()

    def oserror(query, where, timeout=None, **kwargs):
        raise OSError("network unreachable")

    assert Resolver(["192.0.2.53"], query=timeout).resolve("ns.example.se") == []
    assert Resolver(["192.0.2.53"], query=oserror).resolve("ns.example.se") == []

    nx = ZoneAnswers({("ns.example.se.", "A"): ["192.0.2.9"]}, rcode=dns.rcode.NXDOMAIN)
    assert Resolver(["192.0.2.53"], query=nx).resolve("ns.example.se") == []


def test_resolve_respects_gate_limit():
    """
    Brief: Concurrent resolve() calls never exceed resolve_limit queries in flight.

    Inputs:
      - None

    Outputs:
      - None
    """
    lock = threading.Lock()
    state = {"now": 0, "max": 0}

    def slow(query, where, timeout=None, **kwargs):
        with lock:
            state["now"] += 1
            state["max"] = max(state["max"], state["now"])
        time.sleep(0.005)
        with lock:
            state["now"] -= 1
        return _response(query)

    res = Resolver(["192.0.2.53"], query=slow, resolve_limit=2)
    threads = [
        threading.Thread(target=res.resolve, args=(f"ns{i}.example.se",)) for i in range(12)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert state["max"] <= 2
    assert res.resolve_gate.peak <= 2
    assert res.resolve_gate.admitted == 24


def test_resolver_requires_servers(monkeypatch):
    """
    Brief: No configured and no system resolvers raises ResolverConfigError.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - None
    """
    monkeypatch.setattr(resolver_mod, "system_resolvers", lambda: [])
    with pytest.raises(ResolverConfigError, match="No resolver"):
        Resolver([])


def test_resolver_expands_host_names(monkeypatch):
    """
    Brief: Resolver entries that are host names are looked up once via getaddrinfo.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - None
    """

    def fake_getaddrinfo(host, port, family=0, type=0, *args):
        assert host == "resolver.example.net"
        return [
            (2, 2, 17, "", ("198.51.100.7", 53)),
            (10, 2, 17, "", ("2001:db8::7", 53, 0, 0)),
            (2, 2, 17, "", ("198.51.100.7", 53)),
        ]

    monkeypatch.setattr(resolver_mod.socket, "getaddrinfo", fake_getaddrinfo)
    res = Resolver(["resolver.example.net", "192.0.2.53"], query=ZoneAnswers({}))
    assert res.servers == ["198.51.100.7", "2001:db8::7", "192.0.2.53"]


def test_system_resolvers_reads_resolv_conf(tmp_path):
    """
    Brief: system_resolvers parses nameserver lines and tolerates missing files.

    Inputs:
      - tmp_path: pytest fixture

    Outputs:
      - None
    """
    conf = tmp_path / "resolv.conf"
    conf.write_text("nameserver 192.0.2.53\nnameserver 2001:db8::53\n")
    assert system_resolvers(str(conf)) == ["192.0.2.53", "2001:db8::53"]

    empty = tmp_path / "empty.conf"
    empty.write_text("# nothing here\n")
    assert system_resolvers(str(empty)) == []


def test_decode_nsid():
    """
    Brief: NSID payloads render printable bytes and escape the rest.

    Inputs:
      - None

    Outputs:
      - None
    """
    assert decode_nsid(NSID_HEX) == "gns1.ex"
    assert decode_nsid(bytes.fromhex(NSID_HEX)) == "gns1.ex"
    assert decode_nsid(b"a\x00\\") == "a\\x00\\x5c"
    assert decode_nsid(b"") == ""


def test_build_probe_query():
    """
    Brief: The probe is CH TXT version.bind with EDNS0 4096, NSID and a cookie.

    Inputs:
      - None

    Outputs:
      - None
    """
    q = build_probe_query()
    question = q.question[0]
    assert question.name.to_text() == "version.bind."
    assert question.rdtype == dns.rdatatype.TXT
    assert question.rdclass == dns.rdataclass.CH
    assert not q.flags & dns.flags.RD
    assert q.flags & dns.flags.AD
    assert q.edns == 0
    assert q.payload == 4096
    otypes = {int(o.otype): o for o in q.options}
    assert int(dns.edns.OptionType.NSID) in otypes
    cookie = otypes[int(dns.edns.OptionType.COOKIE)]
    assert len(cookie.to_wire()) == 8


def test_probe_capabilities_full_support():
    """
    Brief: A reply with EDNS, NSID, cookie and version.bind records all four.

    Inputs:
      - None

    Outputs:
      - None
    """
    seen = []

    def fake(query, where, timeout=None, **kwargs):
        seen.append(where)
        return _probe_reply(query)

    res = Resolver(["192.0.2.53"], query=fake)
    result = res.probe_capabilities("192.0.2.1")
    assert seen == ["192.0.2.1"]
    assert result == CapabilityProbeResult(
        address=ipaddress.ip_address("192.0.2.1"),
        edns0=True,
        nsid="gns1.ex",
        cookies=True,
        version="BIND 9.16",
    )
    assert res.probe_gate.admitted == 1
    assert res.resolve_gate.admitted == 0


def test_probe_without_edns_keeps_version():
    """
    Brief: A plain DNS reply reports no EDNS features but still the version.

    Inputs:
      - None

    Outputs:
      - None
    """
    q = build_probe_query()
    result = parse_probe_response(ipaddress.ip_address("192.0.2.1"), _probe_reply(q, edns=False))
    assert result.edns0 is False
    assert result.nsid is None
    assert result.cookies is False
    assert result.version == "BIND 9.16"


def test_probe_edns_without_options():
    """
    Brief: EDNS without NSID/cookie options records only edns0.

    Inputs:
      - None

    Outputs:
      - None
    """
    q = build_probe_query()
    reply = _probe_reply(q, nsid=None, cookie=False, version=None)
    result = parse_probe_response(ipaddress.ip_address("2001:db8::1"), reply)
    assert result.edns0 is True
    assert result.nsid is None
    assert result.cookies is False
    assert result.version is None


def test_probe_notimp_means_no_capabilities():
    """
    Brief: A NOTIMP reply counts as no capabilities at all.

    Inputs:
      - None

    Outputs:
      - None
    """
    q = build_probe_query()
    reply = _probe_reply(q)
    reply.set_rcode(dns.rcode.NOTIMP)
    result = parse_probe_response(ipaddress.ip_address("192.0.2.1"), reply)
    assert result == CapabilityProbeResult(address=ipaddress.ip_address("192.0.2.1"))


def test_probe_timeout_is_soft():
    """
    Brief: An unreachable nameserver yields an all-absent result.

    Inputs:
      - None

    Outputs:
      - None
    """

    def timeout(query, where, timeout=None, **kwargs):
        raise dns.exception.Timeout()

    res = Resolver(["192.0.2.53"], query=timeout)
    result = res.probe_capabilities(ipaddress.ip_address("2001:db8::1"))
    assert result.edns0 is False
    assert result.nsid is None
    assert result.version is None
