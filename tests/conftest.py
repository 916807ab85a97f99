"""
Brief: Global pytest configuration: src/ on sys.path, per-test 10s timeout
and shared record/resolver fakes.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress
import logging
import os
import signal
import sys
import threading

import pytest

# Ensure 'src' is on sys.path so 'zonestats' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

import dns.name  # noqa: E402
import dns.rdata  # noqa: E402
import dns.rdataclass  # noqa: E402
import dns.rdatatype  # noqa: E402

from zonestats.records import ResourceRecord  # noqa: E402
from zonestats.resolver import AdmissionGate, CapabilityProbeResult  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


def build_rr(owner, rdtype, rdata, ttl=3600):
    """
    Brief: Build a ResourceRecord from presentation-format pieces.

    Inputs:
      - owner: owner name text
      - rdtype: type mnemonic such as "NS"
      - rdata: rdata text with absolute names, e.g. "ns1.example.se."
      - ttl: record TTL

    Outputs:
      - ResourceRecord
    """
    rd = dns.rdata.from_text(
        dns.rdataclass.IN,
        dns.rdatatype.from_text(rdtype),
        rdata,
        origin=dns.name.root,
    )
    return ResourceRecord.from_rdata(owner, ttl, rd)


@pytest.fixture
def make_rr():
    """
    Brief: Expose build_rr to tests as a fixture.

    Outputs:
      - callable(owner, rdtype, rdata, ttl=3600) -> ResourceRecord
    """
    return build_rr


class FakeResolver:
    """
    Brief: In-memory stand-in for zonestats.resolver.Resolver.

    Inputs:
      - addresses: mapping hostname -> list of address strings
      - capabilities: mapping address string -> CapabilityProbeResult kwargs
      - resolve_limit / probe_limit: gate sizes

    Outputs:
      - Object with resolve(), probe_capabilities() and call logs
    """

    def __init__(self, addresses=None, capabilities=None, resolve_limit=4, probe_limit=4):
        self.addresses = {
            k.lower().rstrip(".") + ".": list(v) for k, v in (addresses or {}).items()
        }
        self.capabilities = dict(capabilities or {})
        self.resolve_gate = AdmissionGate(resolve_limit, name="resolve")
        self.probe_gate = AdmissionGate(probe_limit, name="probe")
        self.resolved = []
        self.probed = []
        self._lock = threading.Lock()

    def resolve(self, hostname):
        with self.resolve_gate:
            with self._lock:
                self.resolved.append(hostname)
            return [ipaddress.ip_address(a) for a in self.addresses.get(hostname, [])]

    def probe_capabilities(self, address):
        with self.probe_gate:
            with self._lock:
                self.probed.append(address)
            kwargs = self.capabilities.get(str(address), {})
            return CapabilityProbeResult(address=address, **kwargs)


@pytest.fixture
def fake_resolver_factory():
    """
    Brief: Factory fixture returning FakeResolver instances.

    Outputs:
      - callable(**kwargs) -> FakeResolver
    """
    return FakeResolver


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Restore root logger handlers and level after each test.

    Inputs:
      - None

    Outputs:
      - None: init_logging() calls inside a test do not leak handlers
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        if h not in handlers:
            h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
