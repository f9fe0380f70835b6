"""
Shared fixtures for the VPN test suite.
In-memory stand-ins for the TUN interface and the UDP transports.
"""
import time
import queue
import threading

import pytest

from common.errors import InterfaceIOError, TransportIOError, TransportTimeout
from common.networking.interface import PacketInterface
from common.utils.config import TunnelSettings

TEST_PSK = "0123456789abcdef0123456789abcdef"
SERVER_ENDPOINT = ("127.0.0.1", 51820)


class FakeInterface(PacketInterface):
    """
    Packet interface backed by two queues.

    inject() plays the kernel handing a packet to the tunnel; written holds
    what the tunnel delivered to the kernel.
    """
    def __init__(self):
        self.inbound = queue.Queue()
        self.written = queue.Queue()
        self.read_errors = []
        self.write_errors = []
        self.close_calls = 0
        self._closed = False

    def inject(self, packet: bytes) -> None:
        self.inbound.put(packet)

    def take(self, timeout: float = 2.0) -> bytes:
        return self.written.get(timeout=timeout)

    def read_packet(self, timeout=None):
        if self._closed:
            raise InterfaceIOError("interface closed")
        if self.read_errors:
            raise self.read_errors.pop(0)
        try:
            return self.inbound.get(timeout=timeout)
        except queue.Empty:
            return None

    def write_packet(self, packet: bytes) -> None:
        if self._closed:
            raise InterfaceIOError("interface closed")
        if self.write_errors:
            raise self.write_errors.pop(0)
        self.written.put(packet)

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class FakeClientTransport:
    """Connected transport; incoming items may be bytes or exceptions"""
    def __init__(self, remote_address=SERVER_ENDPOINT):
        self.remote_address = remote_address
        self.sent = queue.Queue()
        self.incoming = queue.Queue()
        self.send_errors = []
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> None:
        if self._closed:
            raise TransportIOError("transport closed")
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.put(data)

    def recv(self, timeout=None) -> bytes:
        if self._closed:
            raise TransportIOError("transport closed")
        try:
            item = self.incoming.get(timeout=timeout)
        except queue.Empty:
            raise TransportTimeout("no datagram")
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeConnector:
    """
    Client transport factory that fails a number of times before succeeding
    """
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []
        self.transports = []

    def __call__(self, address, timeout):
        self.calls.append((address, timeout, time.monotonic()))
        if len(self.calls) <= self.failures:
            raise ConnectionRefusedError(f"connection refused ({len(self.calls)})")
        transport = FakeClientTransport(address)
        self.transports.append(transport)
        return transport

    @property
    def transport(self):
        return self.transports[-1] if self.transports else None


class FakeServerTransport:
    """Bound server transport; incoming holds (endpoint, data) pairs"""
    def __init__(self, local_address=SERVER_ENDPOINT):
        self.local_address = local_address
        self.incoming = queue.Queue()
        self.sent = []
        self.failing_endpoints = set()
        self.close_calls = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, endpoint, data: bytes) -> None:
        self.incoming.put((endpoint, data))

    def sent_to(self, endpoint):
        with self._lock:
            return [data for target, data in self.sent if target == endpoint]

    def send_to(self, endpoint, data: bytes) -> None:
        if self._closed:
            raise TransportIOError("transport closed")
        if endpoint in self.failing_endpoints:
            raise TransportIOError(f"unreachable {endpoint}")
        with self._lock:
            self.sent.append((endpoint, data))

    def recv_from(self, timeout=None):
        if self._closed:
            raise TransportIOError("transport closed")
        try:
            return self.incoming.get(timeout=timeout)
        except queue.Empty:
            raise TransportTimeout("no datagram")

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


def _wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or the timeout passes"""
    return _wait_for


@pytest.fixture
def fake_interface():
    return FakeInterface()


@pytest.fixture
def make_connector():
    return FakeConnector


@pytest.fixture
def client_transport():
    return FakeClientTransport()


@pytest.fixture
def server_transport():
    return FakeServerTransport()


@pytest.fixture
def psk():
    return TEST_PSK


@pytest.fixture
def make_settings():
    """Build TunnelSettings with timings short enough for tests"""
    def _make(**overrides) -> TunnelSettings:
        values = dict(
            mode="client",
            server_address=SERVER_ENDPOINT[0],
            server_port=SERVER_ENDPOINT[1],
            psk=TEST_PSK,
            adapter_name="vpntest0",
            adapter_address="10.8.0.2/24",
            mtu=1400,
            connect_timeout=0.1,
            max_connect_tries=3,
            retry_delay=0.01,
            read_timeout=0.05,
            peer_timeout=300.0,
            eviction_interval=60.0,
            metrics_interval=60.0,
            reconnect_threshold=None,
            log_traffic=False,
        )
        values.update(overrides)
        return TunnelSettings(**values)
    return _make
