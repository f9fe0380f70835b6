"""
Tests for the UDP transports over the loopback interface.
"""
import pytest

from common.errors import BindError, TransportIOError, TransportTimeout
from common.networking.transport import UDPClientTransport, UDPServerTransport


@pytest.fixture
def server():
    transport = UDPServerTransport.bind(("127.0.0.1", 0))
    yield transport
    transport.close()


@pytest.fixture
def client(server):
    transport = UDPClientTransport.connect(server.local_address, timeout=1.0)
    yield transport
    transport.close()


def test_client_to_server(server, client):
    client.send(b"datagram one")
    endpoint, data = server.recv_from(timeout=2.0)

    assert data == b"datagram one"
    assert endpoint == client.sock.getsockname()


def test_server_to_client(server, client):
    client.send(b"hello")
    endpoint, _ = server.recv_from(timeout=2.0)

    server.send_to(endpoint, b"reply")
    assert client.recv(timeout=2.0) == b"reply"


def test_large_datagram(server, client):
    payload = bytes(range(256)) * 200
    client.send(payload)
    _, data = server.recv_from(timeout=2.0)
    assert data == payload


def test_recv_timeout(server, client):
    with pytest.raises(TransportTimeout):
        server.recv_from(timeout=0.05)
    with pytest.raises(TransportTimeout):
        client.recv(timeout=0.05)


def test_bind_conflict_raises():
    first = UDPServerTransport.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(BindError):
            UDPServerTransport.bind(first.local_address)
    finally:
        first.close()


def test_bind_invalid_address():
    with pytest.raises(BindError):
        UDPServerTransport.bind(("256.256.256.256", 51820))


def test_connect_unresolvable():
    with pytest.raises(OSError):
        UDPClientTransport.connect(("host.invalid", 51820), timeout=1.0)


def test_closed_transports(server, client):
    client.close()
    client.close()
    server.close()
    server.close()

    assert client.closed and server.closed
    with pytest.raises(TransportIOError):
        client.send(b"x")
    with pytest.raises(TransportIOError):
        client.recv(timeout=0.01)
    with pytest.raises(TransportIOError):
        server.send_to(("127.0.0.1", 9), b"x")
    with pytest.raises(TransportIOError):
        server.recv_from(timeout=0.01)
