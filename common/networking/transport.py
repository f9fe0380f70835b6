"""
UDP transports for the tunnel.

UDPClientTransport is the point-to-point association a client holds with its
server; UDPServerTransport is the connectionless socket a server uses to talk
to every peer. Receives are bounded by a timeout so the pump loops can
observe shutdown.
"""
import select
import socket
import logging
from typing import Tuple, Optional, Any

from common.errors import BindError, TransportIOError, TransportTimeout

logger = logging.getLogger("pskvpn.transport")

BUFFER_SIZE = 65536  # 64 KiB, largest UDP payload we accept

Endpoint = Tuple[Any, ...]


def _wait_readable(sock: socket.socket, timeout: Optional[float]) -> None:
    try:
        readable, _, _ = select.select([sock], [], [], timeout)
    except (OSError, ValueError) as e:
        raise TransportIOError(f"Socket not readable: {e}") from e
    if not readable:
        raise TransportTimeout("No datagram within timeout")


class UDPClientTransport:
    """
    Connected UDP socket to a single remote endpoint
    """

    def __init__(self, sock: socket.socket, remote_address: Endpoint):
        self.sock = sock
        self.remote_address = remote_address
        self._closed = False

    @classmethod
    def connect(cls, address: Tuple[str, int], timeout: float = 10.0) -> "UDPClientTransport":
        """
        Establish the association to the remote endpoint

        Args:
            address: Tuple of (host, port)
            timeout: Bound on the connect step in seconds; name resolution
                uses the system resolver and is not covered by it

        Returns:
            Connected transport

        Raises:
            OSError: If the address cannot be resolved or connected
        """
        host, port = address
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
        if not infos:
            raise OSError(f"No address found for {host}:{port}")
        family, socktype, proto, _, sockaddr = infos[0]

        sock = socket.socket(family, socktype, proto)
        try:
            sock.settimeout(timeout)
            sock.connect(sockaddr)
            # Receives are bounded by select(); sends stay blocking.
            sock.settimeout(None)
        except OSError:
            sock.close()
            raise

        logger.info(f"UDP association to {host}:{port} ready (local {sock.getsockname()})")
        return cls(sock, sockaddr)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> None:
        if self._closed:
            raise TransportIOError("Transport closed")
        try:
            self.sock.send(data)
        except OSError as e:
            raise TransportIOError(f"UDP send failed: {e}") from e

    def recv(self, timeout: Optional[float] = None) -> bytes:
        """
        Receive one datagram

        Raises:
            TransportTimeout: If nothing arrived within timeout
            TransportIOError: On socket errors
        """
        if self._closed:
            raise TransportIOError("Transport closed")
        _wait_readable(self.sock, timeout)
        try:
            return self.sock.recv(BUFFER_SIZE)
        except OSError as e:
            raise TransportIOError(f"UDP receive failed: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError as e:
            logger.warning(f"Error closing UDP socket: {e}")


class UDPServerTransport:
    """
    Bound UDP socket shared by all peers
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._closed = False

    @classmethod
    def bind(cls, address: Tuple[str, int]) -> "UDPServerTransport":
        """
        Bind the listening socket

        Args:
            address: Tuple of (host, port)

        Raises:
            BindError: If the address is invalid or already in use
        """
        host, port = address
        try:
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM,
                                       flags=socket.AI_PASSIVE)
            family, socktype, proto, _, sockaddr = infos[0]
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            raise BindError(f"Invalid listen address {host}:{port}: {e}") from e

        try:
            sock.bind(sockaddr)
        except OSError as e:
            sock.close()
            raise BindError(f"Failed to bind to {host}:{port}: {e}") from e

        logger.info(f"Listening for peers on {sock.getsockname()}")
        return cls(sock)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_address(self) -> Endpoint:
        return self.sock.getsockname()

    def send_to(self, endpoint: Endpoint, data: bytes) -> None:
        if self._closed:
            raise TransportIOError("Transport closed")
        try:
            self.sock.sendto(data, endpoint)
        except OSError as e:
            raise TransportIOError(f"UDP send to {endpoint} failed: {e}") from e

    def recv_from(self, timeout: Optional[float] = None) -> Tuple[Endpoint, bytes]:
        """
        Receive one datagram and its sender

        Returns:
            Tuple of (endpoint, data)
        """
        if self._closed:
            raise TransportIOError("Transport closed")
        _wait_readable(self.sock, timeout)
        try:
            data, endpoint = self.sock.recvfrom(BUFFER_SIZE)
        except OSError as e:
            raise TransportIOError(f"UDP receive failed: {e}") from e
        return endpoint, data

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError as e:
            logger.warning(f"Error closing UDP socket: {e}")
