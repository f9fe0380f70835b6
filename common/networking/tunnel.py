"""
Forwarding engine for the VPN tunnel.

Two pump loops run for the lifetime of a session:

    egress:  interface.read_packet -> cipher.encrypt -> transport send
    ingress: transport receive -> cipher.decrypt -> interface.write_packet

TunnelClient sends over the single connection held by its
ConnectionSupervisor; TunnelServer fans every outbound packet out to each peer
in the PeerRegistry and registers peers from authentic inbound datagrams.
"""
import logging
import threading
from typing import Dict, Optional, Tuple

from common.crypto.aes import FRAME_OVERHEAD, PacketCipher
from common.errors import (
    CodecError, ConnectionCancelled, ErrorAction, TransportIOError,
    TransportTimeout, VPNError, action_for
)
from common.networking.interface import PacketInterface
from common.networking.connection import ConnectionSupervisor
from common.networking.peers import PeerRegistry, Endpoint, format_endpoint
from common.networking.transport import BUFFER_SIZE


class TunnelConfig:
    """Constants for the forwarding loops"""
    BUFFER_SIZE = BUFFER_SIZE  # bytes, largest frame a peer will receive
    MAX_PACKET = BUFFER_SIZE - FRAME_OVERHEAD  # bytes, largest packet carried
    READ_TIMEOUT = 1.0  # seconds, bounds shutdown latency


ERROR_BACKOFF = 0.01  # seconds to pause after an interface read error


class TunnelEndpoint:
    """
    Base class for both client and server forwarding engines
    """
    def __init__(self, cipher: PacketCipher, interface: PacketInterface,
                 stop_event: threading.Event,
                 read_timeout: float = TunnelConfig.READ_TIMEOUT,
                 log_traffic: bool = False):
        """
        Initialize the engine

        Args:
            cipher: Packet codec shared by both directions
            interface: Local packet interface
            stop_event: Shared shutdown signal
            read_timeout: Upper bound on any single blocking read
            log_traffic: Whether to log every forwarded packet
        """
        self.cipher = cipher
        self.interface = interface
        self.stop_event = stop_event
        self.read_timeout = read_timeout
        self.log_traffic = log_traffic
        self.fatal_error: Optional[BaseException] = None

        self._stats = {
            "packets_in": 0,
            "packets_out": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "frames_dropped": 0,
            "interface_errors": 0,
            "transport_errors": 0,
        }
        self._stats_lock = threading.Lock()

        self.logger = logging.getLogger("pskvpn.tunnel")

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    def _handle_error(self, error: VPNError, context: str) -> bool:
        """
        Apply the error policy to an error raised inside a loop

        Args:
            error: The error
            context: Short description of the failing step

        Returns:
            True if the loop must stop
        """
        action = action_for(error)
        if action is ErrorAction.IGNORE:
            return False
        if action is ErrorAction.LOG_AND_CONTINUE:
            if isinstance(error, CodecError):
                self._count("frames_dropped")
                self.logger.warning(f"{context}: dropping frame: {error}")
            elif isinstance(error, TransportIOError):
                self._count("transport_errors")
                self.logger.warning(f"{context}: {error}")
            else:
                self._count("interface_errors")
                self.logger.warning(f"{context}: {error}")
            return False

        if isinstance(error, ConnectionCancelled):
            self.logger.info(f"{context}: {error}")
            self.stop_event.set()
            return True

        self.logger.critical(f"{context}: fatal error, stopping tunnel: {error}")
        if self.fatal_error is None:
            self.fatal_error = error
        self.stop_event.set()
        return True

    # Egress: interface -> transport

    def egress_loop(self) -> None:
        """Thread body moving packets from the interface to the transport"""
        self.logger.info("Starting interface to transport forwarding")

        while not self.stop_event.is_set():
            try:
                packet = self.interface.read_packet(self.read_timeout)
            except VPNError as e:
                if self._handle_error(e, "Interface read error"):
                    break
                self.stop_event.wait(ERROR_BACKOFF)
                continue

            if not packet:
                continue

            if len(packet) > TunnelConfig.MAX_PACKET:
                self._count("frames_dropped")
                self.logger.warning(f"Dropping oversized packet: {len(packet)} bytes")
                continue

            try:
                self._dispatch(packet)
            except VPNError as e:
                if self._handle_error(e, "Egress error"):
                    break

        self.logger.info("Interface to transport forwarding stopped")

    def _dispatch(self, packet: bytes) -> None:
        """Encrypt and send a packet read from the interface"""
        raise NotImplementedError("Subclasses must implement _dispatch")

    # Ingress: transport -> interface

    def ingress_loop(self) -> None:
        """Thread body moving frames from the transport to the interface"""
        self.logger.info("Starting transport to interface forwarding")

        while not self.stop_event.is_set():
            try:
                source, frame = self._receive()
            except VPNError as e:
                if self._handle_error(e, "Transport read error"):
                    break
                continue

            try:
                packet = self.cipher.decrypt(frame)
            except VPNError as e:
                context = "Decrypt error"
                if source is not None:
                    context = f"Decrypt error from {format_endpoint(source)}"
                if self._handle_error(e, context):
                    break
                continue

            # Only authentic frames reach this point
            self._accept(source)
            self._count("packets_in")
            self._count("bytes_in", len(packet))
            if self.log_traffic:
                self.logger.debug(f"Received packet: {len(packet)} bytes")

            try:
                self.interface.write_packet(packet)
            except VPNError as e:
                if self._handle_error(e, "Interface write error"):
                    break

        self.logger.info("Transport to interface forwarding stopped")

    def _receive(self) -> Tuple[Optional[Endpoint], bytes]:
        """Receive one frame (to be implemented by subclasses)"""
        raise NotImplementedError("Subclasses must implement _receive")

    def _accept(self, source: Optional[Endpoint]) -> None:
        """Hook called after a frame from source decrypted successfully"""
        pass


class TunnelClient(TunnelEndpoint):
    """
    Client-side engine: one connection, one remote endpoint
    """
    def __init__(self, cipher: PacketCipher, interface: PacketInterface,
                 supervisor: ConnectionSupervisor, stop_event: threading.Event,
                 read_timeout: float = TunnelConfig.READ_TIMEOUT,
                 log_traffic: bool = False):
        super().__init__(cipher, interface, stop_event, read_timeout, log_traffic)
        self.supervisor = supervisor

    def _dispatch(self, packet: bytes) -> None:
        frame = self.cipher.encrypt(packet)

        transport = self.supervisor.transport
        if transport is None:
            self._count("frames_dropped")
            self.logger.debug("Not connected, dropping outbound packet")
            return

        try:
            transport.send(frame)
        except TransportIOError:
            self.supervisor.record_transport_error(transport)
            raise
        self.supervisor.record_transport_success()

        self._count("packets_out")
        self._count("bytes_out", len(packet))
        if self.log_traffic:
            self.logger.debug(f"Sent packet: {len(packet)} bytes")

    def _receive(self) -> Tuple[Optional[Endpoint], bytes]:
        transport = self.supervisor.transport
        if transport is None:
            # Reconnect in progress on the other pump
            self.stop_event.wait(self.read_timeout)
            raise TransportTimeout("Not connected")

        try:
            frame = transport.recv(self.read_timeout)
        except TransportIOError:
            self.supervisor.record_transport_error(transport)
            raise
        return None, frame

    def _accept(self, source: Optional[Endpoint]) -> None:
        self.supervisor.record_transport_success()


class TunnelServer(TunnelEndpoint):
    """
    Server-side engine: connectionless socket, many peers
    """
    def __init__(self, cipher: PacketCipher, interface: PacketInterface,
                 transport, registry: PeerRegistry, stop_event: threading.Event,
                 read_timeout: float = TunnelConfig.READ_TIMEOUT,
                 log_traffic: bool = False):
        super().__init__(cipher, interface, stop_event, read_timeout, log_traffic)
        self.transport = transport
        self.registry = registry

    def _dispatch(self, packet: bytes) -> None:
        # Broadcast: every active peer gets every packet, each sealed
        # under its own nonce.
        peers = self.registry.snapshot()
        if not peers:
            if self.log_traffic:
                self.logger.debug("No peers, dropping outbound packet")
            return

        for endpoint in peers:
            frame = self.cipher.encrypt(packet)
            try:
                self.transport.send_to(endpoint, frame)
            except TransportIOError as e:
                self._handle_error(e, f"UDP write error to {format_endpoint(endpoint)}")
                continue
            self.registry.record_sent(endpoint)

        self._count("packets_out")
        self._count("bytes_out", len(packet))
        if self.log_traffic:
            self.logger.debug(f"Sent packet: {len(packet)} bytes to {len(peers)} peers")

    def _receive(self) -> Tuple[Optional[Endpoint], bytes]:
        return self.transport.recv_from(self.read_timeout)

    def _accept(self, source: Optional[Endpoint]) -> None:
        self.registry.touch(source)
