"""
Client-side connection supervision.

Establishes the UDP association to the server with bounded retries and, when
enabled, re-establishes it after repeated transport errors.
"""
import time
import enum
import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

from common.errors import (
    ConnectionCancelled, ConnectionExhausted, ConnectionStateError
)
from common.networking.transport import UDPClientTransport

logger = logging.getLogger("pskvpn.connection")

CONNECT_TIMEOUT = 10.0
MAX_CONNECT_TRIES = 10
RETRY_DELAY = 5.0


class ConnectionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


_TRANSITIONS = {
    ConnectionState.IDLE: {ConnectionState.CONNECTING, ConnectionState.TERMINATED},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.TERMINATED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.TERMINATED},
    ConnectionState.TERMINATED: set(),
}


class ConnectionSupervisor:
    """
    Owns the single transport a client uses to reach its server.

    The pumps read `transport` on every iteration; it is None whenever the
    supervisor is not CONNECTED.
    """

    def __init__(self, remote_address: Tuple[str, int],
                 stop_event: threading.Event,
                 transport_factory: Optional[Callable[..., Any]] = None,
                 connect_timeout: float = CONNECT_TIMEOUT,
                 max_tries: int = MAX_CONNECT_TRIES,
                 retry_delay: float = RETRY_DELAY,
                 reconnect_threshold: Optional[int] = None):
        """
        Initialize the supervisor

        Args:
            remote_address: Tuple of (host, port) of the server
            stop_event: Shared shutdown signal
            transport_factory: Callable(address, timeout) returning a transport
            connect_timeout: Per-attempt timeout in seconds
            max_tries: Attempt ceiling for one connect()
            retry_delay: Seconds between attempts
            reconnect_threshold: Consecutive transport errors that trigger a
                reconnect (None disables reconnects)
        """
        self.remote_address = remote_address
        self.stop_event = stop_event
        self.transport_factory = transport_factory or UDPClientTransport.connect
        self.connect_timeout = connect_timeout
        self.max_tries = max_tries
        self.retry_delay = retry_delay
        self.reconnect_threshold = reconnect_threshold

        self.state = ConnectionState.IDLE
        self.history: List[ConnectionState] = [ConnectionState.IDLE]
        self.attempts = 0
        self.reconnects = 0

        self._transport = None
        self._lock = threading.RLock()
        self._reconnect_lock = threading.Lock()
        self._consecutive_errors = 0

    @property
    def transport(self):
        with self._lock:
            if self.state is ConnectionState.CONNECTED:
                return self._transport
            return None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _transition(self, new_state: ConnectionState) -> None:
        with self._lock:
            if new_state not in _TRANSITIONS[self.state]:
                raise ConnectionStateError(
                    f"Illegal transition {self.state.value} -> {new_state.value}"
                )
            logger.debug(f"Connection state: {self.state.value} -> {new_state.value}")
            self.state = new_state
            self.history.append(new_state)

    def connect(self) -> None:
        """
        Run the connection attempts until success, exhaustion or shutdown.

        Raises:
            ConnectionExhausted: After max_tries failed attempts
            ConnectionCancelled: If the stop event is set while connecting
        """
        self._transition(ConnectionState.CONNECTING)
        host, port = self.remote_address
        self.attempts = 0
        last_error = None

        for attempt in range(1, self.max_tries + 1):
            if self.stop_event.is_set():
                self._transition(ConnectionState.TERMINATED)
                raise ConnectionCancelled(f"Connection to {host}:{port} cancelled")

            self.attempts = attempt
            logger.info(f"Connection attempt {attempt}/{self.max_tries} to {host}:{port}")
            try:
                transport = self.transport_factory(self.remote_address, self.connect_timeout)
            except OSError as e:
                last_error = e
                logger.warning(f"Connection attempt {attempt} failed: {e}")
                if attempt < self.max_tries:
                    logger.info(f"Retrying in {self.retry_delay}s")
                    if self.stop_event.wait(self.retry_delay):
                        self._transition(ConnectionState.TERMINATED)
                        raise ConnectionCancelled(f"Connection to {host}:{port} cancelled")
                continue

            with self._lock:
                self._transport = transport
                self._consecutive_errors = 0
                self._transition(ConnectionState.CONNECTED)
            logger.info(f"Connected to VPN server {host}:{port}")
            return

        self._transition(ConnectionState.TERMINATED)
        raise ConnectionExhausted(
            f"Failed to connect to {host}:{port} after {self.max_tries} attempts: {last_error}"
        )

    def record_transport_success(self) -> None:
        with self._lock:
            self._consecutive_errors = 0

    def record_transport_error(self, transport=None) -> bool:
        """
        Count a transport I/O error seen by a pump.

        Args:
            transport: Transport that raised; errors from a transport that
                has since been replaced are not counted

        Returns:
            True if a reconnect was performed
        """
        with self._lock:
            if transport is not None and transport is not self._transport:
                return False
            self._consecutive_errors += 1
            errors = self._consecutive_errors
        if self.reconnect_threshold is None:
            return False
        if errors < self.reconnect_threshold:
            return False
        return self.reconnect()

    def reconnect(self) -> bool:
        """
        Drop the current transport and connect again.

        Only one caller reconnects at a time; concurrent callers return False.

        Raises:
            ConnectionExhausted: If the new attempts all fail
            ConnectionCancelled: If shutdown is requested meanwhile
        """
        if not self._reconnect_lock.acquire(blocking=False):
            return False
        try:
            if self.state is not ConnectionState.CONNECTED:
                return False
            logger.warning(
                f"{self._consecutive_errors} consecutive transport errors, reconnecting"
            )
            self.close()
            self.reconnects += 1
            started = time.monotonic()
            self.connect()
            logger.info(f"Reconnected in {time.monotonic() - started:.2f}s")
            return True
        finally:
            self._reconnect_lock.release()

    def close(self) -> None:
        """Release the transport; idempotent"""
        with self._lock:
            transport, self._transport = self._transport, None
            if self.state is ConnectionState.CONNECTED:
                self._transition(ConnectionState.DISCONNECTED)

        if transport is not None:
            transport.close()
            logger.info("Connection closed")

    def terminate(self) -> None:
        """Release the transport and forbid further use"""
        self.close()
        with self._lock:
            if self.state is not ConnectionState.TERMINATED:
                self._transition(ConnectionState.TERMINATED)
