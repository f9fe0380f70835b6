"""
Registry of remote peers currently considered connected to the server.

A peer is created by its first authentic datagram, refreshed by every
datagram to or from it, and removed by the eviction sweep once idle for
longer than the timeout.
"""
import time
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("pskvpn.peers")

PEER_TIMEOUT = 300.0  # 5 minutes of inactivity
EVICTION_INTERVAL = 60.0

Endpoint = Tuple[Any, ...]

PEER_JOINED = "joined"
PEER_EVICTED = "evicted"


def format_endpoint(endpoint: Endpoint) -> str:
    host, port = endpoint[0], endpoint[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class Peer:
    """
    Bookkeeping for one remote endpoint
    """
    __slots__ = ("endpoint", "first_seen", "last_seen", "packets_sent", "packets_received")

    def __init__(self, endpoint: Endpoint, now: float):
        self.endpoint = endpoint
        self.first_seen = now
        self.last_seen = now
        self.packets_sent = 0
        self.packets_received = 0

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        info = {
            "endpoint": format_endpoint(self.endpoint),
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "packets_sent": self.packets_sent,
            "packets_received": self.packets_received,
        }
        if now is not None:
            info["idle"] = max(0.0, now - self.last_seen)
        return info


class PeerRegistry:
    """
    Thread-safe mapping of endpoint -> Peer.

    Shared by the ingress pump (touch), the egress pump (snapshot,
    record_sent) and the eviction sweep (evict). The lock is only held
    for dictionary work; callers get copies, never Peer objects.
    """

    def __init__(self, timeout: float = PEER_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the registry

        Args:
            timeout: Idle seconds after which a peer is evicted
            clock: Monotonic time source
        """
        self.timeout = timeout
        self._clock = clock
        self._peers: Dict[Endpoint, Peer] = {}
        self._lock = threading.RLock()
        self._listeners: List[Callable[[str, Endpoint], None]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, endpoint: Endpoint) -> bool:
        with self._lock:
            return endpoint in self._peers

    def add_listener(self, callback: Callable[[str, Endpoint], None]) -> None:
        """Register a callback(event, endpoint) for joins and evictions"""
        self._listeners.append(callback)

    def _emit(self, event: str, endpoint: Endpoint) -> None:
        for callback in self._listeners:
            try:
                callback(event, endpoint)
            except Exception as e:
                logger.error(f"Peer listener failed on {event} {format_endpoint(endpoint)}: {e}")

    def touch(self, endpoint: Endpoint, now: Optional[float] = None) -> bool:
        """
        Record an authentic datagram from endpoint.

        Args:
            endpoint: Sender address
            now: Timestamp (defaults to the registry clock)

        Returns:
            True if this endpoint just joined
        """
        now = self._clock() if now is None else now
        with self._lock:
            peer = self._peers.get(endpoint)
            joined = peer is None
            if joined:
                peer = Peer(endpoint, now)
                self._peers[endpoint] = peer
            peer.last_seen = now
            peer.packets_received += 1

        if joined:
            logger.info(f"Peer joined: {format_endpoint(endpoint)}")
            self._emit(PEER_JOINED, endpoint)
        return joined

    def record_sent(self, endpoint: Endpoint) -> None:
        """
        Count a frame sent to endpoint; unknown endpoints are ignored.

        Outbound traffic does not refresh last_seen: liveness is proven only
        by datagrams the peer sends.
        """
        with self._lock:
            peer = self._peers.get(endpoint)
            if peer is not None:
                peer.packets_sent += 1

    def snapshot(self) -> List[Endpoint]:
        """Point-in-time list of active endpoints for fan-out"""
        with self._lock:
            return list(self._peers)

    def peers(self) -> List[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            return [peer.to_dict(now) for peer in self._peers.values()]

    def evict(self, now: Optional[float] = None, timeout: Optional[float] = None) -> List[Endpoint]:
        """
        Remove peers idle for longer than timeout.

        Args:
            now: Current time (defaults to the registry clock)
            timeout: Idle limit (defaults to the registry timeout)

        Returns:
            Endpoints that were removed
        """
        now = self._clock() if now is None else now
        timeout = self.timeout if timeout is None else timeout

        with self._lock:
            stale = [endpoint for endpoint, peer in self._peers.items()
                     if now - peer.last_seen > timeout]
            for endpoint in stale:
                del self._peers[endpoint]

        for endpoint in stale:
            logger.info(f"Removing stale peer: {format_endpoint(endpoint)}")
            self._emit(PEER_EVICTED, endpoint)
        return stale
