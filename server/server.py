"""
VPN server implementation.
Accepts datagrams from any number of clients and forwards traffic between
them and the local TUN interface.
"""
import threading
from typing import Any, Callable, Dict, Optional

from common.crypto.aes import PacketCipher
from common.networking.interface import PacketInterface
from common.networking.lifecycle import LifecycleController
from common.networking.peers import (
    PEER_EVICTED, PEER_JOINED, Endpoint, PeerRegistry, format_endpoint
)
from common.networking.transport import UDPServerTransport
from common.networking.tunnel import TunnelServer
from common.utils.config import TunnelSettings


def _default_interface(settings: TunnelSettings) -> PacketInterface:
    # Imported lazily, fcntl only exists on POSIX
    from common.platform.linux import open_tun_interface
    return open_tun_interface(settings)


class VPNServer(LifecycleController):
    """
    Main VPN server class
    """
    mode = "server"

    def __init__(self, settings: TunnelSettings,
                 interface_factory: Optional[Callable[[TunnelSettings], PacketInterface]] = None,
                 transport_factory: Optional[Callable[..., Any]] = None):
        """
        Initialize the VPN server

        Args:
            settings: Validated tunnel settings
            interface_factory: Callable(settings) returning a ready PacketInterface
            transport_factory: Callable(address) returning a bound server
                transport (defaults to UDP)
        """
        super().__init__("server", metrics_interval=settings.metrics_interval)
        self.settings = settings
        self.interface_factory = interface_factory or _default_interface
        self.transport_factory = transport_factory or UDPServerTransport.bind

        self.cipher: Optional[PacketCipher] = None
        self.interface: Optional[PacketInterface] = None
        self.transport = None
        self.registry: Optional[PeerRegistry] = None
        self.tunnel: Optional[TunnelServer] = None
        self.peer_events = {PEER_JOINED: 0, PEER_EVICTED: 0}
        self._peer_events_lock = threading.Lock()

    def _startup(self) -> None:
        settings = self.settings

        self.cipher = PacketCipher(settings.key)

        self.logger.info(f"Opening interface {settings.adapter_name}")
        self.interface = self._acquire("interface", self.interface_factory(settings))

        self.transport = self._acquire("transport", self.transport_factory(settings.endpoint))
        self.logger.info(f"VPN server listening on {format_endpoint(self.transport.local_address)}")

        self.registry = PeerRegistry(timeout=settings.peer_timeout)
        self.registry.add_listener(self._on_peer_event)
        self.tunnel = TunnelServer(
            self.cipher,
            self.interface,
            self.transport,
            self.registry,
            self.stop_event,
            read_timeout=settings.read_timeout,
            log_traffic=settings.log_traffic
        )
        self._spawn("ingress", self.tunnel.ingress_loop)
        self._spawn("egress", self.tunnel.egress_loop)
        self._spawn("eviction", self._eviction_loop)
        self._spawn("metrics", self._metrics_loop)

    def _on_peer_event(self, event: str, endpoint: Endpoint) -> None:
        with self._peer_events_lock:
            self.peer_events[event] += 1

    def _eviction_loop(self) -> None:
        """Periodically remove peers that stopped sending"""
        while not self.stop_event.wait(self.settings.eviction_interval):
            removed = self.registry.evict()
            if removed:
                self.logger.info(f"Evicted {len(removed)} stale peers, {len(self.registry)} active")

    def _engine(self):
        return self.tunnel

    def _metrics_line(self) -> str:
        line = super()._metrics_line()
        if self.registry is not None:
            line = f"{line}, peers={len(self.registry)}"
        return line

    def get_status(self) -> Dict[str, Any]:
        """
        Get the current status of the VPN server

        Returns:
            Dictionary with status information
        """
        status = super().get_status()
        status["bind"] = format_endpoint(self.settings.endpoint)
        if self.transport is not None and not self.transport.closed:
            status["bind"] = format_endpoint(self.transport.local_address)
        peers = self.registry.peers() if self.registry is not None else []
        status["peer_count"] = len(peers)
        status["peers"] = peers
        with self._peer_events_lock:
            status["peers_joined"] = self.peer_events[PEER_JOINED]
            status["peers_evicted"] = self.peer_events[PEER_EVICTED]
        return status
