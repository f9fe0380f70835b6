"""
VPN client implementation.
Connects to the VPN server and forwards traffic between the local TUN
interface and the tunnel.
"""
from typing import Any, Callable, Dict, Optional

from common.crypto.aes import PacketCipher
from common.networking.connection import ConnectionSupervisor
from common.networking.interface import PacketInterface
from common.networking.lifecycle import LifecycleController
from common.networking.peers import format_endpoint
from common.networking.tunnel import TunnelClient
from common.utils.config import TunnelSettings


def _default_interface(settings: TunnelSettings) -> PacketInterface:
    # Imported lazily, fcntl only exists on POSIX
    from common.platform.linux import open_tun_interface
    return open_tun_interface(settings)


class VPNClient(LifecycleController):
    """
    Main VPN client class
    """
    mode = "client"

    def __init__(self, settings: TunnelSettings,
                 interface_factory: Optional[Callable[[TunnelSettings], PacketInterface]] = None,
                 transport_factory: Optional[Callable[..., Any]] = None):
        """
        Initialize the VPN client

        Args:
            settings: Validated tunnel settings
            interface_factory: Callable(settings) returning a ready PacketInterface
            transport_factory: Callable(address, timeout) returning a connected
                transport (defaults to UDP)
        """
        super().__init__("client", metrics_interval=settings.metrics_interval)
        self.settings = settings
        self.interface_factory = interface_factory or _default_interface
        self.transport_factory = transport_factory

        self.cipher: Optional[PacketCipher] = None
        self.interface: Optional[PacketInterface] = None
        self.supervisor: Optional[ConnectionSupervisor] = None
        self.tunnel: Optional[TunnelClient] = None

    def _startup(self) -> None:
        settings = self.settings

        self.cipher = PacketCipher(settings.key)

        self.logger.info(f"Opening interface {settings.adapter_name}")
        self.interface = self._acquire("interface", self.interface_factory(settings))

        self.supervisor = ConnectionSupervisor(
            settings.endpoint,
            self.stop_event,
            transport_factory=self.transport_factory,
            connect_timeout=settings.connect_timeout,
            max_tries=settings.max_connect_tries,
            retry_delay=settings.retry_delay,
            reconnect_threshold=settings.reconnect_threshold
        )
        self._acquire("connection", self.supervisor, lambda s: s.terminate())
        self.supervisor.connect()

        self.tunnel = TunnelClient(
            self.cipher,
            self.interface,
            self.supervisor,
            self.stop_event,
            read_timeout=settings.read_timeout,
            log_traffic=settings.log_traffic
        )
        self._spawn("egress", self.tunnel.egress_loop)
        self._spawn("ingress", self.tunnel.ingress_loop)
        self._spawn("metrics", self._metrics_loop)

    def _engine(self):
        return self.tunnel

    def get_status(self) -> Dict[str, Any]:
        """
        Get the current status of the VPN client

        Returns:
            Dictionary with status information
        """
        status = super().get_status()
        status["remote"] = format_endpoint(self.settings.endpoint)
        supervisor = self.supervisor
        if supervisor is not None:
            status["connection"] = supervisor.state.value
            status["attempts"] = supervisor.attempts
            status["reconnects"] = supervisor.reconnects
        else:
            status["connection"] = "idle"
            status["attempts"] = 0
            status["reconnects"] = 0
        return status
