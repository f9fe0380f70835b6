"""
Networking package for the VPN system.
Includes the transports, peer tracking, connection supervision and the
forwarding engine.
"""

from common.networking.interface import PacketInterface
from common.networking.transport import UDPClientTransport, UDPServerTransport
from common.networking.peers import Peer, PeerRegistry
from common.networking.connection import ConnectionState, ConnectionSupervisor
from common.networking.tunnel import (
    TunnelConfig, TunnelEndpoint, TunnelClient, TunnelServer
)
from common.networking.lifecycle import LifecycleController, ServiceState

__all__ = [
    'PacketInterface',
    'UDPClientTransport',
    'UDPServerTransport',
    'Peer',
    'PeerRegistry',
    'ConnectionState',
    'ConnectionSupervisor',
    'TunnelConfig',
    'TunnelEndpoint',
    'TunnelClient',
    'TunnelServer',
    'LifecycleController',
    'ServiceState'
]
