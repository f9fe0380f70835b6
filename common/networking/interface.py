"""
Contract for the local virtual network interface used by the tunnel.
"""
from abc import ABC, abstractmethod
from typing import Optional


class PacketInterface(ABC):
    """
    Source and sink of raw IP packets on the local side of the tunnel.

    One thread may call read_packet while another calls write_packet.
    Errors while moving a single packet raise InterfaceIOError.
    """

    @abstractmethod
    def read_packet(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Read one packet

        Args:
            timeout: Seconds to wait for a packet (None blocks)

        Returns:
            Packet bytes, or None if nothing arrived within the timeout
        """

    @abstractmethod
    def write_packet(self, packet: bytes) -> None:
        """Write one packet to the interface"""

    @abstractmethod
    def close(self) -> None:
        """Release the interface; safe to call more than once"""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once close() has run"""
