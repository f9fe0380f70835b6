"""
Linux TUN interface for the VPN tunnel.
Moves raw IP packets between the kernel and the forwarding engine.
"""
import os
import fcntl
import select
import struct
import logging
import threading
import subprocess
import ipaddress
from typing import Optional

from common.errors import InterfaceError, InterfaceIOError
from common.networking.interface import PacketInterface
from common.networking.transport import BUFFER_SIZE

logger = logging.getLogger("pskvpn.platform")

# Constants for TUN setup
TUN_DEVICE = "/dev/net/tun"
TUNSETIFF = 0x400454ca
IFF_TUN = 0x0001
IFF_NO_PI = 0x1000
IFNAMSIZ = 16


class TunInterface(PacketInterface):
    """
    TUN interface implementation for Linux
    """

    def __init__(self, name: str = "vpn0", address: Optional[str] = None, mtu: int = 1400):
        """
        Initialize TUN interface

        Args:
            name: Interface name
            address: Interface address in CIDR notation (None to leave unset)
            mtu: Maximum Transmission Unit
        """
        self.name = name
        self.address = address
        self.mtu = mtu
        self.fd: Optional[int] = None
        self._close_lock = threading.Lock()

    def setup(self) -> "TunInterface":
        """
        Create the TUN device, assign its address and bring it up

        Returns:
            The interface itself

        Raises:
            InterfaceError: If any step fails; nothing stays open
        """
        if len(self.name.encode()) >= IFNAMSIZ:
            raise InterfaceError(f"Interface name too long: {self.name}")

        logger.info(f"Setting up TUN interface: {self.name}")
        try:
            self.fd = os.open(TUN_DEVICE, os.O_RDWR)
            ifr = struct.pack("16sH", self.name.encode(), IFF_TUN | IFF_NO_PI)
            fcntl.ioctl(self.fd, TUNSETIFF, ifr)

            self._ip("link", "set", "dev", self.name, "mtu", str(self.mtu))
            if self.address:
                interface = ipaddress.ip_interface(self.address)
                self._ip("addr", "add", str(interface), "dev", self.name)
            self._ip("link", "set", "dev", self.name, "up")
        except (OSError, ValueError, subprocess.CalledProcessError) as e:
            self.close()
            raise InterfaceError(f"Failed to set up TUN interface {self.name}: {e}") from e

        logger.info(f"TUN interface {self.name} is up (address={self.address}, mtu={self.mtu})")
        return self

    @staticmethod
    def _ip(*args: str) -> None:
        subprocess.run(["ip", *args], check=True, capture_output=True)

    @property
    def closed(self) -> bool:
        return self.fd is None

    def read_packet(self, timeout: Optional[float] = None) -> Optional[bytes]:
        fd = self.fd
        if fd is None:
            raise InterfaceIOError(f"TUN interface {self.name} is closed")

        try:
            readable, _, _ = select.select([fd], [], [], timeout)
            if not readable:
                return None
            return os.read(fd, BUFFER_SIZE)
        except (OSError, ValueError) as e:
            raise InterfaceIOError(f"Failed to read from TUN interface: {e}") from e

    def write_packet(self, packet: bytes) -> None:
        fd = self.fd
        if fd is None:
            raise InterfaceIOError(f"TUN interface {self.name} is closed")

        try:
            os.write(fd, packet)
        except OSError as e:
            raise InterfaceIOError(f"Failed to write to TUN interface: {e}") from e

    def close(self) -> None:
        """Close the TUN interface; the kernel removes the device with it"""
        with self._close_lock:
            fd, self.fd = self.fd, None
        if fd is None:
            return

        logger.info(f"Closing TUN interface: {self.name}")
        try:
            os.close(fd)
        except OSError as e:
            logger.error(f"Error while closing TUN interface: {e}")


def open_tun_interface(settings) -> TunInterface:
    """
    Create and configure the TUN interface described by the settings

    Args:
        settings: TunnelSettings with adapter_name, adapter_address and mtu

    Returns:
        Ready TunInterface

    Raises:
        InterfaceError: If the interface cannot be acquired
    """
    return TunInterface(
        name=settings.adapter_name,
        address=settings.adapter_address,
        mtu=settings.mtu
    ).setup()
