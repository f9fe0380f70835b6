"""
Platform-specific implementations of the packet interface.
"""

from common.platform.linux import TunInterface, open_tun_interface

__all__ = ['TunInterface', 'open_tun_interface']
