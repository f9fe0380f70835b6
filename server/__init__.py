"""
VPN server package.
"""

from server.server import VPNServer

__all__ = ['VPNServer']
