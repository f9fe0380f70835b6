"""
VPN client package.
"""

from client.client import VPNClient

__all__ = ['VPNClient']
