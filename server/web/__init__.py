"""
Status API package for the VPN services.
"""

from server.web.app import create_app, StatusServer

__all__ = ['create_app', 'StatusServer']
