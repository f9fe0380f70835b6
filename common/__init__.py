"""
Components shared by the VPN client and server.
"""
