"""
Cryptography package for the VPN data plane.
Provides the AES-GCM packet codec.
"""

from common.crypto.aes import PacketCipher, NONCE_SIZE, TAG_SIZE, FRAME_OVERHEAD

__all__ = ['PacketCipher', 'NONCE_SIZE', 'TAG_SIZE', 'FRAME_OVERHEAD']
