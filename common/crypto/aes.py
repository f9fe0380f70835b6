"""
AES-GCM packet encryption for the VPN tunnel.
Uses PyCryptodome for the AES implementation.

Every packet is sealed under the pre-shared key with a fresh random nonce and
travels as a single frame:

    [nonce (12)] [ciphertext] [tag (16)]
"""
import os
import logging

from Crypto.Cipher import AES

from common.errors import (
    AuthenticationFailed, EntropyError, KeyMaterialError, MalformedFrame
)

logger = logging.getLogger("pskvpn.crypto")

NONCE_SIZE = 12  # 96 bits is recommended for GCM
TAG_SIZE = 16
FRAME_OVERHEAD = NONCE_SIZE + TAG_SIZE
VALID_KEY_SIZES = (16, 24, 32)


class PacketCipher:
    """
    AES-GCM codec for tunnel packets.

    Holds only the key; each call builds its own cipher object, so one
    instance can be shared by both forwarding directions.
    """

    def __init__(self, key: bytes):
        """
        Initialize the codec

        Args:
            key: AES key (16, 24, or 32 bytes), used as-is

        Raises:
            KeyMaterialError: If the key has an unsupported length
        """
        if not isinstance(key, (bytes, bytearray)):
            raise KeyMaterialError("Key must be bytes")
        if len(key) not in VALID_KEY_SIZES:
            raise KeyMaterialError(
                f"AES key must be 16, 24 or 32 bytes, got {len(key)}"
            )
        self._key = bytes(key)
        logger.debug(f"Packet cipher ready (AES-{len(key) * 8}-GCM)")

    def __repr__(self) -> str:
        return f"PacketCipher(AES-{len(self._key) * 8}-GCM)"

    @staticmethod
    def _new_nonce() -> bytes:
        try:
            return os.urandom(NONCE_SIZE)
        except (OSError, NotImplementedError) as e:
            raise EntropyError(f"Unable to obtain random nonce: {e}") from e

    def encrypt(self, packet: bytes) -> bytes:
        """
        Seal a packet for transmission.

        Args:
            packet: Raw packet data

        Returns:
            Sealed frame: nonce || ciphertext || tag

        Raises:
            EntropyError: If the system random source fails
        """
        nonce = self._new_nonce()
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
        ciphertext, tag = cipher.encrypt_and_digest(packet)
        return nonce + ciphertext + tag

    def decrypt(self, frame: bytes) -> bytes:
        """
        Open a sealed frame.

        Args:
            frame: Frame as received from the transport

        Returns:
            Decrypted packet data

        Raises:
            MalformedFrame: If the frame is shorter than the nonce
            AuthenticationFailed: If the tag is missing or does not verify
        """
        if len(frame) < NONCE_SIZE:
            raise MalformedFrame(
                f"Frame too short: {len(frame)} bytes (nonce is {NONCE_SIZE})"
            )

        nonce = frame[:NONCE_SIZE]
        body = frame[NONCE_SIZE:]
        if len(body) < TAG_SIZE:
            raise AuthenticationFailed("Frame carries no complete tag")

        ciphertext, tag = body[:-TAG_SIZE], body[-TAG_SIZE:]
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
        try:
            return cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError as e:
            raise AuthenticationFailed(str(e)) from e
