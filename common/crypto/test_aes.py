"""
Tests for the AES-GCM packet codec.
"""
import os
import threading

import pytest

from common.crypto import aes
from common.crypto.aes import PacketCipher, NONCE_SIZE, TAG_SIZE, FRAME_OVERHEAD
from common.errors import (
    AuthenticationFailed, EntropyError, KeyMaterialError, MalformedFrame
)

KEY = b"k" * 32


@pytest.fixture
def cipher():
    return PacketCipher(KEY)


@pytest.mark.parametrize("packet", [
    b"",
    b"\x45\x00\x00\x54" + b"\x00" * 80,
    os.urandom(1400),
    os.urandom(65000),
])
def test_round_trip(cipher, packet):
    assert cipher.decrypt(cipher.encrypt(packet)) == packet


@pytest.mark.parametrize("size", [16, 24, 32])
def test_all_key_sizes(size):
    cipher = PacketCipher(os.urandom(size))
    assert cipher.decrypt(cipher.encrypt(b"ping")) == b"ping"


def test_frame_layout(cipher):
    """Frame is nonce || ciphertext || tag with no other framing"""
    packet = b"hello tunnel"
    frame = cipher.encrypt(packet)

    assert len(frame) == len(packet) + FRAME_OVERHEAD
    assert FRAME_OVERHEAD == NONCE_SIZE + TAG_SIZE == 28
    assert packet not in frame


def test_nonces_are_unique(cipher):
    nonces = {cipher.encrypt(b"same packet")[:NONCE_SIZE] for _ in range(2000)}
    assert len(nonces) == 2000


def test_same_packet_encrypts_differently(cipher):
    assert cipher.encrypt(b"payload") != cipher.encrypt(b"payload")


TAMPER_PACKET = b"tamper"


@pytest.mark.parametrize("mask", [0x01, 0x80, 0xff])
@pytest.mark.parametrize("position", range(NONCE_SIZE + len(TAMPER_PACKET) + TAG_SIZE))
def test_tampered_frame_is_rejected(cipher, position, mask):
    frame = bytearray(cipher.encrypt(TAMPER_PACKET))
    frame[position] ^= mask

    with pytest.raises(AuthenticationFailed):
        cipher.decrypt(bytes(frame))


def test_wrong_key_is_rejected(cipher):
    frame = cipher.encrypt(b"secret")
    other = PacketCipher(b"x" * 32)

    with pytest.raises(AuthenticationFailed):
        other.decrypt(frame)


def test_truncated_tag_is_rejected(cipher):
    frame = cipher.encrypt(b"secret")
    with pytest.raises(AuthenticationFailed):
        cipher.decrypt(frame[:-1])


@pytest.mark.parametrize("length", [NONCE_SIZE, NONCE_SIZE + 1, FRAME_OVERHEAD - 1])
def test_frame_without_complete_tag(cipher, length):
    with pytest.raises(AuthenticationFailed):
        cipher.decrypt(b"\x00" * length)


@pytest.mark.parametrize("length", [0, 1, NONCE_SIZE - 1])
def test_short_frame_never_reaches_aes(cipher, monkeypatch, length):
    """Frames shorter than the nonce fail before any cipher is built"""
    calls = []

    def fail_new(*args, **kwargs):
        calls.append(args)
        raise AssertionError("AES must not be touched")

    monkeypatch.setattr(aes.AES, "new", fail_new)

    with pytest.raises(MalformedFrame):
        cipher.decrypt(b"\x00" * length)
    assert calls == []


def test_codec_errors_are_distinct():
    assert not issubclass(MalformedFrame, AuthenticationFailed)
    assert not issubclass(AuthenticationFailed, MalformedFrame)


@pytest.mark.parametrize("key", [b"", b"short", b"k" * 31, b"k" * 33, "k" * 32])
def test_bad_key_is_rejected(key):
    with pytest.raises(KeyMaterialError):
        PacketCipher(key)


def test_repr_hides_key(cipher):
    assert "k" * 8 not in repr(cipher)
    assert repr(cipher) == "PacketCipher(AES-256-GCM)"


def test_entropy_failure_is_fatal(cipher, monkeypatch):
    def broken_urandom(n):
        raise OSError("no randomness")

    monkeypatch.setattr(aes.os, "urandom", broken_urandom)

    with pytest.raises(EntropyError):
        cipher.encrypt(b"packet")


def test_concurrent_use(cipher):
    """One codec instance serves both forwarding directions at once"""
    errors = []

    def worker(seed):
        try:
            for i in range(200):
                packet = bytes([seed, i % 256]) * 50
                assert cipher.decrypt(cipher.encrypt(packet)) == packet
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
