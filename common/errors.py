"""
Exception types for the VPN data plane and the policy that decides how each
kind is handled by the forwarding loops.
"""
import enum
from typing import Dict, Type


class VPNError(Exception):
    """Base class for all tunnel errors."""
    pass


# Setup errors abort startup

class SetupError(VPNError):
    """Fatal error while bringing the tunnel up."""
    pass


class ConfigError(SetupError):
    """Configuration could not be read or failed validation."""
    pass


class KeyMaterialError(SetupError):
    """The pre-shared key cannot be used as an AES key."""
    pass


class InterfaceError(SetupError):
    """The virtual network interface could not be acquired."""
    pass


class BindError(SetupError):
    """The server transport could not bind its listening address."""
    pass


class ConnectionExhausted(SetupError):
    """All connection attempts to the remote endpoint failed."""
    pass


class ConnectionCancelled(SetupError):
    """Connection establishment was interrupted by a shutdown request."""
    pass


class ConnectionStateError(VPNError):
    """Illegal connection state transition."""
    pass


class EntropyError(VPNError):
    """The OS random source failed; no nonce can be generated."""
    pass


class TransportTimeout(VPNError):
    """No datagram arrived within the read timeout."""
    pass


# Transient errors are logged and the loop continues

class TransientIOError(VPNError):
    """Single packet-level failure that must not disrupt the tunnel."""
    pass


class InterfaceIOError(TransientIOError):
    pass


class TransportIOError(TransientIOError):
    pass


class CodecError(TransientIOError):
    """A received frame could not be opened."""
    pass


class MalformedFrame(CodecError):
    """Frame shorter than the nonce."""
    pass


class AuthenticationFailed(CodecError):
    """Integrity tag did not verify (tampered, corrupted or wrong key)."""
    pass


class ErrorAction(enum.Enum):
    """What a forwarding loop does with an error"""
    IGNORE = "ignore"
    LOG_AND_CONTINUE = "log_and_continue"
    ABORT = "abort"


ERROR_POLICY: Dict[Type[BaseException], ErrorAction] = {
    TransportTimeout: ErrorAction.IGNORE,
    TransientIOError: ErrorAction.LOG_AND_CONTINUE,
    EntropyError: ErrorAction.ABORT,
    SetupError: ErrorAction.ABORT,
    ConnectionStateError: ErrorAction.ABORT,
}


def action_for(error: BaseException) -> ErrorAction:
    """
    Resolve the handling policy for an error.

    The most specific class registered in ERROR_POLICY wins. Anything not
    covered by the table aborts.

    Args:
        error: The exception raised inside a forwarding loop

    Returns:
        The ErrorAction to apply
    """
    for cls in type(error).__mro__:
        if cls in ERROR_POLICY:
            return ERROR_POLICY[cls]
    return ErrorAction.ABORT
