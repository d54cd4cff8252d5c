"""
Custom exceptions for the pgpattest library.

Every error raised by the library derives from AttestationError and carries
a ``stage`` tag naming the part of the pipeline that produced it, so callers
can tell a malformed key ring from a forged signature without parsing
messages. Nothing is retried internally: malformed input is permanent.
"""

from typing import Optional


class AttestationError(Exception):
    """Base exception for all pgpattest errors."""

    default_message = "Attestation error"
    stage = "attestation"

    def __init__(self, message: Optional[str] = None, *, stage: Optional[str] = None):
        self.message = message or self.default_message
        if stage is not None:
            self.stage = stage
        super().__init__(self.message)


class ConfigurationError(AttestationError):
    """
    Raised when a Signer cannot be built from the supplied key material.

    The key ring must hold exactly one key, and that key must be able to
    sign with an unencrypted private component.

    Attributes:
        key_count: Number of keys found in the ring, when that was the problem.
    """

    default_message = "Invalid signer configuration"
    stage = "signer"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        key_count: Optional[int] = None,
        stage: Optional[str] = None,
    ):
        self.key_count = key_count
        super().__init__(message, stage=stage)


class KeyParseError(AttestationError):
    """Raised when armored key material cannot be turned into a key ring."""

    default_message = "Unable to parse key material"
    stage = "keyring"


class ArmorFormatError(AttestationError):
    """
    Raised when ASCII armor is malformed.

    Covers missing or mismatched BEGIN/END markers, an undecodable radix-64
    body and a CRC24 checksum that does not match the decoded body.
    """

    default_message = "Invalid or corrupted armor"
    stage = "armor"


class PacketFormatError(ArmorFormatError):
    """
    Raised when the binary packet stream inside a valid armor is malformed.

    Truncated packets, unsupported packet versions and unexpected packet
    sequences all end up here. It carries the "armor" stage of its parent.
    """

    default_message = "Malformed packet stream"


class KeyNotFoundError(AttestationError):
    """Raised when no signing-capable key in the ring matches the signer."""

    default_message = "No matching key found in key ring"
    stage = "verify"


class SignatureMismatchError(AttestationError):
    """
    Raised when a signature does not validate over the recovered payload.

    This is a verification failure, not a parse failure: the message was
    well formed but the signature value, digest or issuer is wrong.
    """

    default_message = "Signature does not match payload"
    stage = "verify"


class MissingSignatureError(AttestationError):
    """Raised when a message ends without a trailing signature packet."""

    default_message = "Signature missing"
    stage = "verify"


class SigningError(AttestationError):
    """Raised when a signature cannot be produced with the bound key."""

    default_message = "Signing failed"
    stage = "sign"


class BufferIOError(AttestationError, OSError):
    """Raised when reading a caller-supplied buffer fails."""

    default_message = "Failed to read buffer"
    stage = "io"
