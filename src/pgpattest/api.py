"""
Public API for creating and verifying PGP attestations.

This module provides the capability interfaces used by collaborators and
their OpenPGP implementation:

- Signer / PgpSigner: bound to exactly one private key, produces armored
  attached signatures over payloads.
- Verifier / PgpVerifier: checks an armored signature against public key
  material and returns the exact signed payload.
- new_signer(), create_attestation(), verify(): convenience entry points.

Other signing backends are added as further Signer/Verifier
implementations; nothing here dispatches on backend kind.

Example:
    >>> signer = new_signer(armored_private_key)
    >>> attestation = signer.create_attestation(b"hello world")
    >>> attestation.public_key_id
    'AABBCCDD...'
    >>> verify(attestation.signature, armored_public_key)
    b'hello world'
"""

import abc
import logging
from dataclasses import dataclass
from typing import Optional

from . import armor, verification
from .config import DEFAULT_PARAMS, AttestationParams
from .exceptions import BufferIOError, ConfigurationError
from .keys import Key, KeyRing, read_armored_key_ring
from .signature import sign_message


logger = logging.getLogger(__name__)


def _read_buffer(source, what: str, stage: str, allow_text: bool = False) -> bytes:
    """Accept bytes-like data or a binary file object."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if allow_text and isinstance(source, str):
        return source.encode("utf-8")
    read = getattr(source, "read", None)
    if read is None:
        raise TypeError(f"{what} must be bytes or a binary file object, got {type(source).__name__}")
    try:
        data = read()
    except OSError as e:
        raise BufferIOError(f"Error reading {what}: {e}", stage=stage) from e
    if allow_text and isinstance(data, str):
        return data.encode("utf-8")
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"{what} file object must return bytes")
    return bytes(data)


@dataclass(frozen=True)
class Attestation:
    """
    A signed statement about a payload.

    Attributes:
        public_key_id: Uppercase hex fingerprint of the signer's key.
        signature: Armored attached signature, including the payload and a
            trailing newline.
    """

    public_key_id: str
    signature: bytes


class Signer(abc.ABC):
    """Produces attestations with one bound private key."""

    @property
    @abc.abstractmethod
    def public_key_id(self) -> str:
        """Identifier of the public key that verifies this signer's output."""

    @abc.abstractmethod
    def create_attestation(self, payload: bytes) -> Attestation:
        """Sign ``payload`` and return the attestation."""


class Verifier(abc.ABC):
    """Checks attestations and recovers their payloads."""

    @abc.abstractmethod
    def verify(self, signature: bytes, public_key: bytes) -> bytes:
        """Return the signed payload if ``signature`` verifies under ``public_key``."""


class PgpSigner(Signer):
    """
    Signer for PGP attestations.

    Holds no per-call state, so one instance may be shared across threads.

    Attributes:
        key: The bound key.
        params: Attestation parameters.
    """

    def __init__(self, key: Key, params: Optional[AttestationParams] = None):
        """
        Bind a signer to ``key``.

        Raises:
            ConfigurationError: If the key has no unencrypted,
                signing-capable private key packet.
        """
        if key.signing_material() is None:
            raise ConfigurationError(
                f"Key {key.key_id} has no unencrypted signing-capable private key"
            )
        self.key = key
        self.params = params or DEFAULT_PARAMS
        self._public_key_id = key.key_id

    @property
    def public_key_id(self) -> str:
        return self._public_key_id

    def create_attestation(self, payload: bytes, *, created: Optional[int] = None) -> Attestation:
        """
        Create a signed PGP attestation over ``payload``.

        Args:
            payload: Bytes (or a binary file object) to sign.
            created: Signature creation time, seconds since epoch; now if
                omitted.

        Returns:
            Attestation whose signature is an armored PGP SIGNATURE block.

        Raises:
            SigningError: If the signing operation fails.
            BufferIOError: If reading ``payload`` from a file object fails.
        """
        data = _read_buffer(payload, "payload", stage="sign")
        message = sign_message(self.key, data, self.params, created)
        armored = armor.encode(
            message,
            armor.ARMOR_SIGNATURE,
            headers=self.params.armor_headers,
            line_width=self.params.armor_line_width,
        )
        return Attestation(public_key_id=self._public_key_id, signature=armored)


def new_signer(private_key, params: Optional[AttestationParams] = None) -> PgpSigner:
    """
    Create a PgpSigner from an armored private key.

    Args:
        private_key: Armored PGP PRIVATE KEY BLOCK holding exactly one key.
        params: Optional attestation parameters.

    Raises:
        KeyParseError: If the key material cannot be parsed.
        ConfigurationError: If the ring does not hold exactly one key, or
            that key cannot sign.
    """
    params = params or DEFAULT_PARAMS
    data = _read_buffer(private_key, "private key", stage="signer", allow_text=True)
    key_ring = read_armored_key_ring(data, params)
    if len(key_ring) != 1:
        raise ConfigurationError(
            f"Expected 1 key in key ring, got {len(key_ring)}", key_count=len(key_ring)
        )
    signer = PgpSigner(key_ring[0], params)
    logger.debug("Created signer for key %s", signer.public_key_id)
    return signer


class PgpVerifier(Verifier):
    """
    Verifier for PGP attestations.

    Stateless apart from its parameters; safe to share across threads.
    """

    def __init__(self, params: Optional[AttestationParams] = None):
        self.params = params or DEFAULT_PARAMS

    def verify(self, signature, public_key) -> bytes:
        """
        Verify an armored attached signature against armored public keys.

        Args:
            signature: Armored signature (bytes, str or binary file object).
            public_key: Armored PGP PUBLIC KEY BLOCK with one or more keys.

        Returns:
            The exact signed payload.

        Raises:
            KeyParseError: If ``public_key`` cannot be parsed.
            ArmorFormatError: If the signature armor or packets are malformed.
            KeyNotFoundError: If no key in ``public_key`` made the signature.
            SignatureMismatchError: If the signature does not validate.
            MissingSignatureError: If the message is not signed.
        """
        data = _read_buffer(public_key, "public key", stage="keyring", allow_text=True)
        return self.verify_with_key_ring(signature, read_armored_key_ring(data, self.params))

    def verify_with_key_ring(self, signature, key_ring: KeyRing) -> bytes:
        """Verify ``signature`` against an already loaded key ring."""
        data = _read_buffer(signature, "signature", stage="verify", allow_text=True)
        return verification.verify(data, key_ring, self.params)


def create_attestation(
    private_key, payload: bytes, *, params: Optional[AttestationParams] = None
) -> Attestation:
    """
    Sign ``payload`` with an armored private key.

    See new_signer() and PgpSigner.create_attestation().
    """
    return new_signer(private_key, params).create_attestation(payload)


def verify(signature, public_key, *, params: Optional[AttestationParams] = None) -> bytes:
    """
    Verify an armored signature and return the signed payload.

    See PgpVerifier.verify().
    """
    return PgpVerifier(params).verify(signature, public_key)
