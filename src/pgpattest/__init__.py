"""
pgpattest - ASCII-armored PGP attestations.

This library signs arbitrary payloads with OpenPGP attached signatures and
verifies them against public key rings, identifying signers by the
uppercase hex fingerprint of their key.

Quick Start:
    >>> from pgpattest import new_signer, verify
    >>>
    >>> # Signing (bind one private key, sign many payloads)
    >>> signer = new_signer(armored_private_key)
    >>> attestation = signer.create_attestation(b"hello world")
    >>>
    >>> # Verification (returns the payload only once the signature checks out)
    >>> payload = verify(attestation.signature, armored_public_key)

For incremental reads, use VerifyingReader: read() yields unverified
payload bytes and finalize() delivers the verdict.

See Also:
    - api.py: Signer/Verifier interfaces and entry points
    - armor.py: ASCII armor codec
    - keys.py: Key ring loading
    - signature.py: Signature packets and signing
    - verification.py: Two-phase verification
    - exceptions.py: Custom exception types
"""

__version__ = "0.1.0"
__author__ = "pgpattest Contributors"

# Public API - main entry points
from .api import (
    Attestation,
    PgpSigner,
    PgpVerifier,
    Signer,
    Verifier,
    create_attestation,
    new_signer,
    verify,
)

# Exceptions for error handling
from .exceptions import (
    AttestationError,
    ArmorFormatError,
    BufferIOError,
    ConfigurationError,
    KeyNotFoundError,
    KeyParseError,
    MissingSignatureError,
    PacketFormatError,
    SignatureMismatchError,
    SigningError,
)

# Lower-level types (for advanced usage)
from .config import DEFAULT_PARAMS, AttestationParams
from .keys import Key, KeyRing, read_armored_key_ring, read_key_ring
from .verification import Verification, VerificationState, VerifyingReader

__all__ = [
    # Version
    "__version__",
    # Main API
    "Attestation",
    "Signer",
    "Verifier",
    "PgpSigner",
    "PgpVerifier",
    "new_signer",
    "create_attestation",
    "verify",
    # Exceptions
    "AttestationError",
    "ArmorFormatError",
    "BufferIOError",
    "ConfigurationError",
    "KeyNotFoundError",
    "KeyParseError",
    "MissingSignatureError",
    "PacketFormatError",
    "SignatureMismatchError",
    "SigningError",
    # Types
    "AttestationParams",
    "DEFAULT_PARAMS",
    "Key",
    "KeyRing",
    "read_armored_key_ring",
    "read_key_ring",
    "Verification",
    "VerificationState",
    "VerifyingReader",
]
