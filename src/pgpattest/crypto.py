"""
Public-key algorithm and digest primitives for OpenPGP signatures.

This module maps OpenPGP algorithm identifiers onto key objects and
signing operations:

- ECDSA (RFC 6637) and legacy EdDSA on Ed25519 use the python-ecdsa library.
- RSA (PKCS#1 v1.5) uses the cryptography library.

Signatures are always computed over a precomputed digest, because OpenPGP
hashes the payload together with a signature trailer before the public-key
operation. ECDSA signing uses deterministic RFC 6979 nonces.
"""

import hashlib
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed
from ecdsa import BadSignatureError, SigningKey, VerifyingKey
from ecdsa.curves import (
    BRAINPOOLP256r1,
    BRAINPOOLP384r1,
    BRAINPOOLP512r1,
    Ed25519,
    NIST256p,
    NIST384p,
    NIST521p,
)

from .packets import read_exact, read_mpi, read_mpi_bytes, write_mpi


# Public-key algorithms
PUBKEY_RSA = 1
PUBKEY_RSA_SIGN_ONLY = 3
PUBKEY_ECDSA = 19
PUBKEY_EDDSA = 22

SIGNING_ALGORITHMS = frozenset({PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY, PUBKEY_ECDSA, PUBKEY_EDDSA})

# Hash algorithms
HASH_SHA1 = 2
HASH_SHA256 = 8
HASH_SHA384 = 9
HASH_SHA512 = 10
HASH_SHA224 = 11

HASH_FUNCS = {
    HASH_SHA1: hashlib.sha1,
    HASH_SHA256: hashlib.sha256,
    HASH_SHA384: hashlib.sha384,
    HASH_SHA512: hashlib.sha512,
    HASH_SHA224: hashlib.sha224,
}

_HASH_CLASSES = {
    HASH_SHA1: hashes.SHA1,
    HASH_SHA256: hashes.SHA256,
    HASH_SHA384: hashes.SHA384,
    HASH_SHA512: hashes.SHA512,
    HASH_SHA224: hashes.SHA224,
}

# Curve OIDs as they appear in key packets: the DER OID body without tag
# and length octets.
ECDSA_CURVES = {
    curve.encoded_oid[2:]: curve
    for curve in (NIST256p, NIST384p, NIST521p, BRAINPOOLP256r1, BRAINPOOLP384r1, BRAINPOOLP512r1)
}
ED25519_OID = bytes.fromhex("2b06010401da470f01")

ED25519_SIZE = 32
# Native point encoding prefix for EdDSA public keys
EDDSA_POINT_PREFIX = b"\x40"


class UnsupportedAlgorithmError(Exception):
    """Raised for key material this library cannot use."""


def new_hash(hash_algorithm: int):
    """Create a hashlib object for an OpenPGP hash algorithm id."""
    try:
        return HASH_FUNCS[hash_algorithm]()
    except KeyError:
        raise UnsupportedAlgorithmError(f"Unsupported hash algorithm {hash_algorithm}") from None


def _rs_encode(r, s, order):
    return r, s


def _rs_decode(signature, order):
    return signature


def _read_oid(stream) -> bytes:
    length = read_exact(stream, 1)[0]
    if length in (0, 0xFF):
        raise UnsupportedAlgorithmError("Reserved curve OID length")
    return read_exact(stream, length)


def read_public_fields(algorithm: int, stream):
    """
    Read the algorithm-specific fields of a public key packet.

    Returns:
        An ecdsa.VerifyingKey or a cryptography RSAPublicKey.

    Raises:
        UnsupportedAlgorithmError: For algorithms or curves not handled here.
        ValueError: If the fields do not describe a valid key.
    """
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        n = read_mpi(stream)
        e = read_mpi(stream)
        return rsa.RSAPublicNumbers(e, n).public_key()

    if algorithm == PUBKEY_ECDSA:
        oid = _read_oid(stream)
        curve = ECDSA_CURVES.get(oid)
        if curve is None:
            raise UnsupportedAlgorithmError(f"Unsupported ECDSA curve OID {oid.hex()}")
        return VerifyingKey.from_string(read_mpi_bytes(stream), curve=curve)

    if algorithm == PUBKEY_EDDSA:
        oid = _read_oid(stream)
        if oid != ED25519_OID:
            raise UnsupportedAlgorithmError(f"Unsupported EdDSA curve OID {oid.hex()}")
        point = read_mpi_bytes(stream)
        if len(point) != ED25519_SIZE + 1 or point[:1] != EDDSA_POINT_PREFIX:
            raise ValueError("Invalid Ed25519 public point encoding")
        return VerifyingKey.from_string(point[1:], curve=Ed25519)

    raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")


def write_public_fields(algorithm: int, public_key) -> bytes:
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        numbers = public_key.public_numbers()
        return write_mpi(numbers.n) + write_mpi(numbers.e)

    if algorithm == PUBKEY_ECDSA:
        oid = public_key.curve.encoded_oid[2:]
        return bytes([len(oid)]) + oid + write_mpi(public_key.to_string("uncompressed"))

    if algorithm == PUBKEY_EDDSA:
        return (
            bytes([len(ED25519_OID)])
            + ED25519_OID
            + write_mpi(EDDSA_POINT_PREFIX + public_key.to_string())
        )

    raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")


def read_secret_fields(algorithm: int, public_key, stream):
    """
    Read the plaintext secret MPIs of a secret key packet.

    Returns:
        An ecdsa.SigningKey or a cryptography RSAPrivateKey matching
        ``public_key``.

    Raises:
        ValueError: If the secret does not match the public key.
    """
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        d = read_mpi(stream)
        p = read_mpi(stream)
        q = read_mpi(stream)
        read_mpi(stream)  # u, recomputed by cryptography as iqmp
        numbers = rsa.RSAPrivateNumbers(
            p=p,
            q=q,
            d=d,
            dmp1=rsa.rsa_crt_dmp1(d, p),
            dmq1=rsa.rsa_crt_dmq1(d, q),
            iqmp=rsa.rsa_crt_iqmp(p, q),
            public_numbers=public_key.public_numbers(),
        )
        return numbers.private_key()

    if algorithm == PUBKEY_ECDSA:
        private_key = SigningKey.from_secret_exponent(read_mpi(stream), curve=public_key.curve)
    elif algorithm == PUBKEY_EDDSA:
        seed = read_mpi_bytes(stream).rjust(ED25519_SIZE, b"\x00")
        if len(seed) != ED25519_SIZE:
            raise ValueError("Invalid Ed25519 secret length")
        private_key = SigningKey.from_string(seed, curve=Ed25519)
    else:
        raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")

    if private_key.get_verifying_key().to_string() != public_key.to_string():
        raise ValueError("Secret key does not match public key")
    return private_key


def write_secret_fields(algorithm: int, private_key) -> bytes:
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        numbers = private_key.private_numbers()
        p, q = sorted((numbers.p, numbers.q))
        return write_mpi(numbers.d) + write_mpi(p) + write_mpi(q) + write_mpi(pow(p, -1, q))

    if algorithm == PUBKEY_ECDSA:
        return write_mpi(private_key.privkey.secret_multiplier)

    if algorithm == PUBKEY_EDDSA:
        return write_mpi(private_key.to_string())

    raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")


def algorithm_for(private_key) -> int:
    """Pick the OpenPGP algorithm id for a caller-supplied private key."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        return PUBKEY_RSA
    if isinstance(private_key, SigningKey):
        if private_key.curve == Ed25519:
            return PUBKEY_EDDSA
        if getattr(private_key.curve, "encoded_oid", b"")[2:] in ECDSA_CURVES:
            return PUBKEY_ECDSA
        raise UnsupportedAlgorithmError(f"Unsupported curve {private_key.curve.name}")
    raise UnsupportedAlgorithmError(f"Unsupported private key type {type(private_key).__name__}")


def public_key_of(private_key):
    if isinstance(private_key, SigningKey):
        return private_key.get_verifying_key()
    return private_key.public_key()


def sign_digest(algorithm: int, private_key, digest: bytes, hash_algorithm: int) -> Tuple[int, ...]:
    """
    Sign a precomputed digest.

    Args:
        algorithm: OpenPGP public-key algorithm id of the key.
        private_key: ecdsa.SigningKey or cryptography RSAPrivateKey.
        digest: Digest of the signed data and signature trailer.
        hash_algorithm: OpenPGP hash algorithm id that produced ``digest``.

    Returns:
        The signature MPIs as integers: (s,) for RSA, (r, s) otherwise.
    """
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        signature = private_key.sign(
            digest, padding.PKCS1v15(), Prehashed(_HASH_CLASSES[hash_algorithm]())
        )
        return (int.from_bytes(signature, "big"),)

    if algorithm == PUBKEY_ECDSA:
        return private_key.sign_digest_deterministic(
            digest,
            hashfunc=HASH_FUNCS[hash_algorithm],
            sigencode=_rs_encode,
            allow_truncate=True,
        )

    if algorithm == PUBKEY_EDDSA:
        # EdDSA signs the digest itself as its message
        signature = private_key.sign_deterministic(digest)
        return (
            int.from_bytes(signature[:ED25519_SIZE], "big"),
            int.from_bytes(signature[ED25519_SIZE:], "big"),
        )

    raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")


def verify_digest(
    algorithm: int, public_key, digest: bytes, hash_algorithm: int, mpis: Tuple[int, ...]
) -> bool:
    """
    Verify signature MPIs over a precomputed digest.

    Returns:
        True if the signature is valid, False otherwise.
    """
    if algorithm in (PUBKEY_RSA, PUBKEY_RSA_SIGN_ONLY):
        if len(mpis) != 1:
            return False
        size = (public_key.key_size + 7) // 8
        try:
            signature = mpis[0].to_bytes(size, "big")
            public_key.verify(
                signature, digest, padding.PKCS1v15(), Prehashed(_HASH_CLASSES[hash_algorithm]())
            )
            return True
        except (InvalidSignature, OverflowError):
            return False

    if algorithm == PUBKEY_ECDSA:
        if len(mpis) != 2:
            return False
        try:
            return public_key.verify_digest(
                tuple(mpis), digest, sigdecode=_rs_decode, allow_truncate=True
            )
        except BadSignatureError:
            return False

    if algorithm == PUBKEY_EDDSA:
        if len(mpis) != 2:
            return False
        try:
            signature = mpis[0].to_bytes(ED25519_SIZE, "big") + mpis[1].to_bytes(ED25519_SIZE, "big")
            return public_key.verify(signature, digest)
        except (BadSignatureError, OverflowError):
            return False

    return False
