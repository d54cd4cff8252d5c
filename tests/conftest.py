"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from ecdsa import NIST256p, SigningKey
from ecdsa.curves import Ed25519

from pgpattest.keys import Key

TESTDATA = Path(__file__).parent / "testdata"

# Fixed creation time so certifications are reproducible within a run
KEY_CREATED = 1700000000

# Fingerprints of the GnuPG-generated keys in testdata/
ED25519_FINGERPRINT = "5F0669D961C87C944BA3F746A04CAA29969D7121"
P256_FINGERPRINT = "75A0C8B28929E61F068A771ABFE929FD8FEA07C7"
RSA_FINGERPRINT = "001694CDAA875A2C3522CA447000B41326F7014C"
LOCKED_FINGERPRINT = "B2F01F177DDF911F2C7D9C776E27DCE0CC564BF2"
SUBKEY_PRIMARY_FINGERPRINT = "48746FE10E8BCDA1F2103C40768419158409412A"
SUBKEY_SIGNING_FINGERPRINT = "FD4ABDF2290A71BE563F6BB130C688BFCB4487FF"


def load(name: str) -> bytes:
    """Read a file from tests/testdata."""
    return (TESTDATA / name).read_bytes()


@pytest.fixture(scope="module")
def p256_key():
    """A self-certified ECDSA P-256 key built around a fresh ecdsa key."""
    return Key.from_private_key(
        SigningKey.generate(curve=NIST256p), "P256 Test <p256@example.com>", created=KEY_CREATED
    )


@pytest.fixture(scope="module")
def ed25519_key():
    return Key.from_private_key(
        SigningKey.generate(curve=Ed25519), "Ed25519 Test <ed@example.com>", created=KEY_CREATED
    )


@pytest.fixture(scope="module")
def rsa_key():
    """
    A self-certified RSA key.

    Module-scoped because RSA generation is the slowest fixture here.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return Key.from_private_key(private_key, "RSA Test <rsa@example.com>", created=KEY_CREATED)


@pytest.fixture(params=["p256_key", "ed25519_key", "rsa_key"])
def any_key(request):
    """Each supported key type in turn."""
    return request.getfixturevalue(request.param)


@pytest.fixture(scope="module")
def armored_p256(p256_key):
    """Armored private and public blocks for the P-256 key."""
    return {
        "private": p256_key.export(private=True),
        "public": p256_key.export(),
    }
