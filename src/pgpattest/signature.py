"""
Signature packets and the signing engine.

A signed message is written as a one-pass signature packet, a literal data
packet carrying the payload and a trailing version 4 signature packet:

    [one-pass signature][literal data: payload][signature]

The signature covers the payload followed by the signature's own hashed
subpackets and trailer (RFC 4880, section 5.2.4). Producing a message is a
pure function of the payload, the key and the parameters; nothing is
retained between calls.
"""

import dataclasses
import io
import logging
import time
from typing import Optional, Tuple

from .config import DEFAULT_PARAMS, AttestationParams
from .crypto import UnsupportedAlgorithmError, new_hash
from .exceptions import PacketFormatError, SignatureMismatchError, SigningError
from .packets import (
    SUBPACKET_CREATION_TIME,
    SUBPACKET_ISSUER,
    SUBPACKET_ISSUER_FINGERPRINT,
    SUBPACKET_KEY_EXPIRATION,
    SUBPACKET_KEY_FLAGS,
    TAG_LITERAL,
    TAG_ONE_PASS_SIGNATURE,
    TAG_SIGNATURE,
    Subpacket,
    parse_subpackets,
    read_exact,
    read_mpi,
    serialize_subpackets,
    write_mpi,
    write_packet,
)


logger = logging.getLogger(__name__)

# Signature types
SIG_BINARY = 0x00
SIG_TEXT = 0x01
SIG_CERT_GENERIC = 0x10
SIG_CERT_POSITIVE = 0x13
SIG_SUBKEY_BINDING = 0x18

CERTIFICATION_TYPES = frozenset(range(SIG_CERT_GENERIC, SIG_CERT_POSITIVE + 1))

# Key flags
KEY_FLAG_CERTIFY = 0x01
KEY_FLAG_SIGN = 0x02

SIGNATURE_VERSION = 4
ONE_PASS_VERSION = 3
KEY_PACKET_VERSION = 4

LITERAL_BINARY = b"b"

# Subpackets whose meaning this library understands. A critical subpacket of
# any other type makes the signature unusable (RFC 4880, section 5.2.3.1).
_KNOWN_SUBPACKETS = frozenset(
    {
        SUBPACKET_CREATION_TIME,
        SUBPACKET_KEY_EXPIRATION,
        SUBPACKET_ISSUER,
        SUBPACKET_KEY_FLAGS,
        SUBPACKET_ISSUER_FINGERPRINT,
        11,  # preferred symmetric algorithms
        21,  # preferred hash algorithms
        22,  # preferred compression algorithms
        23,  # key server preferences
        25,  # primary user id
        30,  # features
        32,  # embedded signature
    }
)


@dataclasses.dataclass(frozen=True)
class SignaturePacket:
    """A version 4 signature packet."""

    sig_type: int
    pubkey_algorithm: int
    hash_algorithm: int
    hashed_data: bytes
    unhashed_data: bytes
    hash_prefix: bytes
    mpis: Tuple[int, ...]

    @classmethod
    def parse(cls, body: bytes) -> "SignaturePacket":
        stream = io.BytesIO(body)
        version = read_exact(stream, 1)[0]
        if version != SIGNATURE_VERSION:
            raise PacketFormatError(f"Unsupported signature packet version {version}")
        sig_type, pubkey_algorithm, hash_algorithm = read_exact(stream, 3)
        hashed = read_exact(stream, int.from_bytes(read_exact(stream, 2), "big"))
        unhashed = read_exact(stream, int.from_bytes(read_exact(stream, 2), "big"))
        # Subpacket areas are kept verbatim so the trailer hashes exactly as
        # written; parse them once here to reject malformed areas early.
        parse_subpackets(hashed)
        parse_subpackets(unhashed)
        hash_prefix = read_exact(stream, 2)
        mpis = []
        while stream.tell() < len(body):
            mpis.append(read_mpi(stream))
        return cls(
            sig_type=sig_type,
            pubkey_algorithm=pubkey_algorithm,
            hash_algorithm=hash_algorithm,
            hashed_data=hashed,
            unhashed_data=unhashed,
            hash_prefix=hash_prefix,
            mpis=tuple(mpis),
        )

    @property
    def hashed_subpackets(self) -> Tuple[Subpacket, ...]:
        return parse_subpackets(self.hashed_data)

    @property
    def unhashed_subpackets(self) -> Tuple[Subpacket, ...]:
        return parse_subpackets(self.unhashed_data)

    def hashed_area(self) -> bytes:
        """The leading part of the packet that is covered by the digest."""
        return (
            bytes([SIGNATURE_VERSION, self.sig_type, self.pubkey_algorithm, self.hash_algorithm])
            + len(self.hashed_data).to_bytes(2, "big")
            + self.hashed_data
        )

    def trailer(self) -> bytes:
        """Bytes appended to the signed data before computing the digest."""
        hashed_area = self.hashed_area()
        return hashed_area + bytes([SIGNATURE_VERSION, 0xFF]) + len(hashed_area).to_bytes(4, "big")

    def serialize(self) -> bytes:
        return (
            self.hashed_area()
            + len(self.unhashed_data).to_bytes(2, "big")
            + self.unhashed_data
            + self.hash_prefix
            + b"".join(write_mpi(value) for value in self.mpis)
        )

    def _find(self, subpacket_type: int, hashed_only: bool = False) -> Optional[Subpacket]:
        areas = self.hashed_subpackets
        if not hashed_only:
            areas += self.unhashed_subpackets
        for subpacket in areas:
            if subpacket.type == subpacket_type:
                return subpacket
        return None

    @property
    def created(self) -> Optional[int]:
        subpacket = self._find(SUBPACKET_CREATION_TIME, hashed_only=True)
        if subpacket is None or len(subpacket.data) != 4:
            return None
        return int.from_bytes(subpacket.data, "big")

    @property
    def issuer_fingerprint(self) -> Optional[bytes]:
        subpacket = self._find(SUBPACKET_ISSUER_FINGERPRINT)
        if subpacket is None or len(subpacket.data) != 21 or subpacket.data[0] != KEY_PACKET_VERSION:
            return None
        return subpacket.data[1:]

    @property
    def issuer_key_id(self) -> Optional[bytes]:
        subpacket = self._find(SUBPACKET_ISSUER)
        if subpacket is not None and len(subpacket.data) == 8:
            return subpacket.data
        fingerprint = self.issuer_fingerprint
        return fingerprint[-8:] if fingerprint else None

    @property
    def key_flags(self) -> Optional[int]:
        subpacket = self._find(SUBPACKET_KEY_FLAGS, hashed_only=True)
        if subpacket is None or not subpacket.data:
            return None
        return subpacket.data[0]

    @property
    def has_unknown_critical(self) -> bool:
        return any(
            subpacket.critical and subpacket.type not in _KNOWN_SUBPACKETS
            for subpacket in self.hashed_subpackets
        )


@dataclasses.dataclass(frozen=True)
class OnePassSignature:
    """A one-pass signature packet announcing the trailing signature."""

    sig_type: int
    hash_algorithm: int
    pubkey_algorithm: int
    key_id: bytes
    is_last: bool = True

    @classmethod
    def parse(cls, body: bytes) -> "OnePassSignature":
        if len(body) != 13:
            raise PacketFormatError("Invalid one-pass signature packet length")
        if body[0] != ONE_PASS_VERSION:
            raise PacketFormatError(f"Unsupported one-pass signature version {body[0]}")
        return cls(
            sig_type=body[1],
            hash_algorithm=body[2],
            pubkey_algorithm=body[3],
            key_id=body[4:12],
            is_last=bool(body[12]),
        )

    def serialize(self) -> bytes:
        return (
            bytes([ONE_PASS_VERSION, self.sig_type, self.hash_algorithm, self.pubkey_algorithm])
            + self.key_id
            + bytes([1 if self.is_last else 0])
        )


@dataclasses.dataclass(frozen=True)
class LiteralData:
    """A literal data packet carrying the signed payload."""

    data: bytes
    format: bytes = LITERAL_BINARY
    filename: str = ""
    date: int = 0

    @classmethod
    def parse(cls, body: bytes) -> "LiteralData":
        stream = io.BytesIO(body)
        data_format = read_exact(stream, 1)
        name_length = read_exact(stream, 1)[0]
        filename = read_exact(stream, name_length).decode("utf-8", errors="replace")
        date = int.from_bytes(read_exact(stream, 4), "big")
        return cls(data=stream.read(), format=data_format, filename=filename, date=date)

    def serialize(self) -> bytes:
        name = self.filename.encode("utf-8")
        return self.format + bytes([len(name)]) + name + self.date.to_bytes(4, "big") + self.data


def hash_key(hasher, public_body: bytes) -> None:
    """Feed a key packet body into a certification or binding hash."""
    hasher.update(b"\x99" + len(public_body).to_bytes(2, "big") + public_body)


def hash_user_id(hasher, user_id: bytes) -> None:
    hasher.update(b"\xb4" + len(user_id).to_bytes(4, "big") + user_id)


def create_signature(
    material,
    sig_type: int,
    hash_algorithm: int,
    hasher,
    created: Optional[int] = None,
    extra_hashed: Tuple[Subpacket, ...] = (),
) -> SignaturePacket:
    """
    Finish a signature over data already fed into ``hasher``.

    Args:
        material: KeyMaterial holding an unencrypted private key.
        sig_type: Signature type octet.
        hash_algorithm: Hash id that ``hasher`` implements.
        hasher: hashlib object that has consumed the signed data.
        created: Signature creation time (seconds since epoch); now if omitted.
        extra_hashed: Additional hashed subpackets, e.g. key flags.

    Raises:
        SigningError: If the key has no usable private component or the
            public-key operation fails.
    """
    if material.private_key is None:
        raise SigningError("Key has no usable private component")
    if created is None:
        created = int(time.time())

    hashed = serialize_subpackets(
        (
            Subpacket(SUBPACKET_ISSUER_FINGERPRINT, bytes([KEY_PACKET_VERSION]) + material.fingerprint),
            Subpacket(SUBPACKET_CREATION_TIME, created.to_bytes(4, "big")),
        )
        + tuple(extra_hashed)
    )
    unhashed = serialize_subpackets((Subpacket(SUBPACKET_ISSUER, material.key_id),))
    signature = SignaturePacket(
        sig_type=sig_type,
        pubkey_algorithm=material.algorithm,
        hash_algorithm=hash_algorithm,
        hashed_data=hashed,
        unhashed_data=unhashed,
        hash_prefix=b"",
        mpis=(),
    )
    hasher.update(signature.trailer())
    digest = hasher.digest()

    try:
        mpis = material.sign_digest(digest, hash_algorithm)
    except (ValueError, TypeError, UnsupportedAlgorithmError) as e:
        raise SigningError(f"Error signing payload: {e}") from e

    return dataclasses.replace(signature, hash_prefix=digest[:2], mpis=tuple(mpis))


def check_signature(material, signature: SignaturePacket, hasher, accepted_hashes) -> None:
    """
    Check a signature over data already fed into ``hasher``.

    ``hasher`` must implement ``signature.hash_algorithm``.

    Raises:
        SignatureMismatchError: If the signature does not validate.
    """
    if signature.hash_algorithm not in accepted_hashes:
        raise SignatureMismatchError(
            f"Hash algorithm {signature.hash_algorithm} is not accepted"
        )
    if signature.has_unknown_critical:
        raise SignatureMismatchError("Signature has an unsupported critical subpacket")
    if signature.pubkey_algorithm != material.algorithm:
        raise SignatureMismatchError("Signature algorithm does not match key algorithm")

    hasher.update(signature.trailer())
    digest = hasher.digest()
    if digest[:2] != signature.hash_prefix:
        raise SignatureMismatchError("Signature digest prefix mismatch")
    if not material.verify_digest(digest, signature.hash_algorithm, signature.mpis):
        raise SignatureMismatchError("Signature verification failed")


def sign_message(
    key,
    payload: bytes,
    params: AttestationParams = DEFAULT_PARAMS,
    created: Optional[int] = None,
) -> bytes:
    """
    Produce a binary one-pass signed message over ``payload``.

    Args:
        key: Key holding an unencrypted signing-capable private component.
        payload: Bytes to sign; embedded unchanged in the message.
        params: Attestation parameters; only the digest and the literal
            file name are used here.
        created: Signature creation time; now if omitted.

    Returns:
        The binary packet stream, ready for armoring.

    Raises:
        SigningError: If the key cannot sign or the signing operation fails.
    """
    material = key.signing_material()
    if material is None:
        raise SigningError(f"Key {key.key_id} has no signing-capable private key")

    payload = bytes(payload)
    hash_algorithm = params.hash_algorithm
    hasher = new_hash(hash_algorithm)
    hasher.update(payload)
    signature = create_signature(material, SIG_BINARY, hash_algorithm, hasher, created)

    one_pass = OnePassSignature(
        sig_type=SIG_BINARY,
        hash_algorithm=hash_algorithm,
        pubkey_algorithm=material.algorithm,
        key_id=material.key_id,
    )
    literal = LiteralData(data=payload, filename=params.literal_filename)

    logger.debug(
        "Signed %d byte payload with key %s (hash %d)",
        len(payload),
        material.fingerprint.hex().upper(),
        hash_algorithm,
    )
    return (
        write_packet(TAG_ONE_PASS_SIGNATURE, one_pass.serialize())
        + write_packet(TAG_LITERAL, literal.serialize())
        + write_packet(TAG_SIGNATURE, signature.serialize())
    )
