"""
Key ring loading.

Parses armored OpenPGP key material into immutable Key objects. A Key is a
primary key with its self-certified user IDs and bound subkeys; a KeyRing is
an ordered set of Keys, unique by primary fingerprint.

Self-certifications and subkey bindings are checked cryptographically while
loading, and their key-flag subpackets decide which keys may sign. Keys
using algorithms this library does not implement are skipped with a
warning instead of failing the whole ring.

Keys are identified by the uppercase hex encoding of their version 4
fingerprint (SHA-1 over the public key packet).
"""

import dataclasses
import hashlib
import io
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Tuple

from . import armor, crypto
from .config import DEFAULT_PARAMS, AttestationParams
from .exceptions import ArmorFormatError, KeyParseError, PacketFormatError, SignatureMismatchError
from .packets import (
    SUBPACKET_KEY_FLAGS,
    TAG_MARKER,
    TAG_PUBLIC_KEY,
    TAG_PUBLIC_SUBKEY,
    TAG_SECRET_KEY,
    TAG_SECRET_SUBKEY,
    TAG_SIGNATURE,
    TAG_TRUST,
    TAG_USER_ATTRIBUTE,
    TAG_USER_ID,
    Packet,
    Subpacket,
    iter_packets,
    read_exact,
    write_packet,
)
from .signature import (
    CERTIFICATION_TYPES,
    KEY_FLAG_CERTIFY,
    KEY_FLAG_SIGN,
    KEY_PACKET_VERSION,
    SIG_CERT_POSITIVE,
    SIG_SUBKEY_BINDING,
    SignaturePacket,
    check_signature,
    create_signature,
    hash_key,
    hash_user_id,
)


logger = logging.getLogger(__name__)

# S2K usage octet for unencrypted secret key material
S2K_PLAINTEXT = 0

_PRIMARY_TAGS = (TAG_PUBLIC_KEY, TAG_SECRET_KEY)


@dataclass(frozen=True)
class KeyMaterial:
    """
    A single OpenPGP key packet: a primary key or a subkey.

    Attributes:
        algorithm: OpenPGP public-key algorithm id.
        created: Key creation time, seconds since epoch.
        public_key: ecdsa.VerifyingKey or cryptography RSAPublicKey.
        public_body: Serialized public key packet body.
        private_key: Unencrypted private key, if available.
        secret_body: Serialized secret key packet body, if this came from
            (or can be written as) a secret key packet.
        encrypted: True when the secret part is passphrase-protected; such
            keys are loaded as public-only.
        flags: Key flags from the governing self-signature, if any.
    """

    algorithm: int
    created: int
    public_key: Any = field(repr=False)
    public_body: bytes = field(repr=False)
    private_key: Any = field(default=None, repr=False)
    secret_body: Optional[bytes] = field(default=None, repr=False)
    encrypted: bool = False
    flags: Optional[int] = None
    fingerprint: bytes = field(init=False, compare=False)

    def __post_init__(self) -> None:
        digest = hashlib.sha1(
            b"\x99" + len(self.public_body).to_bytes(2, "big") + self.public_body
        ).digest()
        object.__setattr__(self, "fingerprint", digest)

    @property
    def key_id(self) -> bytes:
        """The 8-octet key id: the low 64 bits of the fingerprint."""
        return self.fingerprint[-8:]

    @property
    def has_private(self) -> bool:
        return self.private_key is not None

    def allows(self, usage: int) -> bool:
        if self.algorithm not in crypto.SIGNING_ALGORITHMS:
            return False
        if self.flags is None:
            return True
        return bool(self.flags & usage)

    @property
    def can_sign(self) -> bool:
        return self.allows(KEY_FLAG_SIGN)

    def sign_digest(self, digest: bytes, hash_algorithm: int) -> Tuple[int, ...]:
        return crypto.sign_digest(self.algorithm, self.private_key, digest, hash_algorithm)

    def verify_digest(self, digest: bytes, hash_algorithm: int, mpis: Tuple[int, ...]) -> bool:
        return crypto.verify_digest(self.algorithm, self.public_key, digest, hash_algorithm, mpis)

    def packet_body(self, private: bool = False) -> bytes:
        return self.secret_body if private else self.public_body

    @classmethod
    def parse(cls, body: bytes, secret: bool = False) -> "KeyMaterial":
        """
        Parse a public or secret key packet body.

        Raises:
            UnsupportedAlgorithmError: For key versions or algorithms that
                are not implemented.
            PacketFormatError, ValueError: If the packet is malformed.
        """
        stream = io.BytesIO(body)
        version = read_exact(stream, 1)[0]
        if version != KEY_PACKET_VERSION:
            raise crypto.UnsupportedAlgorithmError(f"Unsupported key packet version {version}")
        created = int.from_bytes(read_exact(stream, 4), "big")
        algorithm = read_exact(stream, 1)[0]
        public_key = crypto.read_public_fields(algorithm, stream)
        public_body = body[:stream.tell()]

        if not secret:
            return cls(algorithm, created, public_key, public_body)

        usage = read_exact(stream, 1)[0]
        if usage != S2K_PLAINTEXT:
            return cls(algorithm, created, public_key, public_body, secret_body=body, encrypted=True)

        rest = stream.read()
        if len(rest) < 2:
            raise PacketFormatError("Truncated secret key material")
        secret_data, checksum = rest[:-2], rest[-2:]
        if sum(secret_data) & 0xFFFF != int.from_bytes(checksum, "big"):
            raise ValueError("Secret key checksum mismatch")
        private_key = crypto.read_secret_fields(algorithm, public_key, io.BytesIO(secret_data))
        return cls(algorithm, created, public_key, public_body, private_key, secret_body=body)

    @classmethod
    def from_private_key(cls, private_key, created: int, flags: Optional[int] = None) -> "KeyMaterial":
        """Wrap a caller-supplied ecdsa or cryptography private key."""
        algorithm = crypto.algorithm_for(private_key)
        public_key = crypto.public_key_of(private_key)
        public_body = (
            bytes([KEY_PACKET_VERSION])
            + created.to_bytes(4, "big")
            + bytes([algorithm])
            + crypto.write_public_fields(algorithm, public_key)
        )
        secret_data = crypto.write_secret_fields(algorithm, private_key)
        secret_body = (
            public_body
            + bytes([S2K_PLAINTEXT])
            + secret_data
            + (sum(secret_data) & 0xFFFF).to_bytes(2, "big")
        )
        return cls(algorithm, created, public_key, public_body, private_key, secret_body, flags=flags)


@dataclass(frozen=True)
class Identity:
    """A user ID and its self-certification."""

    user_id: bytes
    certification: SignaturePacket = field(repr=False)

    @property
    def name(self) -> str:
        return self.user_id.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Subkey:
    """A subkey and its binding signature."""

    material: KeyMaterial
    binding: SignaturePacket = field(repr=False)


@dataclass(frozen=True)
class Key:
    """
    An OpenPGP key: primary key, identities and subkeys.

    Immutable once parsed, so it may be shared freely across threads.
    """

    primary: KeyMaterial
    identities: Tuple[Identity, ...] = ()
    subkeys: Tuple[Subkey, ...] = ()

    @property
    def fingerprint(self) -> bytes:
        return self.primary.fingerprint

    @property
    def key_id(self) -> str:
        """Uppercase hex encoding of the primary key fingerprint."""
        return self.primary.fingerprint.hex().upper()

    @property
    def user_ids(self) -> Tuple[str, ...]:
        return tuple(identity.name for identity in self.identities)

    @property
    def has_private(self) -> bool:
        return any(material.has_private for material in self.materials())

    @property
    def can_sign(self) -> bool:
        return any(material.can_sign for material in self.materials())

    def materials(self) -> Iterator[KeyMaterial]:
        yield self.primary
        for subkey in self.subkeys:
            yield subkey.material

    def signing_material(self) -> Optional[KeyMaterial]:
        """
        Pick the key packet used to make signatures.

        The newest signing-capable subkey with a usable private key wins;
        otherwise the primary key, if it can sign.
        """
        candidates = [
            subkey.material
            for subkey in self.subkeys
            if subkey.material.can_sign and subkey.material.has_private
        ]
        if candidates:
            return max(candidates, key=lambda material: material.created)
        if self.primary.can_sign and self.primary.has_private:
            return self.primary
        return None

    @classmethod
    def from_private_key(
        cls,
        private_key,
        user_id: str,
        created: Optional[int] = None,
        params: AttestationParams = DEFAULT_PARAMS,
    ) -> "Key":
        """
        Build a self-certified Key around existing private key material.

        Args:
            private_key: An ecdsa.SigningKey on a supported curve (including
                Ed25519) or a cryptography RSAPrivateKey.
            user_id: User ID to certify, e.g. "Name <email>".
            created: Key creation time; now if omitted.
            params: Supplies the certification digest.

        Raises:
            ValueError: If the private key type or curve is not supported.
        """
        if created is None:
            created = int(time.time())
        flags = KEY_FLAG_CERTIFY | KEY_FLAG_SIGN
        try:
            material = KeyMaterial.from_private_key(private_key, created, flags=flags)
        except crypto.UnsupportedAlgorithmError as e:
            raise ValueError(str(e)) from e

        uid = user_id.encode("utf-8")
        hasher = crypto.new_hash(params.hash_algorithm)
        hash_key(hasher, material.public_body)
        hash_user_id(hasher, uid)
        certification = create_signature(
            material,
            SIG_CERT_POSITIVE,
            params.hash_algorithm,
            hasher,
            created,
            extra_hashed=(Subpacket(SUBPACKET_KEY_FLAGS, bytes([flags])),),
        )
        return cls(primary=material, identities=(Identity(uid, certification),))

    def export(self, private: bool = False, params: AttestationParams = DEFAULT_PARAMS) -> bytes:
        """
        Serialize the key as an armored key block.

        Args:
            private: Export secret key packets instead of public ones.
            params: Supplies armor line width and headers.

        Raises:
            ValueError: If a private export is requested for a public key.
        """
        if private and self.primary.secret_body is None:
            raise ValueError("Key has no secret key material to export")

        out = [
            write_packet(
                TAG_SECRET_KEY if private else TAG_PUBLIC_KEY, self.primary.packet_body(private)
            )
        ]
        for identity in self.identities:
            out.append(write_packet(TAG_USER_ID, identity.user_id))
            out.append(write_packet(TAG_SIGNATURE, identity.certification.serialize()))
        for subkey in self.subkeys:
            secret = private and subkey.material.secret_body is not None
            out.append(
                write_packet(
                    TAG_SECRET_SUBKEY if secret else TAG_PUBLIC_SUBKEY,
                    subkey.material.packet_body(secret),
                )
            )
            out.append(write_packet(TAG_SIGNATURE, subkey.binding.serialize()))

        return armor.encode(
            b"".join(out),
            armor.ARMOR_PRIVATE_KEY if private else armor.ARMOR_PUBLIC_KEY,
            headers=params.armor_headers,
            line_width=params.armor_line_width,
        )


@dataclass(frozen=True)
class KeyRing:
    """
    An ordered, read-only set of Keys, unique by primary fingerprint.

    Later keys with an already-seen fingerprint are dropped.
    """

    keys: Tuple[Key, ...] = ()

    def __post_init__(self) -> None:
        unique = []
        seen = set()
        for key in self.keys:
            if key.fingerprint in seen:
                logger.debug("Dropping duplicate key %s", key.key_id)
                continue
            seen.add(key.fingerprint)
            unique.append(key)
        object.__setattr__(self, "keys", tuple(unique))

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys)

    def __getitem__(self, index: int) -> Key:
        return self.keys[index]

    def get(self, key_id: str) -> Optional[Key]:
        """Look up a key by its uppercase hex fingerprint."""
        key_id = key_id.upper()
        for key in self.keys:
            if key.key_id == key_id:
                return key
        return None

    def find(
        self,
        key_id: Optional[bytes] = None,
        fingerprint: Optional[bytes] = None,
        usage: Optional[int] = KEY_FLAG_SIGN,
    ) -> Optional[Tuple[Key, KeyMaterial]]:
        """
        Find the key packet that issued a signature.

        Matches primary keys and subkeys by full fingerprint when given,
        otherwise by 8-octet key id, and only returns key packets whose
        flags allow ``usage``.

        Returns:
            (key, material) for the first match, or None.
        """
        for key in self.keys:
            for material in key.materials():
                if fingerprint is not None:
                    matched = material.fingerprint == fingerprint
                else:
                    matched = material.key_id == key_id
                if matched and (usage is None or material.allows(usage)):
                    return key, material
        return None


def _check_self_signature(primary: KeyMaterial, signature: SignaturePacket, feed, params) -> None:
    if signature.hash_algorithm not in params.accepted_hashes:
        raise KeyParseError(
            f"Self-signature on key {primary.fingerprint.hex().upper()} "
            f"uses hash algorithm {signature.hash_algorithm}, which is not accepted"
        )
    hasher = crypto.new_hash(signature.hash_algorithm)
    feed(hasher)
    try:
        check_signature(primary, signature, hasher, params.accepted_hashes)
    except SignatureMismatchError as e:
        raise KeyParseError(
            f"Invalid self-signature on key {primary.fingerprint.hex().upper()}: {e.message}"
        ) from e


def _parse_material(packet: Packet) -> KeyMaterial:
    secret = packet.tag in (TAG_SECRET_KEY, TAG_SECRET_SUBKEY)
    try:
        return KeyMaterial.parse(packet.body, secret=secret)
    except crypto.UnsupportedAlgorithmError:
        raise
    except Exception as e:
        raise KeyParseError(f"Invalid key packet: {e}") from e


def _newest(signatures: List[SignaturePacket]) -> SignaturePacket:
    return max(signatures, key=lambda signature: signature.created or 0)


def _read_key(packets: List[Packet], params: AttestationParams) -> Key:
    """Read one key from its packets, the first being the primary key."""
    primary = _parse_material(packets[0])

    identities: List[Tuple[bytes, List[SignaturePacket]]] = []
    subkeys: List[Tuple[KeyMaterial, List[SignaturePacket]]] = []
    current = None  # "uid", "subkey" or None while skipping

    for packet in packets[1:]:
        if packet.tag == TAG_USER_ID:
            identities.append((packet.body, []))
            current = "uid"
        elif packet.tag in (TAG_PUBLIC_SUBKEY, TAG_SECRET_SUBKEY):
            try:
                subkeys.append((_parse_material(packet), []))
                current = "subkey"
            except crypto.UnsupportedAlgorithmError as e:
                logger.warning("Skipping subkey of %s: %s", primary.fingerprint.hex().upper(), e)
                current = None
        elif packet.tag == TAG_USER_ATTRIBUTE:
            current = None
        elif packet.tag == TAG_SIGNATURE:
            try:
                signature = SignaturePacket.parse(packet.body)
            except PacketFormatError as e:
                raise KeyParseError(f"Invalid signature packet in key: {e.message}") from e

            if current == "uid" and signature.sig_type in CERTIFICATION_TYPES:
                if signature.issuer_key_id not in (None, primary.key_id):
                    continue  # third-party certification; trust is out of scope
                user_id, certifications = identities[-1]

                def feed(hasher, user_id=user_id):
                    hash_key(hasher, primary.public_body)
                    hash_user_id(hasher, user_id)

                _check_self_signature(primary, signature, feed, params)
                certifications.append(signature)
            elif current == "subkey" and signature.sig_type == SIG_SUBKEY_BINDING:
                material, bindings = subkeys[-1]

                def feed(hasher, material=material):
                    hash_key(hasher, primary.public_body)
                    hash_key(hasher, material.public_body)

                _check_self_signature(primary, signature, feed, params)
                bindings.append(signature)
        elif packet.tag in (TAG_TRUST, TAG_MARKER):
            continue
        else:
            raise KeyParseError(f"Unexpected packet with tag {packet.tag} in key")

    certified = [
        Identity(user_id, _newest(certifications))
        for user_id, certifications in identities
        if certifications
    ]
    if not certified:
        raise KeyParseError(
            f"Key {primary.fingerprint.hex().upper()} has no self-signed user ID"
        )

    bound = []
    for material, bindings in subkeys:
        if not bindings:
            raise KeyParseError(
                f"Subkey {material.fingerprint.hex().upper()} has no binding signature"
            )
        binding = _newest(bindings)
        bound.append(Subkey(_with_flags(material, binding.key_flags), binding))

    primary_flags = _newest([identity.certification for identity in certified]).key_flags
    return Key(
        primary=_with_flags(primary, primary_flags),
        identities=tuple(certified),
        subkeys=tuple(bound),
    )


def _with_flags(material: KeyMaterial, flags: Optional[int]) -> KeyMaterial:
    if flags is None:
        return material
    return dataclasses.replace(material, flags=flags)


def read_key_ring(data: bytes, params: AttestationParams = DEFAULT_PARAMS) -> KeyRing:
    """
    Parse a binary (unarmored) sequence of keys.

    Raises:
        KeyParseError: If the packets are malformed, a self-signature is
            invalid, or no key in a non-empty input is supported.
    """
    try:
        packets = list(iter_packets(bytes(data)))
    except PacketFormatError as e:
        raise KeyParseError(f"Error reading key packets: {e.message}") from e

    keys = []
    last_unsupported = None
    index = 0
    while index < len(packets):
        if packets[index].tag not in _PRIMARY_TAGS:
            raise KeyParseError(
                f"Expected a primary key packet, got tag {packets[index].tag}"
            )
        end = index + 1
        while end < len(packets) and packets[end].tag not in _PRIMARY_TAGS:
            end += 1
        try:
            keys.append(_read_key(packets[index:end], params))
        except crypto.UnsupportedAlgorithmError as e:
            logger.warning("Skipping unsupported key: %s", e)
            last_unsupported = e
        index = end

    if not keys and last_unsupported is not None:
        raise KeyParseError(f"No supported keys found: {last_unsupported}")

    ring = KeyRing(tuple(keys))
    logger.debug("Loaded key ring with %d key(s)", len(ring))
    return ring


def read_armored_key_ring(data, params: AttestationParams = DEFAULT_PARAMS) -> KeyRing:
    """
    Parse armored key material into a KeyRing.

    Args:
        data: An armored PGP PUBLIC KEY BLOCK or PGP PRIVATE KEY BLOCK.
        params: Supplies the accepted self-signature digests.

    Raises:
        KeyParseError: If the armor or any key in it is malformed.
    """
    try:
        block = armor.decode(data)
    except ArmorFormatError as e:
        raise KeyParseError(f"Error reading armored key ring: {e.message}") from e
    if block.block_type not in (armor.ARMOR_PUBLIC_KEY, armor.ARMOR_PRIVATE_KEY):
        raise KeyParseError(f"Expected a public or private key block, got {block.block_type!r}")
    return read_key_ring(block.body, params)
