"""
Configuration for signing and verification.

The digest algorithm is pinned here rather than taken from a key's
preferences, so the same inputs always produce the same kind of signature
and verification applies one auditable policy.
"""

from dataclasses import dataclass
from typing import FrozenSet, Tuple

from .armor import DEFAULT_LINE_WIDTH
from .crypto import HASH_SHA224, HASH_SHA256, HASH_SHA384, HASH_SHA512


# Digest used for new signatures
DEFAULT_HASH = HASH_SHA256

# Digests that may be used to produce signatures
SIGNING_HASHES = frozenset({HASH_SHA256, HASH_SHA384, HASH_SHA512})

# Digests accepted when checking signatures. SHA-1 and MD5 are never accepted.
ACCEPTED_HASHES = frozenset({HASH_SHA224, HASH_SHA256, HASH_SHA384, HASH_SHA512})

MAX_LINE_WIDTH = 76

# Ceiling on the inflated size of a compressed message
DEFAULT_MAX_DECOMPRESSED_SIZE = 64 * 1024 * 1024


@dataclass(frozen=True)
class AttestationParams:
    """
    Parameters for producing and checking attestations.

    Attributes:
        hash_algorithm: OpenPGP hash id used for new signatures.
        accepted_hashes: Hash ids accepted on signatures being verified,
            including key self-certifications.
        armor_line_width: Radix-64 line width of produced armor.
        armor_headers: (key, value) pairs written into produced armor.
        literal_filename: File name recorded in the literal data packet.
        max_decompressed_size: Largest number of bytes a compressed message
            may inflate to before verification gives up.
    """

    hash_algorithm: int = DEFAULT_HASH
    accepted_hashes: FrozenSet[int] = ACCEPTED_HASHES
    armor_line_width: int = DEFAULT_LINE_WIDTH
    armor_headers: Tuple[Tuple[str, str], ...] = ()
    literal_filename: str = ""
    max_decompressed_size: int = DEFAULT_MAX_DECOMPRESSED_SIZE

    def __post_init__(self) -> None:
        if self.hash_algorithm not in SIGNING_HASHES:
            raise ValueError(f"hash_algorithm {self.hash_algorithm} is not allowed for signing")
        if not set(self.accepted_hashes) <= ACCEPTED_HASHES:
            raise ValueError("accepted_hashes may only contain SHA-2 hash ids")
        if self.hash_algorithm not in self.accepted_hashes:
            raise ValueError("hash_algorithm must be one of accepted_hashes")
        if (
            self.armor_line_width < 4
            or self.armor_line_width > MAX_LINE_WIDTH
            or self.armor_line_width % 4
        ):
            raise ValueError("armor_line_width must be a multiple of 4 between 4 and 76")
        if len(self.literal_filename.encode("utf-8")) > 255:
            raise ValueError("literal_filename must encode to at most 255 bytes")
        if self.max_decompressed_size <= 0:
            raise ValueError("max_decompressed_size must be positive")
        # Normalize so equal configurations compare and hash equal
        object.__setattr__(self, "accepted_hashes", frozenset(self.accepted_hashes))
        object.__setattr__(self, "armor_headers", tuple(tuple(h) for h in self.armor_headers))


DEFAULT_PARAMS = AttestationParams()
