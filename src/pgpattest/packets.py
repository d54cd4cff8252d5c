"""
OpenPGP packet framing (RFC 4880, sections 3 and 4).

Reads old-format and new-format packet headers, including indeterminate
and partial body lengths as emitted by GnuPG, and writes new-format packets
with definite lengths. Also provides the MPI and signature-subpacket
encodings shared by key and signature packets.
"""

import io
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .exceptions import PacketFormatError


# Packet tags
TAG_SIGNATURE = 2
TAG_ONE_PASS_SIGNATURE = 4
TAG_SECRET_KEY = 5
TAG_PUBLIC_KEY = 6
TAG_SECRET_SUBKEY = 7
TAG_COMPRESSED = 8
TAG_MARKER = 10
TAG_LITERAL = 11
TAG_TRUST = 12
TAG_USER_ID = 13
TAG_PUBLIC_SUBKEY = 14
TAG_USER_ATTRIBUTE = 17

# Signature subpacket types
SUBPACKET_CREATION_TIME = 2
SUBPACKET_KEY_EXPIRATION = 9
SUBPACKET_ISSUER = 16
SUBPACKET_KEY_FLAGS = 27
SUBPACKET_ISSUER_FINGERPRINT = 33


@dataclass(frozen=True)
class Packet:
    """A raw packet: its tag and fully assembled body."""

    tag: int
    body: bytes


@dataclass(frozen=True)
class Subpacket:
    """A signature subpacket (RFC 4880, section 5.2.3.1)."""

    type: int
    data: bytes
    critical: bool = False


def read_exact(stream, length: int) -> bytes:
    """Read exactly ``length`` bytes or raise PacketFormatError."""
    data = stream.read(length)
    if len(data) != length:
        raise PacketFormatError(f"Truncated packet: wanted {length} bytes, got {len(data)}")
    return data


def _read_int(stream, size: int) -> int:
    return int.from_bytes(read_exact(stream, size), "big")


def _read_new_length(stream) -> Tuple[int, bool]:
    """Read a new-format body length. Returns (length, is_partial)."""
    first = _read_int(stream, 1)
    if first < 192:
        return first, False
    if first < 224:
        return ((first - 192) << 8) + _read_int(stream, 1) + 192, False
    if first == 255:
        return _read_int(stream, 4), False
    return 1 << (first & 0x1F), True


def read_packet(stream) -> Optional[Packet]:
    """
    Read the next packet from a binary stream.

    Returns:
        The packet, or None at a clean end of stream.

    Raises:
        PacketFormatError: If the header is invalid or the body is truncated.
    """
    header = stream.read(1)
    if not header:
        return None
    ctb = header[0]
    if not ctb & 0x80:
        raise PacketFormatError(f"Invalid packet header byte 0x{ctb:02x}")

    if ctb & 0x40:
        tag = ctb & 0x3F
        length, partial = _read_new_length(stream)
        chunks = [read_exact(stream, length)]
        while partial:
            length, partial = _read_new_length(stream)
            chunks.append(read_exact(stream, length))
        body = b"".join(chunks)
    else:
        tag = (ctb >> 2) & 0x0F
        length_type = ctb & 0x03
        if length_type == 3:
            body = stream.read()
        else:
            body = read_exact(stream, _read_int(stream, 1 << length_type))

    return Packet(tag=tag, body=body)


def iter_packets(data: bytes) -> Iterator[Packet]:
    """Iterate over every packet in ``data``."""
    stream = io.BytesIO(data)
    while True:
        packet = read_packet(stream)
        if packet is None:
            return
        yield packet


def encode_length(length: int) -> bytes:
    """Encode a new-format definite body length."""
    if length < 192:
        return bytes([length])
    if length < 8384:
        length -= 192
        return bytes([(length >> 8) + 192, length & 0xFF])
    return b"\xff" + length.to_bytes(4, "big")


def write_packet(tag: int, body: bytes) -> bytes:
    """Serialize a new-format packet."""
    return bytes([0xC0 | tag]) + encode_length(len(body)) + body


# MPIs

def read_mpi_bytes(stream) -> bytes:
    """Read an MPI and return its magnitude as big-endian bytes."""
    bits = _read_int(stream, 2)
    return read_exact(stream, (bits + 7) // 8)


def read_mpi(stream) -> int:
    return int.from_bytes(read_mpi_bytes(stream), "big")


def write_mpi(value) -> bytes:
    """Encode an int (or big-endian bytes) as an MPI."""
    if isinstance(value, (bytes, bytearray)):
        value = int.from_bytes(value, "big")
    bits = value.bit_length()
    return bits.to_bytes(2, "big") + value.to_bytes((bits + 7) // 8, "big")


# Subpackets

def parse_subpackets(data: bytes) -> Tuple[Subpacket, ...]:
    """Parse a signature subpacket area."""
    stream = io.BytesIO(data)
    subpackets: List[Subpacket] = []
    while stream.tell() < len(data):
        first = _read_int(stream, 1)
        if first < 192:
            length = first
        elif first < 255:
            length = ((first - 192) << 8) + _read_int(stream, 1) + 192
        else:
            length = _read_int(stream, 4)
        if length == 0:
            raise PacketFormatError("Empty signature subpacket")
        content = read_exact(stream, length)
        subpackets.append(
            Subpacket(type=content[0] & 0x7F, data=content[1:], critical=bool(content[0] & 0x80))
        )
    return tuple(subpackets)


def serialize_subpackets(subpackets) -> bytes:
    out = bytearray()
    for subpacket in subpackets:
        content = bytes([subpacket.type | (0x80 if subpacket.critical else 0)]) + subpacket.data
        length = len(content)
        if length < 192:
            out += bytes([length])
        elif length < 16320:
            length -= 192
            out += bytes([(length >> 8) + 192, length & 0xFF])
        else:
            out += b"\xff" + length.to_bytes(4, "big")
        out += content
    return bytes(out)
