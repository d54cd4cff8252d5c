"""
ASCII armor codec (RFC 4880, section 6).

Armor wraps a binary packet stream in a text block:

    -----BEGIN PGP SIGNATURE-----
    Comment: optional headers

    <radix-64 body, wrapped at a fixed width>
    =<radix-64 CRC24 of the decoded body>
    -----END PGP SIGNATURE-----

The CRC24 only protects the transport encoding; it is not a cryptographic
guarantee. Decoding is strict about the checksum so that corruption in
transit is reported as ArmorFormatError before any packet is parsed.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .exceptions import ArmorFormatError


# Block types
ARMOR_SIGNATURE = "PGP SIGNATURE"
ARMOR_MESSAGE = "PGP MESSAGE"
ARMOR_PUBLIC_KEY = "PGP PUBLIC KEY BLOCK"
ARMOR_PRIVATE_KEY = "PGP PRIVATE KEY BLOCK"

DEFAULT_LINE_WIDTH = 64

CRC24_INIT = 0xB704CE
CRC24_POLY = 0x1864CFB

_BEGIN_RE = re.compile(r"^-----BEGIN (.+)-----$")
_END_RE = re.compile(r"^-----END (.+)-----$")


@dataclass(frozen=True)
class ArmorBlock:
    """
    A decoded armor block.

    Attributes:
        block_type: Text between "BEGIN " and the trailing dashes,
            e.g. "PGP SIGNATURE".
        body: The decoded binary packet stream.
        headers: Armor headers in the order they appeared.
    """

    block_type: str
    body: bytes
    headers: Tuple[Tuple[str, str], ...] = ()


def crc24(data: bytes) -> int:
    """Compute the OpenPGP CRC24 checksum of ``data``."""
    crc = CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= CRC24_POLY
    return crc & 0xFFFFFF


def encode(
    body: bytes,
    block_type: str,
    headers: Optional[Iterable[Tuple[str, str]]] = None,
    line_width: int = DEFAULT_LINE_WIDTH,
) -> bytes:
    """
    Armor a binary packet stream.

    Args:
        body: Binary data to armor.
        block_type: Block type, e.g. ARMOR_SIGNATURE.
        headers: Optional (key, value) header pairs, written in order.
        line_width: Radix-64 line width; must be a positive multiple of 4.

    Returns:
        The armored text as ASCII bytes, ending with a newline.
    """
    if line_width <= 0 or line_width % 4:
        raise ValueError("line_width must be a positive multiple of 4")

    encoded = base64.b64encode(bytes(body)).decode("ascii")
    checksum = base64.b64encode(crc24(body).to_bytes(3, "big")).decode("ascii")

    lines = [f"-----BEGIN {block_type}-----"]
    for key, value in headers or ():
        lines.append(f"{key}: {value}")
    lines.append("")
    lines.extend(encoded[i:i + line_width] for i in range(0, len(encoded), line_width))
    lines.append("=" + checksum)
    lines.append(f"-----END {block_type}-----")
    return ("\n".join(lines) + "\n").encode("ascii")


def decode(text) -> ArmorBlock:
    """
    Decode an armor block.

    Text before the BEGIN line is ignored, as are trailing spaces, tabs and
    CRLF line endings. Lines break on LF only.

    Args:
        text: Armored text as bytes or str.

    Returns:
        The decoded ArmorBlock.

    Raises:
        ArmorFormatError: If the markers are absent or mismatched, the body
            is not valid radix-64, or the CRC24 checksum is missing or wrong.
    """
    if isinstance(text, (bytes, bytearray, memoryview)):
        try:
            text = bytes(text).decode("ascii")
        except UnicodeDecodeError as e:
            raise ArmorFormatError("Armor contains non-ASCII data") from e
    elif not isinstance(text, str):
        raise TypeError(f"Expected bytes or str, got {type(text).__name__}")

    lines = [line.rstrip(" \t\r") for line in text.split("\n")]

    start = None
    block_type = None
    for index, line in enumerate(lines):
        match = _BEGIN_RE.match(line)
        if match:
            start = index + 1
            block_type = match.group(1)
            break
    if start is None:
        raise ArmorFormatError("No armor header found")

    lines = lines[start:]
    position = 0

    # Headers run until the blank separator line. A line without a colon
    # cannot be a header (radix-64 never contains one), so it starts the body.
    headers = []
    while position < len(lines):
        line = lines[position]
        if line == "":
            position += 1
            break
        if ":" not in line:
            break
        key, _, value = line.partition(":")
        headers.append((key.strip(), value.strip()))
        position += 1

    body_lines = []
    checksum_line = None
    while position < len(lines):
        line = lines[position]
        if line.startswith("=") or _END_RE.match(line):
            break
        body_lines.append(line)
        position += 1

    if position < len(lines) and lines[position].startswith("="):
        checksum_line = lines[position]
        position += 1
    if checksum_line is None:
        raise ArmorFormatError("Armor checksum missing")
    if len(checksum_line) != 5:
        raise ArmorFormatError("Malformed armor checksum line")

    if position >= len(lines):
        raise ArmorFormatError("Armor footer missing")
    match = _END_RE.match(lines[position])
    if not match:
        raise ArmorFormatError("Armor footer missing")
    if match.group(1) != block_type:
        raise ArmorFormatError(
            f"Armor footer type {match.group(1)!r} does not match header type {block_type!r}"
        )

    try:
        encoded = "".join(body_lines)
        body = base64.b64decode(encoded, validate=True)
        expected = int.from_bytes(base64.b64decode(checksum_line[1:], validate=True), "big")
    except (binascii.Error, ValueError) as e:
        raise ArmorFormatError(f"Invalid radix-64 data: {e}") from e

    # Radix-64 with non-zero padding bits decodes to the same body
    if base64.b64encode(body).decode("ascii") != encoded:
        raise ArmorFormatError("Non-canonical radix-64 encoding")

    if crc24(body) != expected:
        raise ArmorFormatError("Armor checksum mismatch")

    return ArmorBlock(block_type=block_type, body=body, headers=tuple(headers))
