"""
Verification of attached signatures.

In an attached (one-pass) signed message the signature packet follows the
payload, so a verdict is only possible once the whole payload has been
consumed. VerifyingReader models this as two phases:

1. read() hands out recovered payload bytes as they are consumed. These
   bytes are unverified and must not be trusted.
2. finalize() consumes whatever is left, checks the trailing signature and
   either returns a Verification or raises. Only then is the payload
   known to be authentic.

verify() wraps both phases and never returns a payload without a verdict.

The reader walks this state machine; VALID and the INVALID states are
terminal, and any parse failure moves straight to ERROR:

    START -> ARMOR_DECODED -> KEY_MATCHED -> STREAMING_PAYLOAD
          -> VALID | SIGNATURE_MISMATCH | MISSING_SIGNATURE
"""

import bz2
import enum
import io
import logging
import zlib
from dataclasses import dataclass
from typing import Optional

from . import armor, crypto
from .config import DEFAULT_PARAMS, AttestationParams
from .exceptions import (
    AttestationError,
    ArmorFormatError,
    BufferIOError,
    KeyNotFoundError,
    MissingSignatureError,
    PacketFormatError,
    SignatureMismatchError,
)
from .keys import Key, KeyRing
from .packets import (
    TAG_COMPRESSED,
    TAG_LITERAL,
    TAG_MARKER,
    TAG_ONE_PASS_SIGNATURE,
    TAG_SIGNATURE,
    read_packet,
)
from .signature import (
    SIG_BINARY,
    SIG_TEXT,
    LiteralData,
    OnePassSignature,
    SignaturePacket,
    check_signature,
)


logger = logging.getLogger(__name__)

# Compression algorithms
COMPRESSION_NONE = 0
COMPRESSION_ZIP = 1
COMPRESSION_ZLIB = 2
COMPRESSION_BZIP2 = 3

# Compressed packets may wrap further compressed packets up to this depth
MAX_COMPRESSION_DEPTH = 4

_ARMOR_TYPES = (armor.ARMOR_SIGNATURE, armor.ARMOR_MESSAGE)


class VerificationState(enum.Enum):
    START = "start"
    ARMOR_DECODED = "armor-decoded"
    KEY_MATCHED = "key-matched"
    STREAMING_PAYLOAD = "streaming-payload"
    VALID = "valid"
    SIGNATURE_MISMATCH = "invalid-signature-mismatch"
    MISSING_SIGNATURE = "invalid-missing-signature"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        VerificationState.VALID,
        VerificationState.SIGNATURE_MISMATCH,
        VerificationState.MISSING_SIGNATURE,
        VerificationState.ERROR,
    }
)


@dataclass(frozen=True)
class Verification:
    """
    The verdict on a valid signature.

    Attributes:
        key: The key ring entry that made the signature.
        signer_fingerprint: Uppercase hex fingerprint of the signing key
            packet (the primary key or one of its subkeys).
        hash_algorithm: OpenPGP hash id of the signature.
        created: Signature creation time, seconds since epoch, if recorded.
        filename: File name from the literal data packet.
        data_format: Literal data format octet (b"b", b"t" or b"u").
    """

    key: Key
    signer_fingerprint: str
    hash_algorithm: int
    created: Optional[int]
    filename: str
    data_format: bytes


def _decompress(body: bytes, limit: int) -> bytes:
    """Inflate a compressed data packet, refusing output beyond ``limit`` bytes."""
    if not body:
        raise PacketFormatError("Empty compressed data packet")
    algorithm, data = body[0], body[1:]
    if algorithm == COMPRESSION_NONE:
        decompressor = None
    elif algorithm == COMPRESSION_ZIP:
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    elif algorithm == COMPRESSION_ZLIB:
        decompressor = zlib.decompressobj()
    elif algorithm == COMPRESSION_BZIP2:
        decompressor = bz2.BZ2Decompressor()
    else:
        raise PacketFormatError(f"Unsupported compression algorithm {algorithm}")

    if decompressor is None:
        output, complete = data, True
    else:
        try:
            output = decompressor.decompress(data, limit + 1)
        except (zlib.error, OSError, ValueError) as e:
            raise PacketFormatError(f"Invalid compressed data: {e}") from e
        complete = decompressor.eof
    if len(output) > limit:
        raise PacketFormatError(f"Compressed data inflates beyond {limit} bytes")
    if not complete:
        raise PacketFormatError("Truncated compressed data")
    return output


class VerifyingReader:
    """
    Two-phase reader over an armored attached signature.

    Construction decodes the armor, reads up to the literal data packet and
    matches the signer against the key ring, so armor, packet and key
    lookup failures are raised immediately. Payload bytes returned by
    read() are unverified until finalize() succeeds.

    Example:
        >>> reader = VerifyingReader(signature, key_ring)
        >>> chunk = reader.read(4096)      # untrusted
        >>> verdict = reader.finalize()    # raises unless valid
    """

    def __init__(self, signature, key_ring: KeyRing, params: AttestationParams = DEFAULT_PARAMS):
        self.state = VerificationState.START
        self._key_ring = key_ring
        self._params = params
        self._error: Optional[AttestationError] = None
        self._verdict: Optional[Verification] = None
        self._key = None
        self._material = None
        self._hasher = None
        self._pending_cr = b""
        try:
            self._open(signature)
        except AttestationError as e:
            self._error = e
            self.state = VerificationState.ERROR
            raise

    def _open(self, signature) -> None:
        block = armor.decode(signature)
        if block.block_type not in _ARMOR_TYPES:
            raise ArmorFormatError(f"Unexpected armor block type {block.block_type!r}")
        self.state = VerificationState.ARMOR_DECODED
        self._packets = io.BytesIO(block.body)

        one_pass = None
        depth = 0
        while True:
            packet = read_packet(self._packets)
            if packet is None:
                raise MissingSignatureError("Message ended before any signed data")
            if packet.tag == TAG_COMPRESSED:
                depth += 1
                if depth > MAX_COMPRESSION_DEPTH:
                    raise PacketFormatError("Compressed data packets nested too deeply")
                inflated = _decompress(packet.body, self._params.max_decompressed_size)
                self._packets = io.BytesIO(inflated)
            elif packet.tag == TAG_MARKER:
                continue
            elif packet.tag == TAG_ONE_PASS_SIGNATURE:
                if one_pass is not None:
                    raise PacketFormatError("Messages with multiple signatures are not supported")
                one_pass = OnePassSignature.parse(packet.body)
            elif packet.tag == TAG_LITERAL:
                literal = LiteralData.parse(packet.body)
                break
            elif packet.tag == TAG_SIGNATURE:
                raise PacketFormatError("Signatures preceding the payload are not supported")
            else:
                raise PacketFormatError(f"Unexpected packet with tag {packet.tag}")

        if one_pass is not None:
            match = self._key_ring.find(key_id=one_pass.key_id)
            if match is None:
                raise KeyNotFoundError(
                    f"No signing key with id {one_pass.key_id.hex().upper()} in key ring"
                )
            self._key, self._material = match
            self.state = VerificationState.KEY_MATCHED
            if one_pass.hash_algorithm in self._params.accepted_hashes:
                self._hasher = crypto.new_hash(one_pass.hash_algorithm)

        self._one_pass = one_pass
        self._literal = literal
        self._payload = io.BytesIO(literal.data)
        self._text_mode = one_pass is not None and one_pass.sig_type == SIG_TEXT
        self.state = VerificationState.STREAMING_PAYLOAD

    def _update(self, chunk: bytes) -> None:
        if self._hasher is None:
            return
        if not self._text_mode:
            self._hasher.update(chunk)
            return
        # Text signatures hash lines with CRLF endings. A trailing CR is held
        # back in case the next chunk starts with its LF.
        data = self._pending_cr + chunk
        self._pending_cr = b""
        if data.endswith(b"\r"):
            data, self._pending_cr = data[:-1], b"\r"
        self._hasher.update(data.replace(b"\r\n", b"\n").replace(b"\n", b"\r\n"))

    def read(self, size: int = -1) -> bytes:
        """
        Read recovered payload bytes.

        The bytes are NOT verified. Do not act on them until finalize()
        has returned.

        Raises:
            BufferIOError: If the reader has already been finalized.
        """
        if self.state is not VerificationState.STREAMING_PAYLOAD:
            raise BufferIOError("Cannot read from a finalized verifying reader", stage="verify")
        if size is None or size < 0:
            chunk = self._payload.read()
        else:
            chunk = self._payload.read(size)
        self._update(chunk)
        return chunk

    def finalize(self) -> Verification:
        """
        Consume the rest of the message and check the trailing signature.

        Calling finalize() again returns the same verdict or raises the
        same error.

        Returns:
            The Verification for a valid signature.

        Raises:
            SignatureMismatchError: If the signature does not validate.
            MissingSignatureError: If the message carries no signature.
            PacketFormatError: If the trailing packets are malformed.
        """
        if self._verdict is not None:
            return self._verdict
        if self._error is not None:
            raise self._error

        self._update(self._payload.read())
        if self._pending_cr and self._hasher is not None:
            self._hasher.update(self._pending_cr)
            self._pending_cr = b""

        try:
            verdict = self._check_trailer()
        except AttestationError as e:
            if isinstance(e, SignatureMismatchError):
                self.state = VerificationState.SIGNATURE_MISMATCH
            elif isinstance(e, MissingSignatureError):
                self.state = VerificationState.MISSING_SIGNATURE
            else:
                self.state = VerificationState.ERROR
            self._error = e
            logger.debug("Verification failed (%s): %s", self.state.value, e.message)
            raise

        self._verdict = verdict
        self.state = VerificationState.VALID
        logger.debug("Verified signature from key %s", verdict.signer_fingerprint)
        return verdict

    def _check_trailer(self) -> Verification:
        packet = read_packet(self._packets)
        one_pass = self._one_pass
        if one_pass is None:
            if packet is None:
                raise MissingSignatureError("Message is not signed")
            raise PacketFormatError("Unexpected packet after unsigned literal data")
        if packet is None:
            raise MissingSignatureError("Message ended before the trailing signature")
        if packet.tag != TAG_SIGNATURE:
            raise PacketFormatError(f"Expected a signature packet, got tag {packet.tag}")
        signature = SignaturePacket.parse(packet.body)
        if read_packet(self._packets) is not None:
            raise PacketFormatError("Unexpected data after the signature packet")

        header = (one_pass.sig_type, one_pass.hash_algorithm, one_pass.pubkey_algorithm)
        if (signature.sig_type, signature.hash_algorithm, signature.pubkey_algorithm) != header:
            raise SignatureMismatchError("Signature does not match its one-pass header")
        if signature.sig_type not in (SIG_BINARY, SIG_TEXT):
            raise SignatureMismatchError(f"Unsupported signature type 0x{signature.sig_type:02x}")

        material = self._material
        issuer_fingerprint = signature.issuer_fingerprint
        if issuer_fingerprint is not None and issuer_fingerprint != material.fingerprint:
            raise SignatureMismatchError("Signature issuer does not match the one-pass header")
        issuer_key_id = signature.issuer_key_id
        if issuer_key_id is not None and issuer_key_id != material.key_id:
            raise SignatureMismatchError("Signature issuer does not match the one-pass header")
        if self._hasher is None:
            raise SignatureMismatchError(
                f"Hash algorithm {signature.hash_algorithm} is not accepted"
            )

        check_signature(material, signature, self._hasher, self._params.accepted_hashes)
        return Verification(
            key=self._key,
            signer_fingerprint=material.fingerprint.hex().upper(),
            hash_algorithm=signature.hash_algorithm,
            created=signature.created,
            filename=self._literal.filename,
            data_format=self._literal.format,
        )


def open_reader(
    signature, key_ring: KeyRing, params: AttestationParams = DEFAULT_PARAMS
) -> VerifyingReader:
    """Start verifying ``signature``; see VerifyingReader."""
    return VerifyingReader(signature, key_ring, params)


def verify(signature, key_ring: KeyRing, params: AttestationParams = DEFAULT_PARAMS) -> bytes:
    """
    Verify an armored attached signature and return the signed payload.

    Args:
        signature: Armored signature as bytes or str.
        key_ring: Keys trusted to have made the signature.
        params: Supplies the accepted digests.

    Returns:
        The exact payload bytes, only after the signature has been checked.

    Raises:
        ArmorFormatError: If the armor or packet stream is malformed.
        KeyNotFoundError: If no key in the ring made the signature.
        SignatureMismatchError: If the signature does not validate.
        MissingSignatureError: If the message is not signed.
    """
    reader = VerifyingReader(signature, key_ring, params)
    payload = reader.read()
    reader.finalize()
    return payload
