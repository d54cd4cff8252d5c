"""Tests for the ASCII armor codec."""

import os

import pytest

from pgpattest.armor import (
    ARMOR_MESSAGE,
    ARMOR_PUBLIC_KEY,
    ARMOR_SIGNATURE,
    ArmorBlock,
    crc24,
    decode,
    encode,
)
from pgpattest.exceptions import ArmorFormatError

from conftest import load


class TestCRC24:
    """Test the OpenPGP CRC24 checksum."""

    def test_empty_input_is_initial_value(self):
        assert crc24(b"") == 0xB704CE

    def test_check_value(self):
        # Standard CRC-24/OPENPGP check value
        assert crc24(b"123456789") == 0x21CF02

    def test_result_fits_24_bits(self):
        assert crc24(os.urandom(1000)) <= 0xFFFFFF


class TestEncode:
    """Test armor encoding."""

    def test_frame(self):
        text = encode(b"hello", ARMOR_SIGNATURE)
        assert text.startswith(b"-----BEGIN PGP SIGNATURE-----\n")
        assert text.endswith(b"-----END PGP SIGNATURE-----\n")

    def test_checksum_line(self):
        lines = encode(b"hello", ARMOR_SIGNATURE).decode().splitlines()
        assert lines[-2].startswith("=")
        assert len(lines[-2]) == 5

    def test_line_width(self):
        lines = encode(os.urandom(500), ARMOR_MESSAGE).decode().splitlines()
        body = lines[2:-2]
        assert all(len(line) <= 64 for line in body)
        assert all(len(line) == 64 for line in body[:-1])

    def test_custom_line_width(self):
        lines = encode(os.urandom(500), ARMOR_MESSAGE, line_width=76).decode().splitlines()
        assert len(lines[2]) == 76

    def test_invalid_line_width(self):
        with pytest.raises(ValueError):
            encode(b"data", ARMOR_MESSAGE, line_width=30)

    def test_headers_written_in_order(self):
        text = encode(b"x", ARMOR_MESSAGE, headers=[("Version", "1"), ("Comment", "two")])
        lines = text.decode().splitlines()
        assert lines[1:4] == ["Version: 1", "Comment: two", ""]


class TestDecode:
    """Test armor decoding."""

    def test_decode_gnupg_output(self):
        block = decode(load("ed25519_hello.asc"))
        assert block.block_type == ARMOR_MESSAGE
        assert block.headers == ()
        assert len(block.body) > 0

    def test_decode_public_key_block(self):
        block = decode(load("p256_public.asc"))
        assert block.block_type == ARMOR_PUBLIC_KEY

    def test_decode_str(self):
        block = decode(encode(b"payload", ARMOR_SIGNATURE).decode())
        assert block.body == b"payload"

    def test_decode_empty_body(self):
        block = decode(encode(b"", ARMOR_PUBLIC_KEY))
        assert block.body == b""

    def test_headers_preserved(self):
        text = encode(b"x", ARMOR_MESSAGE, headers=[("Comment", "a: b")])
        assert decode(text).headers == (("Comment", "a: b"),)

    def test_crlf_line_endings(self):
        text = encode(b"windows", ARMOR_SIGNATURE).replace(b"\n", b"\r\n")
        assert decode(text).body == b"windows"

    def test_leading_text_ignored(self):
        text = b"Some preamble\n\n" + encode(b"body", ARMOR_SIGNATURE)
        assert decode(text).body == b"body"

    def test_missing_header(self):
        with pytest.raises(ArmorFormatError):
            decode(b"not armor at all")

    def test_empty_input(self):
        with pytest.raises(ArmorFormatError):
            decode(b"")

    def test_missing_footer(self):
        text = encode(b"body", ARMOR_SIGNATURE).replace(b"-----END PGP SIGNATURE-----\n", b"")
        with pytest.raises(ArmorFormatError):
            decode(text)

    def test_mismatched_footer(self):
        text = encode(b"body", ARMOR_SIGNATURE).replace(b"END PGP SIGNATURE", b"END PGP MESSAGE")
        with pytest.raises(ArmorFormatError, match="does not match"):
            decode(text)

    def test_missing_checksum(self):
        lines = encode(b"body", ARMOR_SIGNATURE).split(b"\n")
        del lines[-3]
        with pytest.raises(ArmorFormatError, match="checksum"):
            decode(b"\n".join(lines))

    def test_checksum_mismatch(self):
        text = encode(b"body", ARMOR_SIGNATURE)
        lines = text.split(b"\n")
        lines[-3] = b"=AAAA"
        with pytest.raises(ArmorFormatError, match="checksum mismatch"):
            decode(b"\n".join(lines))

    def test_invalid_radix64(self):
        text = encode(b"some body bytes", ARMOR_SIGNATURE).replace(b"c29", b"c*9")
        with pytest.raises(ArmorFormatError):
            decode(text)

    def test_nonzero_padding_bits_rejected(self):
        # "AB==" decodes to the same single zero byte as "AA=="
        text = encode(b"\x00", ARMOR_SIGNATURE)
        assert b"\nAA==\n" in text
        with pytest.raises(ArmorFormatError, match="Non-canonical"):
            decode(text.replace(b"\nAA==\n", b"\nAB==\n"))

    def test_vertical_tab_is_not_a_line_break(self):
        text = encode(b"a" * 60, ARMOR_SIGNATURE)
        first_body_line = text.split(b"\n")[2]
        assert len(first_body_line) == 64
        tampered = text.replace(first_body_line + b"\n", first_body_line + b"\x0b")
        with pytest.raises(ArmorFormatError):
            decode(tampered)

    def test_vertical_tab_after_footer(self):
        text = encode(b"body", ARMOR_SIGNATURE)
        tampered = text[:-1] + b"\x0b"
        with pytest.raises(ArmorFormatError, match="footer"):
            decode(tampered)

    def test_trailing_spaces_and_tabs_ignored(self):
        text = encode(b"spaced", ARMOR_SIGNATURE).replace(b"\n", b" \t\n")
        assert decode(text).body == b"spaced"

    def test_non_ascii(self):
        with pytest.raises(ArmorFormatError):
            decode("-----BEGIN PGP SIGNATURE-----\n\né\n".encode("utf-8"))

    def test_wrong_type(self):
        with pytest.raises(TypeError):
            decode(12345)


class TestRoundTrip:
    """Encode and decode are exact inverses on well-formed input."""

    @pytest.mark.parametrize(
        "name",
        ["ed25519_hello.asc", "rsa_public.asc", "rsa_private.asc", "all_public.asc"],
    )
    def test_gnupg_armor_reencodes_identically(self, name):
        original = load(name)
        block = decode(original)
        assert encode(block.body, block.block_type, block.headers) == original

    def test_body_round_trip(self):
        body = os.urandom(777)
        assert decode(encode(body, ARMOR_SIGNATURE)) == ArmorBlock(ARMOR_SIGNATURE, body)
