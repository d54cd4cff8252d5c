"""Tests for attestation parameters."""

import pytest

from pgpattest.config import ACCEPTED_HASHES, DEFAULT_PARAMS, AttestationParams
from pgpattest.crypto import HASH_SHA1, HASH_SHA224, HASH_SHA256, HASH_SHA384, HASH_SHA512


class TestDefaults:
    """Test the default configuration."""

    def test_default_hash(self):
        assert DEFAULT_PARAMS.hash_algorithm == HASH_SHA256

    def test_accepted_hashes(self):
        assert DEFAULT_PARAMS.accepted_hashes == {HASH_SHA224, HASH_SHA256, HASH_SHA384, HASH_SHA512}
        assert HASH_SHA1 not in ACCEPTED_HASHES

    def test_armor_defaults(self):
        assert DEFAULT_PARAMS.armor_line_width == 64
        assert DEFAULT_PARAMS.armor_headers == ()
        assert DEFAULT_PARAMS.literal_filename == ""

    def test_decompression_limit(self):
        assert DEFAULT_PARAMS.max_decompressed_size == 64 * 1024 * 1024


class TestValidation:
    """Test rejection of invalid parameters."""

    @pytest.mark.parametrize("hash_algorithm", [HASH_SHA384, HASH_SHA512])
    def test_stronger_signing_hashes(self, hash_algorithm):
        assert AttestationParams(hash_algorithm=hash_algorithm).hash_algorithm == hash_algorithm

    @pytest.mark.parametrize("hash_algorithm", [HASH_SHA1, HASH_SHA224, 1, 99])
    def test_signing_hash_not_allowed(self, hash_algorithm):
        with pytest.raises(ValueError):
            AttestationParams(hash_algorithm=hash_algorithm)

    def test_sha1_never_accepted(self):
        with pytest.raises(ValueError):
            AttestationParams(accepted_hashes={HASH_SHA1, HASH_SHA256})

    def test_signing_hash_must_be_accepted(self):
        with pytest.raises(ValueError):
            AttestationParams(hash_algorithm=HASH_SHA512, accepted_hashes={HASH_SHA256})

    @pytest.mark.parametrize("width", [0, 3, 62, 80])
    def test_invalid_line_width(self, width):
        with pytest.raises(ValueError):
            AttestationParams(armor_line_width=width)

    def test_long_filename(self):
        with pytest.raises(ValueError):
            AttestationParams(literal_filename="x" * 256)

    @pytest.mark.parametrize("size", [0, -1])
    def test_invalid_decompression_limit(self, size):
        with pytest.raises(ValueError, match="max_decompressed_size"):
            AttestationParams(max_decompressed_size=size)


class TestNormalization:
    """Equal configurations compare equal."""

    def test_accepted_hashes_frozen(self):
        params = AttestationParams(accepted_hashes=[HASH_SHA256, HASH_SHA512])
        assert params.accepted_hashes == frozenset({HASH_SHA256, HASH_SHA512})
        assert params == AttestationParams(accepted_hashes={HASH_SHA512, HASH_SHA256})

    def test_headers_tuple(self):
        params = AttestationParams(armor_headers=[["Comment", "build 7"]])
        assert params.armor_headers == (("Comment", "build 7"),)
        hash(params)

    def test_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_PARAMS.hash_algorithm = HASH_SHA512
