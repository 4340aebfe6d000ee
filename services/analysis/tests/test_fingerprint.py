"""
Tests for content fingerprinting: FNV-1a hashing, sampling and rendering.
"""

import pytest

from glow_engine.fingerprint import fingerprint, fnv1a, sample_bytes, to_base36


class TestFnv1a:
    """Tests for the FNV-1a hash."""

    def test_empty_input_is_offset_basis(self):
        """Should return the offset basis for empty input."""
        assert fnv1a(b"") == 0x811C9DC5
        assert fnv1a(b"", bits=64) == 0xCBF29CE484222325

    def test_known_vectors(self):
        """Should match published FNV-1a test vectors."""
        assert fnv1a(b"a") == 0xE40C292C
        assert fnv1a(b"foobar") == 0xBF9CF968
        assert fnv1a(b"a", bits=64) == 0xAF63DC4C8601EC8C

    def test_unsupported_width(self):
        """Should reject widths other than 32 and 64."""
        with pytest.raises(ValueError):
            fnv1a(b"abc", bits=16)


class TestSampling:
    """Tests for evenly spaced byte sampling."""

    def test_short_input_kept_whole(self):
        """Inputs shorter than the sample size are used in full."""
        data = bytes(range(10))
        assert sample_bytes(data, 1000) == data

    def test_long_input_bounded(self):
        """Should never return more than sample_size bytes."""
        data = bytes(i % 256 for i in range(10_500))
        sample = sample_bytes(data, 1000)

        assert len(sample) == 1000
        # stride = 10_500 // 1000 = 10
        assert sample[:3] == bytes([data[0], data[10], data[20]])

    def test_invalid_sample_size(self):
        with pytest.raises(ValueError):
            sample_bytes(b"abc", 0)


class TestFingerprint:
    """Tests for the public fingerprint function."""

    def test_deterministic(self):
        """Equal bytes must always yield equal fingerprints."""
        data = b"\xff\xd8\xff\xe0" + bytes(range(256)) * 40

        assert fingerprint(data) == fingerprint(bytes(data))
        assert fingerprint(data) == fingerprint(bytearray(data))

    def test_base36_rendering(self):
        """Should render the hash in lowercase base 36."""
        assert fingerprint(b"a") == to_base36(0xE40C292C)
        assert fingerprint(b"a").isalnum()
        assert fingerprint(b"a") == fingerprint(b"a").lower()

    def test_different_content_differs(self):
        assert fingerprint(b"image-one") != fingerprint(b"image-two")

    def test_large_input_uses_sample(self):
        """Bytes skipped by the stride do not affect the fingerprint."""
        data = bytearray(bytes(range(256)) * 100)
        changed = bytearray(data)
        changed[1] ^= 0xFF  # stride is 25, index 1 is never sampled

        assert fingerprint(bytes(data)) == fingerprint(bytes(changed))
