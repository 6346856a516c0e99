"""Tests for the table-driven CRC-32."""

import zlib

import pytest

from common.crc32 import CRC_TABLE, crc32


class TestTable:
    """The precomputed lookup table."""

    def test_has_256_entries(self):
        """One entry per possible byte value."""
        assert len(CRC_TABLE) == 256

    def test_known_entries(self):
        """Spot-check well-known table values."""
        assert CRC_TABLE[0] == 0
        assert CRC_TABLE[1] == 0x77073096
        assert CRC_TABLE[255] == 0x2D02EF8D

    def test_is_immutable(self):
        """The table cannot be modified after import."""
        with pytest.raises(TypeError):
            CRC_TABLE[0] = 1  # type: ignore[index]


class TestChecksum:
    """Checksum values."""

    def test_empty_is_zero(self):
        """CRC-32 of no data is 0."""
        assert crc32(b"") == 0

    def test_check_value(self):
        """The standard check string gives 0xCBF43926."""
        assert crc32(b"123456789") == 0xCBF43926

    @pytest.mark.parametrize("data", [b"a", b"hello world", bytes(range(256)) * 3, b"\x00" * 1000])
    def test_matches_zlib(self, data):
        """Agrees with the reference implementation on assorted inputs."""
        assert crc32(data) == zlib.crc32(data)

    def test_accepts_bytearray_and_memoryview(self):
        """Any bytes-like input works."""
        assert crc32(bytearray(b"123456789")) == 0xCBF43926
        assert crc32(memoryview(b"123456789")) == 0xCBF43926
