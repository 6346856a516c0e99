"""Tests for the little-endian writers and chunk concatenation."""

from common.bytepack import concat_bytes, write_uint16, write_uint32


class TestWriters:
    """Fixed-width little-endian integer writers."""

    def test_uint16_little_endian(self):
        """Low byte comes first and the next offset is returned."""
        buf = bytearray(4)
        assert write_uint16(buf, 1, 0x1234) == 3
        assert buf == bytearray([0x00, 0x34, 0x12, 0x00])

    def test_uint32_little_endian(self):
        """Four bytes, least significant first."""
        buf = bytearray(4)
        assert write_uint32(buf, 0, 0x04034B50) == 4
        assert bytes(buf) == b"PK\x03\x04"

    def test_values_are_truncated_to_width(self):
        """Bits above the field width are dropped."""
        buf = bytearray(6)
        write_uint16(buf, 0, 0x1FFFF)
        write_uint32(buf, 2, 0x1_FFFF_FFFF)
        assert buf == bytearray([0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF])

    def test_chained_offsets(self):
        """Writers can be chained by feeding back the returned offset."""
        buf = bytearray(6)
        p = write_uint16(buf, 0, 1)
        p = write_uint32(buf, p, 2)
        assert p == 6
        assert buf == bytearray([1, 0, 2, 0, 0, 0])


class TestConcat:
    """Chunk concatenation."""

    def test_preserves_order_and_length(self):
        """Output is every chunk in order, length equals the sum."""
        out = concat_bytes([b"ab", b"", bytearray(b"cde"), b"f"])
        assert out == b"abcdef"
        assert isinstance(out, bytes)

    def test_empty_input(self):
        """No chunks gives an empty result."""
        assert concat_bytes([]) == b""

    def test_accepts_generator(self):
        """Any iterable of chunks is accepted."""
        assert concat_bytes(bytes([i]) for i in range(3)) == b"\x00\x01\x02"
