"""
Tests for the in-memory store-only ZIP builder.

The produced bytes are decoded with the standard library reader and the
offset fields are followed by hand to check they land on record starts.
"""

import io
import struct
import zipfile
import zlib

import pytest

from common.zipper import (
    CENTRAL_HEADER_LEN,
    END_RECORD_LEN,
    LOCAL_HEADER_LEN,
    ZipEntry,
    create_zip,
)


def read_end_record(blob: bytes):
    sig, disk, cd_disk, n_disk, n_total, cd_size, cd_offset, comment = struct.unpack(
        "<IHHHHIIH", blob[-END_RECORD_LEN:]
    )
    return sig, disk, cd_disk, n_disk, n_total, cd_size, cd_offset, comment


@pytest.fixture
def entries():
    return [
        ZipEntry("one.txt", b"first"),
        ZipEntry("two.bin", bytes(range(256))),
        ZipEntry("empty", b""),
    ]


class TestStandardReader:
    """Archives decode with zipfile."""

    def test_roundtrip_names_bytes_order(self, entries):
        """Names, bytes and order survive a standard reader."""
        with zipfile.ZipFile(io.BytesIO(create_zip(entries))) as zf:
            assert zf.testzip() is None
            assert zf.namelist() == [e.name for e in entries]
            for e in entries:
                assert zf.read(e.name) == e.data

    def test_entries_are_stored_with_utf8_flag(self, entries):
        """No compression, UTF-8 name flag set, CRCs match."""
        with zipfile.ZipFile(io.BytesIO(create_zip(entries))) as zf:
            for info, e in zip(zf.infolist(), entries):
                assert info.compress_type == zipfile.ZIP_STORED
                assert info.flag_bits & 0x0800
                assert info.CRC == zlib.crc32(e.data)
                assert info.file_size == info.compress_size == len(e.data)

    def test_non_ascii_names(self):
        """UTF-8 names decode correctly."""
        blob = create_zip([ZipEntry("ảnh-😀.png", b"x")])
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            assert zf.namelist() == ["ảnh-😀.png"]

    def test_empty_archive(self):
        """No entries gives just a valid end record."""
        blob = create_zip([])
        assert len(blob) == END_RECORD_LEN
        assert read_end_record(blob) == (0x06054B50, 0, 0, 0, 0, 0, 0, 0)
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            assert zf.namelist() == []


class TestOffsets:
    """Offset bookkeeping in the central directory and end record."""

    @pytest.mark.parametrize("count", [0, 1, 2, 5])
    def test_offsets_land_on_records(self, count):
        """Every recorded offset points at the matching signature."""
        items = [ZipEntry(f"f{i}.dat", bytes([i]) * (i * 7)) for i in range(count)]
        blob = create_zip(items)

        sig, _, _, n_disk, n_total, cd_size, cd_offset, _ = read_end_record(blob)
        assert sig == 0x06054B50
        assert n_disk == n_total == count
        assert cd_offset + cd_size == len(blob) - END_RECORD_LEN

        pos = cd_offset
        expected_local = 0
        for item in items:
            name = item.name.encode()
            assert struct.unpack_from("<I", blob, pos)[0] == 0x02014B50
            local_offset = struct.unpack_from("<I", blob, pos + 42)[0]
            assert local_offset == expected_local
            assert struct.unpack_from("<I", blob, local_offset)[0] == 0x04034B50
            assert blob[local_offset + LOCAL_HEADER_LEN:local_offset + LOCAL_HEADER_LEN + len(name)] == name
            expected_local += LOCAL_HEADER_LEN + len(name) + len(item.data)
            pos += CENTRAL_HEADER_LEN + len(name)
        assert expected_local == cd_offset

    def test_local_header_fields(self):
        """Local header carries version 20, flag 0x0800, method 0 and zero time/date."""
        blob = create_zip([ZipEntry("a", b"abc")])
        sig, ver, flag, method, mtime, mdate, crc, csize, usize, nlen, xlen = struct.unpack_from(
            "<IHHHHHIIIHH", blob, 0
        )
        assert (sig, ver, flag, method, mtime, mdate) == (0x04034B50, 20, 0x0800, 0, 0, 0)
        assert crc == zlib.crc32(b"abc")
        assert csize == usize == 3
        assert (nlen, xlen) == (1, 0)
        assert blob[30:34] == b"aabc"
