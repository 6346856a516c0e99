from dataclasses import dataclass
from typing import List, Sequence

from common.bytepack import write_uint16, write_uint32, concat_bytes
from common.crc32 import crc32

LOCAL_SIG = 0x04034B50
CENTRAL_SIG = 0x02014B50
END_SIG = 0x06054B50

VERSION = 20        # 2.0, plain stored files
UTF8_FLAG = 0x0800  # general purpose bit 11: name is UTF-8
STORE = 0           # no compression

LOCAL_HEADER_LEN = 30
CENTRAL_HEADER_LEN = 46
END_RECORD_LEN = 22


@dataclass(frozen=True)
class ZipEntry:
    name: str     # unique within one archive
    data: bytes


def _local_header(name_len: int, checksum: int, size: int) -> bytearray:
    hdr = bytearray(LOCAL_HEADER_LEN)
    p = write_uint32(hdr, 0, LOCAL_SIG)
    p = write_uint16(hdr, p, VERSION)
    p = write_uint16(hdr, p, UTF8_FLAG)
    p = write_uint16(hdr, p, STORE)
    p = write_uint16(hdr, p, 0)   # mod time
    p = write_uint16(hdr, p, 0)   # mod date
    p = write_uint32(hdr, p, checksum)
    p = write_uint32(hdr, p, size)   # compressed
    p = write_uint32(hdr, p, size)   # uncompressed
    p = write_uint16(hdr, p, name_len)
    write_uint16(hdr, p, 0)          # extra field length
    return hdr


def _central_header(name_len: int, checksum: int, size: int, local_offset: int) -> bytearray:
    hdr = bytearray(CENTRAL_HEADER_LEN)
    p = write_uint32(hdr, 0, CENTRAL_SIG)
    p = write_uint16(hdr, p, VERSION)   # made by
    p = write_uint16(hdr, p, VERSION)   # needed
    p = write_uint16(hdr, p, UTF8_FLAG)
    p = write_uint16(hdr, p, STORE)
    p = write_uint16(hdr, p, 0)
    p = write_uint16(hdr, p, 0)
    p = write_uint32(hdr, p, checksum)
    p = write_uint32(hdr, p, size)
    p = write_uint32(hdr, p, size)
    p = write_uint16(hdr, p, name_len)
    p = write_uint16(hdr, p, 0)   # extra
    p = write_uint16(hdr, p, 0)   # comment
    p = write_uint16(hdr, p, 0)   # disk number start
    p = write_uint16(hdr, p, 0)   # internal attributes
    p = write_uint32(hdr, p, 0)   # external attributes
    write_uint32(hdr, p, local_offset)
    return hdr


def _end_record(count: int, central_len: int, central_offset: int) -> bytearray:
    rec = bytearray(END_RECORD_LEN)
    p = write_uint32(rec, 0, END_SIG)
    p = write_uint16(rec, p, 0)   # this disk
    p = write_uint16(rec, p, 0)   # disk with central directory
    p = write_uint16(rec, p, count)
    p = write_uint16(rec, p, count)
    p = write_uint32(rec, p, central_len)
    p = write_uint32(rec, p, central_offset)
    write_uint16(rec, p, 0)       # comment length
    return rec


def create_zip(entries: Sequence[ZipEntry]) -> bytes:
    '''
    Pack entries into a store-only ZIP archive held in memory.

    Local records come first in input order, then one central directory
    record per entry, then the end-of-central-directory record. Every
    offset written is the exact position of the referenced record in the
    returned bytes. Sizes must fit in 32 bits (no Zip64).

    Args:
        entries: ZipEntry items with unique names

    Returns:
        The complete archive as bytes
    '''
    files: List[bytes] = []
    central: List[bytes] = []
    offset = 0

    for entry in entries:
        name = entry.name.encode("utf-8")
        data = bytes(entry.data)
        checksum = crc32(data)

        local = _local_header(len(name), checksum, len(data))
        files.extend((local, name, data))
        central.extend((_central_header(len(name), checksum, len(data), offset), name))

        offset += len(local) + len(name) + len(data)

    central_data = concat_bytes(central)
    end = _end_record(len(entries), len(central_data), offset)
    return concat_bytes(files + [central_data, end])
