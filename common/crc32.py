from typing import Tuple

POLY = 0xEDB88320


def _make_table() -> Tuple[int, ...]:
    ''' Build the 256-entry lookup table, one entry per starting remainder '''
    table = []
    for i in range(256):
        c = i
        for _ in range(8):
            c = (c >> 1) ^ POLY if c & 1 else c >> 1
        table.append(c)
    return tuple(table)  # immutable after import


CRC_TABLE = _make_table()


def crc32(data: bytes) -> int:
    '''
    The function computes the CRC-32 checksum used by ZIP archives.
    Input:
        - data: bytes-like object
    Output: unsigned 32-bit checksum
    '''
    crc = 0xFFFFFFFF
    for byte in data:
        crc = (crc >> 8) ^ CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc ^ 0xFFFFFFFF
