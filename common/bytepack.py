from typing import Iterable


def write_uint16(buf: bytearray, offset: int, value: int) -> int:
    '''
    The function writes an unsigned 16-bit integer in little-endian order.
    Input:
        - buf: fixed-size bytearray to write into
        - offset: position of the low byte
        - value: integer, only the low 16 bits are kept
    Output: the next free offset (offset + 2)
    '''
    buf[offset] = value & 0xFF
    buf[offset + 1] = (value >> 8) & 0xFF
    return offset + 2


def write_uint32(buf: bytearray, offset: int, value: int) -> int:
    '''
    The function writes an unsigned 32-bit integer in little-endian order.
    Input:
        - buf: fixed-size bytearray to write into
        - offset: position of the low byte
        - value: integer, only the low 32 bits are kept
    Output: the next free offset (offset + 4)
    '''
    buf[offset] = value & 0xFF
    buf[offset + 1] = (value >> 8) & 0xFF
    buf[offset + 2] = (value >> 16) & 0xFF
    buf[offset + 3] = (value >> 24) & 0xFF
    return offset + 4


def concat_bytes(chunks: Iterable[bytes]) -> bytes:
    ''' This function joins byte chunks into one contiguous bytes object, keeping their order '''
    chunks = list(chunks)
    out = bytearray(sum(len(c) for c in chunks))
    pos = 0
    for c in chunks:
        out[pos:pos + len(c)] = c
        pos += len(c)
    return bytes(out)
