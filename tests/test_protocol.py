"""
Tests for newline-delimited JSON framing over sockets.
"""

import socket

import pytest

from common import protocol
from common.protocol import ProtocolError, forget, recv_json, send_json


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    for s in (a, b):
        forget(s)
        s.close()


def test_single_message(pair):
    a, b = pair
    send_json(a, {"type": "system", "payload": {"text": "héllo"}})
    assert recv_json(b) == {"type": "system", "payload": {"text": "héllo"}}


def test_several_messages_in_one_read(pair):
    """Lines that arrive together are returned one per call."""
    a, b = pair
    a.sendall(b'{"n": 1}\n{"n": 2}\n{"n"')
    assert recv_json(b) == {"n": 1}
    assert recv_json(b) == {"n": 2}
    a.sendall(b': 3}\n')
    assert recv_json(b) == {"n": 3}


def test_message_split_across_reads(pair):
    a, b = pair
    a.sendall(b'{"payload": "')
    a.sendall(b'x' * 100000 + b'"}\n')
    assert recv_json(b) == {"payload": "x" * 100000}


def test_closed_peer(pair):
    a, b = pair
    a.shutdown(socket.SHUT_WR)
    with pytest.raises(ConnectionError):
        recv_json(b)


@pytest.mark.parametrize("line", [b"not json\n", b"[1, 2]\n", b"\xff\xfe\n"])
def test_bad_lines(pair, line):
    """Lines that are not a JSON object are rejected."""
    a, b = pair
    a.sendall(line)
    with pytest.raises(ProtocolError):
        recv_json(b)


def test_line_too_long(pair, monkeypatch):
    a, b = pair
    monkeypatch.setattr(protocol, "MAX_LINE", 10)
    a.sendall(b'{"x": "' + b"y" * 64)
    with pytest.raises(ProtocolError):
        recv_json(b)


def test_forget_drops_buffered_bytes(pair):
    """Buffered leftovers do not leak to a socket that reuses the descriptor."""
    a, b = pair
    a.sendall(b'{"n": 1}\n{"n": 2}\n')
    assert recv_json(b) == {"n": 1}
    forget(b)
    assert b.fileno() not in protocol._buffers
