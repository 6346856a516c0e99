import json
import socket
import threading

ENC = "utf-8"    # encoding for JSON text
DELIM = b"\n"    # one JSON envelope per line
MAX_LINE = 64 * 1024 * 1024   # uploads travel inline as Base64, keep a hard ceiling

_buffers: dict[int, bytearray] = {}   # socket fd -> residual bytes of a partially read line
_send_locks: dict[int, threading.Lock] = {}   # socket fd -> lock so concurrent senders don't interleave lines
_registry_lock = threading.Lock()


class ProtocolError(Exception):
    """Raised when the peer sends something that is not a single JSON object line."""


def _send_lock(sock: socket.socket) -> threading.Lock:
    with _registry_lock:
        return _send_locks.setdefault(sock.fileno(), threading.Lock())


def send_json(sock: socket.socket, obj: dict) -> None:
    '''
    The function sends one JSON object over a socket, terminated by a newline.
    Several threads may send on the same socket; each line is written atomically.
    Inputs:
        - sock: connected socket
        - obj: JSON-serialisable dict
    '''
    data = (json.dumps(obj, ensure_ascii=False) + "\n").encode(ENC)
    with _send_lock(sock):
        sock.sendall(data)


def recv_json(sock: socket.socket) -> dict:
    '''
    The function reads the next newline-terminated JSON object from a socket.
    Bytes past the newline stay buffered for the next call, so one recv()
    carrying several messages still yields one message per call.
    Raises ConnectionError when the peer closes, ProtocolError on bad input.
    '''
    fd = sock.fileno()
    with _registry_lock:
        buf = _buffers.setdefault(fd, bytearray())

    while True:
        nl = buf.find(DELIM)
        if nl != -1:
            line = bytes(buf[:nl])
            del buf[:nl + 1]
            try:
                obj = json.loads(line.decode(ENC))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ProtocolError(f"bad JSON line: {e}") from e
            if not isinstance(obj, dict):
                raise ProtocolError("expected a JSON object")
            return obj

        if len(buf) > MAX_LINE:
            raise ProtocolError("line too long")
        chunk = sock.recv(65536)
        if not chunk:
            raise ConnectionError("socket closed")
        buf.extend(chunk)


def forget(sock: socket.socket) -> None:
    ''' Drop buffered state for a socket that is about to be closed (fds get reused) '''
    try:
        fd = sock.fileno()
    except OSError:
        return
    with _registry_lock:
        _buffers.pop(fd, None)
        _send_locks.pop(fd, None)
