"""
Socket Framing

Length-prefixed JSON frames shared by the unix socket transport and the
unix socket agent: a 4-byte big-endian length followed by UTF-8 JSON.
"""

import json
import socket
import struct
from typing import Any, Dict

# Frames larger than this are rejected before reading the body
MAX_FRAME_BYTES = 1024 * 1024


def send_frame(sock: socket.socket, message: Dict[str, Any]) -> None:
    """Send one length-prefixed JSON message."""
    data = json.dumps(message).encode('utf-8')
    if len(data) > MAX_FRAME_BYTES:
        raise ConnectionError(f"Frame too large: {len(data)} bytes")
    sock.sendall(struct.pack('!I', len(data)) + data)


def _recv_exact(sock: socket.socket, length: int) -> bytes:
    data = b''
    while len(data) < length:
        chunk = sock.recv(min(length - len(data), 4096))
        if not chunk:
            raise ConnectionError("Connection closed while reading frame")
        data += chunk
    return data


def recv_frame(sock: socket.socket) -> Dict[str, Any]:
    """Receive one length-prefixed JSON message.

    Raises ConnectionError on short reads or oversized frames and ValueError
    when the body is not a JSON object.
    """
    header = _recv_exact(sock, 4)
    length = struct.unpack('!I', header)[0]

    if length > MAX_FRAME_BYTES:
        raise ConnectionError(f"Frame too large: {length} bytes")

    body = _recv_exact(sock, length)
    message = json.loads(body.decode('utf-8'))
    if not isinstance(message, dict):
        raise ValueError("Frame body must be a JSON object")
    return message
