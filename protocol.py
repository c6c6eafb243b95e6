"""Messages exchanged between the controller and its workers.

A frame round on one worker always reads::

    Request -> Assign(chunk) -> Result -> Request -> ... -> Assign(TERMINAL) -> Finished

Stream transports wrap each message in a 4-byte big-endian length prefix
followed by its pickle.
"""

import pickle
import struct
from dataclasses import dataclass

HEADER = struct.Struct('!I')
MAX_FRAME_BYTES = 256 * 1024 * 1024


class ProtocolError(Exception):
    pass


class ConnectionClosed(ProtocolError):
    """The peer went away before the exchange was finished."""


class WorkerLost(ProtocolError):
    def __init__(self, worker_id, reason):
        super().__init__(f"{worker_id}: {reason}")
        self.worker_id = worker_id
        self.reason = reason


@dataclass(frozen=True)
class FrameRequest:
    zoom: float
    center_x: float
    center_y: float
    width: int
    height: int
    max_iterations: int

    @classmethod
    def terminal(cls):
        return cls(-1.0, 0.0, 0.0, 1, 1, 1)

    @property
    def is_terminal(self):
        return self.zoom <= 0

    @property
    def scale(self):
        return 4.0 / (self.width * self.zoom)

    @property
    def frame_bytes(self):
        return 3 * self.width * self.height


@dataclass(frozen=True)
class RowChunk:
    start_row: int
    row_count: int

    @property
    def is_terminal(self):
        return self.start_row == -1

    @property
    def end_row(self):
        return self.start_row + self.row_count


TERMINAL_CHUNK = RowChunk(-1, 0)


@dataclass(frozen=True)
class ChunkResult:
    start_row: int
    row_count: int
    pixels: bytes


@dataclass(frozen=True)
class Request:
    pass


@dataclass(frozen=True)
class Assign:
    chunk: RowChunk


@dataclass(frozen=True)
class Result:
    result: ChunkResult


@dataclass(frozen=True)
class Finished:
    pass


MESSAGE_TYPES = (FrameRequest, Request, Assign, Result, Finished)


def encode(message):
    if not isinstance(message, MESSAGE_TYPES):
        raise ProtocolError(f"Cannot encode {type(message).__name__}")
    payload = pickle.dumps(message, protocol=pickle.HIGHEST_PROTOCOL)
    return HEADER.pack(len(payload)) + payload


def decode(payload):
    try:
        message = pickle.loads(payload)
    except Exception as e:
        raise ProtocolError(f"Undecodable message: {e}") from e
    if not isinstance(message, MESSAGE_TYPES):
        raise ProtocolError(f"Unexpected message type {type(message).__name__}")
    return message


def send_message(sock, message):
    sock.sendall(encode(message))


def _recv_exact(sock, size):
    data = bytearray()
    while len(data) < size:
        packet = sock.recv(min(size - len(data), 65536))
        if not packet:
            break
        data += packet
    return bytes(data)


def recv_message(sock):
    """Read one message; ``None`` when the peer closed between messages."""
    header = _recv_exact(sock, HEADER.size)
    if not header:
        return None
    if len(header) < HEADER.size:
        raise ConnectionClosed("Connection closed inside a frame header")
    (size,) = HEADER.unpack(header)
    if size > MAX_FRAME_BYTES:
        raise ProtocolError(f"Frame of {size} bytes exceeds limit")
    payload = _recv_exact(sock, size)
    if len(payload) < size:
        raise ConnectionClosed(f"Connection closed after {len(payload)} of {size} bytes")
    return decode(payload)
