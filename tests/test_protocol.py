import pickle
import socket
import threading

import pytest

from protocol import (
    HEADER,
    TERMINAL_CHUNK,
    Assign,
    ChunkResult,
    ConnectionClosed,
    FrameRequest,
    Finished,
    ProtocolError,
    Request,
    Result,
    RowChunk,
    encode,
    recv_message,
    send_message,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_terminal_frame_request():
    assert FrameRequest.terminal().is_terminal
    assert FrameRequest(0.0, 1.0, 1.0, 10, 10, 10).is_terminal
    assert not FrameRequest(1.0, -0.5, 0.0, 80, 60, 100).is_terminal


def test_frame_request_geometry():
    request = FrameRequest(2.0, 0.0, 0.0, 80, 60, 100)
    assert request.scale == 4.0 / 160
    assert request.frame_bytes == 14400


def test_terminal_chunk_sentinel():
    assert TERMINAL_CHUNK.start_row == -1
    assert TERMINAL_CHUNK.is_terminal
    assert not RowChunk(0, 10).is_terminal
    assert RowChunk(50, 7).end_row == 57


def test_stream_carries_one_exchange(pair):
    a, b = pair
    result = ChunkResult(10, 2, bytes(range(6)) * 8)
    for message in (Request(), Assign(RowChunk(10, 2)), Result(result), Finished()):
        send_message(a, message)
    assert recv_message(b) == Request()
    assert recv_message(b) == Assign(RowChunk(10, 2))
    assert recv_message(b).result == result
    assert isinstance(recv_message(b), Finished)


def test_large_result_survives_partial_reads(pair):
    a, b = pair
    pixels = bytes(3 * 800 * 10)
    message = Result(ChunkResult(0, 10, pixels))
    # socketpair buffers are small; write from a thread so the reader drains
    t = threading.Thread(target=send_message, args=(a, message))
    t.start()
    received = recv_message(b)
    t.join()
    assert received.result.pixels == pixels


def test_clean_close_between_messages(pair):
    a, b = pair
    send_message(a, Finished())
    a.close()
    assert isinstance(recv_message(b), Finished)
    assert recv_message(b) is None


def test_close_inside_frame_is_an_error(pair):
    a, b = pair
    a.sendall(HEADER.pack(100) + b"abc")
    a.close()
    with pytest.raises(ConnectionClosed):
        recv_message(b)


def test_foreign_payload_rejected(pair):
    a, b = pair
    payload = pickle.dumps({'range': (0, 10)})
    a.sendall(HEADER.pack(len(payload)) + payload)
    with pytest.raises(ProtocolError):
        recv_message(b)


def test_encode_refuses_unknown_messages():
    with pytest.raises(ProtocolError):
        encode({'range': (0, 10)})
