import sys
import time

from kernel import render_rows
from protocol import Assign, ChunkResult, ConnectionClosed, FrameRequest, Finished, ProtocolError, Request, Result
from settings import CONNECT_HOST, PORT, debug, log
from transport import QueueWorkerChannel, SocketWorkerChannel


def compute_chunk(request, chunk):
    pixels = render_rows(request, chunk.start_row, chunk.row_count)
    return ChunkResult(chunk.start_row, chunk.row_count, pixels)


def run_round(channel, request, name="worker"):
    """Pull chunks for one frame until the controller hands out the terminal chunk.

    Returns the number of chunks computed. A ``MemoryError`` while building a
    result is not caught here: a half-rendered frame cannot be repaired, so
    the whole session has to go down.
    """
    chunks_done = 0
    while True:
        channel.send(Request())
        message = channel.recv()
        if not isinstance(message, Assign):
            raise ProtocolError(f"{name} expected Assign, got {type(message).__name__}")
        chunk = message.chunk
        if chunk.is_terminal:
            channel.send(Finished())
            return chunks_done

        debug(f"[{name}] computing rows {chunk.start_row}..{chunk.end_row - 1}")
        channel.send(Result(compute_chunk(request, chunk)))
        chunks_done += 1


def run_session(channel, name="worker"):
    """Render one round per broadcast frame; return the number of frames served."""
    frames = 0
    while True:
        request = channel.recv()
        if not isinstance(request, FrameRequest):
            raise ProtocolError(f"{name} expected FrameRequest, got {type(request).__name__}")
        if request.is_terminal:
            debug(f"[{name}] terminal frame received after {frames} frames")
            return frames
        start = time.time()
        chunks = run_round(channel, request, name)
        frames += 1
        debug(f"[{name}] frame {frames}: {chunks} chunks in {time.time() - start:.3f}s")


def run_queue_worker(worker_id, inbox, outbox):
    """Entry point for workers spawned as local processes."""
    channel = QueueWorkerChannel(worker_id, inbox, outbox)
    try:
        run_session(channel, worker_id)
    except MemoryError:
        log(f"[{worker_id}] out of memory while rendering, aborting session")
        sys.exit(1)


def start_worker(host=CONNECT_HOST, port=PORT):
    """Connect to a controller over TCP and serve frames until told to stop."""
    channel = SocketWorkerChannel(host, port)
    log(f"[worker] Connected to controller at {host}:{port}")
    try:
        frames = run_session(channel)
        log(f"[worker] Session finished after {frames} frames")
        return 0
    except MemoryError:
        log("[worker] out of memory while rendering, aborting session")
        return 1
    except ConnectionClosed as e:
        log(f"[worker] Lost controller: {e}")
        return 1
    except ProtocolError as e:
        log(f"[worker] Protocol error: {e}")
        return 1
    finally:
        channel.close()
