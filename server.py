import threading
import time

from protocol import TERMINAL_CHUNK, Assign, Finished, Request, Result, RowChunk, WorkerLost
from settings import CHUNK_SIZE, debug, log

AWAITING_REQUEST = 'awaiting-request'
COMPUTING = 'computing'
FINISHED = 'finished'


class ChunkOverlapError(ValueError):
    pass


class RowAllocator:
    """Hands out consecutive row ranges from a cursor that only moves forward."""

    def __init__(self, height, chunk_size=CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.height = height
        self.chunk_size = chunk_size
        self.cursor = 0

    @property
    def exhausted(self):
        return self.cursor >= self.height

    def next_chunk(self):
        if self.exhausted:
            return TERMINAL_CHUNK
        chunk = RowChunk(self.cursor, min(self.chunk_size, self.height - self.cursor))
        self.cursor += chunk.row_count
        return chunk


class FrameBuffer:
    """RGB24 frame that accepts each row exactly once."""

    def __init__(self, width, height):
        self.width = width
        self.height = height
        self.row_bytes = 3 * width
        self.data = bytearray(self.row_bytes * height)
        self.written = bytearray(height)
        self.rows_written = 0

    def write_chunk(self, start_row, pixels):
        row_count, remainder = divmod(len(pixels), self.row_bytes)
        if remainder or row_count == 0:
            raise ChunkOverlapError(f"Payload of {len(pixels)} bytes is not a whole number of {self.width}-pixel rows")
        end_row = start_row + row_count
        if start_row < 0 or end_row > self.height:
            raise ChunkOverlapError(f"Rows {start_row}..{end_row - 1} fall outside a {self.height}-row frame")
        if any(self.written[start_row:end_row]):
            raise ChunkOverlapError(f"Rows {start_row}..{end_row - 1} overlap rows already written")
        offset = self.row_bytes * start_row
        self.data[offset:offset + len(pixels)] = pixels
        self.written[start_row:end_row] = b"\x01" * row_count
        self.rows_written += row_count

    @property
    def is_complete(self):
        return self.rows_written == self.height

    def missing_rows(self):
        return [y for y in range(self.height) if not self.written[y]]

    def to_bytes(self):
        return bytes(self.data)


class WorkerRegistry:
    """Per-worker status that outlives individual frames."""

    def __init__(self, worker_ids=()):
        self.workers = {}
        self.lock = threading.Lock()
        for worker_id in worker_ids:
            self.register(worker_id)

    def register(self, worker_id, address=None):
        with self.lock:
            self.workers.setdefault(worker_id, {
                'address': address,
                'status': AWAITING_REQUEST,
                'last_seen': time.time(),
                'tasks_done': 0,
                'frames_done': 0,
            })

    def __contains__(self, worker_id):
        return worker_id in self.workers

    def __len__(self):
        return len(self.workers)

    def start_round(self):
        with self.lock:
            for info in self.workers.values():
                info['status'] = AWAITING_REQUEST

    def mark(self, worker_id, status):
        with self.lock:
            info = self.workers[worker_id]
            info['status'] = status
            info['last_seen'] = time.time()
            if status == FINISHED:
                info['frames_done'] += 1

    def record_result(self, worker_id):
        with self.lock:
            info = self.workers[worker_id]
            info['tasks_done'] += 1
            info['last_seen'] = time.time()

    def status(self, worker_id):
        return self.workers[worker_id]['status']

    def all_finished(self):
        return self.active_count() == 0

    def active_count(self):
        return sum(info['status'] != FINISHED for info in self.workers.values())

    def snapshot(self):
        with self.lock:
            return {worker_id: dict(info) for worker_id, info in self.workers.items()}


class ChunkController:
    """Controller side of a frame round.

    Waits on the channel's fan-in for one message at a time, so frame buffer
    writes never race and need no lock.
    """

    def __init__(self, channel, registry=None, chunk_size=CHUNK_SIZE):
        self.channel = channel
        self.registry = registry if registry is not None else WorkerRegistry()
        peers = getattr(channel, 'peers', {})
        for worker_id in channel.worker_ids:
            self.registry.register(worker_id, peers.get(worker_id))
        self.chunk_size = chunk_size
        self.lock = threading.Lock()
        self.request = None
        self.allocator = None
        self.buffer = None
        self.frames_rendered = 0
        self.chunks_assigned = 0

    def broadcast(self, request):
        self.channel.broadcast(request)

    def run_round(self, request):
        """Schedule every row of ``request`` and return the assembled frame."""
        with self.lock:
            self.request = request
            self.allocator = RowAllocator(request.height, self.chunk_size)
            self.buffer = FrameBuffer(request.width, request.height)
            self.chunks_assigned = 0
        self.registry.start_round()
        start = time.time()
        log(f"[controller] Computing {request.width}x{request.height} zoom={request.zoom:.6f} "
            f"center=({request.center_x:.6f}, {request.center_y:.6f}) max_iter={request.max_iterations} "
            f"with {len(self.registry)} workers")

        while not self.registry.all_finished():
            worker_id, message = self.channel.recv_any()
            if worker_id not in self.registry:
                raise WorkerLost(worker_id, "message from unknown worker")
            if self.registry.status(worker_id) == FINISHED:
                raise WorkerLost(worker_id, f"sent {type(message).__name__} after finishing the round")

            if isinstance(message, Request):
                self._assign(worker_id)
            elif isinstance(message, Result):
                self._store(worker_id, message.result)
            elif isinstance(message, Finished):
                self.registry.mark(worker_id, FINISHED)
                debug(f"[controller] {worker_id} finished ({self.registry.active_count()} still active)")
            else:
                raise WorkerLost(worker_id, f"unexpected {type(message).__name__} during a round")

        if not self.buffer.is_complete:
            raise ChunkOverlapError(f"Round ended with rows missing: {self.buffer.missing_rows()[:10]}")
        with self.lock:
            self.frames_rendered += 1
        log(f"[controller] Frame {self.frames_rendered} done: {self.chunks_assigned} chunks "
            f"in {time.time() - start:.3f}s")
        return self.buffer.to_bytes()

    def _assign(self, worker_id):
        with self.lock:
            chunk = self.allocator.next_chunk()
            if not chunk.is_terminal:
                self.chunks_assigned += 1
        self.channel.send(worker_id, Assign(chunk))
        if chunk.is_terminal:
            self.registry.mark(worker_id, AWAITING_REQUEST)
            debug(f"[controller] {worker_id}: no rows left, sent terminal chunk")
        else:
            self.registry.mark(worker_id, COMPUTING)
            debug(f"[controller] {worker_id}: assigned rows {chunk.start_row}..{chunk.end_row - 1}")

    def _store(self, worker_id, result):
        with self.lock:
            self.buffer.write_chunk(result.start_row, result.pixels)
        self.registry.record_result(worker_id)
        self.registry.mark(worker_id, AWAITING_REQUEST)
        debug(f"[controller] Received chunk {result.start_row}..{result.start_row + result.row_count - 1} "
              f"from {worker_id}")

    def stats(self):
        with self.lock:
            height = self.request.height if self.request else 0
            rows = self.buffer.rows_written if self.buffer else 0
            current = None
            if self.request is not None:
                current = {
                    'zoom': self.request.zoom,
                    'center_x': self.request.center_x,
                    'center_y': self.request.center_y,
                    'width': self.request.width,
                    'height': self.request.height,
                    'max_iterations': self.request.max_iterations,
                }
            stats = {
                'progress': (rows / height) * 100 if height else 0.0,
                'completed_rows': rows,
                'frames_rendered': self.frames_rendered,
                'chunks_assigned': self.chunks_assigned,
                'chunk_size': self.chunk_size,
                'current_frame': current,
            }
        stats['workers'] = self.registry.snapshot()
        return stats
