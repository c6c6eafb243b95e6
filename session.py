"""Control loop that turns text records into rendered frames."""

import math
import threading

from protocol import FrameRequest
from settings import HEIGHT, MAX_ITER, WIDTH, log

PPM_HEADER = "P6\n{width} {height}\n255\n"


class MalformedRecord(ValueError):
    pass


def parse_record(line, width=WIDTH, height=HEIGHT, max_iterations=MAX_ITER):
    """Parse ``zoom centerX centerY [width [height [maxIterations]]]``.

    Missing trailing fields fall back to the given defaults. A zoom of zero or
    below yields the terminal request regardless of the other fields.
    """
    fields = line.split()
    if len(fields) < 3 or len(fields) > 6:
        raise MalformedRecord(f"expected 3 to 6 fields, got {len(fields)}: {line.strip()!r}")
    try:
        zoom, center_x, center_y = (float(f) for f in fields[:3])
        sizes = [int(f) for f in fields[3:]]
    except ValueError as e:
        raise MalformedRecord(f"non-numeric field in {line.strip()!r}") from e
    if not all(math.isfinite(v) for v in (zoom, center_x, center_y)):
        raise MalformedRecord(f"non-finite value in {line.strip()!r}")
    if zoom <= 0:
        return FrameRequest.terminal()

    sizes += [width, height, max_iterations][len(sizes):]
    width, height, max_iterations = sizes
    if width <= 0 or height <= 0 or max_iterations <= 0:
        raise MalformedRecord(f"width, height and max iterations must be positive: {line.strip()!r}")
    if not math.isfinite(4.0 / (width * zoom)):
        raise MalformedRecord(f"zoom {zoom!r} is too small for a {width}-pixel frame")
    return FrameRequest(zoom, center_x, center_y, width, height, max_iterations)


class FrameWriter:
    """Writes finished frames to a binary stream, optionally as PPM (P6)."""

    def __init__(self, stream, header=True):
        self.stream = stream
        self.header = header
        self.frames_written = 0
        self.lock = threading.Lock()
        self.latest = None

    def write_frame(self, request, pixels):
        if len(pixels) != request.frame_bytes:
            raise ValueError(f"Frame has {len(pixels)} bytes, expected {request.frame_bytes}")
        if self.header:
            self.stream.write(PPM_HEADER.format(width=request.width, height=request.height).encode('ascii'))
        self.stream.write(pixels)
        self.stream.flush()
        with self.lock:
            self.latest = (request, pixels)
            self.frames_written += 1

    def latest_frame(self):
        with self.lock:
            return self.latest


class Session:
    def __init__(self, controller, sink, defaults=None):
        self.controller = controller
        self.sink = sink
        self.defaults = defaults or {}
        self.frames = 0
        self.skipped = 0

    def run(self, lines):
        """Serve every record from ``lines``; return the number of frames rendered.

        Whatever ends the session (terminal record, end of input, or a fatal
        error) the workers are released: cleanly through the terminal frame
        request, or by closing the channel.
        """
        try:
            for line_no, line in enumerate(lines, 1):
                try:
                    request = parse_record(line, **self.defaults)
                except MalformedRecord as e:
                    self.skipped += 1
                    log(f"[controller] Skipping line {line_no}: {e}")
                    continue
                if request.is_terminal:
                    log(f"[controller] Terminal record on line {line_no}")
                    break
                self.controller.broadcast(request)
                pixels = self.controller.run_round(request)
                self.sink.write_frame(request, pixels)
                self.frames += 1
            else:
                log("[controller] End of input")
            self.controller.broadcast(FrameRequest.terminal())
        except BaseException:
            log(f"[controller] Aborting session after {self.frames} frames")
            self.controller.channel.close(abort=True)
            raise
        self.controller.channel.close()
        log(f"[controller] Session finished: {self.frames} frames, {self.skipped} records skipped")
        return self.frames
