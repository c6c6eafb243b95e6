"""Command line entry point.

    render local -w 4 < viewports.txt > frames.ppm
    render serve -w 4 < viewports.txt > frames.ppm   # then start 4 `render work`
    render work --host 10.0.0.5
"""

import sys
from argparse import ArgumentParser

import settings
from protocol import ProtocolError
from server import ChunkController, ChunkOverlapError, WorkerRegistry
from session import FrameWriter, Session
from transport import SocketControllerChannel, spawn_local_workers
from worker import run_queue_worker, start_worker


def build_parser():
    parser = ArgumentParser(prog='render', description='Dynamic row-chunk Mandelbrot renderer.')
    parser.add_argument('-v', '--verbose', action='store_true', default=settings.VERBOSE,
                        help='log every chunk assignment to stderr')
    sub = parser.add_subparsers(dest='command', required=True)

    def add_controller_args(p):
        p.add_argument('-w', '--workers', type=int, default=settings.NUM_WORKERS,
                       help='number of worker processes (default: %(default)s)')
        p.add_argument('--chunk-size', type=int, default=settings.CHUNK_SIZE,
                       help='rows per task chunk (default: %(default)s)')
        p.add_argument('--width', type=int, default=settings.WIDTH)
        p.add_argument('--height', type=int, default=settings.HEIGHT)
        p.add_argument('--max-iterations', type=int, default=settings.MAX_ITER, dest='max_iterations')
        p.add_argument('--raw', action='store_true', help='write bare RGB24 frames without the P6 header')
        p.add_argument('--input', type=str, default=None, help='read control records from a file instead of stdin')
        p.add_argument('--web-port', type=int, default=settings.WEB_PORT, dest='web_port',
                       help='serve /stats and /frame.png on this port')

    add_controller_args(sub.add_parser('local', help='controller plus locally spawned worker processes'))
    serve = sub.add_parser('serve', help='controller waiting for TCP workers')
    add_controller_args(serve)
    serve.add_argument('--host', default=settings.HOST)
    serve.add_argument('--port', type=int, default=settings.PORT)

    work = sub.add_parser('work', help='TCP worker')
    work.add_argument('--host', default=settings.CONNECT_HOST)
    work.add_argument('--port', type=int, default=settings.PORT)
    return parser


def run_controller(opt, channel):
    writer = FrameWriter(sys.stdout.buffer, header=not opt.raw)
    controller = ChunkController(channel, WorkerRegistry(), chunk_size=opt.chunk_size)
    if opt.web_port:
        from dashboard import start_dashboard
        start_dashboard(controller, writer, opt.web_port)
    defaults = {'width': opt.width, 'height': opt.height, 'max_iterations': opt.max_iterations}
    settings.log(f"[controller] {len(channel.worker_ids)} workers, chunk size {opt.chunk_size}, "
                 f"default {opt.width}x{opt.height} max_iter={opt.max_iterations}")
    settings.log("[controller] Input format: zoom centerX centerY [width height maxIterations] (one set per line)")

    session = Session(controller, writer, defaults)
    try:
        if opt.input:
            with open(opt.input) as lines:
                session.run(lines)
        else:
            session.run(sys.stdin)
    except (ProtocolError, ChunkOverlapError, MemoryError) as e:
        settings.log(f"[controller] Fatal: {e}")
        return 1
    return 0


def main(argv=None):
    parser = build_parser()
    opt = parser.parse_args(argv)
    settings.set_verbose(opt.verbose)

    if opt.command == 'work':
        return start_worker(opt.host, opt.port)

    if opt.workers <= 0:
        parser.error('--workers must be positive')
    if opt.chunk_size <= 0:
        parser.error('--chunk-size must be positive')
    if min(opt.width, opt.height, opt.max_iterations) <= 0:
        parser.error('--width, --height and --max-iterations must be positive')

    if opt.command == 'local':
        channel = spawn_local_workers(opt.workers, run_queue_worker)
    else:
        channel = SocketControllerChannel(opt.host, opt.port)
        try:
            channel.accept_workers(opt.workers)
        except KeyboardInterrupt:
            channel.close(abort=True)
            return 1
    return run_controller(opt, channel)


if __name__ == '__main__':
    sys.exit(main())
