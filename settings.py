import multiprocessing
import os
import sys

# Configuration
HOST = os.getenv('MASTER_HOST', '0.0.0.0')
CONNECT_HOST = os.getenv('MASTER_CONNECT_HOST', '127.0.0.1')
PORT = int(os.getenv('MASTER_PORT', 65433))
WEB_PORT = int(os.getenv('WEB_PORT')) if os.getenv('WEB_PORT') else None
WIDTH = int(os.getenv('FRACTAL_WIDTH', 800))
HEIGHT = int(os.getenv('FRACTAL_HEIGHT', 600))
MAX_ITER = int(os.getenv('FRACTAL_MAX_ITER', 200))
CHUNK_SIZE = int(os.getenv('CHUNK_SIZE', 10))  # Rows per dynamic task chunk
NUM_WORKERS = int(os.getenv('NUM_WORKERS', multiprocessing.cpu_count()))

VERBOSE = os.getenv('FRACTAL_VERBOSE', '0') == '1'


def set_verbose(enabled):
    global VERBOSE
    VERBOSE = bool(enabled)
    # Locally spawned workers re-read the environment
    os.environ['FRACTAL_VERBOSE'] = '1' if VERBOSE else '0'


def log(message, *args, **kwargs):
    """Diagnostics go to stderr so they never mix with the pixel stream."""
    kwargs.setdefault('file', sys.stderr)
    kwargs.setdefault('flush', True)
    print(message, *args, **kwargs)


def debug(message, *args, **kwargs):
    if VERBOSE:
        log(message, *args, **kwargs)
