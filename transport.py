"""Message channels between the controller and its workers.

The controller side exposes ``worker_ids``, ``send``, ``broadcast``,
``recv_any`` and ``close``; the worker side exposes ``send``, ``recv`` and
``close``. Everything a worker sends lands in one fan-in queue tagged with its
worker id, so the controller only ever waits on a single source.
"""

import multiprocessing
import queue
import socket
import threading
import time

from protocol import ConnectionClosed, ProtocolError, WorkerLost, recv_message, send_message
from settings import CONNECT_HOST, HOST, PORT, debug, log

POLL_INTERVAL = 0.5
JOIN_TIMEOUT = 5


class QueueControllerChannel:
    """Controller end over queue pairs (threads or ``multiprocessing``)."""

    def __init__(self, inbox, outboxes, processes=None):
        self.inbox = inbox
        self.outboxes = dict(outboxes)
        self.processes = dict(processes or {})
        self.worker_ids = list(self.outboxes)

    def send(self, worker_id, message):
        self.outboxes[worker_id].put(message)

    def broadcast(self, message):
        for worker_id in self.worker_ids:
            self.send(worker_id, message)

    def recv_any(self):
        while True:
            try:
                return self.inbox.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                self._check_alive()

    def _check_alive(self):
        for worker_id, process in self.processes.items():
            if not process.is_alive():
                raise WorkerLost(worker_id, f"process exited with code {process.exitcode}")

    def close(self, abort=False):
        for process in self.processes.values():
            if abort:
                process.terminate()
            process.join(JOIN_TIMEOUT)
            if process.is_alive():
                process.terminate()
                process.join()


class QueueWorkerChannel:
    def __init__(self, worker_id, to_controller, from_controller):
        self.worker_id = worker_id
        self.to_controller = to_controller
        self.from_controller = from_controller

    def send(self, message):
        self.to_controller.put((self.worker_id, message))

    def recv(self):
        return self.from_controller.get()

    def close(self):
        pass


def spawn_local_workers(count, target):
    """Start ``count`` worker processes running ``target(worker_id, inbox, outbox)``."""
    inbox = multiprocessing.Queue()
    outboxes = {}
    processes = {}
    for i in range(1, count + 1):
        worker_id = f"worker_{i}"
        outboxes[worker_id] = multiprocessing.Queue()
        processes[worker_id] = multiprocessing.Process(
            target=target, args=(worker_id, inbox, outboxes[worker_id]), name=worker_id, daemon=True
        )
    for p in processes.values():
        p.start()
    return QueueControllerChannel(inbox, outboxes, processes)


class SocketControllerChannel:
    """Controller end over TCP; one reader thread per accepted worker."""

    def __init__(self, host=HOST, port=PORT):
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((host, port))
        self.server_socket.listen()
        self.address = self.server_socket.getsockname()
        self.inbox = queue.Queue()
        self.connections = {}
        self.peers = {}
        self.worker_ids = []
        self.worker_counter = 0
        self.lock = threading.Lock()
        log(f"[controller] Socket server listening on {self.address[0]}:{self.address[1]}")

    def accept_workers(self, count):
        while len(self.worker_ids) < count:
            client_socket, addr = self.server_socket.accept()
            self.worker_counter += 1
            worker_id = f"worker_{self.worker_counter}"
            with self.lock:
                self.connections[worker_id] = client_socket
                self.peers[worker_id] = addr
                self.worker_ids.append(worker_id)
            log(f"[controller] {worker_id} connected from {addr[0]}:{addr[1]} ({len(self.worker_ids)}/{count})")
            threading.Thread(target=self._read_worker, args=(worker_id, client_socket), daemon=True).start()

    def _read_worker(self, worker_id, client_socket):
        reason = "connection closed"
        try:
            while True:
                message = recv_message(client_socket)
                if message is None:
                    break
                self.inbox.put((worker_id, message))
        except (OSError, ProtocolError) as e:
            reason = str(e)
        debug(f"[controller] reader for {worker_id} stopped: {reason}")
        self.inbox.put((worker_id, WorkerLost(worker_id, reason)))

    def send(self, worker_id, message):
        try:
            send_message(self.connections[worker_id], message)
        except OSError as e:
            raise WorkerLost(worker_id, f"send failed: {e}") from e

    def broadcast(self, message):
        for worker_id in self.worker_ids:
            self.send(worker_id, message)

    def recv_any(self):
        worker_id, message = self.inbox.get()
        if isinstance(message, WorkerLost):
            raise message
        return worker_id, message

    def close(self, abort=False):
        with self.lock:
            connections = list(self.connections.values())
            self.connections.clear()
        for client_socket in connections:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client_socket.close()
        self.server_socket.close()


class SocketWorkerChannel:
    def __init__(self, host=CONNECT_HOST, port=PORT, retries=10, retry_delay=1.0):
        self.sock = self._connect(host, port, retries, retry_delay)

    @staticmethod
    def _connect(host, port, retries, retry_delay):
        for attempt in range(1, retries + 1):
            try:
                return socket.create_connection((host, port))
            except OSError as e:
                if attempt == retries:
                    raise
                log(f"[worker] Connect to {host}:{port} failed ({e}), retrying...")
                time.sleep(retry_delay)

    def send(self, message):
        try:
            send_message(self.sock, message)
        except OSError as e:
            raise ConnectionClosed(f"send failed: {e}") from e

    def recv(self):
        try:
            message = recv_message(self.sock)
        except OSError as e:
            raise ConnectionClosed(f"receive failed: {e}") from e
        if message is None:
            raise ConnectionClosed("controller closed the connection")
        return message

    def close(self):
        self.sock.close()
