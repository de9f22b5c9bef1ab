"""A TCP echo server driven by an IOManager."""

from __future__ import annotations

import argparse
import logging
import socket
import threading
from typing import Optional, Sequence, Set

from .iomanager import Event, IOManager

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
BACKLOG = 1024
BUFFER_SIZE = 1024


class EchoServer:
    """Accepts connections and sends back whatever each client sends."""

    def __init__(self, iomanager: IOManager, port: int = DEFAULT_PORT) -> None:
        self.iomanager = iomanager
        self._requested_port = port
        self._listener: Optional[socket.socket] = None
        self._clients: Set[socket.socket] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def port(self) -> int:
        """The port actually listened on."""
        if self._listener is None:
            raise RuntimeError("server is not listening")
        return self._listener.getsockname()[1]

    @property
    def connections(self) -> int:
        with self._lock:
            return len(self._clients)

    def start(self) -> None:
        """Listen on all addresses and start accepting; raises OSError on failure."""
        if self._listener is not None or self._closed:
            raise RuntimeError("server already started")
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(("", self._requested_port))
            listener.listen(BACKLOG)
            listener.setblocking(False)
        except OSError:
            listener.close()
            raise
        self._listener = listener
        self._watch_listener()

    def _watch_listener(self) -> None:
        with self._lock:
            if self._closed or self._listener is None:
                return
            try:
                self.iomanager.add_event(self._listener.fileno(), Event.READ, self._accept)
            except OSError as exc:
                logger.info("cannot watch listener: %s", exc)

    def _accept(self) -> None:
        listener = self._listener
        if self._closed or listener is None:
            return
        try:
            conn, _ = listener.accept()
        except OSError as exc:
            logger.info("accept error: %s", exc)
        else:
            conn.setblocking(False)
            with self._lock:
                self._clients.add(conn)
            logger.info("fd = %d,accept success", conn.fileno())
            self._watch_client(conn)
        self.iomanager.schedule(self._watch_listener)

    def _watch_client(self, conn: socket.socket) -> None:
        with self._lock:
            if self._closed or conn not in self._clients:
                return
            try:
                self.iomanager.add_event(conn.fileno(), Event.READ, lambda: self._serve(conn))
            except OSError as exc:
                logger.info("cannot watch client: %s", exc)
                self._clients.discard(conn)
                conn.close()

    def _serve(self, conn: socket.socket) -> None:
        while True:
            try:
                data = conn.recv(BUFFER_SIZE)
            except BlockingIOError:
                self._watch_client(conn)
                return
            except OSError:
                break
            if not data:
                break
            logger.info("client say: %s", data.decode(errors="replace"))
            try:
                conn.sendall(data)
            except OSError:
                break
        self._drop(conn)

    def _drop(self, conn: socket.socket) -> None:
        with self._lock:
            self._clients.discard(conn)
            conn.close()

    def close(self) -> None:
        """Stop accepting and close every connection."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sockets = [self._listener, *self._clients] if self._listener else list(self._clients)
            self._listener = None
            self._clients.clear()
            for sock in sockets:
                fd = sock.fileno()
                if fd >= 0:
                    self.iomanager.del_event(fd, Event.READ)
                sock.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run a TCP echo server.")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)

    iomanager = IOManager()
    server = EchoServer(iomanager, args.port)
    try:
        server.start()
    except OSError as exc:
        print(f"listen error: {exc}")
        iomanager.close()
        return 1
    print(f"listen success on port: {server.port}")
    try:
        iomanager.close()
    except KeyboardInterrupt:
        return 0
    return 0