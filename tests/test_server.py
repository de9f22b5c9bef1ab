import socket
import time

import pytest

from monsoonkv.iomanager import IOManager
from monsoonkv.server import EchoServer, main


@pytest.fixture
def running():
    iom = IOManager(1, False, "echo-test")
    server = EchoServer(iom, 0)
    server.start()
    yield server
    server.close()
    iom.close()


def recv_exact(sock, size):
    chunks = b""
    while len(chunks) < size:
        part = sock.recv(size - len(chunks))
        if not part:
            break
        chunks += part
    return chunks


def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_echo_round_trip(running):
    with socket.create_connection(("127.0.0.1", running.port), timeout=5) as client:
        client.sendall(b"hello")
        assert recv_exact(client, 5) == b"hello"
        client.sendall(b"again")
        assert recv_exact(client, 5) == b"again"


def test_several_clients_are_served(running):
    clients = [socket.create_connection(("127.0.0.1", running.port), timeout=5) for _ in range(3)]
    try:
        for index, client in enumerate(clients):
            message = f"client-{index}".encode()
            client.sendall(message)
            assert recv_exact(client, len(message)) == message
    finally:
        for client in clients:
            client.close()


def test_peer_close_drops_connection(running):
    client = socket.create_connection(("127.0.0.1", running.port), timeout=5)
    client.sendall(b"x")
    assert recv_exact(client, 1) == b"x"
    assert running.connections == 1
    client.close()
    assert wait_until(lambda: running.connections == 0)


def test_close_refuses_new_connections(running):
    port = running.port
    running.close()
    with pytest.raises(ConnectionRefusedError):
        socket.create_connection(("127.0.0.1", port), timeout=2)


def test_start_twice_is_rejected(running):
    with pytest.raises(RuntimeError):
        running.start()


def test_port_before_start_is_rejected():
    with pytest.raises(RuntimeError):
        EchoServer(None, 0).port


def test_start_on_busy_port_raises():
    blocker = socket.socket()
    blocker.bind(("", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    iom = IOManager(1, False, "busy-test")
    try:
        with pytest.raises(OSError):
            EchoServer(iom, port).start()
    finally:
        iom.close()
        blocker.close()


def test_main_reports_busy_port():
    blocker = socket.socket()
    blocker.bind(("", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    try:
        assert main(["--port", str(port)]) == 1
    finally:
        blocker.close()


def test_main_rejects_bad_port_argument():
    with pytest.raises(SystemExit) as info:
        main(["--port", "not-a-port"])
    assert info.value.code == 2