import socket
import threading
import time

import pytest

from chatrelay.codec import decode_verified, serialize
from chatrelay.config import RelayRuntimeConfig
from chatrelay.connection import Connection
from chatrelay.constants import T_JOIN
from chatrelay.envelope import Message, make_message
from chatrelay.registry import Registry
from chatrelay.router import MessageRouter
from chatrelay.service import RelayService
from chatrelay.session import Session
from chatrelay.stats import StatsManager


class Peer:
    """Participant side of a stream, reading whole records with a deadline."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._buf = bytearray()

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data + b"\n")

    def send(self, message: Message) -> None:
        self.send_raw(serialize(message))

    def join(self, username: str) -> None:
        self.send(make_message(T_JOIN, sender=username, text="hello"))

    def read_raw(self, timeout: float = 2.0) -> bytes | None:
        deadline = time.monotonic() + timeout
        while b"\n" not in self._buf:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("no record received")
            self.sock.settimeout(remaining)
            chunk = self.sock.recv(4096)
            if not chunk:
                return None
            self._buf += chunk
        line, _, rest = bytes(self._buf).partition(b"\n")
        self._buf = bytearray(rest)
        return line

    def read(self, timeout: float = 2.0) -> Message | None:
        line = self.read_raw(timeout)
        if line is None:
            return None
        return decode_verified(line)

    def assert_silent(self, timeout: float = 0.2) -> None:
        with pytest.raises(TimeoutError):
            self.read_raw(timeout)

    def assert_closed(self, timeout: float = 2.0) -> None:
        assert self.read_raw(timeout) is None

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


class FakeConnection:
    """Records outgoing payloads instead of writing to a socket."""

    def __init__(self, username: str | None = None, peer: str = "fake") -> None:
        self.username = username
        self.peer = peer
        self.sent: list[bytes] = []
        self.closed = False

    def send(self, payload: bytes) -> bool:
        if self.closed:
            return False
        self.sent.append(payload)
        return True

    def close(self) -> None:
        self.closed = True

    def messages(self) -> list[Message]:
        return [decode_verified(p) for p in self.sent]


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def router(registry: Registry) -> MessageRouter:
    return MessageRouter(registry, StatsManager())


@pytest.fixture
def socket_pair():
    made: list[tuple[Connection, Peer]] = []

    def factory(**kwargs) -> tuple[Connection, Peer]:
        a, b = socket.socketpair()
        conn = Connection(a, peer=f"pair-{len(made)}", **kwargs)
        peer = Peer(b)
        made.append((conn, peer))
        return conn, peer

    yield factory

    for conn, peer in made:
        conn.close()
        peer.close()


@pytest.fixture
def start_session(socket_pair, registry: Registry, router: MessageRouter):
    """Run a Session on a background thread; returns (session, peer, thread)."""
    running: list[tuple[Session, threading.Thread]] = []

    def factory(**kwargs) -> tuple[Session, Peer, threading.Thread]:
        conn, peer = socket_pair()
        session = Session(conn, registry, router, **kwargs)
        t = threading.Thread(target=session.run, daemon=True)
        t.start()
        running.append((session, t))
        return session, peer, t

    yield factory

    for session, t in running:
        session.conn.close()
        t.join(timeout=2.0)


@pytest.fixture
def relay():
    svc = RelayService(RelayRuntimeConfig(host="127.0.0.1", port=0, console=False))
    svc.start()
    yield svc
    svc.stop()


@pytest.fixture
def connect(relay: RelayService):
    peers: list[Peer] = []

    def factory() -> Peer:
        peer = Peer(socket.create_connection(relay.address, timeout=2.0))
        peers.append(peer)
        return peer

    yield factory

    for peer in peers:
        peer.close()


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
