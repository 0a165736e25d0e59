import io
import time

import pytest

from chatrelay.client import ChatClient, format_incoming, next_backoff, parse_input_line
from chatrelay.constants import T_ACK, T_ERROR, T_MSG, T_PM, T_SYSTEM
from chatrelay.envelope import Message


def test_plain_line_becomes_msg() -> None:
    m = parse_input_line("  hello world \n", "alice")
    assert (m.msg_type, m.sender, m.to, m.text) == (T_MSG, "alice", "", "hello world")
    assert m.ts > 0


def test_at_prefix_becomes_pm() -> None:
    m = parse_input_line("@bob see you soon", "alice")
    assert (m.msg_type, m.sender, m.to, m.text) == (T_PM, "alice", "bob", "see you soon")


@pytest.mark.parametrize("line", ["", "   ", "@bob", "@ hi", "@bob   "])
def test_unsendable_lines(line: str) -> None:
    assert parse_input_line(line, "alice") is None


def test_format_incoming() -> None:
    me = "alice"
    assert format_incoming(Message(T_MSG, "bob", "", "hi"), me) == "[bob] hi"
    assert format_incoming(Message(T_PM, "bob", "alice", "hey"), me) == "[PM bob→alice] hey"
    assert format_incoming(Message(T_PM, "bob", "carol", "hey"), me) is None
    assert format_incoming(Message(T_SYSTEM, "server", "", "x"), me) == "[SYS] x"
    assert format_incoming(Message(T_ACK, "server", me, "ok"), me) == "[OK] ok"
    assert format_incoming(Message(T_ERROR, "server", me, "no"), me) == "[ERROR] no"
    assert format_incoming(Message("weird", "server", me, "?"), me).startswith("[?]")


def test_backoff_doubles_and_caps() -> None:
    seq = [1]
    for _ in range(7):
        seq.append(next_backoff(seq[-1]))
    assert seq == [1, 2, 4, 8, 16, 30, 30, 30]


def test_reconnect_waits_with_backoff() -> None:
    sleeps: list[float] = []

    class Unreachable(ChatClient):
        def _connect(self):
            if len(sleeps) >= 6:
                raise KeyboardInterrupt
            raise ConnectionRefusedError("refused")

    client = Unreachable("127.0.0.1", 1, "alice", stdout=io.StringIO(), sleep=sleeps.append)
    with pytest.raises(KeyboardInterrupt):
        client.run()

    assert sleeps == [1, 2, 4, 8, 16, 30]


def test_client_chats_through_relay(relay, connect) -> None:
    bob = connect()
    bob.join("bob")
    assert bob.read().msg_type == T_ACK

    def lines():
        yield "hi bob\n"
        yield "@bob psst\n"
        # Keep the link open long enough for delivery.
        time.sleep(0.3)

    host, port = relay.address
    out = io.StringIO()
    ChatClient(host, port, "alice", stdin=lines(), stdout=out).run()

    assert bob.read().text == "alice has joined"
    m = bob.read()
    assert (m.msg_type, m.sender, m.text) == (T_MSG, "alice", "hi bob")
    pm = bob.read()
    assert (pm.msg_type, pm.to, pm.text) == (T_PM, "bob", "psst")

    assert "[OK] connected to server" in out.getvalue()
    assert "Client terminated." in out.getvalue()
