"""Line-oriented participant front end with reconnect backoff."""

from __future__ import annotations

import argparse
import logging
import socket
import sys
import threading
import time
from typing import Callable, TextIO

from .codec import decode_verified, serialize
from .config import RelayRuntimeConfig
from .connection import Connection
from .constants import (
    BACKOFF_INITIAL_S,
    BACKOFF_MAX_S,
    DEFAULT_CLIENT_USERNAME,
    DEFAULT_HOST,
    DEFAULT_PORT,
    T_ACK,
    T_ERROR,
    T_JOIN,
    T_MSG,
    T_PM,
    T_SYSTEM,
)
from .envelope import Message, make_message
from .errors import DecodeError, IntegrityError, TransportError
from .logging_config import configure_logging


def next_backoff(current: int) -> int:
    return min(current * 2, BACKOFF_MAX_S)


def parse_input_line(line: str, username: str) -> Message | None:
    """`@user text` becomes a pm, any other non-blank line a msg."""
    text = line.strip()
    if not text:
        return None

    if text.startswith("@"):
        to, sep, body = text[1:].partition(" ")
        if not sep or not to or not body.strip():
            return None
        return make_message(T_PM, sender=username, to=to, text=body)

    return make_message(T_MSG, sender=username, text=text)


def format_incoming(message: Message, username: str) -> str | None:
    t = message.msg_type
    if t == T_MSG:
        return f"[{message.sender}] {message.text}"
    if t == T_PM:
        if message.to != username:
            return None
        return f"[PM {message.sender}→{username}] {message.text}"
    if t == T_SYSTEM:
        return f"[SYS] {message.text}"
    if t == T_ACK:
        return f"[OK] {message.text}"
    if t == T_ERROR:
        return f"[ERROR] {message.text}"
    return f"[?] {t}: {message.text}"


class ChatClient:
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self._sleep = sleep
        self._welcomed = threading.Event()
        self.log = logging.getLogger("chatrelay.client")

    def _print(self, text: str) -> None:
        print(text, file=self.stdout, flush=True)

    def _connect(self) -> Connection:
        sock = socket.create_connection((self.host, self.port))
        return Connection(sock, peer=f"{self.host}:{self.port}")

    def _send(self, conn: Connection, message: Message) -> bool:
        return conn.send(serialize(message))

    def _receive_loop(self, conn: Connection, lost: threading.Event) -> None:
        try:
            while True:
                try:
                    record = conn.receive()
                except DecodeError:
                    self._print("[!] Oversized record dropped")
                    continue
                if record is None:
                    break
                if not record.strip():
                    continue

                try:
                    message = decode_verified(record)
                except IntegrityError:
                    self._print("[!] Corrupted message (MD5)")
                    continue
                except DecodeError:
                    self._print("[!] Malformed record")
                    continue

                if message.msg_type == T_ACK:
                    self._welcomed.set()

                line = format_incoming(message, self.username)
                if line is not None:
                    self._print(line)
        except TransportError as e:
            self.log.debug("Receive failed: %s", e)
        finally:
            lost.set()

    def run(self) -> None:
        """Connect, chat until stdin ends, reconnect with backoff on loss."""
        backoff = BACKOFF_INITIAL_S
        while True:
            try:
                conn = self._connect()
            except OSError as e:
                self._print(f"Could not connect: {e}. Retrying in {backoff}s...")
                self._sleep(backoff)
                backoff = next_backoff(backoff)
                continue

            self._print("Connected to the server.")
            lost = threading.Event()
            self._welcomed = threading.Event()

            join = make_message(T_JOIN, sender=self.username, text="hello")
            self._send(conn, join)

            receiver = threading.Thread(
                target=self._receive_loop, args=(conn, lost), name="receiver", daemon=True
            )
            receiver.start()

            self._print(
                "Type messages. Use '@username message' for private messages."
            )

            finished = self._input_loop(conn, lost)
            conn.close()
            receiver.join(timeout=1.0)
            if finished:
                break

            # Only a completed handshake resets the backoff.
            if self._welcomed.is_set():
                backoff = BACKOFF_INITIAL_S
            self._print(f"Connection lost. Retrying in {backoff}s...")
            self._sleep(backoff)
            backoff = next_backoff(backoff)

        self._print("Client terminated.")

    def _input_loop(self, conn: Connection, lost: threading.Event) -> bool:
        """Returns True when stdin is exhausted, False when the link dropped."""
        for raw in self.stdin:
            if lost.is_set():
                self._print("[!] Not sent; connection lost.")
                return False

            text = raw.strip()
            if not text:
                continue

            message = parse_input_line(text, self.username)
            if message is None:
                self._print("Format: @username message")
                continue

            if not self._send(conn, message):
                return False
        return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatrelay-client", description="Chat with a chatrelay server")
    p.add_argument("--host", default=DEFAULT_HOST, help="Relay address")
    p.add_argument("--port", type=int, default=DEFAULT_PORT, help="Relay port")
    p.add_argument("--username", default=None, help="Username (prompted if omitted)")
    p.add_argument("--log-level", default="WARNING", help="Logging level")
    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(RelayRuntimeConfig(log_level=str(args.log_level)))

    username = args.username
    if username is None:
        print("Username: ", end="", flush=True)
        username = sys.stdin.readline()
    username = username.strip() or DEFAULT_CLIENT_USERNAME

    client = ChatClient(args.host, args.port, username)
    try:
        client.run()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
